"""
Data models package.
"""

from .domain import (
    GenerationState,
    ImpactLevel,
    ProviderConfig,
    ProviderKind,
    PullRequestRef,
    RawModelResponse,
    ReviewPriority,
    Summary,
    TokenUsage,
)

__all__ = [
    "GenerationState",
    "ImpactLevel",
    "ProviderConfig",
    "ProviderKind",
    "PullRequestRef",
    "RawModelResponse",
    "ReviewPriority",
    "Summary",
    "TokenUsage",
]
