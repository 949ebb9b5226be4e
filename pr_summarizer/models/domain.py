"""
Core data classes shared by the summarization pipeline.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class ProviderKind(str, Enum):
    """LLM backends the provider adapter knows how to call."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"

    @classmethod
    def parse(cls, value: str) -> "ProviderKind":
        """Resolve a configured provider name, accepting ``claude`` for Anthropic."""
        normalized = (value or "").strip().lower()
        if normalized == "claude":
            return cls.ANTHROPIC
        return cls(normalized)


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ReviewPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GenerationState(str, Enum):
    """Lifecycle of a single summary generation."""
    PENDING = "pending"
    PROMPTING = "prompting"
    CALLING = "calling"
    PARSING = "parsing"
    STORED = "stored"
    FAILED = "failed"
    FALLBACK_STORED = "fallback_stored"


FALLBACK_PROVIDER = "fallback"
FALLBACK_MODEL = "none"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PullRequestRef:
    """Identity and metadata of a pull request, as needed to build a prompt."""
    id: str
    number: int
    title: str
    body: str
    author: str
    repository: str
    changed_files: int = 0
    additions: int = 0
    deletions: int = 0
    labels: Tuple[str, ...] = ()
    html_url: Optional[str] = None
    state: str = "open"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def total_changes(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class ProviderConfig:
    """Backend selection and generation parameters for one provider call."""
    provider: str
    model: str
    max_tokens: int = 4000
    temperature: float = 0.3
    timeout: float = 60.0
    max_retries: int = 2

    def with_overrides(self, **overrides) -> "ProviderConfig":
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


@dataclass
class TokenUsage:
    """Token accounting reported by a provider."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: Optional[float] = None


@dataclass
class RawModelResponse:
    """Text returned by a provider call plus call metadata."""
    text: str
    provider: str
    model: str
    usage: Optional[TokenUsage] = None


@dataclass
class Summary:
    """Generated summary for a single pull request."""
    id: str
    pr_id: str
    pr_number: int
    pr_title: str
    repository: str
    author: str
    narrative_text: str
    key_changes: list = field(default_factory=list)
    impact: ImpactLevel = ImpactLevel.MEDIUM
    review_priority: ReviewPriority = ReviewPriority.MEDIUM
    confidence: float = 0.0
    provider_used: str = FALLBACK_PROVIDER
    model_used: str = FALLBACK_MODEL
    is_reviewed: bool = False
    is_important: bool = False
    created_at: datetime = field(default_factory=utcnow)
    token_usage: Optional[TokenUsage] = None

    @property
    def is_fallback(self) -> bool:
        return self.provider_used == FALLBACK_PROVIDER


def summary_id_for(pr_id: str) -> str:
    """Derive the summary identifier from the pull request identifier."""
    return f"summary-{pr_id}"
