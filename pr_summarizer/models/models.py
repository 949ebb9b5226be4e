"""
Database models and API schemas for the PR Summarizer application.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, Text

from pr_summarizer.database import Base
from pr_summarizer.models.domain import ImpactLevel, ReviewPriority


class SummaryRecord(Base):
    """Stored AI-generated summary of a pull request."""

    __tablename__ = "pr_summaries"

    id = Column(String(255), primary_key=True)
    pr_id = Column(String(100), nullable=False, unique=True, index=True)
    pr_number = Column(Integer, nullable=False)
    pr_title = Column(String(500), nullable=False)
    repository = Column(String(255), nullable=False, index=True)
    author = Column(String(100), nullable=False, index=True)
    narrative_text = Column(Text, nullable=False)
    key_changes = Column(JSON, nullable=True)
    impact = Column(String(20), nullable=False, index=True)
    review_priority = Column(String(20), nullable=False)
    confidence = Column(Float, default=0.0)
    provider_used = Column(String(50), nullable=False)
    model_used = Column(String(100), nullable=False)
    is_reviewed = Column(Boolean, default=False, index=True)
    is_important = Column(Boolean, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    prompt_tokens = Column(Integer, nullable=True)
    completion_tokens = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    cost = Column(Float, nullable=True)

    def __repr__(self):
        return f"<SummaryRecord(id={self.id}, repository='{self.repository}', pr_number={self.pr_number})>"


# Pydantic models for API serialization
class TokenUsageResponse(BaseModel):
    """Token accounting schema."""
    model_config = ConfigDict(from_attributes=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: Optional[float] = None


class SummaryResponse(BaseModel):
    """Summary response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    pr_id: str
    pr_number: int
    pr_title: str
    repository: str
    author: str
    narrative_text: str
    key_changes: List[str] = []
    impact: ImpactLevel
    review_priority: ReviewPriority
    confidence: float
    provider_used: str
    model_used: str
    is_reviewed: bool = False
    is_important: bool = False
    created_at: datetime
    token_usage: Optional[TokenUsageResponse] = None


class SummaryListResponse(BaseModel):
    """Paginated summary list schema."""
    summaries: List[SummaryResponse]
    total: int
    page: int
    per_page: int
    has_next: bool


class SummaryStatsResponse(BaseModel):
    """Summary statistics schema."""
    model_config = ConfigDict(from_attributes=True)

    total: int
    reviewed_count: int
    important_count: int
    reviewed_percentage: float
    impact_histogram: Dict[str, int]
    provider_distribution: Dict[str, int]
    average_confidence: float
    total_cost: Optional[float] = None
    available_providers: List[str] = []
    ai_service_available: bool = False


class GenerateSummariesRequest(BaseModel):
    """Schema for summary generation request."""
    force: bool = False
    max_prs: int = Field(default=10, ge=1, le=100)


class GenerateSummariesResponse(BaseModel):
    """Schema for summary generation result."""
    message: str
    generated: int
    skipped: int
    total: int
    summaries: List[SummaryResponse] = []


class RepositoryResponse(BaseModel):
    """Starred repository schema."""
    model_config = ConfigDict(from_attributes=True)

    github_id: int
    name: str
    full_name: str
    owner_login: str
    description: Optional[str] = None
    url: str
    language: Optional[str] = None
    stars_count: int = 0
    is_private: bool = False
    updated_at: Optional[datetime] = None


class RepositoryListResponse(BaseModel):
    repositories: List[RepositoryResponse]
    page: int
    per_page: int
    has_next: bool


class PullRequestResponse(BaseModel):
    """Pull request schema."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    number: int
    title: str
    body: str
    author: str
    repository: str
    changed_files: int
    additions: int
    deletions: int
    labels: List[str] = []
    html_url: Optional[str] = None
    state: str = "open"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PullRequestListResponse(BaseModel):
    pull_requests: List[PullRequestResponse]
    page: int
    per_page: int
    has_next: bool
    total: Optional[int] = None


class UserResponse(BaseModel):
    """Authenticated GitHub user schema."""
    login: str
    id: int
    avatar_url: Optional[str] = None
    url: Optional[str] = None


class RateLimitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    remaining: int
    limit: int
    reset_at: datetime
    used: int = 0
