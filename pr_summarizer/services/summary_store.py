"""
Summary storage.

Route handlers and the summarization service depend on BaseSummaryStore,
not on a concrete backend. Two backends ship: an in-process dictionary and
a SQLAlchemy table.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import timezone
from typing import Dict, List, Optional, Set

from fastapi import status
from sqlalchemy import func
from sqlalchemy.engine import Engine

from pr_summarizer.database import create_db_engine, create_session_factory, create_tables
from pr_summarizer.models.domain import ImpactLevel, ReviewPriority, Summary, TokenUsage, summary_id_for
from pr_summarizer.models.models import SummaryRecord

logger = logging.getLogger(__name__)


class SummaryNotFoundError(Exception):
    """Raised when no summary exists for an identifier."""

    def __init__(self, summary_id: str):
        self.summary_id = summary_id
        self.message = f"Summary {summary_id} not found"
        self.status_code = status.HTTP_404_NOT_FOUND
        super().__init__(self.message)


@dataclass
class SummaryFilters:
    """AND-combined query filters; None means no constraint."""
    pr_id: Optional[str] = None
    repository: Optional[str] = None
    author: Optional[str] = None
    impact: Optional[ImpactLevel] = None
    is_reviewed: Optional[bool] = None
    is_important: Optional[bool] = None

    def matches(self, summary: Summary) -> bool:
        if self.pr_id is not None and summary.pr_id != self.pr_id:
            return False
        if self.repository is not None and summary.repository != self.repository:
            return False
        if self.author is not None and summary.author != self.author:
            return False
        if self.impact is not None and summary.impact != self.impact:
            return False
        if self.is_reviewed is not None and summary.is_reviewed != self.is_reviewed:
            return False
        if self.is_important is not None and summary.is_important != self.is_important:
            return False
        return True


@dataclass
class SummaryPage:
    items: List[Summary]
    total: int
    page: int
    page_size: int
    has_next: bool


@dataclass
class SummaryStats:
    total: int = 0
    reviewed_count: int = 0
    important_count: int = 0
    reviewed_percentage: float = 0.0
    impact_histogram: Dict[str, int] = field(
        default_factory=lambda: {level.value: 0 for level in ImpactLevel}
    )
    provider_distribution: Dict[str, int] = field(default_factory=dict)
    average_confidence: float = 0.0
    total_cost: Optional[float] = None


def _validate_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError("Page number must be >= 1")
    if page_size < 1:
        raise ValueError("Page size must be >= 1")


class BaseSummaryStore(ABC):
    """
    Pluggable persistence for generated summaries.

    At most one summary is current per pull request: upsert replaces the
    previous record for the same PR. Replacement keeps the reviewed and
    important flags, which only the toggle operations change.
    """

    @abstractmethod
    def upsert(self, summary: Summary) -> Summary:
        """Insert or replace the summary for ``summary.pr_id``."""

    @abstractmethod
    def get(self, summary_id: str) -> Summary:
        """Return a summary or raise SummaryNotFoundError."""

    @abstractmethod
    def query(self, filters: Optional[SummaryFilters] = None, page: int = 1, page_size: int = 20) -> SummaryPage:
        """Filter, sort newest first and paginate (1-indexed pages)."""

    @abstractmethod
    def toggle_reviewed(self, summary_id: str) -> Summary:
        """Flip ``is_reviewed``."""

    @abstractmethod
    def toggle_important(self, summary_id: str) -> Summary:
        """Flip ``is_important``."""

    @abstractmethod
    def stats(self) -> SummaryStats:
        """Aggregate counts over all stored summaries."""

    @abstractmethod
    def existing_pr_ids(self) -> Set[str]:
        """PR identifiers that already have a current summary."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored summaries."""

    def close(self) -> None:
        """Release any resources held by the store."""


def _copy(summary: Summary) -> Summary:
    return replace(summary, key_changes=list(summary.key_changes))


class InMemorySummaryStore(BaseSummaryStore):
    """Summaries held in a dictionary keyed by summary id."""

    def __init__(self):
        self._summaries: Dict[str, Summary] = {}
        self._lock = threading.RLock()

    def upsert(self, summary: Summary) -> Summary:
        key = summary_id_for(summary.pr_id)
        with self._lock:
            stored = replace(_copy(summary), id=key)
            previous = self._summaries.get(key)
            if previous is not None:
                stored.is_reviewed = previous.is_reviewed
                stored.is_important = previous.is_important
                logger.info(f"Replacing summary for PR {summary.pr_id}")
            self._summaries[key] = stored
            return _copy(stored)

    def get(self, summary_id: str) -> Summary:
        with self._lock:
            summary = self._summaries.get(summary_id)
            if summary is None:
                raise SummaryNotFoundError(summary_id)
            return _copy(summary)

    def query(self, filters: Optional[SummaryFilters] = None, page: int = 1, page_size: int = 20) -> SummaryPage:
        _validate_paging(page, page_size)
        filters = filters or SummaryFilters()

        with self._lock:
            matching = [s for s in self._summaries.values() if filters.matches(s)]

        matching.sort(key=lambda s: s.created_at, reverse=True)
        start = (page - 1) * page_size
        end = start + page_size
        return SummaryPage(
            items=[_copy(s) for s in matching[start:end]],
            total=len(matching),
            page=page,
            page_size=page_size,
            has_next=end < len(matching),
        )

    def _toggle(self, summary_id: str, flag: str) -> Summary:
        with self._lock:
            summary = self._summaries.get(summary_id)
            if summary is None:
                raise SummaryNotFoundError(summary_id)
            setattr(summary, flag, not getattr(summary, flag))
            return _copy(summary)

    def toggle_reviewed(self, summary_id: str) -> Summary:
        return self._toggle(summary_id, "is_reviewed")

    def toggle_important(self, summary_id: str) -> Summary:
        return self._toggle(summary_id, "is_important")

    def stats(self) -> SummaryStats:
        with self._lock:
            summaries = list(self._summaries.values())

        result = SummaryStats(total=len(summaries))
        if not summaries:
            return result

        costs = []
        for summary in summaries:
            result.reviewed_count += summary.is_reviewed
            result.important_count += summary.is_important
            result.impact_histogram[summary.impact.value] += 1
            provider = summary.provider_used or "unknown"
            result.provider_distribution[provider] = result.provider_distribution.get(provider, 0) + 1
            if summary.token_usage is not None and summary.token_usage.cost is not None:
                costs.append(summary.token_usage.cost)

        result.reviewed_percentage = round(result.reviewed_count / result.total * 100, 2)
        result.average_confidence = round(sum(s.confidence for s in summaries) / result.total, 2)
        result.total_cost = round(sum(costs), 6) if costs else None
        return result

    def existing_pr_ids(self) -> Set[str]:
        with self._lock:
            return {s.pr_id for s in self._summaries.values()}

    def count(self) -> int:
        with self._lock:
            return len(self._summaries)


class SqlSummaryStore(BaseSummaryStore):
    """Summaries persisted in the ``pr_summaries`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_local = create_session_factory(engine)
        self._write_lock = threading.RLock()
        create_tables(engine)

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SqlSummaryStore":
        return cls(create_db_engine(database_url, echo=echo))

    @staticmethod
    def _apply(record: SummaryRecord, summary: Summary) -> None:
        usage = summary.token_usage
        record.pr_number = summary.pr_number
        record.pr_title = summary.pr_title
        record.repository = summary.repository
        record.author = summary.author
        record.narrative_text = summary.narrative_text
        record.key_changes = list(summary.key_changes)
        record.impact = summary.impact.value
        record.review_priority = summary.review_priority.value
        record.confidence = summary.confidence
        record.provider_used = summary.provider_used
        record.model_used = summary.model_used
        created_at = summary.created_at
        # Stored naive in UTC; read back with the UTC offset attached
        if created_at is not None and created_at.tzinfo is not None:
            created_at = created_at.astimezone(timezone.utc)
        record.created_at = created_at
        record.prompt_tokens = usage.prompt_tokens if usage else None
        record.completion_tokens = usage.completion_tokens if usage else None
        record.total_tokens = usage.total_tokens if usage else None
        record.cost = usage.cost if usage else None

    @staticmethod
    def _to_summary(record: SummaryRecord) -> Summary:
        created_at = record.created_at
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        token_usage = None
        if record.total_tokens is not None:
            token_usage = TokenUsage(
                prompt_tokens=record.prompt_tokens or 0,
                completion_tokens=record.completion_tokens or 0,
                total_tokens=record.total_tokens,
                cost=record.cost,
            )

        return Summary(
            id=record.id,
            pr_id=record.pr_id,
            pr_number=record.pr_number,
            pr_title=record.pr_title,
            repository=record.repository,
            author=record.author,
            narrative_text=record.narrative_text,
            key_changes=list(record.key_changes or []),
            impact=ImpactLevel(record.impact),
            review_priority=ReviewPriority(record.review_priority),
            confidence=record.confidence or 0.0,
            provider_used=record.provider_used,
            model_used=record.model_used,
            is_reviewed=bool(record.is_reviewed),
            is_important=bool(record.is_important),
            created_at=created_at,
            token_usage=token_usage,
        )

    def upsert(self, summary: Summary) -> Summary:
        with self._write_lock, self.session_local() as db:
            try:
                record = db.query(SummaryRecord).filter(SummaryRecord.pr_id == summary.pr_id).first()
                if record is None:
                    record = SummaryRecord(
                        id=summary_id_for(summary.pr_id),
                        pr_id=summary.pr_id,
                        is_reviewed=False,
                        is_important=False,
                    )
                    db.add(record)
                else:
                    logger.info(f"Replacing summary for PR {summary.pr_id}")
                self._apply(record, summary)
                db.commit()
                db.refresh(record)
                return self._to_summary(record)
            except Exception:
                db.rollback()
                raise

    def get(self, summary_id: str) -> Summary:
        with self.session_local() as db:
            record = db.get(SummaryRecord, summary_id)
            if record is None:
                raise SummaryNotFoundError(summary_id)
            return self._to_summary(record)

    def query(self, filters: Optional[SummaryFilters] = None, page: int = 1, page_size: int = 20) -> SummaryPage:
        _validate_paging(page, page_size)
        filters = filters or SummaryFilters()

        with self.session_local() as db:
            query = db.query(SummaryRecord)
            if filters.pr_id is not None:
                query = query.filter(SummaryRecord.pr_id == filters.pr_id)
            if filters.repository is not None:
                query = query.filter(SummaryRecord.repository == filters.repository)
            if filters.author is not None:
                query = query.filter(SummaryRecord.author == filters.author)
            if filters.impact is not None:
                query = query.filter(SummaryRecord.impact == ImpactLevel(filters.impact).value)
            if filters.is_reviewed is not None:
                query = query.filter(SummaryRecord.is_reviewed == filters.is_reviewed)
            if filters.is_important is not None:
                query = query.filter(SummaryRecord.is_important == filters.is_important)

            total = query.count()
            records = (
                query
                .order_by(SummaryRecord.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            return SummaryPage(
                items=[self._to_summary(r) for r in records],
                total=total,
                page=page,
                page_size=page_size,
                has_next=page * page_size < total,
            )

    def _toggle(self, summary_id: str, flag: str) -> Summary:
        with self._write_lock, self.session_local() as db:
            record = db.get(SummaryRecord, summary_id)
            if record is None:
                raise SummaryNotFoundError(summary_id)
            setattr(record, flag, not getattr(record, flag))
            db.commit()
            db.refresh(record)
            return self._to_summary(record)

    def toggle_reviewed(self, summary_id: str) -> Summary:
        return self._toggle(summary_id, "is_reviewed")

    def toggle_important(self, summary_id: str) -> Summary:
        return self._toggle(summary_id, "is_important")

    def stats(self) -> SummaryStats:
        with self.session_local() as db:
            total = db.query(func.count(SummaryRecord.id)).scalar() or 0
            result = SummaryStats(total=total)
            if not total:
                return result

            result.reviewed_count = (
                db.query(func.count(SummaryRecord.id)).filter(SummaryRecord.is_reviewed.is_(True)).scalar() or 0
            )
            result.important_count = (
                db.query(func.count(SummaryRecord.id)).filter(SummaryRecord.is_important.is_(True)).scalar() or 0
            )
            for impact, count in db.query(SummaryRecord.impact, func.count(SummaryRecord.id)).group_by(SummaryRecord.impact):
                result.impact_histogram[impact] = count
            for provider, count in db.query(SummaryRecord.provider_used, func.count(SummaryRecord.id)).group_by(
                SummaryRecord.provider_used
            ):
                result.provider_distribution[provider or "unknown"] = count

            average = db.query(func.avg(SummaryRecord.confidence)).scalar() or 0.0
            cost = db.query(func.sum(SummaryRecord.cost)).scalar()

        result.reviewed_percentage = round(result.reviewed_count / total * 100, 2)
        result.average_confidence = round(float(average), 2)
        result.total_cost = round(float(cost), 6) if cost is not None else None
        return result

    def existing_pr_ids(self) -> Set[str]:
        with self.session_local() as db:
            return {pr_id for (pr_id,) in db.query(SummaryRecord.pr_id)}

    def count(self) -> int:
        with self.session_local() as db:
            return db.query(func.count(SummaryRecord.id)).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


def create_summary_store(settings) -> BaseSummaryStore:
    """Select the summary store backend from settings."""
    backend = settings.SUMMARY_STORE_BACKEND.lower()
    if backend == "memory":
        logger.info("Using in-memory summary store")
        return InMemorySummaryStore()
    if backend == "database":
        logger.info("Using database summary store")
        return SqlSummaryStore.from_url(settings.DATABASE_URL, echo=settings.DEBUG)
    raise ValueError(f"Unknown summary store backend: {settings.SUMMARY_STORE_BACKEND!r}. Choose 'memory' or 'database'.")
