"""
Parsing of free-text model output into typed summary fields.

Extraction is best effort: missing sections degrade to empty lists and
medium defaults, nothing here raises on malformed input.
"""

import re
from typing import List, Optional

from pr_summarizer.models.domain import (
    FALLBACK_MODEL,
    FALLBACK_PROVIDER,
    ImpactLevel,
    PullRequestRef,
    ReviewPriority,
    Summary,
    TokenUsage,
    summary_id_for,
)
from pr_summarizer.services.prompt_builder import KEY_CHANGES_HEADER, NO_DESCRIPTION

MAX_KEY_CHANGES = 5

HIGH_IMPACT_KEYWORDS = ("breaking change", "high impact", "critical")
LOW_IMPACT_KEYWORDS = ("low impact", "minor", "documentation")
HIGH_PRIORITY_KEYWORDS = ("high priority", "urgent")
LOW_PRIORITY_KEYWORDS = ("low priority",)

# Size thresholds
HIGH_IMPACT_FILES = 20
HIGH_IMPACT_LINES = 1000
LOW_IMPACT_FILES = 3
LOW_IMPACT_LINES = 50

BASE_CONFIDENCE = 0.7
CONFIDENCE_STEP = 0.1
FALLBACK_CONFIDENCE = 0.3

_KEY_CHANGES_PATTERN = re.compile(
    re.escape(KEY_CHANGES_HEADER) + r"\s*(.*?)(?=##|\Z)", re.DOTALL
)
_BULLET_PATTERN = re.compile(r"^[-*]\s*")


def extract_key_changes(content: str) -> List[str]:
    """Return up to five bullet points from the Key Changes section."""
    match = _KEY_CHANGES_PATTERN.search(content or "")
    if not match:
        return []

    changes = []
    for line in match.group(1).split("\n"):
        stripped = line.strip()
        if not stripped.startswith(("-", "*")):
            continue
        change = _BULLET_PATTERN.sub("", stripped).strip()
        if change:
            changes.append(change)

    return changes[:MAX_KEY_CHANGES]


def _is_high_by_size(pr: PullRequestRef) -> bool:
    return pr.changed_files > HIGH_IMPACT_FILES or pr.total_changes > HIGH_IMPACT_LINES


def _is_low_by_size(pr: PullRequestRef) -> bool:
    return pr.changed_files <= LOW_IMPACT_FILES or pr.total_changes <= LOW_IMPACT_LINES


def impact_from_size(pr: PullRequestRef) -> ImpactLevel:
    """Impact derived from the size of the change alone."""
    if _is_high_by_size(pr):
        return ImpactLevel.HIGH
    if _is_low_by_size(pr):
        return ImpactLevel.LOW
    return ImpactLevel.MEDIUM


def determine_impact(content: str, pr: PullRequestRef) -> ImpactLevel:
    """
    Combine textual cues with size heuristics.

    The high-impact rule is checked first and wins over any low-impact cue.
    """
    lower_content = (content or "").lower()

    if any(keyword in lower_content for keyword in HIGH_IMPACT_KEYWORDS) or _is_high_by_size(pr):
        return ImpactLevel.HIGH

    if any(keyword in lower_content for keyword in LOW_IMPACT_KEYWORDS) or _is_low_by_size(pr):
        return ImpactLevel.LOW

    return ImpactLevel.MEDIUM


def extract_review_priority(content: str) -> ReviewPriority:
    lower_content = (content or "").lower()

    if any(keyword in lower_content for keyword in HIGH_PRIORITY_KEYWORDS):
        return ReviewPriority.HIGH
    if any(keyword in lower_content for keyword in LOW_PRIORITY_KEYWORDS):
        return ReviewPriority.LOW
    return ReviewPriority.MEDIUM


def calculate_confidence(content: str, pr: PullRequestRef) -> float:
    """
    Heuristic confidence from input richness and output structure.

    Args:
        content: Raw model response
        pr: Pull request the response describes

    Returns:
        float: Confidence in [0, 1]
    """
    confidence = BASE_CONFIDENCE

    # Well described PR
    if pr.body and len(pr.body) > 100:
        confidence += CONFIDENCE_STEP

    if pr.labels:
        confidence += CONFIDENCE_STEP

    # Long, sectioned response
    if content and len(content) > 500 and "##" in content:
        confidence += CONFIDENCE_STEP

    return round(max(0.0, min(confidence, 1.0)), 2)


def parse_summary_response(
    content: str,
    pr: PullRequestRef,
    provider_used: str = "unknown",
    model_used: str = "unknown",
    token_usage: Optional[TokenUsage] = None,
) -> Summary:
    """
    Build a Summary from the model's markdown response.

    Args:
        content: Raw model response text
        pr: Pull request the response describes
        provider_used: Provider that produced the text
        model_used: Model that produced the text
        token_usage: Token accounting for the call, if known

    Returns:
        Summary: Best-effort structured summary
    """
    content = content or ""
    return Summary(
        id=summary_id_for(pr.id),
        pr_id=pr.id,
        pr_number=pr.number,
        pr_title=pr.title,
        repository=pr.repository,
        author=pr.author,
        narrative_text=content,
        key_changes=extract_key_changes(content),
        impact=determine_impact(content, pr),
        review_priority=extract_review_priority(content),
        confidence=calculate_confidence(content, pr),
        provider_used=provider_used,
        model_used=model_used,
        token_usage=token_usage,
    )


def create_fallback_summary(pr: PullRequestRef, reason: str) -> Summary:
    """Deterministic summary used when no provider produced a response."""
    narrative = f"""## Summary
Unable to generate AI summary due to: {reason}

## Manual Analysis
- **Title**: {pr.title}
- **Author**: {pr.author}
- **Repository**: {pr.repository}
- **Changes**: {pr.changed_files} files, +{pr.additions}/-{pr.deletions} lines

## Description
{pr.body or NO_DESCRIPTION}

*This is a fallback summary. AI analysis was unavailable.*"""

    return Summary(
        id=summary_id_for(pr.id),
        pr_id=pr.id,
        pr_number=pr.number,
        pr_title=pr.title,
        repository=pr.repository,
        author=pr.author,
        narrative_text=narrative,
        key_changes=[
            f"{pr.changed_files} files changed",
            f"+{pr.additions}/-{pr.deletions} lines",
        ],
        impact=impact_from_size(pr),
        review_priority=ReviewPriority.MEDIUM,
        confidence=FALLBACK_CONFIDENCE,
        provider_used=FALLBACK_PROVIDER,
        model_used=FALLBACK_MODEL,
    )
