"""
Prompt construction for pull request summaries.

The section headers requested here are the ones the response parser looks
for; change them together.
"""

from pr_summarizer.models.domain import PullRequestRef

SUMMARY_HEADER = "## Summary"
KEY_CHANGES_HEADER = "## Key Changes"
IMPACT_HEADER = "## Impact Assessment"
TECHNICAL_NOTES_HEADER = "## Technical Notes"
REVIEW_PRIORITY_HEADER = "## Review Priority"

SECTION_HEADERS = (
    SUMMARY_HEADER,
    KEY_CHANGES_HEADER,
    IMPACT_HEADER,
    TECHNICAL_NOTES_HEADER,
    REVIEW_PRIORITY_HEADER,
)

NO_DESCRIPTION = "No description provided."


def build_pr_summary_prompt(pr: PullRequestRef) -> str:
    """
    Create the summarization prompt for a pull request.

    Args:
        pr: Pull request metadata

    Returns:
        str: Prompt requesting the five structured sections
    """
    labels = ", ".join(label for label in pr.labels if label) or "None"
    body = pr.body.strip() if pr.body else ""
    author = pr.author or "unknown"

    return f"""You are an expert code reviewer and technical writer. Analyze this GitHub pull request and provide a comprehensive, professional summary.

**Repository:** {pr.repository}
**PR Title:** {pr.title}
**Author:** {author}
**Files Changed:** {pr.changed_files} files
**Changes:** +{pr.additions} -{pr.deletions} lines
**Labels:** {labels}

**PR Description:**
{body or NO_DESCRIPTION}

Please provide a structured analysis in the following format:

{SUMMARY_HEADER}
[One paragraph overview of what this PR accomplishes]

{KEY_CHANGES_HEADER}
[Bullet points of the main changes, focus on functionality and architecture]

{IMPACT_HEADER}
[Analysis of the potential impact: Low/Medium/High and why]

{TECHNICAL_NOTES_HEADER}
[Any notable technical details, patterns, or concerns]

{REVIEW_PRIORITY_HEADER}
[Suggest if this should be: Low/Medium/High priority for review and why]

Keep the summary concise but comprehensive, suitable for developers who need to quickly understand the PR's purpose and importance. Focus on technical substance over process details."""


def build_connection_test_prompt() -> str:
    """Prompt used by the diagnostic connection test."""
    return 'Say "AI Service is working!" and nothing else.'
