"""Implementation order ranking.

Issues are stable-sorted by ``priority_score * 1000 + penalty`` where the
penalty is 1 for issues without a priority. Ties keep input order, which
is already open-first and newest-first.
"""

from typing import Optional, Sequence

from src.triage.models import FinalDecision, Issue, Priority, ProcessedIssue


_PRIORITY_SCORES = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 2,
    Priority.MEDIUM: 3,
    Priority.LOW: 4,
}

UNSCORED_PRIORITY = 5


def priority_score(priority: Optional[Priority]) -> int:
    """Map a priority to its bucket; 1 is most urgent, 5 is unscored."""
    if priority is None:
        return UNSCORED_PRIORITY
    try:
        return _PRIORITY_SCORES[Priority(priority)]
    except (KeyError, ValueError):
        return UNSCORED_PRIORITY


def implementation_order_score(issue: ProcessedIssue) -> int:
    """Compute the ranking sort key for a processed issue."""
    # Penalty depends only on whether a priority was assigned, not on state.
    penalty = 0 if issue.priority else 1
    return priority_score(issue.priority) * 1000 + penalty


def to_processed_issue(issue: Issue, decision: FinalDecision) -> ProcessedIssue:
    """Join a final decision back to its issue."""
    return ProcessedIssue(
        issue_number=issue.issue_number,
        title=issue.title,
        category=decision.category,
        priority=decision.priority,
        duplicates=list(decision.duplicates or []),
        reasoning=decision.reasoning or "",
        implementation_order=decision.implementation_order or 0,
    )


def rank_issues(
    issues: Sequence[Issue],
    decisions: Sequence[FinalDecision],
) -> list[ProcessedIssue]:
    """Order issues for implementation and number them from 1.

    Args:
        issues: The ordered issues.
        decisions: Final decisions aligned with ``issues`` by position.

    Returns:
        Processed issues sorted by implementation order, which runs 1..N.

    Raises:
        ValueError: If the two sequences differ in length.
    """
    if len(issues) != len(decisions):
        raise ValueError(
            f"issues and decisions must align: {len(issues)} != {len(decisions)}"
        )

    processed = [
        to_processed_issue(issue, decision)
        for issue, decision in zip(issues, decisions)
    ]
    processed.sort(key=implementation_order_score)

    return [
        issue.model_copy(update={"implementation_order": position})
        for position, issue in enumerate(processed, start=1)
    ]
