"""Batch planning for LLM submission.

Splits the capped, ordered issue list into fixed-size batches. Each batch
keeps the positional indices of its members in the original list so that
results can be scattered back.
"""

from dataclasses import dataclass, field
from typing import Sequence

from src.triage.models import Issue, SmallIssue


SMALL_ISSUE_MAX_LABELS = 4
SMALL_ISSUE_MAX_BODY = 140


def to_small_issue(issue: Issue) -> SmallIssue:
    """Project an issue onto the truncated shape sent to the model."""
    return SmallIssue(
        issue_number=issue.issue_number,
        title=issue.title,
        labels=list(issue.labels or [])[:SMALL_ISSUE_MAX_LABELS],
        body=(issue.body or "")[:SMALL_ISSUE_MAX_BODY],
        url=issue.url,
        state=issue.state,
        created_at=issue.created_at,
    )


@dataclass
class IssueBatch:
    """A group of issues submitted together in one LLM request.

    Attributes:
        index: Position of this batch in the plan.
        indices: Positions of the members in the original issue list.
        issues: Truncated projections of the members, aligned with indices.
    """

    index: int
    indices: list[int] = field(default_factory=list)
    issues: list[SmallIssue] = field(default_factory=list)

    @property
    def issue_numbers(self) -> list[int]:
        return [issue.issue_number for issue in self.issues]

    def __len__(self) -> int:
        return len(self.indices)


def plan_batches(issues: Sequence[Issue], batch_size: int) -> list[IssueBatch]:
    """Partition issues into consecutive batches of at most batch_size.

    Args:
        issues: The ordered candidate issues.
        batch_size: Maximum members per batch.

    Returns:
        Batches covering every issue exactly once, in order.

    Raises:
        ValueError: If batch_size is not positive.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    batches: list[IssueBatch] = []
    for start in range(0, len(issues), batch_size):
        members = range(start, min(start + batch_size, len(issues)))
        batches.append(
            IssueBatch(
                index=len(batches),
                indices=list(members),
                issues=[to_small_issue(issues[i]) for i in members],
            )
        )
    return batches
