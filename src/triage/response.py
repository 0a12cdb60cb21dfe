"""Assembly of the triage response envelope."""

from datetime import datetime, timezone
from typing import Optional, Sequence

from src.triage.models import ProcessedIssue, Repository, TriageResponse


def assemble_response(
    repository: Repository,
    issues: Sequence[ProcessedIssue],
    generated_at: Optional[datetime] = None,
) -> TriageResponse:
    """Package ranked issues with repository context and a timestamp.

    Args:
        repository: Repository context, echoed unchanged.
        issues: Ranked processed issues, echoed unchanged.
        generated_at: Generation time; defaults to now (UTC).

    Returns:
        TriageResponse with success=True and an ISO-8601 timestamp.
    """
    moment = generated_at or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    timestamp = moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    return TriageResponse(
        success=True,
        repository=repository,
        issues=list(issues),
        timestamp=timestamp,
    )
