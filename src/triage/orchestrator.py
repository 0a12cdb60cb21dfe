"""Triage pipeline connecting all classification stages.

Drives a TriageRequest through a single forward pass:
sort → cap → heuristics → duplicate clustering → batch planning →
LLM triage → merge → ranking → response assembly.

The heuristic phase is synchronous and deterministic. The LLM phase is
concurrent but bounded by the TriagePolicy, and any batch that fails
degrades its issues to heuristic-only results, so a run always returns
one processed issue per triaged input issue.

Source:
- src/triage/classifier (heuristic_classify, cluster_duplicates)
- src/triage/llm (plan_batches, LLMTriageClient)
- src/triage/decisions.py (merge_heuristic_and_llm)
- src/triage/ranking.py (rank_issues)
- src/triage/response.py (assemble_response)
"""

import logging
import math
from typing import Optional, Sequence

from src.triage.classifier import cluster_duplicates, heuristic_classify
from src.triage.config import TriagePolicy
from src.triage.decisions import merge_heuristic_and_llm
from src.triage.llm import LLMTriageClient, plan_batches
from src.triage.metrics import TriageMetrics
from src.triage.models import (
    Issue,
    LLMResult,
    ProcessedIssue,
    Repository,
    TriageRequest,
    TriageResponse,
)
from src.triage.ranking import rank_issues
from src.triage.response import assemble_response

logger = logging.getLogger(__name__)


def _recency_key(issue: Issue) -> float:
    # Undated issues sort after dated ones
    if issue.created_at is None:
        return math.inf
    return -issue.created_at.timestamp()


def sort_and_cap(issues: Sequence[Issue], max_issues: int) -> list[Issue]:
    """Order issues open-first then newest-first, keeping at most max_issues.

    Args:
        issues: Raw input issues.
        max_issues: Cap on the number of issues kept.

    Returns:
        The sorted, capped issue list.
    """
    ordered = sorted(
        issues,
        key=lambda issue: (0 if issue.is_open else 1, _recency_key(issue)),
    )
    return ordered[:max_issues]


class TriagePipeline:
    """Orchestrates heuristic and LLM classification of a repository's issues.

    Attributes:
        llm_client: Batch triage client for the language model.
        policy: Bounds on batch size, concurrency, timeout and issue count.
        metrics: Optional Prometheus metrics recorder.
    """

    def __init__(
        self,
        llm_client: LLMTriageClient,
        policy: Optional[TriagePolicy] = None,
        metrics: Optional[TriageMetrics] = None,
    ):
        self.llm_client = llm_client
        self.policy = policy or TriagePolicy()
        self.metrics = metrics

    async def run(self, request: TriageRequest) -> TriageResponse:
        """Triage a request and wrap the result in the response envelope."""
        processed = await self.process_issues(request.repository, request.issues)
        return assemble_response(request.repository, processed)

    async def process_issues(
        self,
        repository: Repository,
        issues: Sequence[Issue],
    ) -> list[ProcessedIssue]:
        """Classify and rank issues.

        Args:
            repository: Repository context for the LLM prompts.
            issues: Raw input issues.

        Returns:
            Processed issues ordered by implementation order (1..N).
        """
        limited = sort_and_cap(issues, self.policy.max_issues)

        logger.info(
            "Starting triage",
            extra={
                "repository": repository.full_name,
                "received": len(issues),
                "triaged": len(limited),
            },
        )

        if not limited:
            return []

        heuristics = cluster_duplicates(
            limited, [heuristic_classify(issue) for issue in limited]
        )

        llm_results = await self._run_llm(repository, limited)

        decisions = [
            merge_heuristic_and_llm(
                heuristic, llm_results.get(issue.issue_number)
            )
            for issue, heuristic in zip(limited, heuristics)
        ]

        processed = rank_issues(limited, decisions)

        logger.info(
            "Triage complete",
            extra={
                "repository": repository.full_name,
                "issues": len(processed),
                "llm_classified": len(llm_results),
            },
        )
        if self.metrics is not None:
            self.metrics.record_issues_processed(len(processed))

        return processed

    async def _run_llm(
        self,
        repository: Repository,
        issues: list[Issue],
    ) -> dict[int, LLMResult]:
        """Run LLM triage over all batches and key the results by issue number."""
        batches = plan_batches(issues, self.policy.batch_size)
        known_numbers = {issue.issue_number for issue in issues}

        batch_results = await self.llm_client.triage_batches(
            repository,
            batches,
            max_concurrency=self.policy.max_concurrency,
            timeout_seconds=self.policy.timeout_seconds,
            known_issue_numbers=known_numbers,
        )

        keyed: dict[int, LLMResult] = {}
        for results in batch_results:
            for result in results:
                keyed.setdefault(result.issue_number, result)

        missing = len(issues) - len(keyed)
        if missing:
            logger.info(
                "Issues without LLM output use heuristics only",
                extra={"repository": repository.full_name, "count": missing},
            )
        return keyed
