"""Duplicate detection by normalized title.

Issues whose titles normalize to the same string form a cluster; each
member lists the issue numbers of every other member as duplicates.
Detection is exact-match only, which makes it symmetric by construction.
"""

import logging
from collections import defaultdict
from typing import Sequence

from src.triage.classifier.normalize import normalize_title
from src.triage.models import HeuristicResult, Issue


logger = logging.getLogger(__name__)


def cluster_duplicates(
    issues: Sequence[Issue],
    results: Sequence[HeuristicResult],
) -> list[HeuristicResult]:
    """Fill in the duplicates of each heuristic result.

    Args:
        issues: The ordered issues.
        results: Heuristic results aligned with ``issues`` by position.

    Returns:
        New heuristic results, aligned with ``issues``, whose duplicates
        field lists the issue numbers of all other issues sharing the
        same normalized title.

    Raises:
        ValueError: If the two sequences differ in length.
    """
    if len(issues) != len(results):
        raise ValueError(
            f"issues and results must align: {len(issues)} != {len(results)}"
        )

    normalized = [normalize_title(issue.title) for issue in issues]

    clusters: dict[str, list[int]] = defaultdict(list)
    for idx, title in enumerate(normalized):
        clusters[title].append(idx)

    clustered: list[HeuristicResult] = []
    for idx, result in enumerate(results):
        own_number = issues[idx].issue_number
        duplicates = [
            issues[other].issue_number
            for other in clusters[normalized[idx]]
            if other != idx and issues[other].issue_number != own_number
        ]
        clustered.append(result.model_copy(update={"duplicates": duplicates}))

    duplicate_groups = sum(1 for members in clusters.values() if len(members) > 1)
    if duplicate_groups:
        logger.info(
            "Detected duplicate title clusters",
            extra={"clusters": duplicate_groups, "issues": len(issues)},
        )

    return clustered
