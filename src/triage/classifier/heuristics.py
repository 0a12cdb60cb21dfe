"""Rule-based issue classification.

This module assigns a category, priority and confidence to a single issue
from its labels, title and body, without any external calls. Rules are
evaluated in order and the first match wins:

1. A label containing "bug" -> Bug
2. A label containing "feature", "enhancement" or "proposal" -> Feature
3. A label containing "docs" or "documentation" -> Documentation
4. A bug keyword in the title or body -> Bug
5. A feature phrase in the title -> Feature
6. Otherwise -> unknown, with a label- or title-derived priority

All matching is case-insensitive.
"""

import logging
import re
from typing import Optional

from src.triage.models import Category, HeuristicResult, Issue, Priority


logger = logging.getLogger(__name__)


_BUG_KEYWORDS = re.compile(r"\b(error|exception|crash|bug|fail|fails|panic)\b")
_FEATURE_KEYWORDS = re.compile(r"\b(feature request|feature|add support|support for)\b")

_CRITICAL_TITLE = re.compile(r"\b(blocker|urgent|hotfix|critical)\b")
_HIGH_TITLE = re.compile(r"\b(high|major|important)\b")
_LOW_TITLE = re.compile(r"\b(minor|low)\b")


def label_to_priority(labels: list[str]) -> Optional[Priority]:
    """Derive a priority from lower-cased label names.

    Note that "p: high" is checked in the Critical rule first, so a
    "p: high" label yields Critical; "p: h..." variants yield High.

    Args:
        labels: Lower-cased label names.

    Returns:
        The derived priority, or None when no label carries one.
    """
    if any(
        "p: urgent" in label or "p: high" in label or label == "critical"
        for label in labels
    ):
        return Priority.CRITICAL
    if any("p: high" in label or "p: h" in label for label in labels):
        return Priority.HIGH
    if any("p: low" in label or "low" in label for label in labels):
        return Priority.LOW
    return None


def title_priority_guess(title: str) -> Optional[Priority]:
    """Guess a priority from keywords in a lower-cased title."""
    if _CRITICAL_TITLE.search(title):
        return Priority.CRITICAL
    if _HIGH_TITLE.search(title):
        return Priority.HIGH
    if _LOW_TITLE.search(title):
        return Priority.LOW
    return None


def heuristic_classify(issue: Issue) -> HeuristicResult:
    """Classify a single issue using label and keyword rules.

    Args:
        issue: The issue to classify.

    Returns:
        HeuristicResult with an empty duplicates list.
    """
    title = (issue.title or "").lower()
    body = (issue.body or "").lower()
    labels = [label.lower() for label in issue.labels or []]

    if any("bug" in label for label in labels):
        return HeuristicResult(
            category=Category.BUG,
            priority=label_to_priority(labels) or Priority.HIGH,
            confidence=0.95,
        )

    if any(
        "feature" in label or "enhancement" in label or "proposal" in label
        for label in labels
    ):
        return HeuristicResult(
            category=Category.FEATURE,
            priority=label_to_priority(labels) or Priority.MEDIUM,
            confidence=0.9,
        )

    if any("docs" in label or "documentation" in label for label in labels):
        return HeuristicResult(
            category=Category.DOCUMENTATION,
            priority=Priority.LOW,
            confidence=0.95,
        )

    if _BUG_KEYWORDS.search(title) or _BUG_KEYWORDS.search(body):
        return HeuristicResult(
            category=Category.BUG,
            priority=Priority.HIGH,
            confidence=0.8,
        )

    if _FEATURE_KEYWORDS.search(title):
        return HeuristicResult(
            category=Category.FEATURE,
            priority=Priority.MEDIUM,
            confidence=0.8,
        )

    priority = (
        label_to_priority(labels)
        or title_priority_guess(title)
        or Priority.MEDIUM
    )
    logger.debug(
        "No heuristic rule matched issue",
        extra={"issue_number": issue.issue_number, "priority": priority.value},
    )
    return HeuristicResult(
        category=Category.UNKNOWN,
        priority=priority,
        confidence=0.5,
    )
