"""Local, rule-based issue classification.

This package classifies issues without any external calls:
- Title normalization for duplicate comparison
- Label and keyword heuristics for category, priority and confidence
- Duplicate clustering by normalized title
"""

from src.triage.classifier.duplicates import cluster_duplicates
from src.triage.classifier.heuristics import (
    heuristic_classify,
    label_to_priority,
    title_priority_guess,
)
from src.triage.classifier.normalize import normalize_title

__all__ = [
    "cluster_duplicates",
    "heuristic_classify",
    "label_to_priority",
    "normalize_title",
    "title_priority_guess",
]
