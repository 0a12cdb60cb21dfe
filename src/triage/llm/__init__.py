"""LLM-based batch triage.

This package plans fixed-size batches of truncated issues and classifies
them with a language model under a concurrency cap and per-batch timeout.
"""

from src.triage.llm.agent import (
    LLMTriageClient,
    LLMTriageError,
    build_triage_prompt,
    parse_batch_response,
    safe_json_extract,
)
from src.triage.llm.batching import IssueBatch, plan_batches, to_small_issue

__all__ = [
    "IssueBatch",
    "LLMTriageClient",
    "LLMTriageError",
    "build_triage_prompt",
    "parse_batch_response",
    "plan_batches",
    "safe_json_extract",
    "to_small_issue",
]
