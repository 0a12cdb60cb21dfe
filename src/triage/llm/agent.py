"""LLM-based batch triage client.

This module sends batches of truncated issues to a language model and
parses its free-text reply into partial per-issue classifications:
- Category (Bug, Feature, Enhancement, Chore, Documentation)
- Priority (Critical, High, Medium, Low)
- Duplicate issue numbers
- A short reasoning string

Calls are capped by a semaphore and raced against a per-batch timeout.
A batch that times out, fails, or returns unparsable output yields an
empty result instead of raising, so one bad batch never aborts a run.

Model output is correlated back to issues by the echoed issue_number,
never by position in the returned array.

The client uses LangChain with an OpenAI-compatible chat endpoint.

Source:
- src/triage/llm/batching.py (IssueBatch)
- src/triage/config.py (llm_url, llm_model, llm_max_tokens)
"""

import asyncio
import json
import logging
import re
import time
from typing import Any, Iterable, Optional, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from src.triage.llm.batching import IssueBatch
from src.triage.metrics import TriageMetrics
from src.triage.models import Category, LLMResult, Priority, Repository, SmallIssue


logger = logging.getLogger(__name__)


TRIAGE_SYSTEM_PROMPT = """You are an expert GitHub issue triage assistant. For each issue provided, return a JSON object with an array "issues" where each item is:
  { "issue_number": number, "category": "Bug"|"Feature"|"Enhancement"|"Chore"|"Documentation", "priority": "Critical"|"High"|"Medium"|"Low", "duplicates": [issue_numbers], "reasoning": "short explanation" }.
Every item MUST echo the issue_number of the issue it describes.
Return only valid JSON."""

PROMPT_BODY_SNIPPET = 80

_CATEGORY_LOOKUP = {
    category.value.lower(): category
    for category in Category
    if category is not Category.UNKNOWN
}
_PRIORITY_LOOKUP = {priority.value.lower(): priority for priority in Priority}

_OBJECT_TO_END = re.compile(r"\{[\s\S]*\}$", re.MULTILINE)
_FIRST_OBJECT = re.compile(r"\{[\s\S]*?\}", re.MULTILINE)
_ARRAY = re.compile(r"\[[\s\S]*\]", re.MULTILINE)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class LLMTriageError(Exception):
    """Raised when a batch triage call fails.

    Never escapes triage_batches; failures there become empty results.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


def build_triage_prompt(repository: Repository, issues: Sequence[SmallIssue]) -> str:
    """Build the user prompt for one batch.

    Args:
        repository: Repository context.
        issues: The batch members.

    Returns:
        Compact prompt listing each issue's number, title, labels and an
        80-character body snippet.
    """
    header = (
        f"Repo: {repository.name} ({repository.owner or 'unknown'})\n"
        f"Issues: {len(issues)}\n"
    )
    entries = [
        f"#{issue.issue_number}: {issue.title}\n"
        f"Labels: {', '.join(issue.labels)}\n"
        f"Body: {issue.body[:PROMPT_BODY_SNIPPET]}\n"
        for issue in issues
    ]
    return header + "\n".join(entries)


def _loads(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def safe_json_extract(content: str) -> Optional[dict[str, Any]]:
    """Extract a JSON object from model output that may contain prose.

    Tries, in order: the whole text (with markdown fences removed), an
    object running to the end of a line, an array, and the first object.
    A top-level array is wrapped as ``{"issues": [...]}``.

    Args:
        content: Raw text returned by the model.

    Returns:
        The parsed object, or None when nothing parses.
    """
    text = _CODE_FENCE.sub("", content.strip())

    candidates = [text]
    for pattern in (_OBJECT_TO_END, _ARRAY, _FIRST_OBJECT):
        match = pattern.search(text)
        if match:
            candidates.append(match.group(0))

    for candidate in candidates:
        parsed = _loads(candidate)
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, list):
            return {"issues": parsed}

    logger.warning(
        "Failed to extract JSON from LLM response",
        extra={"response_preview": content[:200]},
    )
    return None


def _coerce_issue_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip().lstrip("#")
        if text.isdigit():
            return int(text)
    return None


def _normalize_duplicates(
    value: Any,
    issue_number: int,
    known_issue_numbers: Optional[set[int]],
) -> Optional[list[int]]:
    if not isinstance(value, list):
        return None
    duplicates: list[int] = []
    for item in value:
        number = _coerce_issue_number(item)
        if number is None or number == issue_number or number in duplicates:
            continue
        if known_issue_numbers is not None and number not in known_issue_numbers:
            continue
        duplicates.append(number)
    return duplicates


def normalize_llm_issue(
    data: Any,
    allowed_issue_numbers: Iterable[int],
    known_issue_numbers: Optional[set[int]] = None,
) -> Optional[LLMResult]:
    """Validate and normalize one issue object from the model output.

    Unrecognized categories or priorities become None so the merge falls
    back to the heuristic value.

    Args:
        data: One element of the model's "issues" array.
        allowed_issue_numbers: Issue numbers that belong to the batch.
        known_issue_numbers: Issue numbers that may appear as duplicates.
            None disables that filter.

    Returns:
        LLMResult, or None if the object does not identify a batch member.
    """
    if not isinstance(data, dict):
        return None

    issue_number = _coerce_issue_number(data.get("issue_number"))
    if issue_number is None or issue_number not in set(allowed_issue_numbers):
        return None

    category = data.get("category")
    priority = data.get("priority")
    reasoning = data.get("reasoning")

    if isinstance(reasoning, str):
        reasoning = reasoning.strip() or None
    else:
        reasoning = None

    return LLMResult(
        issue_number=issue_number,
        category=(
            _CATEGORY_LOOKUP.get(category.strip().lower())
            if isinstance(category, str)
            else None
        ),
        priority=(
            _PRIORITY_LOOKUP.get(priority.strip().lower())
            if isinstance(priority, str)
            else None
        ),
        duplicates=_normalize_duplicates(
            data.get("duplicates"), issue_number, known_issue_numbers
        ),
        reasoning=reasoning,
    )


def parse_batch_response(
    response_text: str,
    batch: IssueBatch,
    known_issue_numbers: Optional[set[int]] = None,
) -> list[LLMResult]:
    """Parse the model's reply for a batch into keyed partial results.

    Args:
        response_text: Raw text returned by the model.
        batch: The batch the reply answers.
        known_issue_numbers: Issue numbers that may appear as duplicates.

    Returns:
        At most one LLMResult per batch member, in reply order. Members
        the model did not echo are absent.
    """
    parsed = safe_json_extract(response_text)
    if parsed is None:
        return []

    items = parsed.get("issues")
    if not isinstance(items, list):
        items = [parsed] if "issue_number" in parsed else []

    allowed = set(batch.issue_numbers)
    results: list[LLMResult] = []
    seen: set[int] = set()
    for item in items:
        result = normalize_llm_issue(item, allowed, known_issue_numbers)
        if result is None or result.issue_number in seen:
            continue
        seen.add(result.issue_number)
        results.append(result)

    dropped = len(items) - len(results)
    if dropped:
        logger.warning(
            "Discarded LLM items without a matching issue_number",
            extra={"batch_index": batch.index, "dropped": dropped},
        )
    return results


class LLMTriageClient:
    """Batch triage client for an OpenAI-compatible chat model.

    Attributes:
        llm_url: URL of the OpenAI-compatible endpoint.
        model_name: Name of the model to use for inference.
        api_key: API key for the endpoint.
        max_tokens: Upper bound on completion tokens per batch.
        metrics: Optional Prometheus metrics recorder.

    Example:
        >>> client = LLMTriageClient(
        ...     llm_url="https://api.openai.com/v1",
        ...     model_name="gpt-4o-mini",
        ...     api_key="sk-...",
        ... )
        >>> results = await client.triage_batches(
        ...     repository, batches, max_concurrency=2, timeout_seconds=15
        ... )
    """

    def __init__(
        self,
        llm_url: str,
        model_name: str,
        api_key: str,
        max_tokens: int = 400,
        llm: Optional[Any] = None,
        metrics: Optional[TriageMetrics] = None,
    ):
        """Initialize the triage client.

        Args:
            llm_url: URL of the OpenAI-compatible endpoint.
            model_name: Name of the model to use for inference.
            api_key: API key for the endpoint.
            max_tokens: Upper bound on completion tokens per batch.
            llm: Optional pre-built chat model exposing ``ainvoke``.
            metrics: Optional Prometheus metrics recorder.
        """
        self.llm_url = llm_url
        self.model_name = model_name
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.metrics = metrics
        self._llm = llm

    @property
    def llm(self) -> Any:
        """Get the chat model, creating it if necessary."""
        if self._llm is None:
            self._llm = ChatOpenAI(
                base_url=self.llm_url,
                model=self.model_name,
                api_key=self.api_key,
                temperature=0,
                max_tokens=self.max_tokens,
            )
        return self._llm

    async def triage_batch(
        self,
        repository: Repository,
        batch: IssueBatch,
        known_issue_numbers: Optional[set[int]] = None,
    ) -> list[LLMResult]:
        """Classify one batch.

        Args:
            repository: Repository context for the prompt.
            batch: The batch to classify.
            known_issue_numbers: Issue numbers that may appear as duplicates.

        Returns:
            Parsed results; empty if the reply was unparsable.

        Raises:
            LLMTriageError: If the model call fails.
        """
        messages = [
            SystemMessage(content=TRIAGE_SYSTEM_PROMPT),
            HumanMessage(content=build_triage_prompt(repository, batch.issues)),
        ]

        try:
            response = await self.llm.ainvoke(messages)
            response_text = response.content
        except Exception as e:
            raise LLMTriageError(f"LLM invocation failed: {e}", cause=e)

        if not isinstance(response_text, str):
            raise LLMTriageError(
                f"Unexpected response type: {type(response_text)}"
            )

        logger.debug(
            "LLM batch response received",
            extra={
                "batch_index": batch.index,
                "response_preview": response_text[:200],
            },
        )
        return parse_batch_response(response_text, batch, known_issue_numbers)

    async def triage_batches(
        self,
        repository: Repository,
        batches: Sequence[IssueBatch],
        max_concurrency: int,
        timeout_seconds: float,
        known_issue_numbers: Optional[set[int]] = None,
    ) -> list[list[LLMResult]]:
        """Classify all batches concurrently under a concurrency cap.

        Each batch is raced against ``timeout_seconds`` once it holds a
        slot. Timeouts and failures yield an empty list for that batch.

        Args:
            repository: Repository context for the prompts.
            batches: The planned batches.
            max_concurrency: Maximum calls in flight at once.
            timeout_seconds: Per-batch timeout.
            known_issue_numbers: Issue numbers that may appear as duplicates.

        Returns:
            One result list per batch, aligned with ``batches``.
        """
        if not batches:
            return []

        semaphore = asyncio.Semaphore(max_concurrency)
        return list(
            await asyncio.gather(
                *(
                    self._triage_guarded(
                        semaphore,
                        repository,
                        batch,
                        timeout_seconds,
                        known_issue_numbers,
                    )
                    for batch in batches
                )
            )
        )

    async def _triage_guarded(
        self,
        semaphore: asyncio.Semaphore,
        repository: Repository,
        batch: IssueBatch,
        timeout_seconds: float,
        known_issue_numbers: Optional[set[int]],
    ) -> list[LLMResult]:
        """Run one batch inside the limiter, converting failures to []."""
        async with semaphore:
            start = time.monotonic()
            try:
                results = await asyncio.wait_for(
                    self.triage_batch(repository, batch, known_issue_numbers),
                    timeout=timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "LLM batch timed out, falling back to heuristics",
                    extra={
                        "batch_index": batch.index,
                        "batch_size": len(batch),
                        "timeout_seconds": timeout_seconds,
                    },
                )
                self._record(start, "timeout")
                return []
            except Exception as e:
                logger.error(
                    "LLM batch failed, falling back to heuristics",
                    extra={
                        "batch_index": batch.index,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                self._record(start, "error")
                return []

        logger.info(
            "LLM batch classified",
            extra={
                "batch_index": batch.index,
                "requested": len(batch),
                "returned": len(results),
            },
        )
        self._record(start, "success" if results else "empty")
        return results

    def _record(self, start: float, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_llm_batch(result, time.monotonic() - start)
