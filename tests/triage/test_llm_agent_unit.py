"""Unit tests for the LLM batch triage client.

Covers JSON extraction from free-text replies, normalization of model
items keyed by issue_number, and the concurrency cap and timeout applied
by triage_batches. The chat model is replaced by an in-process fake.
"""

import asyncio
import json
import re
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest
from langchain_openai import ChatOpenAI
from prometheus_client import CollectorRegistry

from src.triage.llm.agent import (
    LLMTriageClient,
    LLMTriageError,
    TRIAGE_SYSTEM_PROMPT,
    build_triage_prompt,
    normalize_llm_issue,
    parse_batch_response,
    safe_json_extract,
)
from src.triage.llm.batching import plan_batches
from src.triage.metrics import TriageMetrics
from src.triage.models import Category, Issue, Priority, Repository


def run_async(coro):
    return asyncio.run(coro)


_PROMPT_NUMBER = re.compile(r"^#(\d+):", re.MULTILINE)


class FakeChatModel:
    """Stand-in chat model recording calls and peak concurrency."""

    def __init__(
        self,
        responder: Optional[Callable[[List[int]], str]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        content: object = None,
    ):
        self.responder = responder or _echo_all
        self.delay = delay
        self.error = error
        self.content = content
        self.calls: List[list] = []
        self.active = 0
        self.max_active = 0

    async def ainvoke(self, messages):
        self.calls.append(messages)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.content is not None:
                return SimpleNamespace(content=self.content)
            numbers = [int(n) for n in _PROMPT_NUMBER.findall(messages[1].content)]
            return SimpleNamespace(content=self.responder(numbers))
        finally:
            self.active -= 1


def _echo_all(numbers: List[int]) -> str:
    return json.dumps(
        {
            "issues": [
                {
                    "issue_number": n,
                    "category": "Feature",
                    "priority": "Low",
                    "duplicates": [],
                    "reasoning": f"model says {n}",
                }
                for n in numbers
            ]
        }
    )


def _repository() -> Repository:
    return Repository(name="widgets", owner="acme")


def _issues(count: int) -> List[Issue]:
    return [
        Issue(issue_number=n, title=f"Issue {n}", body=f"Body of {n}")
        for n in range(1, count + 1)
    ]


def _client(llm: FakeChatModel, metrics: Optional[TriageMetrics] = None) -> LLMTriageClient:
    return LLMTriageClient(
        llm_url="https://llm.example.com/v1",
        model_name="gpt-4o-mini",
        api_key="sk-test",
        llm=llm,
        metrics=metrics,
    )


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


class TestBuildTriagePrompt:
    def test_lists_each_issue(self) -> None:
        batch = plan_batches(
            [
                Issue(issue_number=4, title="Crash", labels=["bug", "ui"], body="y" * 200),
                Issue(issue_number=5, title="Docs"),
            ],
            6,
        )[0]

        prompt = build_triage_prompt(_repository(), batch.issues)

        assert prompt.startswith("Repo: widgets (acme)\nIssues: 2\n")
        assert "#4: Crash\nLabels: bug, ui\nBody: " + "y" * 80 + "\n" in prompt
        assert "y" * 81 not in prompt
        assert "#5: Docs\n" in prompt

    def test_unknown_owner(self) -> None:
        prompt = build_triage_prompt(Repository(name="solo"), [])

        assert prompt.startswith("Repo: solo (unknown)\n")

    def test_system_prompt_requires_issue_number(self) -> None:
        assert "issue_number" in TRIAGE_SYSTEM_PROMPT


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


class TestSafeJsonExtract:
    def test_plain_object(self) -> None:
        assert safe_json_extract('{"issues": []}') == {"issues": []}

    def test_markdown_fence(self) -> None:
        text = '```json\n{"issues": [{"issue_number": 1}]}\n```'

        assert safe_json_extract(text) == {"issues": [{"issue_number": 1}]}

    def test_prose_before_object(self) -> None:
        text = 'Here is the triage:\n{"issues": [{"issue_number": 2}]}'

        assert safe_json_extract(text) == {"issues": [{"issue_number": 2}]}

    def test_top_level_array_is_wrapped(self) -> None:
        assert safe_json_extract('[{"issue_number": 3}]') == {
            "issues": [{"issue_number": 3}]
        }

    def test_first_object_when_several(self) -> None:
        assert safe_json_extract('Result: {"a": 1} and {"b": 2}') == {"a": 1}

    @pytest.mark.parametrize("text", ["", "no json here", "{broken", "42"])
    def test_unparsable_returns_none(self, text: str) -> None:
        assert safe_json_extract(text) is None


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeLLMIssue:
    def test_valid_item(self) -> None:
        result = normalize_llm_issue(
            {
                "issue_number": 1,
                "category": "bug",
                "priority": " HIGH ",
                "duplicates": [2],
                "reasoning": " crashes on start ",
            },
            {1, 2},
            {1, 2},
        )

        assert result is not None
        assert result.issue_number == 1
        assert result.category is Category.BUG
        assert result.priority is Priority.HIGH
        assert result.duplicates == [2]
        assert result.reasoning == "crashes on start"

    def test_string_issue_number(self) -> None:
        result = normalize_llm_issue({"issue_number": "#7"}, {7})

        assert result is not None
        assert result.issue_number == 7
        assert result.category is None
        assert result.priority is None
        assert result.duplicates is None
        assert result.reasoning is None

    @pytest.mark.parametrize("value", [None, True, "seven", 3.5, 99])
    def test_rejects_missing_or_foreign_issue_number(self, value) -> None:
        assert normalize_llm_issue({"issue_number": value}, {1, 2}) is None

    def test_rejects_non_object(self) -> None:
        assert normalize_llm_issue(["issue_number", 1], {1}) is None

    def test_invalid_category_and_priority_become_none(self) -> None:
        result = normalize_llm_issue(
            {"issue_number": 1, "category": "unknown", "priority": "P0"}, {1}
        )

        assert result is not None
        assert result.category is None
        assert result.priority is None

    def test_duplicates_are_filtered(self) -> None:
        result = normalize_llm_issue(
            {"issue_number": 1, "duplicates": ["#2", 2, 3, 1, 99, True, "x"]},
            {1},
            {1, 2, 3},
        )

        assert result is not None
        assert result.duplicates == [2, 3]

    def test_non_list_duplicates_become_none(self) -> None:
        result = normalize_llm_issue({"issue_number": 1, "duplicates": "2"}, {1})

        assert result is not None
        assert result.duplicates is None

    def test_blank_reasoning_becomes_none(self) -> None:
        result = normalize_llm_issue({"issue_number": 1, "reasoning": "  "}, {1})

        assert result is not None
        assert result.reasoning is None


class TestParseBatchResponse:
    def test_results_keyed_by_issue_number_not_position(self) -> None:
        batch = plan_batches(_issues(3), 6)[0]
        text = json.dumps(
            {
                "issues": [
                    {"issue_number": 3, "category": "Chore"},
                    {"issue_number": 1, "category": "Bug"},
                ]
            }
        )

        results = parse_batch_response(text, batch)

        assert {r.issue_number: r.category for r in results} == {
            3: Category.CHORE,
            1: Category.BUG,
        }

    def test_first_echo_wins(self) -> None:
        batch = plan_batches(_issues(2), 6)[0]
        text = json.dumps(
            {
                "issues": [
                    {"issue_number": 2, "priority": "Low"},
                    {"issue_number": 2, "priority": "Critical"},
                ]
            }
        )

        results = parse_batch_response(text, batch)

        assert len(results) == 1
        assert results[0].priority is Priority.LOW

    def test_items_outside_batch_are_dropped(self) -> None:
        batch = plan_batches(_issues(2), 6)[0]
        text = json.dumps({"issues": [{"issue_number": 42}, {"category": "Bug"}]})

        assert parse_batch_response(text, batch) == []

    def test_single_object_reply(self) -> None:
        batch = plan_batches(_issues(1), 6)[0]

        results = parse_batch_response('{"issue_number": 1, "priority": "Medium"}', batch)

        assert len(results) == 1
        assert results[0].priority is Priority.MEDIUM

    def test_unparsable_reply(self) -> None:
        batch = plan_batches(_issues(1), 6)[0]

        assert parse_batch_response("I cannot help with that", batch) == []

    def test_object_without_issues_array(self) -> None:
        batch = plan_batches(_issues(1), 6)[0]

        assert parse_batch_response('{"result": "ok"}', batch) == []


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TestTriageBatch:
    def test_sends_system_and_user_messages(self) -> None:
        llm = FakeChatModel()
        batch = plan_batches(_issues(2), 6)[0]

        results = run_async(_client(llm).triage_batch(_repository(), batch))

        assert [r.issue_number for r in results] == [1, 2]
        messages = llm.calls[0]
        assert messages[0].content == TRIAGE_SYSTEM_PROMPT
        assert "#1: Issue 1" in messages[1].content

    def test_invocation_error_is_wrapped(self) -> None:
        cause = RuntimeError("connection reset")
        llm = FakeChatModel(error=cause)
        batch = plan_batches(_issues(1), 6)[0]

        with pytest.raises(LLMTriageError) as exc_info:
            run_async(_client(llm).triage_batch(_repository(), batch))

        assert exc_info.value.cause is cause
        assert "connection reset" in exc_info.value.message

    def test_non_text_content_raises(self) -> None:
        llm = FakeChatModel(content=[{"type": "image"}])
        batch = plan_batches(_issues(1), 6)[0]

        with pytest.raises(LLMTriageError):
            run_async(_client(llm).triage_batch(_repository(), batch))

    def test_default_model_is_chat_openai(self) -> None:
        client = LLMTriageClient(
            llm_url="https://llm.example.com/v1",
            model_name="gpt-4o-mini",
            api_key="sk-test",
        )

        assert isinstance(client.llm, ChatOpenAI)
        assert client.llm is client.llm
        assert client.llm.model_name == "gpt-4o-mini"


class TestTriageBatches:
    def test_results_align_with_batches(self) -> None:
        llm = FakeChatModel()
        batches = plan_batches(_issues(13), 6)

        results = run_async(
            _client(llm).triage_batches(
                _repository(), batches, max_concurrency=2, timeout_seconds=5
            )
        )

        assert len(results) == 3
        assert [[r.issue_number for r in batch] for batch in results] == [
            [1, 2, 3, 4, 5, 6],
            [7, 8, 9, 10, 11, 12],
            [13],
        ]

    def test_concurrency_is_capped(self) -> None:
        llm = FakeChatModel(delay=0.02)
        batches = plan_batches(_issues(10), 2)

        run_async(
            _client(llm).triage_batches(
                _repository(), batches, max_concurrency=2, timeout_seconds=5
            )
        )

        assert len(llm.calls) == 5
        assert llm.max_active == 2

    def test_timeout_yields_empty_result(self) -> None:
        metrics = TriageMetrics(registry=CollectorRegistry())
        llm = FakeChatModel(delay=1.0)
        batches = plan_batches(_issues(2), 6)

        results = run_async(
            _client(llm, metrics).triage_batches(
                _repository(), batches, max_concurrency=2, timeout_seconds=0.05
            )
        )

        assert results == [[]]
        assert metrics.registry.get_sample_value(
            "triage_llm_batches_total", {"result": "timeout"}
        ) == 1.0

    def test_failure_yields_empty_result(self) -> None:
        metrics = TriageMetrics(registry=CollectorRegistry())
        llm = FakeChatModel(error=RuntimeError("boom"))
        batches = plan_batches(_issues(4), 2)

        results = run_async(
            _client(llm, metrics).triage_batches(
                _repository(), batches, max_concurrency=1, timeout_seconds=5
            )
        )

        assert results == [[], []]
        assert metrics.registry.get_sample_value(
            "triage_llm_batches_total", {"result": "error"}
        ) == 2.0

    def test_unparsable_reply_is_recorded_as_empty(self) -> None:
        metrics = TriageMetrics(registry=CollectorRegistry())
        llm = FakeChatModel(responder=lambda numbers: "not json")
        batches = plan_batches(_issues(1), 6)

        results = run_async(
            _client(llm, metrics).triage_batches(
                _repository(), batches, max_concurrency=2, timeout_seconds=5
            )
        )

        assert results == [[]]
        assert metrics.registry.get_sample_value(
            "triage_llm_batches_total", {"result": "empty"}
        ) == 1.0

    def test_no_batches_makes_no_calls(self) -> None:
        llm = FakeChatModel()

        results = run_async(
            _client(llm).triage_batches(
                _repository(), [], max_concurrency=2, timeout_seconds=5
            )
        )

        assert results == []
        assert llm.calls == []
