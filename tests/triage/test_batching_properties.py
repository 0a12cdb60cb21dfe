"""Tests for LLM batch planning and issue truncation.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""

import pytest
from hypothesis import given, settings, strategies as st

from src.triage.llm.batching import plan_batches, to_small_issue
from src.triage.models import Issue


def _issues(count: int) -> list[Issue]:
    return [Issue(issue_number=n + 1, title=f"Issue {n + 1}") for n in range(count)]


class TestPlanBatchesProperty:
    """Batches cover every issue exactly once, in order, within size."""

    @given(
        count=st.integers(min_value=0, max_value=60),
        batch_size=st.integers(min_value=1, max_value=10),
    )
    @settings(max_examples=100)
    def test_batches_partition_issues(self, count: int, batch_size: int) -> None:
        issues = _issues(count)

        batches = plan_batches(issues, batch_size)

        flattened = [idx for batch in batches for idx in batch.indices]
        assert flattened == list(range(count))
        assert len(batches) == -(-count // batch_size)
        assert all(1 <= len(batch) <= batch_size for batch in batches)
        assert [batch.index for batch in batches] == list(range(len(batches)))

    @given(
        count=st.integers(min_value=1, max_value=30),
        batch_size=st.integers(min_value=1, max_value=10),
    )
    @settings(max_examples=100)
    def test_members_align_with_indices(self, count: int, batch_size: int) -> None:
        issues = _issues(count)

        for batch in plan_batches(issues, batch_size):
            assert batch.issue_numbers == [
                issues[idx].issue_number for idx in batch.indices
            ]


class TestPlanBatches:
    def test_thirteen_issues_in_batches_of_six(self) -> None:
        batches = plan_batches(_issues(13), 6)

        assert [len(batch) for batch in batches] == [6, 6, 1]

    def test_empty_input(self) -> None:
        assert plan_batches([], 6) == []

    @pytest.mark.parametrize("batch_size", [0, -3])
    def test_non_positive_batch_size_raises(self, batch_size: int) -> None:
        with pytest.raises(ValueError):
            plan_batches(_issues(2), batch_size)


class TestToSmallIssue:
    def test_truncates_labels_and_body(self) -> None:
        issue = Issue(
            issue_number=9,
            title="Long one",
            labels=["a", "b", "c", "d", "e", "f"],
            body="x" * 500,
            url="https://github.com/acme/widgets/issues/9",
        )

        small = to_small_issue(issue)

        assert small.issue_number == 9
        assert small.title == "Long one"
        assert small.labels == ["a", "b", "c", "d"]
        assert small.body == "x" * 140
        assert small.url == issue.url

    def test_short_fields_are_kept(self) -> None:
        issue = Issue(issue_number=1, title="t", labels=["bug"], body="short")

        small = to_small_issue(issue)

        assert small.labels == ["bug"]
        assert small.body == "short"
        assert small.state == "open"
