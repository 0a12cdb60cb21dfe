"""Unit tests for response assembly and the wire-level models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.triage.models import (
    AnalyzeRequest,
    Category,
    Issue,
    Priority,
    ProcessedIssue,
    Repository,
    TriageRequest,
)
from src.triage.response import assemble_response


def _processed(issue_number: int = 1) -> ProcessedIssue:
    return ProcessedIssue(
        issue_number=issue_number,
        title="Crash",
        category=Category.BUG,
        priority=Priority.HIGH,
        duplicates=[2],
        reasoning="r",
        implementation_order=1,
    )


class TestAssembleResponse:
    def test_envelope(self) -> None:
        repository = Repository(name="widgets", owner="acme", stars=3)

        response = assemble_response(
            repository,
            [_processed()],
            generated_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )

        assert response.success is True
        assert response.repository == repository
        assert response.timestamp == "2024-05-01T12:00:00Z"

    def test_timestamp_is_normalized_to_utc(self) -> None:
        offset = timezone(timedelta(hours=2))

        response = assemble_response(
            Repository(name="widgets"),
            [],
            generated_at=datetime(2024, 5, 1, 14, 0, tzinfo=offset),
        )

        assert response.timestamp == "2024-05-01T12:00:00Z"

    def test_default_timestamp_is_utc(self) -> None:
        response = assemble_response(Repository(name="widgets"), [])

        assert response.timestamp.endswith("Z")

    def test_to_dict_uses_wire_names(self) -> None:
        repository = Repository.model_validate({"name": "widgets", "openIssues": 4})

        payload = assemble_response(repository, [_processed()]).to_dict()

        assert payload["repository"]["openIssues"] == 4
        issue = payload["issues"][0]
        assert issue == {
            "issue_number": 1,
            "title": "Crash",
            "category": "Bug",
            "priority": "High",
            "duplicates": [2],
            "reasoning": "r",
            "implementationOrder": 1,
        }


class TestRequestModels:
    def test_triage_request_accepts_sparse_issues(self) -> None:
        request = TriageRequest.model_validate(
            {
                "repository": {"name": "widgets"},
                "issues": [{"issue_number": 1, "title": "t", "labels": None}],
            }
        )

        assert request.issues[0].labels == []
        assert request.issues[0].is_open

    def test_issue_requires_number(self) -> None:
        with pytest.raises(ValidationError):
            Issue.model_validate({"title": "t"})

    def test_analyze_request_alias(self) -> None:
        request = AnalyzeRequest.model_validate({"repoUrl": "https://github.com/a/b"})

        assert request.repo_url == "https://github.com/a/b"
