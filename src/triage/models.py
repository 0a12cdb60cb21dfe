"""Data models for the issue triage pipeline.

This module defines the records that flow through the triage pipeline:

- Input: Issue and Repository, as supplied by the caller or the GitHub client
- Intermediate: HeuristicResult, SmallIssue, LLMResult, FinalDecision
- Output: ProcessedIssue and the TriageResponse envelope

Intermediate records are explicit optional-field models so that the
heuristic/LLM merge can be written as a pure function over two records.

The models use Pydantic for validation, consistent with config.py.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Category(str, Enum):
    """Issue category.

    UNKNOWN is only produced by the heuristic classifier and is resolved
    to ENHANCEMENT before an issue leaves the pipeline.
    """

    BUG = "Bug"
    FEATURE = "Feature"
    ENHANCEMENT = "Enhancement"
    CHORE = "Chore"
    DOCUMENTATION = "Documentation"
    UNKNOWN = "unknown"


class Priority(str, Enum):
    """Issue priority, highest first."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Issue(BaseModel):
    """A GitHub issue as received by the pipeline.

    Attributes:
        issue_number: The issue number within the repository.
        title: The issue title.
        state: "open" or any other GitHub state.
        labels: Label names attached to the issue.
        author: Login of the issue author, if known.
        created_at: Creation timestamp, if known.
        updated_at: Last update timestamp, if known.
        body: The issue body. Missing bodies become "".
        url: Link to the issue on GitHub.
    """

    model_config = ConfigDict(frozen=True)

    issue_number: int
    title: str
    state: str = "open"
    labels: list[str] = Field(default_factory=list)
    author: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    body: str = ""
    url: str = ""

    @field_validator("labels", mode="before")
    @classmethod
    def default_labels(cls, v):
        """Treat a null label list as empty."""
        return [] if v is None else v

    @field_validator("body", "url", mode="before")
    @classmethod
    def default_text(cls, v):
        """Treat null text fields as empty strings."""
        return "" if v is None else v

    @property
    def is_open(self) -> bool:
        return self.state.lower() == "open"


class Repository(BaseModel):
    """Repository context used in prompts and echoed in the response."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: Optional[str] = None
    name: str
    owner: Optional[str] = None
    description: Optional[str] = None
    stars: Optional[int] = None
    forks: Optional[int] = None
    open_issues: Optional[int] = Field(default=None, alias="openIssues")

    @property
    def full_name(self) -> str:
        """Repository path in format "{owner}/{name}" when the owner is known."""
        return f"{self.owner}/{self.name}" if self.owner else self.name


class HeuristicResult(BaseModel):
    """Rule-based classification of a single issue.

    The duplicates list is empty when created by the heuristic classifier
    and is overwritten by the duplicate clusterer.
    """

    category: Category
    priority: Priority
    confidence: float = Field(..., ge=0.0, le=1.0)
    duplicates: list[int] = Field(default_factory=list)
    reasoning: Optional[str] = None


class SmallIssue(BaseModel):
    """Truncated projection of an Issue sent to the language model."""

    model_config = ConfigDict(frozen=True)

    issue_number: int
    title: str
    labels: list[str] = Field(default_factory=list, max_length=4)
    body: str = Field(default="", max_length=140)
    url: str = ""
    state: str = "open"
    created_at: Optional[datetime] = None


class LLMResult(BaseModel):
    """Partial classification of one issue parsed from model output.

    Every field except issue_number is optional; a missing field falls
    back to the heuristic value during the merge. An item that only
    echoes issue_number still counts as model output.
    """

    issue_number: int
    category: Optional[Category] = None
    priority: Optional[Priority] = None
    duplicates: Optional[list[int]] = None
    reasoning: Optional[str] = None


class FinalDecision(BaseModel):
    """Merged heuristic + LLM classification awaiting ranking."""

    category: Category
    priority: Optional[Priority] = None
    duplicates: list[int] = Field(default_factory=list)
    reasoning: str = ""
    implementation_order: int = 0


class ProcessedIssue(BaseModel):
    """A classified issue in the pipeline output."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    issue_number: int
    title: str
    category: Category
    priority: Optional[Priority] = None
    duplicates: list[int] = Field(default_factory=list)
    reasoning: str = ""
    implementation_order: int = Field(default=0, alias="implementationOrder")


class TriageRequest(BaseModel):
    """Input contract of the triage pipeline."""

    repository: Repository
    issues: list[Issue]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TriageResponse(BaseModel):
    """Output contract of the triage pipeline."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    repository: Repository
    issues: list[ProcessedIssue]
    timestamp: str = Field(default_factory=_utc_now_iso)

    def to_dict(self) -> dict:
        """Serialize to the JSON shape returned over HTTP and cached."""
        return self.model_dump(mode="json", by_alias=True)


class ErrorResponse(BaseModel):
    """Error body returned by the triage endpoint."""

    success: bool = False
    error: str
    timestamp: str = Field(default_factory=_utc_now_iso)


class AnalyzeRequest(BaseModel):
    """Body of the repository analysis endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    repo_url: Optional[str] = Field(default=None, alias="repoUrl")


class AnalyzeErrorResponse(BaseModel):
    """Error body returned by the repository analysis endpoint."""

    error: str
    details: str
