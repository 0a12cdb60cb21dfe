"""Triage service configuration using pydantic-settings.

This module defines the TriageSettings class that reads configuration
from environment variables with the TRIAGE_ prefix, and the TriagePolicy
structure that bounds the resources a single pipeline run may consume.

Only the LLM API key is required; everything else has a default.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TriagePolicy(BaseModel):
    """Bounded resource consumption policy for one pipeline run.

    Attributes:
        batch_size: Number of issues sent to the LLM per request.
        max_concurrency: Maximum LLM requests in flight at once.
        timeout_seconds: Per-batch LLM timeout.
        max_issues: Maximum number of issues triaged per run.
    """

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=6, gt=0)
    max_concurrency: int = Field(default=2, gt=0)
    timeout_seconds: float = Field(default=15.0, gt=0)
    max_issues: int = Field(default=100, gt=0)


class TriageSettings(BaseSettings):
    """Triage service configuration from environment variables.

    All environment variables are prefixed with TRIAGE_ (e.g., TRIAGE_OPENAI_API_KEY).

    Required fields (must be set via environment variables):
    - openai_api_key: API key for the LLM endpoint
    """

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    openai_api_key: str

    # OpenAI-compatible endpoint used for batch triage
    llm_url: str = "https://api.openai.com/v1"

    llm_model: str = "gpt-4o-mini"

    # Upper bound on completion tokens per batch
    llm_max_tokens: int = 400

    llm_batch_size: int = 6
    llm_max_concurrency: int = 2
    llm_timeout_seconds: float = 15.0

    # Issues beyond this count are not triaged
    max_issues: int = 100

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    # Optional token, passed through to the GitHub API when set
    github_token: Optional[str] = None

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    github_issues_per_page: int = 50
    github_max_pages: int = 1

    # -------------------------------------------------------------------------
    # Cache Configuration
    # -------------------------------------------------------------------------
    cache_ttl_hours: float = 24.0

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    # Upper bound on a full repository analysis (fetch + triage)
    analyze_timeout_seconds: float = 50.0

    host: str = "0.0.0.0"
    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate that the API key is not empty."""
        if not v or not v.strip():
            raise ValueError("openai_api_key cannot be empty")
        return v

    @field_validator("llm_url", "github_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that endpoint URLs have an HTTP scheme."""
        if not v or not v.strip():
            raise ValueError("URL cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v

    @field_validator(
        "llm_max_tokens",
        "llm_batch_size",
        "llm_max_concurrency",
        "max_issues",
        "github_max_pages",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate that counts are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator(
        "llm_timeout_seconds",
        "cache_ttl_hours",
        "analyze_timeout_seconds",
    )
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate that durations are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("github_issues_per_page")
    @classmethod
    def validate_per_page(cls, v: int) -> int:
        """Validate the GitHub page size against the API maximum."""
        if not 1 <= v <= 100:
            raise ValueError("github_issues_per_page must be between 1 and 100")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def policy(self) -> TriagePolicy:
        """Build the pipeline resource policy from these settings."""
        return TriagePolicy(
            batch_size=self.llm_batch_size,
            max_concurrency=self.llm_max_concurrency,
            timeout_seconds=self.llm_timeout_seconds,
            max_issues=self.max_issues,
        )


def get_settings() -> TriageSettings:
    """Create and return TriageSettings instance.

    Returns:
        TriageSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return TriageSettings()
