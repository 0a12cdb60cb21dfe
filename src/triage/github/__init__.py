"""GitHub integration for fetching repositories and open issues."""

from src.triage.github.client import (
    GitHubAPIError,
    GitHubClient,
    InvalidRepositoryURLError,
    RateLimitError,
    RepositoryNotFoundError,
    parse_repo_url,
    transform_issue,
    transform_repository,
)

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "InvalidRepositoryURLError",
    "RateLimitError",
    "RepositoryNotFoundError",
    "parse_repo_url",
    "transform_issue",
    "transform_repository",
]
