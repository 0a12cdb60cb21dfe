"""GitHub API client for fetching repositories and open issues.

This module provides an async wrapper around the GitHub REST API for:
- Fetching repository metadata
- Fetching open issues (pull requests filtered out, bodies truncated)
- Parsing github.com repository URLs

Includes rate limit detection and retry logic for API resilience.
Rate limit exhaustion and missing repositories raise distinct errors so
the HTTP layer can map them to 429 and 404.

Source:
- src/triage/models.py (Issue, Repository)
- src/triage/config.py (github_token, github_base_url)
"""

import asyncio
import logging
import random
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from src.triage.models import Issue, Repository


logger = logging.getLogger(__name__)


ISSUE_BODY_LIMIT = 150

GITHUB_HOSTS = {"github.com", "www.github.com"}


class InvalidRepositoryURLError(ValueError):
    """Raised when a URL does not point at a github.com repository."""


class GitHubAPIError(Exception):
    """A GitHub REST call returned an error or never succeeded.

    Attributes:
        message: Summary of the failure.
        status_code: Status of the failing response, or None when no
            response arrived (transport errors).
        response_body: Raw body of the failing response.
        request_url: URL of the failing request.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """The GitHub quota for this token (or client IP) is exhausted.

    Attributes:
        reset_at: Epoch second at which the quota refills, if reported.
        retry_after: Suggested wait in seconds, if known.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class RepositoryNotFoundError(GitHubAPIError):
    """Raised when the repository does not exist or is not accessible."""


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """Parse a github.com repository URL into (owner, repo).

    Args:
        repo_url: URL such as https://github.com/owner/repo(.git).

    Returns:
        Tuple of (owner, repo) with any ".git" suffix removed.

    Raises:
        InvalidRepositoryURLError: If the URL is not a github.com
            repository URL.
    """
    try:
        parsed = urlparse(repo_url.strip())
    except (AttributeError, ValueError) as e:
        raise InvalidRepositoryURLError(f"Invalid repository URL: {repo_url!r}") from e

    if parsed.scheme not in ("http", "https") or parsed.hostname not in GITHUB_HOSTS:
        raise InvalidRepositoryURLError(
            f"Not a GitHub repository URL: {repo_url!r}"
        )

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        raise InvalidRepositoryURLError(
            f"Repository URL must include owner and name: {repo_url!r}"
        )

    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        raise InvalidRepositoryURLError(
            f"Repository URL must include owner and name: {repo_url!r}"
        )
    return owner, repo


def transform_repository(data: Dict[str, Any]) -> Repository:
    """Map a GitHub repository payload onto the Repository model."""
    return Repository(
        url=data.get("html_url"),
        name=data["name"],
        owner=(data.get("owner") or {}).get("login"),
        description=data.get("description"),
        stars=data.get("stargazers_count"),
        forks=data.get("forks_count"),
        open_issues=data.get("open_issues_count"),
    )


def transform_issue(data: Dict[str, Any]) -> Issue:
    """Map a GitHub issue payload onto the Issue model.

    The body is truncated to ISSUE_BODY_LIMIT characters.
    """
    body = data.get("body") or ""
    return Issue(
        issue_number=data["number"],
        title=data.get("title") or "",
        state=data.get("state") or "open",
        labels=[
            label["name"] if isinstance(label, dict) else str(label)
            for label in data.get("labels") or []
        ],
        author=(data.get("user") or {}).get("login"),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
        body=body[:ISSUE_BODY_LIMIT],
        url=data.get("html_url") or "",
    )


class GitHubClient:
    """Read-only GitHub REST client used by repository analysis.

    Transient failures (timeouts, connection errors, 408 and 5xx) are
    retried with jittered exponential backoff. Quota exhaustion is never
    retried; it surfaces as RateLimitError so the caller can answer 429.
    Public repositories work without a token.

    Example:
        >>> async with GitHubClient() as client:
        ...     repository = await client.fetch_repository("octocat", "Hello-World")
        ...     issues = await client.fetch_issues("octocat", "Hello-World")
    """

    # Statuses worth another attempt
    RETRYABLE_STATUS_CODES = {408, 500, 502, 503, 504}

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Create a client; the underlying httpx client is opened lazily.

        Args:
            token: Sent as a bearer token when set.
            base_url: API root, e.g. a GitHub Enterprise "/api/v3" URL.
            max_retries: Extra attempts after the first for transient failures.
            base_delay: First backoff ceiling in seconds; doubles per attempt.
            max_delay: Upper bound for any backoff ceiling.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "issue-triage/1.0",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def close(self) -> None:
        """Close the underlying httpx client, if open."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate backoff delay with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    @staticmethod
    def _parse_int_header(headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _is_rate_limited(self, response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        remaining = self._parse_int_header(response.headers, "x-ratelimit-remaining")
        return response.status_code == 403 and remaining == 0

    def _rate_limit_error(self, response: httpx.Response) -> RateLimitError:
        """Build a RateLimitError from a rate-limited response."""
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={
                "reset_at": reset_at,
                "retry_after": retry_after,
                "limit": self._parse_int_header(response.headers, "x-ratelimit-limit"),
            },
        )

        return RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method.
            path: API path or absolute URL (pagination links).
            params: Optional query parameters.

        Returns:
            The HTTP response from GitHub.

        Raises:
            RateLimitError: If rate limit is exceeded.
            RepositoryNotFoundError: If GitHub returns 404.
            GitHubAPIError: If the request fails after all retries.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    params=params,
                )
            except httpx.TimeoutException as e:
                last_exception = e
                reason = "Request timeout, retrying"
            except httpx.RequestError as e:
                last_exception = e
                reason = "Request error, retrying"
            else:
                if self._is_rate_limited(response):
                    raise self._rate_limit_error(response)

                if (
                    response.status_code in self.RETRYABLE_STATUS_CODES
                    and attempt < self.max_retries
                ):
                    last_exception = GitHubAPIError(
                        f"GitHub API error: {response.status_code}",
                        status_code=response.status_code,
                    )
                    reason = "Retryable error from GitHub API"
                else:
                    return self._check_response(response, method, path)

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    reason,
                    extra={
                        "error": str(last_exception),
                        "attempt": attempt + 1,
                        "max_retries": self.max_retries,
                        "delay": delay,
                        "path": path,
                    },
                )
                await asyncio.sleep(delay)

        logger.error(
            "GitHub API request failed after all retries",
            extra={
                "path": path,
                "method": method,
                "max_retries": self.max_retries,
                "last_error": str(last_exception),
            },
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=path if path.startswith("http") else f"{self.base_url}{path}",
        )

    def _check_response(
        self,
        response: httpx.Response,
        method: str,
        path: str,
    ) -> httpx.Response:
        """Raise a typed error for 4xx/5xx responses."""
        if response.status_code < 400:
            return response

        error_body = response.text
        logger.error(
            "GitHub API error",
            extra={
                "status_code": response.status_code,
                "path": path,
                "method": method,
                "response_body": error_body[:500],
            },
        )
        error_cls = (
            RepositoryNotFoundError if response.status_code == 404 else GitHubAPIError
        )
        raise error_cls(
            message=f"GitHub API error: {response.status_code}",
            status_code=response.status_code,
            response_body=error_body,
            request_url=str(response.url),
        )

    async def fetch_repository(self, owner: str, repo: str) -> Repository:
        """Fetch repository metadata.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.

        Returns:
            Repository context.

        Raises:
            RepositoryNotFoundError: If the repository does not exist.
            GitHubAPIError: If the request fails.
        """
        logger.debug(
            "Fetching repository",
            extra={"owner": owner, "repo": repo},
        )
        response = await self._request("GET", f"/repos/{owner}/{repo}")
        return transform_repository(response.json())

    async def fetch_issues(
        self,
        owner: str,
        repo: str,
        per_page: int = 50,
        max_pages: int = 1,
    ) -> List[Issue]:
        """Fetch open issues, most recently updated first.

        Pull requests returned by the issues endpoint are filtered out.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            per_page: Page size requested from GitHub.
            max_pages: Maximum number of pages to follow.

        Returns:
            Issues with bodies truncated to ISSUE_BODY_LIMIT characters.

        Raises:
            RateLimitError: If rate limit is exceeded.
            RepositoryNotFoundError: If the repository does not exist.
            GitHubAPIError: If the request fails.
        """
        path: Optional[str] = f"/repos/{owner}/{repo}/issues"
        params: Optional[Dict[str, Any]] = {
            "state": "open",
            "per_page": per_page,
            "sort": "updated",
            "direction": "desc",
        }

        issues: List[Issue] = []
        pages = 0
        while path is not None and pages < max_pages:
            response = await self._request("GET", path, params=params)
            pages += 1

            for node in response.json():
                if "pull_request" in node:
                    continue
                issues.append(transform_issue(node))

            next_link = response.links.get("next")
            path = next_link["url"] if next_link else None
            # The next link already carries the query string
            params = None

        logger.info(
            "Fetched open issues",
            extra={
                "owner": owner,
                "repo": repo,
                "issues": len(issues),
                "pages": pages,
            },
        )
        return issues

    async def health_check(self) -> bool:
        """Check if the GitHub API is reachable."""
        try:
            response = await self.client.get("/rate_limit")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(
                "GitHub API health check failed",
                extra={"error": str(e)},
            )
            return False
