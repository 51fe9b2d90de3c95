"""GitHub API client for repository provisioning and commit construction.

This module provides an async wrapper around the GitHub REST API for:
- Creating and fetching repositories
- Resolving the authenticated user
- Creating blobs, trees and commits through the Git Data API
- Reading, creating and fast-forwarding branch references

Includes rate limiting and optional retry logic for transient
transport failures.
"""

import asyncio
import base64
import json
import logging
import random
import time
from typing import Any, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
        stage: The API call stage that failed (e.g. "create_blob").
        path: Repository file path the failed call concerned, if any.
        provider_message: The "message" field reported by GitHub, with
            any structured validation errors appended.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        stage: Optional[str] = None,
        provider_message: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        self.stage = stage
        self.provider_message = provider_message
        self.path: Optional[str] = None
        super().__init__(message)

    def validation_errors(self) -> List[Dict[str, Any]]:
        """Return the structured `errors` list from a 422 response body."""
        payload = _parse_json_body(self.response_body)
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if isinstance(errors, list):
            return [e for e in errors if isinstance(e, dict)]
        return []


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
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


class BranchConflictError(GitHubAPIError):
    """Raised when a branch reference update is rejected.

    GitHub rejects a non-forced ref update that is not a fast-forward,
    and a ref creation when the ref already exists. Either means the
    branch tip moved since it was resolved.
    """


def _parse_json_body(body: Optional[str]) -> Any:
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError:
        return {}


def _describe_provider_error(body: Optional[str]) -> Optional[str]:
    """Build a readable description from a GitHub error response body."""
    payload = _parse_json_body(body)
    if not isinstance(payload, dict):
        return None

    message = payload.get("message")
    details = []
    for error in payload.get("errors") or []:
        if isinstance(error, dict):
            parts = [
                str(error[key])
                for key in ("resource", "field", "code", "message")
                if error.get(key)
            ]
            if parts:
                details.append(" ".join(parts))
        elif error:
            details.append(str(error))

    if message and details:
        return f"{message} ({'; '.join(details)})"
    if message:
        return str(message)
    if details:
        return "; ".join(details)
    return None


def encode_content(content: Any) -> str:
    """Base64-encode file content for the blobs API.

    Strings are encoded as UTF-8; bytes are sent unchanged so that
    arbitrary binary content survives the round trip.
    """
    if isinstance(content, str):
        raw = content.encode("utf-8")
    elif isinstance(content, (bytes, bytearray, memoryview)):
        raw = bytes(content)
    else:
        raise TypeError(f"Unsupported content type: {type(content).__name__}")
    return base64.b64encode(raw).decode("ascii")


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    This client provides methods for repository provisioning and the
    Git Data API. It implements:

    - Optional retry with exponential backoff for transient failures
    - Rate limit handling by respecting X-RateLimit-* headers
    - Support for both github.com and GitHub Enterprise Server

    Attributes:
        token: GitHub API token (PAT or GitHub App token).
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as client:
        ...     repo = await client.get_repository("octocat", "my-blog")
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 0,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub API token for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used to stub the API).
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
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "HugoHost-Pipeline/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
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

    def _parse_int_header(self, headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _rate_limit_error(self, response: httpx.Response, stage: str) -> RateLimitError:
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
                "stage": stage,
                "limit": self._parse_int_header(response.headers, "x-ratelimit-limit"),
            },
        )

        return RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
            stage=stage,
        )

    async def _request(
        self,
        method: str,
        path: str,
        stage: str,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, PATCH, ...).
            path: API path (e.g., /repos/owner/repo/git/blobs).
            stage: Name of the calling operation, attached to errors.
            json_data: Optional JSON body for the request.

        Returns:
            The successful HTTP response from GitHub.

        Raises:
            GitHubAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                )

                if response.status_code == 403:
                    remaining = self._parse_int_header(
                        response.headers,
                        "x-ratelimit-remaining",
                    )
                    if remaining == 0:
                        raise self._rate_limit_error(response, stage)

                if response.status_code == 429:
                    raise self._rate_limit_error(response, stage)

                if response.status_code in self.RETRYABLE_STATUS_CODES:
                    if attempt < self.max_retries:
                        delay = self._calculate_backoff(attempt)
                        logger.warning(
                            "Retryable error from GitHub API",
                            extra={
                                "status_code": response.status_code,
                                "attempt": attempt + 1,
                                "max_retries": self.max_retries,
                                "delay": delay,
                                "path": path,
                            },
                        )
                        await asyncio.sleep(delay)
                        continue

                if response.status_code >= 400:
                    error_body = response.text
                    provider_message = _describe_provider_error(error_body)
                    logger.error(
                        "GitHub API error",
                        extra={
                            "status_code": response.status_code,
                            "path": path,
                            "method": method,
                            "stage": stage,
                            "response_body": error_body[:500],
                        },
                    )
                    raise GitHubAPIError(
                        message=f"GitHub API error during {stage}: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                        request_url=str(response.url),
                        stage=stage,
                        provider_message=provider_message,
                    )

                return response

            except GitHubAPIError:
                raise
            except httpx.TimeoutException as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request timeout, retrying",
                        extra={
                            "attempt": attempt + 1,
                            "max_retries": self.max_retries,
                            "delay": delay,
                            "path": path,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue
            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        extra={
                            "error": str(e),
                            "attempt": attempt + 1,
                            "max_retries": self.max_retries,
                            "delay": delay,
                            "path": path,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue

        logger.error(
            "GitHub API request failed after all retries",
            extra={
                "path": path,
                "method": method,
                "stage": stage,
                "max_retries": self.max_retries,
                "last_error": str(last_exception),
            },
        )
        raise GitHubAPIError(
            message=(
                f"GitHub request during {stage} failed after "
                f"{self.max_retries + 1} attempt(s): {last_exception}"
            ),
            request_url=f"{self.base_url}{path}",
            stage=stage,
        )

    # ------------------------------------------------------------------
    # Users and repositories
    # ------------------------------------------------------------------

    async def get_authenticated_user(self) -> str:
        """Return the login of the user owning the token."""
        response = await self._request("GET", "/user", stage="get_user")
        return response.json()["login"]

    async def create_repository(
        self,
        name: str,
        description: str,
        private: bool = False,
        auto_init: bool = False,
    ) -> Dict[str, Any]:
        """Create a repository for the authenticated user.

        Args:
            name: Repository name.
            description: Repository description.
            private: Whether the repository is private.
            auto_init: Whether GitHub should create an initial commit.

        Returns:
            The repository data from GitHub API.

        Raises:
            GitHubAPIError: If the request fails (422 when the name is taken).
        """
        logger.info(
            "Creating repository",
            extra={"repo": name, "private": private},
        )
        response = await self._request(
            "POST",
            "/user/repos",
            stage="create_repository",
            json_data={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": auto_init,
            },
        )
        return response.json()

    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        """Get repository metadata."""
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}",
            stage="get_repository",
        )
        return response.json()

    # ------------------------------------------------------------------
    # Git Data API
    # ------------------------------------------------------------------

    async def get_branch_tip(self, owner: str, repo: str, branch: str) -> Optional[str]:
        """Resolve the commit SHA a branch points at.

        Returns:
            The tip commit SHA, or None when the branch does not exist or
            the repository has no commits yet.

        Raises:
            GitHubAPIError: For any other failure.
        """
        try:
            response = await self._request(
                "GET",
                f"/repos/{owner}/{repo}/git/ref/heads/{branch}",
                stage="resolve_tip",
            )
        except RateLimitError:
            raise
        except GitHubAPIError as e:
            # 404: branch missing. 409: "Git Repository is empty."
            if e.status_code in (404, 409):
                logger.debug(
                    "Branch has no tip",
                    extra={"owner": owner, "repo": repo, "branch": branch},
                )
                return None
            raise

        data = response.json()
        return data["object"]["sha"]

    async def get_commit_tree(self, owner: str, repo: str, commit_sha: str) -> str:
        """Return the tree SHA of a commit."""
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/commits/{commit_sha}",
            stage="resolve_tip",
        )
        return response.json()["tree"]["sha"]

    async def create_blob(self, owner: str, repo: str, content: Any) -> str:
        """Store content as a blob and return its SHA."""
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/blobs",
            stage="create_blob",
            json_data={"content": encode_content(content), "encoding": "base64"},
        )
        return response.json()["sha"]

    async def create_tree(
        self,
        owner: str,
        repo: str,
        entries: List[Dict[str, Any]],
        base_tree: Optional[str] = None,
    ) -> str:
        """Create a tree from entries layered on an optional base tree."""
        body: Dict[str, Any] = {"tree": entries}
        if base_tree is not None:
            body["base_tree"] = base_tree
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/trees",
            stage="create_tree",
            json_data=body,
        )
        return response.json()["sha"]

    async def create_commit(
        self,
        owner: str,
        repo: str,
        message: str,
        tree: str,
        parents: List[str],
    ) -> str:
        """Create a commit object and return its SHA."""
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            stage="create_commit",
            json_data={"message": message, "tree": tree, "parents": parents},
        )
        return response.json()["sha"]

    async def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        """Create `refs/heads/<branch>` pointing at `sha`.

        Raises:
            BranchConflictError: If the reference already exists.
        """
        try:
            await self._request(
                "POST",
                f"/repos/{owner}/{repo}/git/refs",
                stage="update_ref",
                json_data={"ref": f"refs/heads/{branch}", "sha": sha},
            )
        except RateLimitError:
            raise
        except GitHubAPIError as e:
            if e.status_code == 422:
                raise BranchConflictError(
                    message=f"Branch {branch} was created concurrently",
                    status_code=e.status_code,
                    response_body=e.response_body,
                    request_url=e.request_url,
                    stage="update_ref",
                    provider_message=e.provider_message,
                ) from e
            raise

    async def fast_forward_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        """Move `refs/heads/<branch>` to `sha`, refusing non-fast-forwards.

        Raises:
            BranchConflictError: If the update is not a fast-forward.
        """
        try:
            await self._request(
                "PATCH",
                f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
                stage="update_ref",
                json_data={"sha": sha, "force": False},
            )
        except RateLimitError:
            raise
        except GitHubAPIError as e:
            if e.status_code == 422:
                raise BranchConflictError(
                    message=f"Branch {branch} moved concurrently; update is not a fast forward",
                    status_code=e.status_code,
                    response_body=e.response_body,
                    request_url=e.request_url,
                    stage="update_ref",
                    provider_message=e.provider_message,
                ) from e
            raise
