"""Error taxonomy for the deployment pipeline.

External API failures surface from the clients as module-specific
exceptions (GitHubAPIError, HostingAPIError, BranchConflictError, ...).
At the orchestrator boundary they are classified into a DeploymentError
carrying a tagged ErrorKind and structured fields, so that translating
a failure into the persisted, user-facing `last_error` is a pure
function.

Error kinds:
- CONFIGURATION: missing credentials, malformed site name, rejected
  authorization. Never retried automatically; the user must fix input.
- CONFLICT: repository name taken by a different resource, branch tip
  moved concurrently. Retryable by the user.
- TRANSIENT: network failure, rate limiting, 5xx. Retryable by the user.
- UNEXPECTED: malformed API response or programming error. Fatal for
  the attempt; surfaced with a generic message.
"""

from enum import Enum
from typing import Optional

import httpx

from hugohost.github.client import BranchConflictError, GitHubAPIError, RateLimitError
from hugohost.hosting.auth import MissingHostingCredentialsError
from hugohost.hosting.client import HostingAPIError


# Upper bound on the persisted `last_error` text.
MAX_ERROR_LENGTH = 1000

# Raw diagnostic detail appended to generic messages is capped separately.
MAX_DIAGNOSTIC_LENGTH = 300

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
CONFIGURATION_STATUS_CODES = {400, 401, 403, 404, 422}


class ErrorKind(str, Enum):
    """Category of a pipeline failure, driving retry and messaging."""

    CONFIGURATION = "configuration"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    UNEXPECTED = "unexpected"

    @property
    def retryable(self) -> bool:
        """Whether a user-initiated retry can succeed without other changes."""
        return self in (ErrorKind.CONFLICT, ErrorKind.TRANSIENT)


class DeploymentError(Exception):
    """A classified pipeline failure.

    Attributes:
        kind: The error category.
        stage: Pipeline step or API call stage that failed.
        message: Human-readable description of the failure.
        http_status: HTTP status code returned by the provider, if any.
        provider_message: Message reported by the external API, if any.
        resource: The external resource being operated on.
    """

    def __init__(
        self,
        kind: ErrorKind,
        stage: str,
        message: str,
        http_status: Optional[int] = None,
        provider_message: Optional[str] = None,
        resource: Optional[str] = None,
    ):
        self.kind = kind
        self.stage = stage
        self.message = message
        self.http_status = http_status
        self.provider_message = provider_message
        self.resource = resource
        super().__init__(message)

    @classmethod
    def configuration(
        cls,
        stage: str,
        message: str,
        resource: Optional[str] = None,
    ) -> "DeploymentError":
        """Shortcut for a user-correctable configuration error."""
        return cls(ErrorKind.CONFIGURATION, stage, message, resource=resource)


def _kind_for_status(status_code: Optional[int]) -> ErrorKind:
    if status_code is None:
        return ErrorKind.TRANSIENT
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        return ErrorKind.TRANSIENT
    if status_code == 409:
        return ErrorKind.CONFLICT
    if status_code in CONFIGURATION_STATUS_CODES:
        return ErrorKind.CONFIGURATION
    return ErrorKind.UNEXPECTED


def classify_error(
    exc: BaseException,
    stage: str,
    resource: Optional[str] = None,
) -> DeploymentError:
    """Wrap any exception raised by a pipeline step into a DeploymentError.

    Args:
        exc: The exception raised by the step.
        stage: Name of the step (e.g. "create_repository").
        resource: The external resource the step operated on.

    Returns:
        A DeploymentError with the kind derived from the exception type
        and HTTP status.
    """
    if isinstance(exc, DeploymentError):
        return exc

    if isinstance(exc, MissingHostingCredentialsError):
        return DeploymentError.configuration(stage, str(exc), resource=resource)

    if isinstance(exc, BranchConflictError):
        return DeploymentError(
            ErrorKind.CONFLICT,
            exc.stage or stage,
            exc.message,
            http_status=exc.status_code,
            provider_message=exc.provider_message,
            resource=resource,
        )

    if isinstance(exc, RateLimitError):
        return DeploymentError(
            ErrorKind.TRANSIENT,
            stage,
            exc.message,
            http_status=exc.status_code,
            provider_message="rate limit exceeded",
            resource=resource,
        )

    if isinstance(exc, GitHubAPIError):
        message = exc.message
        if exc.path:
            message = f"{message} [path: {exc.path}]"
        return DeploymentError(
            _kind_for_status(exc.status_code),
            exc.stage or stage,
            message,
            http_status=exc.status_code,
            provider_message=exc.provider_message,
            resource=resource,
        )

    if isinstance(exc, HostingAPIError):
        return DeploymentError(
            _kind_for_status(exc.status_code),
            stage,
            exc.message,
            http_status=exc.status_code,
            provider_message=exc.provider_message,
            resource=resource,
        )

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return DeploymentError(
            ErrorKind.TRANSIENT,
            stage,
            f"Network error: {exc}",
            resource=resource,
        )

    return DeploymentError(
        ErrorKind.UNEXPECTED,
        stage,
        f"{type(exc).__name__}: {exc}",
        resource=resource,
    )


def truncate_error(text: str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Truncate error text to `limit` characters, marking the cut."""
    if len(text) <= limit:
        return text
    marker = "... [truncated]"
    return text[: limit - len(marker)] + marker


def format_user_message(error: DeploymentError) -> str:
    """Render a DeploymentError as the persisted `last_error` text.

    Pure function: the same error always produces the same text. The
    result never exceeds MAX_ERROR_LENGTH characters.

    Args:
        error: The classified error.

    Returns:
        A human-readable diagnostic naming the stage and resource.
    """
    target = f" ({error.resource})" if error.resource else ""

    if error.kind == ErrorKind.UNEXPECTED:
        text = f"Unexpected failure during {error.stage}{target}. Please try again later."
        detail = error.message
        if detail and len(detail) <= MAX_DIAGNOSTIC_LENGTH:
            text += f" Details: {detail}"
        return truncate_error(text)

    text = f"{error.stage}{target}: {error.message}"
    if error.provider_message and error.provider_message not in error.message:
        text += f" - {error.provider_message}"
    if error.kind == ErrorKind.CONFIGURATION:
        text += " Please check your settings before retrying."
    return truncate_error(text)
