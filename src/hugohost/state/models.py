"""Deployment state machine models.

This module defines the data models for the deployment state machine:
- DeploymentStatus: Enum of all deployment statuses
- Theme: Hugo theme reference stored on a deployment
- DeploymentRequest: Validated user request for a new blog
- DeploymentRecord: Persisted state of one user blog
- VALID_TRANSITIONS: Map defining allowed status transitions

The models use Pydantic for validation, consistent with config.py.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from hugohost.errors import ErrorKind


SITE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class DeploymentStatus(str, Enum):
    """Statuses a deployment progresses through.

    Status Flow:
        pending → creating_repository → preparing_content → pushing_content
        → ready_for_hosting → hosting_pending → hosting_deploying
        → hosting_live

    Repository steps fail into `repository_failed`, hosting steps into
    `hosting_failed`. Each failure status re-enters its phase on retry.

    Attributes:
        PENDING: Record created, pipeline not started.
        CREATING_REPOSITORY: Creating or resolving the GitHub repository.
        PREPARING_CONTENT: Writing the bootstrap commit.
        PUSHING_CONTENT: Writing the site scaffold commit.
        READY_FOR_HOSTING: Repository populated; awaiting the user's
            hosting request.
        HOSTING_PENDING: Hosting requested; validating credentials.
        HOSTING_DEPLOYING: Creating or resolving the Pages project.
        HOSTING_LIVE: Site is served at `live_url`. Terminal.
        REPOSITORY_FAILED: A repository step failed; see `last_error`.
        HOSTING_FAILED: A hosting step failed; see `last_error`.
    """

    PENDING = "pending"
    CREATING_REPOSITORY = "creating_repository"
    PREPARING_CONTENT = "preparing_content"
    PUSHING_CONTENT = "pushing_content"
    READY_FOR_HOSTING = "ready_for_hosting"
    HOSTING_PENDING = "hosting_pending"
    HOSTING_DEPLOYING = "hosting_deploying"
    HOSTING_LIVE = "hosting_live"
    REPOSITORY_FAILED = "repository_failed"
    HOSTING_FAILED = "hosting_failed"

    @property
    def is_failed(self) -> bool:
        return self in FAILED_STATUSES


FAILED_STATUSES = frozenset(
    {DeploymentStatus.REPOSITORY_FAILED, DeploymentStatus.HOSTING_FAILED}
)

# Statuses from which the repository exists and holds the scaffold.
REPOSITORY_READY_STATUSES = frozenset(
    {
        DeploymentStatus.READY_FOR_HOSTING,
        DeploymentStatus.HOSTING_PENDING,
        DeploymentStatus.HOSTING_DEPLOYING,
        DeploymentStatus.HOSTING_LIVE,
        DeploymentStatus.HOSTING_FAILED,
    }
)


class Theme(BaseModel):
    """Hugo theme used by a deployment.

    Attributes:
        name: Theme name as shown to the user.
        git_url: Git URL of the theme module.
        is_custom: True when the user supplied the URL.
    """

    name: str = Field(..., min_length=1)
    git_url: str = Field(..., min_length=1)
    is_custom: bool = Field(default=False)


class DeploymentRequest(BaseModel):
    """A user's declarative request for a new blog.

    Attributes:
        site_name: Repository and hosting project name.
        blog_title: Site title.
        description: Repository and site meta description.
        theme: Catalogue theme name, or a custom theme.
    """

    site_name: str = Field(..., min_length=3, max_length=100)
    blog_title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=160)
    theme: Theme

    @field_validator("site_name")
    @classmethod
    def validate_site_name(cls, v: str) -> str:
        if not SITE_NAME_PATTERN.match(v):
            raise ValueError(
                "site_name may only contain letters, numbers, hyphens and underscores"
            )
        return v


class DeploymentRecord(BaseModel):
    """Persisted state of one user blog.

    Only the orchestrator writes `status` and `last_error`, through the
    state machine.

    Attributes:
        id: Opaque identifier assigned at creation.
        owner_id: The requesting user; every access is scoped to it.
        site_name: Repository name and hosting project name.
        blog_title: Site title.
        description: Repository and site meta description.
        theme: Hugo theme reference.
        status: Current status.
        repository_url: HTML URL of the repository, once known.
        repository_full_name: "owner/name" of the repository, once known.
        default_branch: Branch content is committed to and hosted from.
        live_url: Public URL of the hosted site, once live.
        hosting_project_name: Pages project name.
        hosting_account_id: Cloudflare account owning the project.
        last_error: Diagnostic of the last failure (at most 1000 chars).
        last_error_kind: Error category of `last_error`.
        note: Progress annotation distinct from errors.
        created_at: When the record was created (UTC).
        updated_at: When the record was last written (UTC).
    """

    id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    site_name: str = Field(..., min_length=1)
    blog_title: str = Field(default="")
    description: str = Field(default="")
    theme: Optional[Theme] = Field(default=None)
    status: DeploymentStatus = Field(default=DeploymentStatus.PENDING)
    repository_url: Optional[str] = Field(default=None)
    repository_full_name: Optional[str] = Field(default=None)
    default_branch: Optional[str] = Field(default=None)
    live_url: Optional[str] = Field(default=None)
    hosting_project_name: Optional[str] = Field(default=None)
    hosting_account_id: Optional[str] = Field(default=None)
    last_error: Optional[str] = Field(default=None, max_length=1000)
    last_error_kind: Optional[ErrorKind] = Field(default=None)
    note: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# Fields the state machine may write alongside a status change.
MUTABLE_FIELDS = frozenset(
    {
        "repository_url",
        "repository_full_name",
        "default_branch",
        "live_url",
        "hosting_project_name",
        "hosting_account_id",
        "note",
    }
)


# Valid status transitions map
#
# - Repository steps fail into REPOSITORY_FAILED, which retries from
#   CREATING_REPOSITORY
# - READY_FOR_HOSTING only moves forward on an explicit hosting request
# - Hosting steps fail into HOSTING_FAILED, which retries from
#   HOSTING_PENDING
# - HOSTING_LIVE is terminal
VALID_TRANSITIONS: Dict[DeploymentStatus, List[DeploymentStatus]] = {
    DeploymentStatus.PENDING: [
        DeploymentStatus.CREATING_REPOSITORY,
        DeploymentStatus.REPOSITORY_FAILED,
    ],
    DeploymentStatus.CREATING_REPOSITORY: [
        DeploymentStatus.PREPARING_CONTENT,
        DeploymentStatus.REPOSITORY_FAILED,
    ],
    DeploymentStatus.PREPARING_CONTENT: [
        DeploymentStatus.PUSHING_CONTENT,
        DeploymentStatus.REPOSITORY_FAILED,
    ],
    DeploymentStatus.PUSHING_CONTENT: [
        DeploymentStatus.READY_FOR_HOSTING,
        DeploymentStatus.REPOSITORY_FAILED,
    ],
    DeploymentStatus.READY_FOR_HOSTING: [
        DeploymentStatus.HOSTING_PENDING,
    ],
    DeploymentStatus.HOSTING_PENDING: [
        DeploymentStatus.HOSTING_DEPLOYING,
        DeploymentStatus.HOSTING_FAILED,
    ],
    DeploymentStatus.HOSTING_DEPLOYING: [
        DeploymentStatus.HOSTING_LIVE,
        DeploymentStatus.HOSTING_FAILED,
    ],
    DeploymentStatus.HOSTING_LIVE: [],
    DeploymentStatus.REPOSITORY_FAILED: [
        DeploymentStatus.CREATING_REPOSITORY,
    ],
    DeploymentStatus.HOSTING_FAILED: [
        DeploymentStatus.HOSTING_PENDING,
    ],
}


def is_valid_transition(from_status: DeploymentStatus, to_status: DeploymentStatus) -> bool:
    """Check if a status transition is allowed.

    Example:
        >>> is_valid_transition(DeploymentStatus.PENDING, DeploymentStatus.CREATING_REPOSITORY)
        True
        >>> is_valid_transition(DeploymentStatus.HOSTING_LIVE, DeploymentStatus.PENDING)
        False
    """
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def is_terminal_status(status: DeploymentStatus) -> bool:
    """Check if a status has no outgoing transitions."""
    return len(VALID_TRANSITIONS.get(status, [])) == 0
