"""GitHub integration: API client, commit builder and repository provisioning."""

from hugohost.github.client import (
    BranchConflictError,
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from hugohost.github.commit_builder import CommitBuilder
from hugohost.github.models import ContentFile, RepositoryInfo
from hugohost.github.repository import RepositoryProvisioner

__all__ = [
    "BranchConflictError",
    "CommitBuilder",
    "ContentFile",
    "GitHubAPIError",
    "GitHubClient",
    "RateLimitError",
    "RepositoryInfo",
    "RepositoryProvisioner",
]
