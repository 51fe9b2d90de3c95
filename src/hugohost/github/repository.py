"""Repository provisioning.

Creates a public, empty repository for a site. A repository of the same
name already owned by the account is not an error: it is fetched and
returned, which makes provisioning safe to repeat.
"""

import logging
from typing import Any, Dict, Optional

from hugohost.github.client import GitHubAPIError, GitHubClient
from hugohost.github.models import RepositoryInfo


logger = logging.getLogger(__name__)

NAME_EXISTS_MARKER = "name already exists on this account"


def is_name_taken(error: GitHubAPIError) -> bool:
    """Whether a 422 response reports the repository name as taken."""
    if error.status_code != 422:
        return False
    for detail in error.validation_errors():
        if NAME_EXISTS_MARKER in str(detail.get("message", "")).lower():
            return True
    return NAME_EXISTS_MARKER in (error.provider_message or "").lower()


def _repository_info(data: Dict[str, Any]) -> RepositoryInfo:
    return RepositoryInfo(
        url=data["html_url"],
        default_branch=data.get("default_branch") or "main",
        name=data["name"],
        full_name=data["full_name"],
    )


class RepositoryProvisioner:
    """Creates or resolves the repository backing a site.

    Attributes:
        client: The GitHub API client.
    """

    def __init__(self, client: GitHubClient):
        self.client = client

    async def ensure_repository(
        self,
        owner: Optional[str],
        name: str,
        description: str,
    ) -> RepositoryInfo:
        """Create the repository, or return it if the name is already taken.

        Args:
            owner: Account login, or None to resolve it from the token
                when needed.
            name: Repository name.
            description: Repository description.

        Returns:
            The created or existing repository.

        Raises:
            GitHubAPIError: For any failure other than "name already
                exists", with GitHub's validation detail attached.
        """
        try:
            data = await self.client.create_repository(
                name=name,
                description=description,
                private=False,
                auto_init=False,
            )
        except GitHubAPIError as e:
            if not is_name_taken(e):
                raise
            if owner is None:
                owner = await self.client.get_authenticated_user()
            logger.info(
                "Repository already exists, resolving",
                extra={"owner": owner, "repo": name},
            )
            data = await self.client.get_repository(owner, name)
            return _repository_info(data)

        info = _repository_info(data)
        logger.info(
            "Created repository",
            extra={"full_name": info.full_name, "default_branch": info.default_branch},
        )
        return info
