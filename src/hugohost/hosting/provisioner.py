"""Cloudflare Pages project provisioning.

A Pages project is bound to a GitHub repository and production branch
with a fixed Hugo build. An existing project with the requested name is
returned as-is, so provisioning is safe to repeat.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from hugohost.hosting.client import CloudflarePagesClient


logger = logging.getLogger(__name__)

DEFAULT_HUGO_VERSION = "0.121.1"
DEFAULT_PAGES_DOMAIN = "pages.dev"


@dataclass(frozen=True)
class HostingProject:
    """A created or resolved Pages project.

    Attributes:
        name: Project name.
        live_url: Public URL the project serves.
        created: True when this call created the project.
    """

    name: str
    live_url: str
    created: bool


def build_project_definition(
    project_name: str,
    repo_full_name: str,
    production_branch: str,
    hugo_version: str = DEFAULT_HUGO_VERSION,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Build the POST body for a GitHub-sourced Hugo Pages project."""
    owner, _, repo_name = repo_full_name.partition("/")
    if not owner or not repo_name:
        raise ValueError(f"Repository full name must be 'owner/name': {repo_full_name!r}")

    compatibility_date = (today or date.today()).isoformat()
    return {
        "name": project_name,
        "build_config": {
            "build_command": "hugo",
            "destination_dir": "public",
            "root_dir": "/",
        },
        "source": {
            "type": "github",
            "config": {
                "owner": owner,
                "repo_name": repo_name,
                "production_branch": production_branch,
                "pr_comments_enabled": True,
                "deployments_enabled": True,
            },
        },
        "deployment_configs": {
            "production": {
                "compatibility_date": compatibility_date,
                "env_vars": {"HUGO_VERSION": {"value": hugo_version}},
            },
        },
    }


class HostingProvisioner:
    """Creates or resolves the Pages project serving a site.

    Attributes:
        client: The Cloudflare Pages client.
        hugo_version: Hugo version pinned in the production build.
        pages_domain: Domain suffix of project URLs.
    """

    def __init__(
        self,
        client: CloudflarePagesClient,
        hugo_version: str = DEFAULT_HUGO_VERSION,
        pages_domain: str = DEFAULT_PAGES_DOMAIN,
    ):
        self.client = client
        self.hugo_version = hugo_version
        self.pages_domain = pages_domain

    def live_url(self, project_name: str) -> str:
        return f"https://{project_name}.{self.pages_domain}"

    async def ensure_hosting_project(
        self,
        account_id: str,
        project_name: str,
        repo_full_name: str,
        production_branch: str,
    ) -> HostingProject:
        """Return the project, creating it first if it does not exist.

        Raises:
            HostingAPIError: If the lookup or creation fails.
        """
        existing = await self.client.get_project(account_id, project_name)
        if existing is not None:
            logger.info(
                "Pages project already exists",
                extra={"project": project_name, "account_id": account_id},
            )
            return HostingProject(
                name=existing.get("name") or project_name,
                live_url=self.live_url(project_name),
                created=False,
            )

        body = build_project_definition(
            project_name,
            repo_full_name,
            production_branch,
            hugo_version=self.hugo_version,
        )
        result = await self.client.create_project(account_id, body)
        name = result.get("name") or project_name

        logger.info(
            "Created Pages project",
            extra={
                "project": name,
                "repository": repo_full_name,
                "production_branch": production_branch,
            },
        )
        return HostingProject(name=name, live_url=self.live_url(name), created=True)
