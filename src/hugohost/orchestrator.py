"""Deployment orchestrator connecting all steps of the blog pipeline.

Drives one deployment through its phases:
repository provisioning → bootstrap commit → site scaffold commit, and,
on explicit user request, hosting provisioning.

Each step is wrapped so that any failure is classified, rendered into a
user-facing message and persisted as a failure transition. The
orchestrator delegates all work to injected dependencies and uses the
state machine for transitions and the event emitter for observability.

Source:
- src/hugohost/state/machine.py (DeploymentStateMachine)
- src/hugohost/github/repository.py (RepositoryProvisioner)
- src/hugohost/github/commit_builder.py (CommitBuilder)
- src/hugohost/hosting/provisioner.py (HostingProvisioner)
- src/hugohost/site/scaffold.py (site files)
- src/hugohost/events/emitter.py (EventEmitter)
"""

import logging
import time
from typing import Callable, List, Optional

from hugohost.config import PipelineSettings
from hugohost.credentials.store import CredentialStore
from hugohost.errors import DeploymentError, ErrorKind, classify_error, format_user_message
from hugohost.events.emitter import EventEmitter
from hugohost.events.models import DeploymentEvent, EventType
from hugohost.github.client import GitHubClient
from hugohost.github.commit_builder import CommitBuilder
from hugohost.github.repository import RepositoryProvisioner
from hugohost.hosting.auth import HostingAuth, resolve_hosting_auth
from hugohost.hosting.client import CloudflarePagesClient
from hugohost.hosting.provisioner import HostingProvisioner
from hugohost.site.scaffold import BlogPost, bootstrap_files, post_files, site_files
from hugohost.state.machine import (
    DeploymentStateMachine,
    InvalidTransitionError,
    RecordSubscription,
)
from hugohost.state.models import (
    REPOSITORY_READY_STATUSES,
    DeploymentRecord,
    DeploymentRequest,
    DeploymentStatus,
)


logger = logging.getLogger(__name__)

GitHubClientFactory = Callable[[str], GitHubClient]
HostingClientFactory = Callable[[HostingAuth], CloudflarePagesClient]

BOOTSTRAP_COMMIT_MESSAGE = "Initial commit: Add README.md"
SCAFFOLD_COMMIT_MESSAGE = "Add Hugo site scaffold"


class DeploymentNotFoundError(Exception):
    """Raised when a deployment does not exist or belongs to another owner.

    Attributes:
        deployment_id: The requested deployment.
    """

    def __init__(self, deployment_id: str):
        self.deployment_id = deployment_id
        super().__init__(f"Deployment not found: {deployment_id}")


class DeploymentStateError(Exception):
    """Raised when an operation is not allowed in the current status.

    Attributes:
        deployment_id: The deployment.
        status: Its current status.
        message: Human-readable error message.
    """

    def __init__(self, deployment_id: str, status: DeploymentStatus, message: str):
        self.deployment_id = deployment_id
        self.status = status
        self.message = message
        super().__init__(message)


class DeploymentOrchestrator:
    """Orchestrates repository and hosting provisioning for user blogs.

    Accepts all dependencies via constructor injection. Every public
    operation is scoped to an owner: a deployment of another owner is
    reported as not found.

    Attributes:
        state_machine: Manages deployment status transitions.
        credential_store: Per-owner GitHub and Cloudflare credentials.
        event_emitter: Emits pipeline events for observability.
        settings: Pipeline configuration.
    """

    def __init__(
        self,
        state_machine: DeploymentStateMachine,
        credential_store: CredentialStore,
        event_emitter: EventEmitter,
        settings: Optional[PipelineSettings] = None,
        github_client_factory: Optional[GitHubClientFactory] = None,
        hosting_client_factory: Optional[HostingClientFactory] = None,
    ):
        self.state_machine = state_machine
        self.credential_store = credential_store
        self.event_emitter = event_emitter
        self.settings = settings or PipelineSettings()
        self._github_client_factory = github_client_factory or self._default_github_client
        self._hosting_client_factory = hosting_client_factory or self._default_hosting_client

    def _default_github_client(self, token: str) -> GitHubClient:
        return GitHubClient(
            token=token,
            base_url=self.settings.github_base_url,
            max_retries=self.settings.github_max_retries,
            timeout=self.settings.http_timeout,
        )

    def _default_hosting_client(self, auth: HostingAuth) -> CloudflarePagesClient:
        return CloudflarePagesClient(
            auth=auth,
            base_url=self.settings.cloudflare_base_url,
            timeout=self.settings.http_timeout,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_deployment(self, owner_id: str, deployment_id: str) -> DeploymentRecord:
        """Return an owned deployment.

        Raises:
            DeploymentNotFoundError: If missing or owned by someone else.
        """
        record = await self.state_machine.get(deployment_id)
        if record is None or record.owner_id != owner_id:
            raise DeploymentNotFoundError(deployment_id)
        return record

    async def list_deployments(self, owner_id: str) -> List[DeploymentRecord]:
        return await self.state_machine.list_for_owner(owner_id)

    async def subscribe(self, owner_id: str) -> RecordSubscription:
        return await self.state_machine.store.subscribe(owner_id)

    # ------------------------------------------------------------------
    # Repository phase
    # ------------------------------------------------------------------

    async def create_deployment(self, owner_id: str, request: DeploymentRequest) -> DeploymentRecord:
        """Create a PENDING deployment; the caller schedules `run`."""
        record = await self.state_machine.create(owner_id, request)
        await self._emit_transition_event(record, None, DeploymentStatus.PENDING)
        return record

    async def run(self, deployment_id: str) -> Optional[DeploymentRecord]:
        """Provision the repository and commit the site scaffold.

        Moves the deployment from PENDING (or REPOSITORY_FAILED) to
        READY_FOR_HOSTING, or to REPOSITORY_FAILED with `last_error` set.
        Step failures never propagate. When a concurrent run has already
        entered the phase, nothing is written and its record is returned.

        Returns:
            The final record, or None if it could not be loaded or the
            failure could not be recorded.
        """
        record = await self.state_machine.get(deployment_id)
        if record is None:
            logger.warning("Deployment vanished before run", extra={"deployment_id": deployment_id})
            return None

        if record.status not in (DeploymentStatus.PENDING, DeploymentStatus.REPOSITORY_FAILED):
            logger.warning(
                "Skipping repository phase for deployment in unexpected status",
                extra={"deployment_id": deployment_id, "status": record.status.value},
            )
            return record

        logger.info(
            "Starting repository phase",
            extra={"deployment_id": deployment_id, "site_name": record.site_name},
        )
        started = time.monotonic()
        stage = "creating_repository"

        try:
            record = await self._transition(
                record,
                DeploymentStatus.CREATING_REPOSITORY,
                note=f"Creating GitHub repository: {record.site_name}...",
            )
        except InvalidTransitionError as exc:
            return await self._lost_entry_race(deployment_id, exc)
        except Exception as exc:
            return await self._fail(record, DeploymentStatus.REPOSITORY_FAILED, stage, exc)

        try:
            stage = "load_credentials"
            credentials = await self.credential_store.get(record.owner_id)
            token = credentials.secret("github_token")
            if not token:
                raise DeploymentError.configuration(stage, "GitHub token is not configured")

            async with self._github_client_factory(token) as client:
                stage = "create_repository"
                repository = await RepositoryProvisioner(client).ensure_repository(
                    None,
                    record.site_name,
                    record.description,
                )
                record = await self._transition(
                    record,
                    DeploymentStatus.PREPARING_CONTENT,
                    repository_url=repository.url,
                    repository_full_name=repository.full_name,
                    default_branch=repository.default_branch,
                    note="Repository created. Adding README...",
                )

                builder = CommitBuilder(client)

                stage = "bootstrap_commit"
                await builder.commit_files(
                    repository.owner,
                    repository.name,
                    repository.default_branch,
                    bootstrap_files(record),
                    BOOTSTRAP_COMMIT_MESSAGE,
                )
                record = await self._transition(
                    record,
                    DeploymentStatus.PUSHING_CONTENT,
                    note="Pushing Hugo site scaffold...",
                )

                stage = "push_content"
                await builder.commit_files(
                    repository.owner,
                    repository.name,
                    repository.default_branch,
                    site_files(record),
                    SCAFFOLD_COMMIT_MESSAGE,
                )
                record = await self._transition(
                    record,
                    DeploymentStatus.READY_FOR_HOSTING,
                    note="Repository ready. Deploy to Cloudflare Pages to go live.",
                )
        except Exception as exc:
            return await self._fail(record, DeploymentStatus.REPOSITORY_FAILED, stage, exc)

        await self._emit_completion_event(record, "repository", time.monotonic() - started)
        logger.info(
            "Repository phase completed",
            extra={"deployment_id": deployment_id, "repository": record.repository_full_name},
        )
        return record

    # ------------------------------------------------------------------
    # Hosting phase
    # ------------------------------------------------------------------

    async def ensure_hostable(self, owner_id: str, deployment_id: str) -> DeploymentRecord:
        """Check that hosting may be requested now.

        Raises:
            DeploymentNotFoundError: If the deployment is not owned.
            DeploymentStateError: If the repository is not ready or a
                hosting attempt is in progress.
        """
        record = await self.get_deployment(owner_id, deployment_id)
        allowed = (
            DeploymentStatus.READY_FOR_HOSTING,
            DeploymentStatus.HOSTING_FAILED,
            DeploymentStatus.HOSTING_LIVE,
        )
        if record.status not in allowed:
            raise DeploymentStateError(
                deployment_id,
                record.status,
                f"Hosting cannot be requested while the deployment is {record.status.value}",
            )
        return record

    async def deploy_hosting(self, owner_id: str, deployment_id: str) -> Optional[DeploymentRecord]:
        """Provision hosting for a repository-ready deployment.

        A live deployment is returned unchanged with its live URL.
        Step failures never propagate; they end in HOSTING_FAILED. A
        request that loses the race to enter HOSTING_PENDING writes
        nothing and returns the current record.

        Raises:
            DeploymentNotFoundError: If the deployment is not owned.
            DeploymentStateError: If hosting cannot be requested now.
        """
        record = await self.ensure_hostable(owner_id, deployment_id)
        if record.status == DeploymentStatus.HOSTING_LIVE:
            logger.info(
                "Deployment already live",
                extra={"deployment_id": deployment_id, "live_url": record.live_url},
            )
            return record
        return await self._run_hosting(record)

    async def _run_hosting(self, record: DeploymentRecord) -> Optional[DeploymentRecord]:
        logger.info(
            "Starting hosting phase",
            extra={"deployment_id": record.id, "site_name": record.site_name},
        )
        started = time.monotonic()
        stage = "hosting_pending"

        try:
            record = await self._transition(
                record,
                DeploymentStatus.HOSTING_PENDING,
                note="Initiating Cloudflare Pages deployment...",
            )
        except InvalidTransitionError as exc:
            return await self._lost_entry_race(record.id, exc)
        except Exception as exc:
            return await self._fail(record, DeploymentStatus.HOSTING_FAILED, stage, exc)

        try:
            stage = "validate_credentials"
            credentials = await self.credential_store.get(record.owner_id)
            account_id = (credentials.cloudflare_account_id or "").strip()
            if not account_id:
                raise DeploymentError.configuration(stage, "Cloudflare account ID is not configured")
            auth = resolve_hosting_auth(credentials)
            if not record.repository_full_name:
                raise DeploymentError.configuration(
                    stage, "Repository has not been provisioned for this deployment"
                )

            project_name = record.site_name
            record = await self._transition(
                record,
                DeploymentStatus.HOSTING_DEPLOYING,
                hosting_project_name=project_name,
                hosting_account_id=account_id,
                note=f"Creating/linking Cloudflare Pages project: {project_name}...",
            )

            stage = "create_hosting_project"
            async with self._hosting_client_factory(auth) as client:
                provisioner = HostingProvisioner(
                    client,
                    hugo_version=self.settings.hugo_version,
                    pages_domain=self.settings.pages_domain,
                )
                project = await provisioner.ensure_hosting_project(
                    account_id,
                    project_name,
                    record.repository_full_name,
                    record.default_branch or "main",
                )

            record = await self._transition(
                record,
                DeploymentStatus.HOSTING_LIVE,
                hosting_project_name=project.name,
                live_url=project.live_url,
                note=f"Successfully deployed to Cloudflare Pages. Live at: {project.live_url}",
            )
        except Exception as exc:
            return await self._fail(record, DeploymentStatus.HOSTING_FAILED, stage, exc)

        await self._emit_completion_event(record, "hosting", time.monotonic() - started)
        logger.info(
            "Hosting phase completed",
            extra={"deployment_id": record.id, "live_url": record.live_url},
        )
        return record

    # ------------------------------------------------------------------
    # Retry, posts, deletion
    # ------------------------------------------------------------------

    async def ensure_retryable(self, owner_id: str, deployment_id: str) -> DeploymentRecord:
        """Check that the deployment is in a failed status.

        Raises:
            DeploymentNotFoundError: If the deployment is not owned.
            DeploymentStateError: If the status is not a failed status.
        """
        record = await self.get_deployment(owner_id, deployment_id)
        if not record.status.is_failed:
            raise DeploymentStateError(
                deployment_id,
                record.status,
                f"Only failed deployments can be retried (status: {record.status.value})",
            )
        return record

    async def retry(self, owner_id: str, deployment_id: str) -> Optional[DeploymentRecord]:
        """Re-run the failed phase of a deployment.

        REPOSITORY_FAILED re-enters at CREATING_REPOSITORY and
        HOSTING_FAILED at HOSTING_PENDING.

        Raises:
            DeploymentNotFoundError: If the deployment is not owned.
            DeploymentStateError: If the deployment has not failed.
        """
        record = await self.ensure_retryable(owner_id, deployment_id)
        logger.info(
            "Retrying deployment",
            extra={"deployment_id": deployment_id, "status": record.status.value},
        )
        if record.status == DeploymentStatus.REPOSITORY_FAILED:
            return await self.run(deployment_id)
        return await self._run_hosting(record)

    async def publish_posts(
        self,
        owner_id: str,
        deployment_id: str,
        posts: List[BlogPost],
    ) -> Optional[str]:
        """Commit posts to the deployment's repository in one commit.

        The deployment status is never changed; the outcome is written
        to the record's `note`.

        Returns:
            The commit SHA the branch points at, or None for no posts.

        Raises:
            DeploymentNotFoundError: If the deployment is not owned.
            DeploymentStateError: If the repository is not ready.
            DeploymentError: If the commit fails.
        """
        record = await self.get_deployment(owner_id, deployment_id)
        if record.status not in REPOSITORY_READY_STATUSES or not record.repository_full_name:
            raise DeploymentStateError(
                deployment_id,
                record.status,
                f"Posts cannot be published while the deployment is {record.status.value}",
            )
        if not posts:
            return None

        owner, _, repo = record.repository_full_name.partition("/")
        branch = record.default_branch or "main"
        stage = "load_credentials"

        try:
            credentials = await self.credential_store.get(owner_id)
            token = credentials.secret("github_token")
            if not token:
                raise DeploymentError.configuration(stage, "GitHub token is not configured")

            stage = "publish_posts"
            message = (
                f"Add post: {posts[0].title}" if len(posts) == 1 else f"Add {len(posts)} posts"
            )
            async with self._github_client_factory(token) as client:
                sha = await CommitBuilder(client).commit_files(
                    owner, repo, branch, post_files(posts), message
                )
        except Exception as exc:
            error = classify_error(exc, stage, resource=record.repository_full_name)
            text = format_user_message(error)
            logger.error(
                "Publishing posts failed",
                extra={"deployment_id": deployment_id, "stage": error.stage, "kind": error.kind.value},
            )
            await self.state_machine.annotate(deployment_id, f"Publishing failed: {text}")
            await self._emit_error_event(record, error)
            raise error from exc

        await self.state_machine.annotate(
            deployment_id,
            f"Published {len(posts)} post(s) in commit {sha[:7] if sha else 'none'}",
        )
        await self._safe_emit(
            DeploymentEvent(
                event_type=EventType.POSTS_PUBLISHED,
                deployment_id=record.id,
                site_name=record.site_name,
                details={"count": len(posts), "commit": sha},
            )
        )
        return sha

    async def delete_deployment(self, owner_id: str, deployment_id: str) -> None:
        """Delete the record only; the repository and project are kept.

        Raises:
            DeploymentNotFoundError: If the deployment is not owned.
        """
        await self.get_deployment(owner_id, deployment_id)
        if not await self.state_machine.delete(deployment_id):
            raise DeploymentNotFoundError(deployment_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        record: DeploymentRecord,
        to_status: DeploymentStatus,
        **fields,
    ) -> DeploymentRecord:
        """Transition status and emit a state-transition event."""
        updated = await self.state_machine.transition(record.id, to_status, **fields)
        await self._emit_transition_event(updated, record.status, to_status)
        return updated

    async def _lost_entry_race(
        self,
        deployment_id: str,
        exc: InvalidTransitionError,
    ) -> Optional[DeploymentRecord]:
        """Leave a phase that another run entered first.

        The record belongs to the run that won; nothing is written.
        """
        logger.warning(
            "Phase already started by a concurrent run",
            extra={
                "deployment_id": deployment_id,
                "from_status": exc.from_status.value,
                "to_status": exc.to_status.value,
            },
        )
        return await self.state_machine.get(deployment_id)

    async def _fail(
        self,
        record: DeploymentRecord,
        failed_status: DeploymentStatus,
        stage: str,
        exc: Exception,
    ) -> Optional[DeploymentRecord]:
        """Classify `exc`, transition to `failed_status` and emit an error event."""
        error = classify_error(exc, stage, resource=record.site_name)
        message = format_user_message(error)

        logger.error(
            "Deployment step failed",
            extra={
                "deployment_id": record.id,
                "stage": error.stage,
                "kind": error.kind.value,
                "http_status": error.http_status,
            },
            exc_info=error.kind == ErrorKind.UNEXPECTED,
        )

        try:
            failed = await self.state_machine.transition(
                record.id,
                failed_status,
                error=message,
                error_kind=error.kind,
            )
        except Exception:
            logger.exception(
                "Failed to record deployment failure",
                extra={"deployment_id": record.id, "to_status": failed_status.value},
            )
            return None

        await self._emit_transition_event(failed, record.status, failed_status)
        await self._emit_error_event(failed, error)
        return failed

    async def _emit_transition_event(
        self,
        record: DeploymentRecord,
        from_status: Optional[DeploymentStatus],
        to_status: DeploymentStatus,
    ) -> None:
        await self._safe_emit(
            DeploymentEvent(
                event_type=EventType.STATE_TRANSITION,
                deployment_id=record.id,
                site_name=record.site_name,
                details={
                    "from_status": from_status.value if from_status else None,
                    "to_status": to_status.value,
                },
            )
        )

    async def _emit_error_event(self, record: DeploymentRecord, error: DeploymentError) -> None:
        await self._safe_emit(
            DeploymentEvent(
                event_type=EventType.ERROR,
                deployment_id=record.id,
                site_name=record.site_name,
                details={
                    "stage": error.stage,
                    "error_kind": error.kind.value,
                    "error_message": error.message,
                    "http_status": error.http_status,
                },
            )
        )

    async def _emit_completion_event(
        self,
        record: DeploymentRecord,
        phase: str,
        duration_seconds: float,
    ) -> None:
        await self._safe_emit(
            DeploymentEvent(
                event_type=EventType.COMPLETION,
                deployment_id=record.id,
                site_name=record.site_name,
                details={"phase": phase, "duration_seconds": duration_seconds},
            )
        )

    async def _safe_emit(self, event: DeploymentEvent) -> None:
        """Emit an event, logging failures so they never disrupt the pipeline."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit pipeline event",
                extra={
                    "event_type": event.event_type.value,
                    "deployment_id": event.deployment_id,
                },
            )
