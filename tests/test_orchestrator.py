"""Tests for the DeploymentOrchestrator.

Drives complete deployments against FakeGitHub and FakeCloudflare with
the real clients, provisioners and in-memory stores, and checks the
persisted record, the repository contents and the emitted events.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from fakes import FakeCloudflare, FakeGitHub
from hugohost.config import PipelineSettings
from hugohost.credentials.models import Credentials
from hugohost.credentials.store import InMemoryCredentialStore
from hugohost.errors import DeploymentError, ErrorKind
from hugohost.events.emitter import EventEmitter
from hugohost.events.models import DeploymentEvent, EventType
from hugohost.github.client import GitHubClient
from hugohost.hosting.client import CloudflarePagesClient
from hugohost.orchestrator import (
    DeploymentNotFoundError,
    DeploymentOrchestrator,
    DeploymentStateError,
)
from hugohost.site.scaffold import BlogPost
from hugohost.state.machine import DeploymentStateMachine
from hugohost.state.memory import InMemoryDeploymentStore
from hugohost.state.models import DeploymentRequest, DeploymentStatus, Theme


def run_async(coro):
    return asyncio.run(coro)


OWNER = "user-1"

FULL_CREDENTIALS = Credentials(
    github_token="ghp_secret",
    cloudflare_api_token="cf_secret",
    cloudflare_account_id="acct-1",
)


class RecordingEmitter(EventEmitter):
    """Collects emitted events in memory."""

    def __init__(self) -> None:
        self.events: List[DeploymentEvent] = []

    async def emit(self, event: DeploymentEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[DeploymentEvent]:
        return [e for e in self.events if e.event_type == event_type]


class FailingEmitter(EventEmitter):

    async def emit(self, event: DeploymentEvent) -> None:
        raise RuntimeError("sink down")


class SteppingStore(InMemoryDeploymentStore):
    """Yields to the event loop on every read and write, like a real database.

    Also keeps the notes written, in order.
    """

    def __init__(self) -> None:
        super().__init__()
        self.notes: List[str] = []

    async def get(self, deployment_id: str):
        await asyncio.sleep(0)
        return await super().get(deployment_id)

    async def update(self, deployment_id: str, fields):
        await asyncio.sleep(0)
        if fields.get("note"):
            self.notes.append(fields["note"])
        return await super().update(deployment_id, fields)


async def _one_tick_late(coro):
    await asyncio.sleep(0)
    return await coro


class Harness:
    """Orchestrator wired to fakes."""

    def __init__(
        self,
        credentials: Optional[Credentials] = FULL_CREDENTIALS,
        emitter: Optional[EventEmitter] = None,
        default_branch: str = "main",
        store: Optional[InMemoryDeploymentStore] = None,
    ):
        self.github = FakeGitHub(default_branch=default_branch)
        self.cloudflare = FakeCloudflare()
        self.store = store if store is not None else InMemoryDeploymentStore()
        self.credentials = InMemoryCredentialStore(
            {OWNER: credentials} if credentials is not None else None
        )
        self.emitter = emitter or RecordingEmitter()
        self.orchestrator = DeploymentOrchestrator(
            state_machine=DeploymentStateMachine(self.store),
            credential_store=self.credentials,
            event_emitter=self.emitter,
            settings=PipelineSettings(),
            github_client_factory=lambda token: GitHubClient(
                token=token, transport=self.github.transport
            ),
            hosting_client_factory=lambda auth: CloudflarePagesClient(
                auth, transport=self.cloudflare.transport
            ),
        )

    async def create_and_run(self, site_name: str = "my-blog"):
        record = await self.orchestrator.create_deployment(OWNER, _request(site_name))
        return await self.orchestrator.run(record.id)

    async def ready(self, site_name: str = "my-blog"):
        record = await self.create_and_run(site_name)
        assert record.status == DeploymentStatus.READY_FOR_HOSTING
        return record


def _request(site_name: str = "my-blog") -> DeploymentRequest:
    return DeploymentRequest(
        site_name=site_name,
        blog_title="My Hugo Blog",
        description="Notes about building things",
        theme=Theme(name="Ananke", git_url="https://github.com/theNewDynamic/gohugo-theme-ananke.git"),
    )


def _statuses(emitter: RecordingEmitter) -> List[str]:
    return [e.details["to_status"] for e in emitter.of_type(EventType.STATE_TRANSITION)]


class TestRepositoryPhase:

    def test_happy_path_reaches_ready_for_hosting(self):
        harness = Harness()
        record = run_async(harness.create_and_run())

        assert record.status == DeploymentStatus.READY_FOR_HOSTING
        assert record.repository_full_name == "octocat/my-blog"
        assert record.repository_url == "https://github.com/octocat/my-blog"
        assert record.default_branch == "main"
        assert record.last_error is None

        files = harness.github.files("octocat/my-blog", "main")
        assert set(files) == {
            "README.md",
            "hugo.toml",
            "go.mod",
            "content/_index.md",
            "archetypes/default.md",
            ".gitignore",
        }
        assert b'title = "My Hugo Blog"' in files["hugo.toml"]
        assert files["go.mod"].startswith(b"module github.com/octocat/my-blog")

        history = harness.github.history("octocat/my-blog", "main")
        assert [c["message"] for c in history] == [
            "Add Hugo site scaffold",
            "Initial commit: Add README.md",
        ]

        assert _statuses(harness.emitter) == [
            "pending",
            "creating_repository",
            "preparing_content",
            "pushing_content",
            "ready_for_hosting",
        ]
        completion = harness.emitter.of_type(EventType.COMPLETION)
        assert completion[0].details["phase"] == "repository"

    def test_progress_notes_follow_each_step(self):
        harness = Harness(store=SteppingStore())
        record = run_async(harness.create_and_run())

        assert harness.store.notes == [
            "Creating GitHub repository: my-blog...",
            "Repository created. Adding README...",
            "Pushing Hugo site scaffold...",
            "Repository ready. Deploy to Cloudflare Pages to go live.",
        ]
        assert record.note == harness.store.notes[-1]

    def test_uses_repository_default_branch(self):
        harness = Harness(default_branch="trunk")
        record = run_async(harness.create_and_run())
        assert record.default_branch == "trunk"
        assert "hugo.toml" in harness.github.files("octocat/my-blog", "trunk")

    def test_missing_github_token_is_configuration_failure(self):
        harness = Harness(credentials=None)
        record = run_async(harness.create_and_run())

        assert record.status == DeploymentStatus.REPOSITORY_FAILED
        assert record.last_error_kind == ErrorKind.CONFIGURATION
        assert "GitHub token is not configured" in record.last_error
        assert harness.github.calls == []

    def test_existing_repository_is_reused(self):
        harness = Harness()
        harness.github.add_repository("my-blog")
        record = run_async(harness.create_and_run())
        assert record.status == DeploymentStatus.READY_FOR_HOSTING
        assert len(harness.github.repos) == 1

    def test_blob_failure_reports_stage_and_path(self):
        harness = Harness()
        harness.github.fail("create_blob", 500, {"message": "Server Error"}, times=1)
        record = run_async(harness.create_and_run())

        assert record.status == DeploymentStatus.REPOSITORY_FAILED
        assert record.last_error_kind == ErrorKind.TRANSIENT
        assert "create_blob" in record.last_error
        assert "README.md" in record.last_error
        errors = harness.emitter.of_type(EventType.ERROR)
        assert errors[0].details["error_kind"] == "transient"

    def test_failure_never_leaks_secrets(self):
        harness = Harness()
        harness.github.fail("create_repository", 401, {"message": "Bad credentials"})
        record = run_async(harness.create_and_run())

        assert record.status == DeploymentStatus.REPOSITORY_FAILED
        assert "ghp_secret" not in record.last_error
        for event in harness.emitter.events:
            assert "ghp_secret" not in str(event.to_log_dict())

    def test_retry_after_repository_failure_completes(self):
        harness = Harness()
        harness.github.fail("create_tree", 503, {"message": "unavailable"})

        async def scenario():
            failed = await harness.create_and_run()
            retried = await harness.orchestrator.retry(OWNER, failed.id)
            return failed, retried

        failed, retried = run_async(scenario())
        assert failed.status == DeploymentStatus.REPOSITORY_FAILED
        assert retried.status == DeploymentStatus.READY_FOR_HOSTING
        assert retried.last_error is None
        assert harness.github.files("octocat/my-blog", "main")["README.md"].startswith(b"# My Hugo Blog")

    def test_run_skips_records_not_pending(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            return await harness.orchestrator.run(record.id)

        assert run_async(scenario()).status == DeploymentStatus.READY_FOR_HOSTING

    def test_emitter_failures_do_not_break_pipeline(self):
        harness = Harness(emitter=FailingEmitter())
        record = run_async(harness.create_and_run())
        assert record.status == DeploymentStatus.READY_FOR_HOSTING


class TestHostingPhase:

    def test_hosting_goes_live(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            return await harness.orchestrator.deploy_hosting(OWNER, record.id)

        record = run_async(scenario())
        assert record.status == DeploymentStatus.HOSTING_LIVE
        assert record.live_url == "https://my-blog.pages.dev"
        assert record.hosting_project_name == "my-blog"
        assert record.hosting_account_id == "acct-1"

        body = harness.cloudflare.created_bodies[0]
        assert body["source"]["config"]["owner"] == "octocat"
        assert body["source"]["config"]["repo_name"] == "my-blog"
        assert body["source"]["config"]["production_branch"] == "main"
        assert _statuses(harness.emitter)[-3:] == [
            "hosting_pending",
            "hosting_deploying",
            "hosting_live",
        ]

    def test_hosting_progress_notes(self):
        harness = Harness(store=SteppingStore())

        async def scenario():
            record = await harness.ready()
            return await harness.orchestrator.deploy_hosting(OWNER, record.id)

        record = run_async(scenario())
        assert harness.store.notes[-3:] == [
            "Initiating Cloudflare Pages deployment...",
            "Creating/linking Cloudflare Pages project: my-blog...",
            "Successfully deployed to Cloudflare Pages. Live at: https://my-blog.pages.dev",
        ]
        assert record.note == harness.store.notes[-1]

    def test_quota_exceeded_ends_in_hosting_failed(self):
        harness = Harness()
        harness.cloudflare.fail("create_project", 400, [{"code": 8000, "message": "quota exceeded"}])

        async def scenario():
            record = await harness.ready()
            return await harness.orchestrator.deploy_hosting(OWNER, record.id)

        record = run_async(scenario())
        assert record.status == DeploymentStatus.HOSTING_FAILED
        assert "quota exceeded" in record.last_error
        assert record.live_url is None

    def test_hosting_requires_repository_ready(self):
        harness = Harness()

        async def scenario():
            record = await harness.orchestrator.create_deployment(OWNER, _request())
            await harness.orchestrator.deploy_hosting(OWNER, record.id)

        with pytest.raises(DeploymentStateError):
            run_async(scenario())

    def test_live_deployment_is_returned_unchanged(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            live = await harness.orchestrator.deploy_hosting(OWNER, record.id)
            again = await harness.orchestrator.deploy_hosting(OWNER, record.id)
            return live, again

        live, again = run_async(scenario())
        assert again == live
        assert len(harness.cloudflare.created_bodies) == 1

    def test_missing_account_id_fails_hosting(self):
        harness = Harness(credentials=Credentials(github_token="ghp_secret", cloudflare_api_token="cf"))

        async def scenario():
            record = await harness.ready()
            return await harness.orchestrator.deploy_hosting(OWNER, record.id)

        record = run_async(scenario())
        assert record.status == DeploymentStatus.HOSTING_FAILED
        assert record.last_error_kind == ErrorKind.CONFIGURATION
        assert "account ID" in record.last_error
        assert harness.cloudflare.requests == []

    def test_legacy_key_without_email_fails_hosting(self):
        harness = Harness(
            credentials=Credentials(
                github_token="ghp_secret",
                cloudflare_api_key="legacy",
                cloudflare_account_id="acct-1",
            )
        )

        async def scenario():
            record = await harness.ready()
            return await harness.orchestrator.deploy_hosting(OWNER, record.id)

        record = run_async(scenario())
        assert record.status == DeploymentStatus.HOSTING_FAILED
        assert "cloudflare_email" in record.last_error

    def test_provider_error_is_recorded_and_retry_recovers(self):
        harness = Harness()
        harness.cloudflare.fail("create_project", 403)

        async def scenario():
            record = await harness.ready()
            failed = await harness.orchestrator.deploy_hosting(OWNER, record.id)
            retried = await harness.orchestrator.retry(OWNER, record.id)
            return failed, retried

        failed, retried = run_async(scenario())
        assert failed.status == DeploymentStatus.HOSTING_FAILED
        assert "(10000) Authentication error" in failed.last_error
        assert failed.repository_full_name == "octocat/my-blog"
        assert retried.status == DeploymentStatus.HOSTING_LIVE
        assert retried.last_error is None

    def test_existing_project_is_reused(self):
        harness = Harness()
        harness.cloudflare.projects[("acct-1", "my-blog")] = {"name": "my-blog"}

        async def scenario():
            record = await harness.ready()
            return await harness.orchestrator.deploy_hosting(OWNER, record.id)

        record = run_async(scenario())
        assert record.status == DeploymentStatus.HOSTING_LIVE
        assert harness.cloudflare.created_bodies == []


class TestOwnershipAndRetry:

    def test_other_owner_sees_not_found(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            await harness.orchestrator.get_deployment("user-2", record.id)

        with pytest.raises(DeploymentNotFoundError):
            run_async(scenario())

    def test_retry_rejected_for_non_failed(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            await harness.orchestrator.retry(OWNER, record.id)

        with pytest.raises(DeploymentStateError):
            run_async(scenario())

    def test_delete_removes_record_only(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            await harness.orchestrator.delete_deployment(OWNER, record.id)
            return await harness.orchestrator.list_deployments(OWNER)

        assert run_async(scenario()) == []
        assert "octocat/my-blog" in harness.github.repos

    def test_delete_of_other_owner_is_not_found(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            await harness.orchestrator.delete_deployment("user-2", record.id)

        with pytest.raises(DeploymentNotFoundError):
            run_async(scenario())


class TestPublishPosts:

    def _post(self, title: str, content: str = "Hello") -> BlogPost:
        return BlogPost(
            title=title,
            content=content,
            created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )

    def test_posts_are_committed_in_one_commit(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            sha = await harness.orchestrator.publish_posts(
                OWNER, record.id, [self._post("First Post"), self._post("Second Post")]
            )
            return sha, await harness.orchestrator.get_deployment(OWNER, record.id)

        sha, record = run_async(scenario())
        assert harness.github.tip("octocat/my-blog", "main") == sha
        files = harness.github.files("octocat/my-blog", "main")
        assert "content/posts/first-post.md" in files
        assert "content/posts/second-post.md" in files
        assert harness.github.history("octocat/my-blog", "main")[0]["message"] == "Add 2 posts"
        assert record.status == DeploymentStatus.READY_FOR_HOSTING
        assert record.note.startswith("Published 2 post(s)")
        published = harness.emitter.of_type(EventType.POSTS_PUBLISHED)
        assert published[0].details["count"] == 2

    def test_publishing_requires_repository(self):
        harness = Harness()

        async def scenario():
            record = await harness.orchestrator.create_deployment(OWNER, _request())
            await harness.orchestrator.publish_posts(OWNER, record.id, [self._post("Post")])

        with pytest.raises(DeploymentStateError):
            run_async(scenario())

    def test_empty_post_list_is_noop(self):
        harness = Harness()

        async def scenario():
            record = await harness.ready()
            tip = harness.github.tip("octocat/my-blog", "main")
            return tip, await harness.orchestrator.publish_posts(OWNER, record.id, [])

        tip, sha = run_async(scenario())
        assert sha is None
        assert harness.github.tip("octocat/my-blog", "main") == tip

    def test_concurrent_commit_is_conflict_and_status_unchanged(self):
        harness = Harness()

        def concurrent_write(full_name, branch):
            harness.github.before_update_ref = None
            harness.github.write_commit(full_name, branch, {"content/posts/theirs.md": "x"}, "theirs")

        async def scenario():
            record = await harness.ready()
            harness.github.before_update_ref = concurrent_write
            with pytest.raises(DeploymentError) as exc_info:
                await harness.orchestrator.publish_posts(OWNER, record.id, [self._post("Mine")])
            return exc_info.value, await harness.orchestrator.get_deployment(OWNER, record.id)

        error, record = run_async(scenario())
        assert error.kind == ErrorKind.CONFLICT
        assert record.status == DeploymentStatus.READY_FOR_HOSTING
        assert record.note.startswith("Publishing failed")
        files = harness.github.files("octocat/my-blog", "main")
        assert "content/posts/theirs.md" in files
        assert "content/posts/mine.md" not in files


class TestConcurrentDeployments:

    def test_deployments_progress_independently(self):
        harness = Harness()

        async def scenario():
            first = await harness.orchestrator.create_deployment(OWNER, _request("blog-one"))
            second = await harness.orchestrator.create_deployment(OWNER, _request("blog-two"))
            harness.github.add_repository("blog-two")
            harness.github.fail("get_repository", 500, {"message": "boom"})
            return await asyncio.gather(
                harness.orchestrator.run(first.id),
                harness.orchestrator.run(second.id),
            )

        first, second = run_async(scenario())
        assert first.status == DeploymentStatus.READY_FOR_HOSTING
        assert second.status == DeploymentStatus.REPOSITORY_FAILED
        assert second.last_error_kind == ErrorKind.TRANSIENT


class TestDuplicateRequests:
    """A second request that loses the race into a phase leaves the first run alone."""

    def test_late_hosting_request_does_not_fail_running_hosting(self):
        harness = Harness(store=SteppingStore())

        async def scenario():
            record = await harness.ready()
            results = await asyncio.gather(
                harness.orchestrator.deploy_hosting(OWNER, record.id),
                _one_tick_late(harness.orchestrator.deploy_hosting(OWNER, record.id)),
                return_exceptions=True,
            )
            return results, await harness.store.get(record.id)

        (first, late), final = run_async(scenario())
        assert first.status == DeploymentStatus.HOSTING_LIVE
        assert not isinstance(late, Exception) or isinstance(late, DeploymentStateError)
        assert final.status == DeploymentStatus.HOSTING_LIVE
        assert final.last_error is None
        assert "hosting_failed" not in _statuses(harness.emitter)
        assert harness.emitter.of_type(EventType.ERROR) == []

    def test_late_retry_does_not_fail_running_retry(self):
        harness = Harness(store=SteppingStore())
        harness.github.fail("create_repository", 503, {"message": "unavailable"})

        async def scenario():
            failed = await harness.create_and_run()
            assert failed.status == DeploymentStatus.REPOSITORY_FAILED
            results = await asyncio.gather(
                harness.orchestrator.retry(OWNER, failed.id),
                _one_tick_late(harness.orchestrator.retry(OWNER, failed.id)),
                return_exceptions=True,
            )
            return results, await harness.store.get(failed.id)

        (first, late), final = run_async(scenario())
        assert first.status == DeploymentStatus.READY_FOR_HOSTING
        assert not isinstance(late, Exception) or isinstance(late, DeploymentStateError)
        assert final.status == DeploymentStatus.READY_FOR_HOSTING
        assert final.last_error is None
        assert len(harness.emitter.of_type(EventType.ERROR)) == 1
