"""FastAPI application entry point for the HugoHost deployment pipeline.

Thin request handlers over the orchestrator. Authentication is handled
upstream; the authenticated user id arrives in the `X-Owner-Id` header
and scopes every request. Long-running pipeline phases run as
background tasks whose progress clients follow through
`GET /deployments/stream` (server-sent events).
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Coroutine, List, Optional, Set

import asyncpg
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field, ValidationError

from hugohost.assistant.config_generator import (
    ConfigGenerationError,
    HugoConfigGenerator,
    HugoConfigRequest,
)
from hugohost.config import PipelineSettings, get_settings
from hugohost.credentials.models import Credentials
from hugohost.credentials.repository import PostgresCredentialStore
from hugohost.credentials.store import CredentialStore, InMemoryCredentialStore
from hugohost.errors import DeploymentError, ErrorKind, format_user_message
from hugohost.events.emitter import create_event_emitter
from hugohost.events.metrics import generate_metrics_output
from hugohost.orchestrator import (
    DeploymentNotFoundError,
    DeploymentOrchestrator,
    DeploymentStateError,
)
from hugohost.site.scaffold import BlogPost
from hugohost.site.themes import PREDEFINED_THEMES, CatalogueTheme, UnknownThemeError, resolve_theme
from hugohost.state.machine import DeploymentStateMachine, DeploymentStore, RecordSubscription
from hugohost.state.memory import InMemoryDeploymentStore
from hugohost.state.models import DeploymentRecord, DeploymentRequest, DeploymentStatus
from hugohost.state.repository import DatabaseError, PostgresDeploymentStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired application dependencies.

    Attributes:
        orchestrator: The deployment orchestrator.
        config_generator: The config assistant, if an LLM is configured.
        database: The PostgreSQL store, if persistence is configured.
        tasks: Running background pipeline tasks.
    """

    orchestrator: DeploymentOrchestrator
    config_generator: Optional[HugoConfigGenerator] = None
    database: Optional[PostgresDeploymentStore] = None
    tasks: Set["asyncio.Task[Any]"] = field(default_factory=set)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> "asyncio.Task[Any]":
        """Run a pipeline phase in the background, keeping a reference."""
        task = asyncio.get_running_loop().create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        task.add_done_callback(_log_task_outcome)
        return task

    async def close(self) -> None:
        for task in list(self.tasks):
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        await self.orchestrator.event_emitter.close()
        if self.database is not None:
            await self.database.disconnect()


def _log_task_outcome(task: "asyncio.Task[Any]") -> None:
    """Log what a background phase raised; nobody awaits its result.

    A status change between the request check and the task start
    surfaces here as a precondition error.
    """
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    if isinstance(exc, (DeploymentNotFoundError, DeploymentStateError)):
        logger.warning(
            "Background phase skipped: precondition no longer holds",
            extra={"deployment_id": exc.deployment_id, "error": str(exc)},
        )
    else:
        logger.error(
            "Background phase crashed",
            extra={"task": task.get_name()},
            exc_info=exc,
        )


def _log_configuration(settings: PipelineSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Pipeline configuration:")
    for name, value in settings.redacted().items():
        logger.info(f"  {name}: {value}")


async def build_services(settings: PipelineSettings) -> Services:
    """Wire stores, emitter, assistant and orchestrator from settings."""
    database: Optional[PostgresDeploymentStore] = None
    store: DeploymentStore
    credential_store: CredentialStore

    if settings.database_url:
        database = PostgresDeploymentStore(settings.database_url)
        await database.connect()
        store = database
        credential_store = PostgresCredentialStore(database.pool)
    else:
        logger.warning("No database configured; deployments are kept in memory")
        store = InMemoryDeploymentStore()
        credential_store = InMemoryCredentialStore()

    config_generator = None
    if settings.llm_url:
        config_generator = HugoConfigGenerator(
            llm_url=settings.llm_url,
            model_name=settings.llm_model,
        )

    orchestrator = DeploymentOrchestrator(
        state_machine=DeploymentStateMachine(store),
        credential_store=credential_store,
        event_emitter=create_event_emitter(settings.event_sink_types),
        settings=settings,
    )
    return Services(
        orchestrator=orchestrator,
        config_generator=config_generator,
        database=database,
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create the application.

    Args:
        services: Pre-wired dependencies. When omitted they are built
            from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("HugoHost pipeline starting up...")
        if services is None:
            settings = get_settings()
            logging.getLogger().setLevel(settings.log_level.upper())
            _log_configuration(settings)
            app.state.services = await build_services(settings)
        else:
            app.state.services = services
        logger.info("HugoHost pipeline started successfully")

        yield

        logger.info("HugoHost pipeline shutting down...")
        await app.state.services.close()
        logger.info("HugoHost pipeline shutdown complete")

    app = FastAPI(
        title="HugoHost Deployment Pipeline",
        description="Provisions GitHub repositories and Cloudflare Pages projects for Hugo blogs",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(_router())
    return app


# ---------------------------------------------------------------------------
# Request bodies and dependencies
# ---------------------------------------------------------------------------


class CreateDeploymentBody(BaseModel):
    """Blog creation form: a catalogue theme id or a custom theme URL."""

    site_name: str
    blog_title: str
    description: str
    theme_id: Optional[str] = None
    custom_theme_url: Optional[str] = None


class PublishPostsBody(BaseModel):
    posts: List[BlogPost] = Field(..., min_length=1)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_owner_id(x_owner_id: Optional[str] = Header(default=None)) -> str:
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id.strip()


def _state_error(exc: Exception) -> HTTPException:
    """Map a precondition failure to 404 (not owned) or 409 (wrong status)."""
    if isinstance(exc, DeploymentStateError):
        return HTTPException(status_code=409, detail=exc.message)
    return HTTPException(status_code=404, detail=str(exc))


_ERROR_STATUS = {
    ErrorKind.CONFIGURATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TRANSIENT: 503,
    ErrorKind.UNEXPECTED: 502,
}


async def record_stream(subscription: RecordSubscription) -> AsyncIterator[str]:
    """Render subscription snapshots as server-sent events."""
    async with subscription:
        async for records in subscription:
            payload = json.dumps([record.model_dump(mode="json") for record in records])
            yield f"event: deployments\ndata: {payload}\n\n"


def _router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @router.get("/ready")
    async def ready(response: Response, services: Services = Depends(get_services)):
        """Readiness probe endpoint; checks the database when configured."""
        database_status = "not_configured"
        if services.database is not None:
            try:
                async with services.database.pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                database_status = "healthy"
            except (DatabaseError, asyncpg.PostgresError, OSError) as e:
                logger.warning("Database readiness check failed", extra={"error": str(e)})
                database_status = "unhealthy"

        ready_ = database_status != "unhealthy"
        if not ready_:
            response.status_code = 503
        return {
            "status": "ready" if ready_ else "not_ready",
            "dependencies": {"database": database_status},
        }

    @router.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)

    @router.get("/themes", response_model=List[CatalogueTheme])
    async def themes():
        return PREDEFINED_THEMES

    @router.post("/deployments", status_code=202, response_model=DeploymentRecord)
    async def create_deployment(
        body: CreateDeploymentBody,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        try:
            theme = resolve_theme(body.theme_id, body.custom_theme_url)
            request = DeploymentRequest(
                site_name=body.site_name,
                blog_title=body.blog_title,
                description=body.description,
                theme=theme,
            )
        except UnknownThemeError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except ValidationError as e:
            raise HTTPException(
                status_code=422,
                detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
            )

        record = await services.orchestrator.create_deployment(owner_id, request)
        services.spawn(services.orchestrator.run(record.id))
        return record

    @router.get("/deployments", response_model=List[DeploymentRecord])
    async def list_deployments(
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        return await services.orchestrator.list_deployments(owner_id)

    @router.get("/deployments/stream")
    async def stream_deployments(
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        subscription = await services.orchestrator.subscribe(owner_id)
        return StreamingResponse(
            record_stream(subscription),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @router.get("/deployments/{deployment_id}", response_model=DeploymentRecord)
    async def get_deployment(
        deployment_id: str,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        try:
            return await services.orchestrator.get_deployment(owner_id, deployment_id)
        except DeploymentNotFoundError as e:
            raise _state_error(e)

    @router.post("/deployments/{deployment_id}/hosting", status_code=202)
    async def deploy_hosting(
        deployment_id: str,
        response: Response,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        orchestrator = services.orchestrator
        try:
            record = await orchestrator.ensure_hostable(owner_id, deployment_id)
        except (DeploymentNotFoundError, DeploymentStateError) as e:
            raise _state_error(e)

        if record.status == DeploymentStatus.HOSTING_LIVE:
            response.status_code = 200
            return {"status": record.status.value, "live_url": record.live_url}

        services.spawn(orchestrator.deploy_hosting(owner_id, deployment_id))
        return {"status": "accepted", "deployment_id": deployment_id}

    @router.post("/deployments/{deployment_id}/retry", status_code=202)
    async def retry_deployment(
        deployment_id: str,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        orchestrator = services.orchestrator
        try:
            await orchestrator.ensure_retryable(owner_id, deployment_id)
        except (DeploymentNotFoundError, DeploymentStateError) as e:
            raise _state_error(e)

        services.spawn(orchestrator.retry(owner_id, deployment_id))
        return {"status": "accepted", "deployment_id": deployment_id}

    @router.post("/deployments/{deployment_id}/posts")
    async def publish_posts(
        deployment_id: str,
        body: PublishPostsBody,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        try:
            sha = await services.orchestrator.publish_posts(owner_id, deployment_id, body.posts)
        except (DeploymentNotFoundError, DeploymentStateError) as e:
            raise _state_error(e)
        except DeploymentError as e:
            raise HTTPException(status_code=_ERROR_STATUS[e.kind], detail=format_user_message(e))
        return {"commit": sha, "count": len(body.posts)}

    @router.delete("/deployments/{deployment_id}", status_code=204)
    async def delete_deployment(
        deployment_id: str,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        try:
            await services.orchestrator.delete_deployment(owner_id, deployment_id)
        except DeploymentNotFoundError as e:
            raise _state_error(e)
        return Response(status_code=204)

    @router.put("/credentials")
    async def save_credentials(
        body: Credentials,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        updated = await services.orchestrator.credential_store.save(owner_id, body)
        return {"configured": updated.configured()}

    @router.post("/assistant/hugo-config")
    async def generate_hugo_config(
        body: HugoConfigRequest,
        owner_id: str = Depends(get_owner_id),
        services: Services = Depends(get_services),
    ):
        if services.config_generator is None:
            raise HTTPException(status_code=503, detail="Config assistant is not configured")
        try:
            config = await services.config_generator.generate(body)
        except ConfigGenerationError as e:
            raise HTTPException(status_code=502, detail=e.message)
        return {"hugo_config": config}

    return router


app = create_app()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "hugohost.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
