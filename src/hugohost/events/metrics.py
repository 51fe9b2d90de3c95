"""Prometheus metrics for deployment pipeline observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- hugohost_phases_completed_total: Counter of completed phases
- hugohost_step_failures_total: Counter of failed steps
- hugohost_phase_duration_seconds: Histogram of phase duration
- hugohost_deployments_by_status: Gauge of deployments per status
- hugohost_posts_published_total: Counter of published posts

The MetricsEventEmitter updates these metrics from pipeline events.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from hugohost.events.emitter import EventEmitter
from hugohost.events.models import DeploymentEvent, EventType
from hugohost.state.models import DeploymentStatus


logger = logging.getLogger(__name__)


# Covers a few hundred milliseconds to ten minutes
DEFAULT_DURATION_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)

DEPLOYMENT_STATUSES = tuple(status.value for status in DeploymentStatus)


class PipelineMetrics:
    """Container for all pipeline Prometheus metrics.

    Supports custom registries for testing.

    Metrics:
        phases_completed_total: Labels: phase (repository/hosting).
        step_failures_total: Labels: stage, kind.
        phase_duration_seconds: Labels: phase.
        deployments_by_status: Labels: status. Tracks transitions seen
            by this process, so it starts from zero on restart.
        posts_published_total: No labels.

    Example:
        >>> metrics = PipelineMetrics(registry=CollectorRegistry())
        >>> metrics.record_phase_completed("repository", duration_seconds=4.2)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.phases_completed_total = Counter(
            "hugohost_phases_completed_total",
            "Total number of deployment phases completed",
            labelnames=["phase"],
            registry=self.registry,
        )

        self.step_failures_total = Counter(
            "hugohost_step_failures_total",
            "Total number of failed pipeline steps",
            labelnames=["stage", "kind"],
            registry=self.registry,
        )

        self.phase_duration_seconds = Histogram(
            "hugohost_phase_duration_seconds",
            "Time spent in a deployment phase in seconds",
            labelnames=["phase"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.deployments_by_status = Gauge(
            "hugohost_deployments_by_status",
            "Deployments per status as observed by this process",
            labelnames=["status"],
            registry=self.registry,
        )

        self.posts_published_total = Counter(
            "hugohost_posts_published_total",
            "Total number of posts committed to site repositories",
            registry=self.registry,
        )

        for status in DEPLOYMENT_STATUSES:
            self.deployments_by_status.labels(status=status).set(0)

    def record_phase_completed(self, phase: str, duration_seconds: Optional[float] = None) -> None:
        self.phases_completed_total.labels(phase=phase).inc()
        if duration_seconds is not None:
            self.phase_duration_seconds.labels(phase=phase).observe(duration_seconds)

    def record_step_failed(self, stage: str, kind: str) -> None:
        self.step_failures_total.labels(stage=stage, kind=kind).inc()

    def record_transition(self, from_status: Optional[str], to_status: Optional[str]) -> None:
        """Move one deployment between status gauges."""
        if from_status in DEPLOYMENT_STATUSES:
            self.deployments_by_status.labels(status=from_status).dec()
        if to_status in DEPLOYMENT_STATUSES:
            self.deployments_by_status.labels(status=to_status).inc()

    def record_posts_published(self, count: int) -> None:
        if count > 0:
            self.posts_published_total.inc(count)


# Metrics instance for the default registry
_default_metrics: Optional[PipelineMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> PipelineMetrics:
    """Get the default-registry metrics, or new metrics for `registry`."""
    global _default_metrics

    if registry is not None:
        return PipelineMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = PipelineMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text format output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATE_TRANSITION: Moves the deployment between status gauges
    - ERROR: Increments step failures by stage and error kind
    - COMPLETION: Increments completed phases, records duration
    - POSTS_PUBLISHED: Increments published posts

    Attributes:
        metrics: The PipelineMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[PipelineMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> PipelineMetrics:
        return self._metrics

    async def emit(self, event: DeploymentEvent) -> None:
        details = event.details
        try:
            if event.event_type == EventType.STATE_TRANSITION:
                self._metrics.record_transition(
                    details.get("from_status"),
                    details.get("to_status"),
                )
            elif event.event_type == EventType.ERROR:
                self._metrics.record_step_failed(
                    stage=details.get("stage", "unknown"),
                    kind=details.get("error_kind", "unexpected"),
                )
            elif event.event_type == EventType.COMPLETION:
                duration = details.get("duration_seconds")
                self._metrics.record_phase_completed(
                    phase=details.get("phase", "unknown"),
                    duration_seconds=float(duration) if duration is not None else None,
                )
            elif event.event_type == EventType.POSTS_PUBLISHED:
                self._metrics.record_posts_published(int(details.get("count", 0)))
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "deployment_id": event.deployment_id,
                },
            )
