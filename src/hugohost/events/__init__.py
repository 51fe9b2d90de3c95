"""Deployment event emission and metrics.

Event Emitters:
- EventEmitter: Abstract base class for event emission
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- MetricsEventEmitter: Emits events as Prometheus metrics
- NullEventEmitter: Discards events (for testing)

Metrics:
- PipelineMetrics: Container for all Prometheus metrics
- get_metrics: Get or create the metrics instance
- generate_metrics_output: Generate Prometheus format output for /metrics
"""

from hugohost.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from hugohost.events.metrics import (
    MetricsEventEmitter,
    PipelineMetrics,
    generate_metrics_output,
    get_metrics,
)
from hugohost.events.models import DeploymentEvent, EventType

__all__ = [
    # Event models
    "DeploymentEvent",
    "EventType",
    # Event emitters
    "EventEmitter",
    "LoggingEventEmitter",
    "CompositeEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    # Metrics
    "PipelineMetrics",
    "get_metrics",
    "generate_metrics_output",
    # Factory and configuration
    "EventSinkType",
    "create_event_emitter",
]
