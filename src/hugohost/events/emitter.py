"""Event sinks for deployment pipeline events.

The orchestrator emits DeploymentEvents without knowing where they end
up. Sinks:

- LoggingEventEmitter: one readable log line per event, with the event
  fields attached as structured `extra`
- MetricsEventEmitter (events/metrics.py): Prometheus counters and gauges
- CompositeEventEmitter: fans out to several sinks
- NullEventEmitter: drops everything
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, List, Optional

from hugohost.events.models import DeploymentEvent, EventType


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    """Event sinks selectable through HUGOHOST_EVENT_SINKS."""

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Destination for deployment events.

    A failing sink must never fail the pipeline step that emitted the
    event; the orchestrator guards every call, and CompositeEventEmitter
    isolates its children from each other.
    """

    @abstractmethod
    async def emit(self, event: DeploymentEvent) -> None:
        """Deliver one event."""

    async def close(self) -> None:
        """Release sink resources. No-op by default."""


def _describe_transition(event: DeploymentEvent) -> str:
    source = event.details.get("from_status") or "new"
    return f"{event.site_name}: {source} -> {event.details.get('to_status')}"


def _describe_error(event: DeploymentEvent) -> str:
    return (
        f"{event.site_name}: {event.details.get('stage')} failed "
        f"({event.details.get('error_kind')})"
    )


def _describe_completion(event: DeploymentEvent) -> str:
    duration = event.details.get("duration_seconds")
    took = f" in {duration:.1f}s" if isinstance(duration, (int, float)) else ""
    return f"{event.site_name}: {event.details.get('phase')} phase completed{took}"


def _describe_posts(event: DeploymentEvent) -> str:
    return f"{event.site_name}: published {event.details.get('count')} post(s)"


_DESCRIBERS: Dict[EventType, Callable[[DeploymentEvent], str]] = {
    EventType.STATE_TRANSITION: _describe_transition,
    EventType.ERROR: _describe_error,
    EventType.COMPLETION: _describe_completion,
    EventType.POSTS_PUBLISHED: _describe_posts,
}


class LoggingEventEmitter(EventEmitter):
    """Logs each event as one line.

    ERROR events are logged at ERROR level, everything else at INFO.
    The flattened event (see DeploymentEvent.to_log_dict) is passed as
    `extra`, so JSON formatters pick up `deployment_id`, `stage` and
    the other details as fields.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    async def emit(self, event: DeploymentEvent) -> None:
        level = logging.ERROR if event.event_type == EventType.ERROR else logging.INFO
        describe = _DESCRIBERS.get(event.event_type)
        message = describe(event) if describe else f"{event.site_name}: {event.event_type.value}"
        self._logger.log(level, message, extra=event.to_log_dict())


class CompositeEventEmitter(EventEmitter):
    """Forwards every event to each child sink in order.

    A child that raises is logged and skipped; the remaining children
    still receive the event.
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = list(emitters or [])

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    @property
    def emitters(self) -> List[EventEmitter]:
        return list(self._emitters)

    async def emit(self, event: DeploymentEvent) -> None:
        for child in self._emitters:
            try:
                await child.emit(event)
            except Exception:
                logger.exception(
                    "Event sink failed",
                    extra={
                        "sink": type(child).__name__,
                        "event_type": event.event_type.value,
                        "deployment_id": event.deployment_id,
                    },
                )

    async def close(self) -> None:
        for child in self._emitters:
            try:
                await child.close()
            except Exception:
                logger.exception("Closing event sink failed", extra={"sink": type(child).__name__})


class NullEventEmitter(EventEmitter):
    """Drops all events."""

    async def emit(self, event: DeploymentEvent) -> None:
        return None


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
) -> EventEmitter:
    """Build the emitter for the configured sinks.

    No sinks means logging only. Duplicate sink types collapse to one
    sink, and a single sink is returned without a composite wrapper.
    """
    # metrics.py imports this module
    from hugohost.events.metrics import MetricsEventEmitter

    factories: Dict[EventSinkType, Callable[[], EventEmitter]] = {
        EventSinkType.LOGGING: lambda: LoggingEventEmitter(logger_name=logger_name),
        EventSinkType.METRICS: MetricsEventEmitter,
    }

    sinks = [factories[sink_type]() for sink_type in dict.fromkeys(sink_types or [EventSinkType.LOGGING])]
    if len(sinks) == 1:
        return sinks[0]
    return CompositeEventEmitter(sinks)
