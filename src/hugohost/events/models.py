"""Deployment event models for observability.

This module defines the data models for pipeline events:
- EventType: Enum of all event types emitted by the orchestrator
- DeploymentEvent: Structured event with the deployment it concerns

Events are emitted for monitoring, alerting, and debugging. They never
carry credentials.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the deployment pipeline.

    Attributes:
        STATE_TRANSITION: A deployment moved between statuses.
            Details: from_status, to_status.
        ERROR: A pipeline step failed.
            Details: stage, error_kind, error_message.
        COMPLETION: A phase finished successfully.
            Details: phase ("repository" or "hosting"), duration_seconds.
        POSTS_PUBLISHED: Posts were committed to a site repository.
            Details: count, commit.
    """

    STATE_TRANSITION = "state_transition"
    ERROR = "error"
    COMPLETION = "completion"
    POSTS_PUBLISHED = "posts_published"


class DeploymentEvent(BaseModel):
    """Structured event emitted by the deployment pipeline.

    Attributes:
        event_type: The category of event.
        deployment_id: The deployment the event concerns.
        site_name: The deployment's site name, for grouping.
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Example:
        >>> event = DeploymentEvent(
        ...     event_type=EventType.STATE_TRANSITION,
        ...     deployment_id="3f2a...",
        ...     site_name="my-blog",
        ...     details={"from_status": "pending", "to_status": "creating_repository"},
        ... )
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    deployment_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the deployment record",
    )

    site_name: str = Field(
        ...,
        min_length=1,
        description="Site name of the deployment",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging."""
        return {
            "event_type": self.event_type.value,
            "deployment_id": self.deployment_id,
            "site_name": self.site_name,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
