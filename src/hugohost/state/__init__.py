"""Deployment state machine and record stores."""

from hugohost.state.machine import (
    DeploymentStateMachine,
    DeploymentStore,
    InvalidTransitionError,
    RecordSubscription,
    StateNotFoundError,
)
from hugohost.state.memory import InMemoryDeploymentStore
from hugohost.state.models import (
    VALID_TRANSITIONS,
    DeploymentRecord,
    DeploymentRequest,
    DeploymentStatus,
    Theme,
    is_terminal_status,
    is_valid_transition,
)

__all__ = [
    "DeploymentRecord",
    "DeploymentRequest",
    "DeploymentStateMachine",
    "DeploymentStatus",
    "DeploymentStore",
    "InMemoryDeploymentStore",
    "InvalidTransitionError",
    "RecordSubscription",
    "StateNotFoundError",
    "Theme",
    "VALID_TRANSITIONS",
    "is_terminal_status",
    "is_valid_transition",
]
