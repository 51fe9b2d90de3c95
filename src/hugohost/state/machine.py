"""Deployment state machine implementation.

This module implements the DeploymentStateMachine class that moves a
deployment record through its statuses with validation, error
recording and timestamping. Every transition is a single store write
of the new status plus any fields the step produced.

The state machine depends on a DeploymentStore interface for
persistence, implemented in memory.py (in-process) and repository.py
(PostgreSQL).
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from hugohost.errors import MAX_ERROR_LENGTH, ErrorKind, truncate_error
from hugohost.state.models import (
    MUTABLE_FIELDS,
    DeploymentRecord,
    DeploymentRequest,
    DeploymentStatus,
    is_valid_transition,
)


logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error (no details provided)"


class InvalidTransitionError(Exception):
    """Raised when an invalid status transition is attempted.

    Attributes:
        from_status: The current status.
        to_status: The attempted target status.
        message: Human-readable error message.
    """

    def __init__(
        self,
        from_status: DeploymentStatus,
        to_status: DeploymentStatus,
        message: Optional[str] = None,
    ):
        self.from_status = from_status
        self.to_status = to_status
        self.message = message or (
            f"Invalid transition from {from_status.value} to {to_status.value}"
        )
        super().__init__(self.message)


class StateNotFoundError(Exception):
    """Raised when a deployment record does not exist.

    Attributes:
        deployment_id: The deployment ID that was not found.
    """

    def __init__(self, deployment_id: str):
        self.deployment_id = deployment_id
        super().__init__(f"Deployment not found: {deployment_id}")


_CLOSED = object()


class RecordSubscription:
    """Stream of record snapshots for one owner.

    Each item is the owner's full list of records ordered by
    `created_at` descending. The subscription ends after `cancel()`;
    using it as an async context manager cancels it on exit.

    Example:
        >>> async with store.subscribe("user-1") as subscription:
        ...     async for records in subscription:
        ...         render(records)
    """

    def __init__(
        self,
        owner_id: str,
        on_cancel: Optional[Callable[["RecordSubscription"], None]] = None,
    ):
        self.owner_id = owner_id
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._on_cancel = on_cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def publish(self, records: List[DeploymentRecord]) -> None:
        """Queue a snapshot for the consumer. Ignored once cancelled."""
        if not self._cancelled:
            self._queue.put_nowait(list(records))

    def cancel(self) -> None:
        """Stop the subscription and release it from its store."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "RecordSubscription":
        return self

    async def __anext__(self) -> List[DeploymentRecord]:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "RecordSubscription":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.cancel()


@runtime_checkable
class DeploymentStore(Protocol):
    """Protocol defining the interface for deployment record persistence.

    Writes are last-write-wins; there is no optimistic locking.
    """

    async def create(self, record: DeploymentRecord) -> None:
        """Persist a new record."""
        ...

    async def get(self, deployment_id: str) -> Optional[DeploymentRecord]:
        """Return the record, or None if it does not exist."""
        ...

    async def update(self, deployment_id: str, fields: Dict[str, Any]) -> DeploymentRecord:
        """Apply a partial update and return the updated record.

        Raises:
            StateNotFoundError: If the record does not exist.
        """
        ...

    async def delete(self, deployment_id: str) -> bool:
        """Delete the record. Returns False if it did not exist."""
        ...

    async def list_for_owner(self, owner_id: str) -> List[DeploymentRecord]:
        """Return the owner's records ordered by `created_at` descending."""
        ...

    async def subscribe(self, owner_id: str) -> RecordSubscription:
        """Subscribe to the owner's records.

        The first snapshot is delivered immediately, then one per write.
        """
        ...


class DeploymentStateMachine:
    """State machine for deployment records.

    The state machine enforces the following invariants:
    - Only transitions listed in VALID_TRANSITIONS are allowed
    - Transitions into a failed status always carry a non-empty
      `last_error`, truncated to 1000 characters
    - Any other transition clears `last_error` and `last_error_kind`
    - `updated_at` is refreshed on every write

    Attributes:
        store: The deployment store for persistence.

    Example:
        >>> machine = DeploymentStateMachine(InMemoryDeploymentStore())
        >>> record = await machine.create("user-1", request)
        >>> record = await machine.transition(
        ...     record.id,
        ...     DeploymentStatus.CREATING_REPOSITORY,
        ... )
    """

    def __init__(self, store: DeploymentStore):
        self.store = store

    async def create(self, owner_id: str, request: DeploymentRequest) -> DeploymentRecord:
        """Create a new record in PENDING for the owner.

        Raises:
            ValueError: If owner_id is empty.
        """
        if not owner_id:
            raise ValueError("owner_id cannot be empty")

        now = datetime.now(timezone.utc)
        record = DeploymentRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            site_name=request.site_name,
            blog_title=request.blog_title,
            description=request.description,
            theme=request.theme,
            status=DeploymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        logger.info(
            "Creating deployment record",
            extra={
                "deployment_id": record.id,
                "owner_id": owner_id,
                "site_name": record.site_name,
            },
        )

        await self.store.create(record)
        return record

    async def transition(
        self,
        deployment_id: str,
        to_status: DeploymentStatus,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
        **fields: Any,
    ) -> DeploymentRecord:
        """Move a record to a new status in one store write.

        Args:
            deployment_id: The deployment to transition.
            to_status: The target status.
            error: Diagnostic for a failed status. Ignored otherwise.
            error_kind: Error category for a failed status.
            **fields: Extra record fields to write with the status
                (see MUTABLE_FIELDS).

        Returns:
            The updated record.

        Raises:
            StateNotFoundError: If the record doesn't exist.
            InvalidTransitionError: If the transition is not allowed.
            ValueError: If a field outside MUTABLE_FIELDS is passed.
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be set on transition: {sorted(unknown)}")

        record = await self.store.get(deployment_id)
        if record is None:
            raise StateNotFoundError(deployment_id)

        from_status = record.status
        if not is_valid_transition(from_status, to_status):
            logger.warning(
                "Invalid status transition attempted",
                extra={
                    "deployment_id": deployment_id,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )
            raise InvalidTransitionError(from_status, to_status)

        update: Dict[str, Any] = dict(fields)
        update["status"] = to_status
        update["updated_at"] = datetime.now(timezone.utc)

        if to_status.is_failed:
            if not error or not error.strip():
                error = UNKNOWN_ERROR
                logger.warning(
                    "Transition to failed status without error details",
                    extra={"deployment_id": deployment_id, "to_status": to_status.value},
                )
            update["last_error"] = truncate_error(error, MAX_ERROR_LENGTH)
            update["last_error_kind"] = error_kind or ErrorKind.UNEXPECTED
        else:
            update["last_error"] = None
            update["last_error_kind"] = None

        logger.info(
            "Transitioning deployment",
            extra={
                "deployment_id": deployment_id,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )

        return await self.store.update(deployment_id, update)

    async def annotate(self, deployment_id: str, note: Optional[str]) -> DeploymentRecord:
        """Write a progress note without changing status or error."""
        record = await self.store.get(deployment_id)
        if record is None:
            raise StateNotFoundError(deployment_id)
        return await self.store.update(
            deployment_id,
            {"note": note, "updated_at": datetime.now(timezone.utc)},
        )

    async def get(self, deployment_id: str) -> Optional[DeploymentRecord]:
        return await self.store.get(deployment_id)

    async def delete(self, deployment_id: str) -> bool:
        """Remove the record only; external resources are left in place."""
        deleted = await self.store.delete(deployment_id)
        if deleted:
            logger.info("Deleted deployment record", extra={"deployment_id": deployment_id})
        return deleted

    async def list_for_owner(self, owner_id: str) -> List[DeploymentRecord]:
        return await self.store.list_for_owner(owner_id)
