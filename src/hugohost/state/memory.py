"""In-process DeploymentStore.

Used for development and tests. Subscriptions receive a fresh snapshot
of the owner's records after every write that touches that owner.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from hugohost.state.machine import RecordSubscription, StateNotFoundError
from hugohost.state.models import DeploymentRecord


logger = logging.getLogger(__name__)


class InMemoryDeploymentStore:
    """Dictionary-backed deployment store with snapshot subscriptions."""

    def __init__(self) -> None:
        self._records: Dict[str, DeploymentRecord] = {}
        self._subscriptions: Dict[str, Set[RecordSubscription]] = {}

    async def create(self, record: DeploymentRecord) -> None:
        if record.id in self._records:
            raise ValueError(f"Deployment already exists: {record.id}")
        self._records[record.id] = record.model_copy(deep=True)
        self._notify(record.owner_id)

    async def get(self, deployment_id: str) -> Optional[DeploymentRecord]:
        record = self._records.get(deployment_id)
        return record.model_copy(deep=True) if record is not None else None

    async def update(self, deployment_id: str, fields: Dict[str, Any]) -> DeploymentRecord:
        record = self._records.get(deployment_id)
        if record is None:
            raise StateNotFoundError(deployment_id)
        updated = record.model_copy(update=fields, deep=True)
        self._records[deployment_id] = updated
        self._notify(updated.owner_id)
        return updated.model_copy(deep=True)

    async def delete(self, deployment_id: str) -> bool:
        record = self._records.pop(deployment_id, None)
        if record is None:
            return False
        self._notify(record.owner_id)
        return True

    async def list_for_owner(self, owner_id: str) -> List[DeploymentRecord]:
        return self._snapshot(owner_id)

    async def subscribe(self, owner_id: str) -> RecordSubscription:
        subscription = RecordSubscription(owner_id, on_cancel=self._unsubscribe)
        self._subscriptions.setdefault(owner_id, set()).add(subscription)
        subscription.publish(self._snapshot(owner_id))
        logger.debug("Subscription opened", extra={"owner_id": owner_id})
        return subscription

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._subscriptions.get(owner_id, ()))

    def _unsubscribe(self, subscription: RecordSubscription) -> None:
        subscribers = self._subscriptions.get(subscription.owner_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[subscription.owner_id]
        logger.debug("Subscription closed", extra={"owner_id": subscription.owner_id})

    def _snapshot(self, owner_id: str) -> List[DeploymentRecord]:
        records = [r for r in self._records.values() if r.owner_id == owner_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in records]

    def _notify(self, owner_id: str) -> None:
        subscribers = self._subscriptions.get(owner_id)
        if not subscribers:
            return
        snapshot = self._snapshot(owner_id)
        for subscription in list(subscribers):
            subscription.publish(snapshot)
