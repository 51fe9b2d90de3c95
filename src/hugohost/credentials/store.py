"""Credential store interface and in-memory implementation."""

import logging
from typing import Dict, Optional, Protocol, runtime_checkable

from hugohost.credentials.models import Credentials


logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol for per-owner credential persistence."""

    async def get(self, owner_id: str) -> Credentials:
        """Return the owner's credentials (empty Credentials if none)."""
        ...

    async def save(self, owner_id: str, credentials: Credentials) -> Credentials:
        """Merge an update into the owner's credentials.

        Fields set to an empty value are removed; fields not present in
        the update are kept.

        Returns:
            The credentials after the update.
        """
        ...


class InMemoryCredentialStore:
    """Process-local credential store for development and tests."""

    def __init__(self, initial: Optional[Dict[str, Credentials]] = None):
        self._credentials: Dict[str, Credentials] = dict(initial or {})

    async def get(self, owner_id: str) -> Credentials:
        return self._credentials.get(owner_id) or Credentials()

    async def save(self, owner_id: str, credentials: Credentials) -> Credentials:
        current = await self.get(owner_id)
        updated = current.merged(credentials)
        self._credentials[owner_id] = updated
        logger.info(
            "Saved credentials",
            extra={"owner_id": owner_id, "configured": updated.configured()},
        )
        return updated
