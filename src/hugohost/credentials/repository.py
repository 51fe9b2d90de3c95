"""PostgreSQL credential store.

Credentials are stored one row per owner in the `owner_credentials`
table from migrations/001_deployments.sql. Values are stored as given;
encryption at rest is left to the database deployment.
"""

import logging
from typing import Any

import asyncpg

from hugohost.credentials.models import CREDENTIAL_FIELDS, Credentials
from hugohost.state.repository import DatabaseError


logger = logging.getLogger(__name__)


class PostgresCredentialStore:
    """CredentialStore backed by an asyncpg connection pool.

    The pool is shared with the deployment store and owned by the caller.

    Attributes:
        pool: The asyncpg connection pool.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, owner_id: str) -> Credentials:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT {", ".join(CREDENTIAL_FIELDS)}
                    FROM owner_credentials
                    WHERE owner_id = $1
                    """,
                    owner_id,
                )
        except Exception as e:
            logger.error(
                "Failed to load credentials",
                extra={"owner_id": owner_id, "error": str(e)},
            )
            raise DatabaseError(f"Failed to load credentials: {e}", original_error=e) from e

        if row is None:
            return Credentials()
        return Credentials(**{name: row[name] for name in CREDENTIAL_FIELDS})

    async def save(self, owner_id: str, credentials: Credentials) -> Credentials:
        current = await self.get(owner_id)
        updated = current.merged(credentials)
        values: Any = updated.reveal()

        columns = ", ".join(CREDENTIAL_FIELDS)
        placeholders = ", ".join(f"${i + 2}" for i in range(len(CREDENTIAL_FIELDS)))
        assignments = ", ".join(f"{name} = EXCLUDED.{name}" for name in CREDENTIAL_FIELDS)

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO owner_credentials (owner_id, {columns}, updated_at)
                    VALUES ($1, {placeholders}, now())
                    ON CONFLICT (owner_id) DO UPDATE
                    SET {assignments}, updated_at = now()
                    """,
                    owner_id,
                    *[values[name] for name in CREDENTIAL_FIELDS],
                )
        except Exception as e:
            logger.error(
                "Failed to save credentials",
                extra={"owner_id": owner_id, "error": str(e)},
            )
            raise DatabaseError(f"Failed to save credentials: {e}", original_error=e) from e

        logger.info(
            "Saved credentials",
            extra={"owner_id": owner_id, "configured": updated.configured()},
        )
        return updated
