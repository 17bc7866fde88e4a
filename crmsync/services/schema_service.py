"""Startup check that the sync state table matches the mapped schema."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import OperationalError, ProgrammingError

from crmsync.exceptions import MissingColumnError
from crmsync.models.sync_state import SYNC_STATE_TABLE

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

REQUIRED_COLUMN = "destination_name"


def _column_names(connection: Connection) -> set[str] | None:
    inspector = sa_inspect(connection)
    if not inspector.has_table(SYNC_STATE_TABLE):
        return None
    return {column["name"] for column in inspector.get_columns(SYNC_STATE_TABLE)}


async def check_sync_state_schema(engine: AsyncEngine) -> None:
    """Fail fast when ``sync_states`` predates per-destination tracking.

    A missing table, or a database that cannot be inspected yet, is left for
    migrations to handle.
    """
    try:
        async with engine.connect() as conn:
            columns = await conn.run_sync(_column_names)
    except (OperationalError, ProgrammingError) as exc:
        logger.debug("Skipping sync state schema check: %s", exc)
        return

    if columns is None:
        logger.debug("Table %s does not exist yet; skipping schema check", SYNC_STATE_TABLE)
        return
    if REQUIRED_COLUMN not in columns:
        msg = (
            f"Table {SYNC_STATE_TABLE} is missing the {REQUIRED_COLUMN} column. "
            f"Add it with: ALTER TABLE {SYNC_STATE_TABLE} ADD COLUMN {REQUIRED_COLUMN} "
            "VARCHAR NOT NULL DEFAULT '' and backfill it with the destination name, "
            f"then add a unique index on (resource_type, resource_id, {REQUIRED_COLUMN})."
        )
        raise MissingColumnError(msg)
