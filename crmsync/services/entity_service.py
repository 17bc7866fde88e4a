"""Entity-level helpers: sync, delete and inspect one entity."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from crmsync.exceptions import ConfigurationError
from crmsync.services.deleter import DeleteOutcome, Deleter
from crmsync.services.synchronizer import SyncResult, Synchronizer, entity_identity, find_sync_state

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from crmsync.destinations.registry import DestinationRegistry
    from crmsync.jobs.sync_job import Enqueuer
    from crmsync.models.sync_state import SyncState

logger = logging.getLogger(__name__)


def build_payload(registry: DestinationRegistry, entity: Any, destination_name: str) -> dict[str, Any]:
    """Serialize *entity* the way it would be sent to *destination_name*."""
    declaration = registry.config_for(type(entity), destination_name)
    return declaration.build_payload(entity)


async def sync_entity(
    session: AsyncSession,
    registry: DestinationRegistry,
    entity: Any,
    destination_name: str,
    *,
    run_async: bool = True,
    job: Enqueuer | None = None,
) -> bool | SyncResult:
    """Synchronize *entity* with *destination_name*.

    Returns False when the type does not declare the destination or its guard
    rejects the entity. Asynchronous mode returns whether a job was scheduled;
    inline mode returns the synchronizer's result.
    """
    entity_type = type(entity)
    if not registry.is_declared(entity_type, destination_name):
        logger.debug(
            "%s does not sync to %s; skipping", registry.type_name(entity_type), destination_name
        )
        return False

    declaration = registry.config_for(entity_type, destination_name)
    if not declaration.allows(entity):
        return False

    if not run_async:
        return await Synchronizer.call(session, registry, entity, destination_name)

    enqueuer = job if job is not None else declaration.resolved_job
    if enqueuer is None:
        msg = f"No job configured for asynchronous sync to {destination_name!r}"
        raise ConfigurationError(msg)
    return await enqueuer.enqueue(
        registry.type_name(entity_type), entity_identity(entity), destination_name
    )


async def delete_entity(
    session: AsyncSession,
    registry: DestinationRegistry,
    entity: Any,
    destination_name: str,
) -> DeleteOutcome:
    """Delete *entity*'s remote copy from *destination_name*."""
    return await Deleter.call(session, registry, entity, destination_name)


async def get_sync_state(
    session: AsyncSession,
    registry: DestinationRegistry,
    entity: Any,
    destination_name: str,
) -> SyncState | None:
    """Return the sync state of *entity* for *destination_name*, if any."""
    return await find_sync_state(
        session, registry.type_name(type(entity)), entity_identity(entity), destination_name
    )
