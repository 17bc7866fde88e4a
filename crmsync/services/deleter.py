"""Deleter: remove an entity from a destination it was pushed to."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from crmsync.exceptions import SynchronizationError
from crmsync.services.synchronizer import entity_identity, find_sync_state

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from crmsync.destinations.registry import DestinationRegistry

logger = logging.getLogger(__name__)


class DeleteOutcome(StrEnum):
    """Outcome of a delete request."""

    DELETED = "deleted"
    NOOP = "noop"


class Deleter:
    """Delete one entity's remote copy from one destination.

    Only entities with a stored remote id are sent to the adapter. Adapter
    failures are raised as :class:`SynchronizationError`, unlike the
    synchronizer which records them. The sync state row is left as is; it goes
    away with the entity.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: DestinationRegistry,
        entity: Any,
        destination_name: str,
    ) -> None:
        self.session = session
        self.entity = entity
        self.destination_name = destination_name
        self.declaration = registry.config_for(type(entity), destination_name)
        self.adapter = self.declaration.build_adapter()
        self.resource_type = registry.type_name(type(entity))
        self.resource_id = entity_identity(entity)

    @classmethod
    async def call(
        cls,
        session: AsyncSession,
        registry: DestinationRegistry,
        entity: Any,
        destination_name: str,
    ) -> DeleteOutcome:
        """Delete *entity* from *destination_name*."""
        return await cls(session, registry, entity, destination_name).run()

    async def run(self) -> DeleteOutcome:
        state = await find_sync_state(
            self.session, self.resource_type, self.resource_id, self.destination_name
        )
        if state is None or not (state.remote_id or "").strip():
            return DeleteOutcome.NOOP

        try:
            await self.adapter.delete(self.declaration.object_type, state.remote_id)
        except Exception as exc:
            logger.warning(
                "Delete of %s#%s from %s failed: %s",
                self.resource_type,
                self.resource_id,
                self.destination_name,
                exc,
            )
            raise SynchronizationError(str(exc) or type(exc).__name__) from exc

        logger.info(
            "Deleted %s#%s from %s (remote id %s)",
            self.resource_type,
            self.resource_id,
            self.destination_name,
            state.remote_id,
        )
        return DeleteOutcome.DELETED
