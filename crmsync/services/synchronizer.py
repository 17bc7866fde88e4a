"""Synchronizer: push one entity to one destination unless nothing changed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from functools import cached_property
from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from crmsync.models.sync_state import SyncState
from crmsync.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from crmsync.destinations.registry import DestinationRegistry

logger = logging.getLogger(__name__)


class SyncOutcome(StrEnum):
    """Outcome of a synchronization attempt."""

    SYNCED = "synced"
    NOT_MODIFIED = "not_modified"
    ERROR = "error"


@dataclass(frozen=True)
class Synced:
    """The payload changed and the destination accepted it."""

    remote_id: str | None
    digest: str

    @property
    def outcome(self) -> SyncOutcome:
        return SyncOutcome.SYNCED


@dataclass(frozen=True)
class NotModified:
    """The payload digest matched the last pushed one; nothing was sent."""

    @property
    def outcome(self) -> SyncOutcome:
        return SyncOutcome.NOT_MODIFIED


@dataclass(frozen=True)
class SyncFailed:
    """Building the payload or pushing it failed; the message is on the sync state."""

    message: str

    @property
    def outcome(self) -> SyncOutcome:
        return SyncOutcome.ERROR


SyncResult = Synced | NotModified | SyncFailed


def entity_identity(entity: Any) -> int:
    """Return the primary key of a persisted entity."""
    identity = sa_inspect(entity).identity
    if not identity:
        msg = f"{type(entity).__name__} must be persisted before it can be synchronized"
        raise ValueError(msg)
    return identity[0]  # type: ignore[no-any-return]


async def find_sync_state(
    session: AsyncSession,
    resource_type: str,
    resource_id: int,
    destination_name: str,
) -> SyncState | None:
    """Load the sync state row for one (entity, destination) pair."""
    stmt = select(SyncState).where(
        SyncState.resource_type == resource_type,
        SyncState.resource_id == resource_id,
        SyncState.destination_name == destination_name,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


class Synchronizer:
    """Synchronize one entity with one destination.

    Usage::

        result = await Synchronizer.call(session, registry, user, "hubspot")

    The entity row is locked (``SELECT ... FOR UPDATE``) until the state is
    committed, so concurrent attempts on the same entity serialize. Adapter,
    serializer and state-saving failures never propagate: the message is
    stored in ``last_error`` and a :class:`SyncFailed` is returned, leaving the
    previous remote id, digest and sync time untouched. A missing declaration
    raises :class:`~crmsync.exceptions.ConfigurationError`.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: DestinationRegistry,
        entity: Any,
        destination_name: str,
    ) -> None:
        self.session = session
        self.registry = registry
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
    ) -> SyncResult:
        """Synchronize *entity* with *destination_name*."""
        return await cls(session, registry, entity, destination_name).run()

    @cached_property
    def payload(self) -> dict[str, Any]:
        return self.declaration.build_payload(self.entity)

    @cached_property
    def digest(self) -> str:
        return self.registry.digest_strategy(self.payload)

    async def run(self) -> SyncResult:
        await self._lock_entity()
        state = await self._find_or_initialize_state()

        result: SyncResult
        try:
            result = await self._push(state)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._log_failure(message)
            state.last_error = message
            result = SyncFailed(message)

        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            return await self._record_save_failure(exc)
        return result

    async def _record_save_failure(self, exc: SQLAlchemyError) -> SyncFailed:
        """Store why the state could not be saved, on a clean transaction.

        The destination may already hold the new payload; the state keeps its
        previous remote id and digest so the next run pushes again.
        """
        message = str(getattr(exc, "orig", None) or exc) or type(exc).__name__
        self._log_failure(message)
        state = await self._find_or_initialize_state()
        state.last_error = message
        await self.session.commit()
        return SyncFailed(message)

    def _log_failure(self, message: str) -> None:
        logger.warning(
            "Sync of %s#%s to %s failed: %s",
            self.resource_type,
            self.resource_id,
            self.destination_name,
            message,
        )

    async def _push(self, state: SyncState) -> SyncResult:
        digest = self.digest
        if not state.is_stale(digest):
            state.last_synced_at = now_utc()
            return NotModified()

        remote_id = await self.adapter.upsert(
            self.declaration.object_type,
            self.payload,
            self.declaration.id_property,
        )
        if remote_id:
            state.remote_id = str(remote_id)
        state.last_digest = digest
        state.last_synced_at = now_utc()
        state.last_error = None
        logger.debug(
            "Synced %s#%s to %s (remote id %s)",
            self.resource_type,
            self.resource_id,
            self.destination_name,
            state.remote_id,
        )
        return Synced(remote_id=state.remote_id, digest=digest)

    async def _lock_entity(self) -> None:
        entity_type = type(self.entity)
        pk = sa_inspect(entity_type).primary_key[0]
        stmt = (
            select(entity_type)
            .where(pk == self.resource_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        await self.session.execute(stmt)

    async def _find_or_initialize_state(self) -> SyncState:
        state = await find_sync_state(
            self.session, self.resource_type, self.resource_id, self.destination_name
        )
        if state is None:
            state = SyncState(
                resource_type=self.resource_type,
                resource_id=self.resource_id,
                destination_name=self.destination_name,
            )
            self.session.add(state)
        return state
