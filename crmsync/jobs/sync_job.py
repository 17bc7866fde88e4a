"""Sync job: deduplicated scheduling of asynchronous synchronizations.

Scheduling takes a short-lived lock keyed by (entity type, id); a second
request for the same entity is dropped while the lock is held. Running the
job always releases the lock, so the entity can be scheduled again as soon as
an attempt finishes. The lock only prevents redundant scheduling; concurrent
execution is serialized by the synchronizer's row lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from crmsync.exceptions import ConfigurationError
from crmsync.jobs.backend import JobRequest
from crmsync.services.synchronizer import Synchronizer

if TYPE_CHECKING:
    from crmsync.database import SessionFactory
    from crmsync.destinations.registry import DestinationRegistry
    from crmsync.jobs.backend import JobBackend
    from crmsync.jobs.lock_store import LockStore

logger = logging.getLogger(__name__)

ENQUEUE_LOCK_TTL_SECONDS = 15 * 60
DEFAULT_MAX_ATTEMPTS = 3


@runtime_checkable
class Enqueuer(Protocol):
    """Anything that can schedule a synchronization by entity type name and id."""

    async def enqueue(self, resource_type: str, resource_id: int, destination_name: str) -> bool:
        """Schedule a sync. Returns False if the request was coalesced or dropped."""
        ...


def polynomial_backoff(attempt: int) -> float:
    """Seconds to wait before retry number *attempt* + 1."""
    return float(attempt**4 + 2)


def enqueue_lock_key(resource_type: str, resource_id: int) -> str:
    """Cache key of the scheduling lock for one entity."""
    return f"crmsync:jobs:sync:{resource_type}:{resource_id}"


class SyncJob:
    """Schedule and run synchronizations through a job backend."""

    def __init__(
        self,
        registry: DestinationRegistry,
        session_factory: SessionFactory,
        lock_store: LockStore,
        backend: JobBackend,
        *,
        lock_ttl_seconds: int = ENQUEUE_LOCK_TTL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: Callable[[int], float] = polynomial_backoff,
    ) -> None:
        self.registry = registry
        self.session_factory = session_factory
        self.lock_store = lock_store
        self.backend = backend
        self.lock_ttl_seconds = lock_ttl_seconds
        self.max_attempts = max_attempts
        self.backoff = backoff

    async def enqueue(
        self,
        resource_type: str,
        resource_id: int,
        destination_name: str,
        *,
        attempt: int = 1,
        delay: float = 0.0,
    ) -> bool:
        """Schedule a sync unless one is already pending for this entity."""
        key = enqueue_lock_key(resource_type, resource_id)
        if not await self.lock_store.acquire(key, self.lock_ttl_seconds):
            logger.debug("Sync of %s#%s already scheduled; skipping", resource_type, resource_id)
            return False

        request = JobRequest(
            resource_type=resource_type,
            resource_id=resource_id,
            destination_name=destination_name,
            attempt=attempt,
        )
        try:
            await self.backend.submit(self.perform, request, delay=delay)
        except Exception:
            logger.exception("Failed to schedule sync of %s#%s", resource_type, resource_id)
            await self.lock_store.release(key)
            raise
        return True

    async def perform(self, request: JobRequest) -> None:
        """Run one scheduled sync, releasing the scheduling lock whatever happens."""
        key = enqueue_lock_key(request.resource_type, request.resource_id)
        failure: Exception | None = None
        try:
            await self.run(request)
        except Exception as exc:
            failure = exc
        finally:
            await self.lock_store.release(key)

        if failure is None:
            return
        if isinstance(failure, ConfigurationError) or request.attempt >= self.max_attempts:
            raise failure
        delay = self.backoff(request.attempt)
        logger.warning(
            "Sync of %s#%s failed (attempt %d/%d), retrying in %.0fs: %s",
            request.resource_type,
            request.resource_id,
            request.attempt,
            self.max_attempts,
            delay,
            failure,
        )
        await self.enqueue(
            request.resource_type,
            request.resource_id,
            request.destination_name,
            attempt=request.attempt + 1,
            delay=delay,
        )

    async def run(self, request: JobRequest) -> None:
        """Load the entity and synchronize it; a deleted entity is a no-op."""
        entity_type = self.registry.resolve_type(request.resource_type)
        if entity_type is None:
            msg = f"Unknown entity type: {request.resource_type!r}"
            raise ConfigurationError(msg)

        async with self.session_factory() as session:
            entity = await session.get(entity_type, request.resource_id)
            if entity is None:
                logger.debug(
                    "%s#%s no longer exists; nothing to sync",
                    request.resource_type,
                    request.resource_id,
                )
                return
            await Synchronizer.call(session, self.registry, entity, request.destination_name)
