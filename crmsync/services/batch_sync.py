"""Batch sync: enqueue or run synchronizations for every stale entity."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from crmsync.exceptions import ConfigurationError
from crmsync.services.stale_finder import StaleRecordsFinder, primary_key_name, table_of
from crmsync.services.synchronizer import SyncFailed, Synchronizer

if TYPE_CHECKING:
    from sqlalchemy import Select

    from crmsync.database import SessionFactory
    from crmsync.destinations.registry import DestinationRegistry
    from crmsync.jobs.sync_job import Enqueuer

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1_000


@dataclass
class BatchStats:
    """Counts aggregated over one batch run.

    In asynchronous mode ``total`` counts submissions. A job that coalesces
    scheduling per entity declines a second request for an entity that is
    already pending, for instance one stale for two destinations; such
    requests are included in ``total`` and also counted in ``coalesced``.
    """

    total: int = 0
    per_entity_type: dict[str, int] = field(default_factory=dict)
    errors: int = 0
    coalesced: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "per_entity_type": dict(self.per_entity_type),
            "errors": self.errors,
            "coalesced": self.coalesced,
        }


@dataclass
class _Progress:
    count: int = 0
    errors: int = 0
    coalesced: int = 0


class BatchSync:
    """Walk the stale finder's queries page by page.

    In asynchronous mode each primary key is handed to a job without loading
    the entity, and counted as soon as it is submitted. In inline mode each
    entity is loaded and synchronized in its own session; one entity failing
    never stops the batch.
    """

    def __init__(
        self,
        registry: DestinationRegistry,
        session_factory: SessionFactory,
        job: Enqueuer | None = None,
    ) -> None:
        self.registry = registry
        self.session_factory = session_factory
        self.job = job
        self.finder = StaleRecordsFinder(registry)

    async def call(
        self,
        entity_types: Iterable[type] | None = None,
        destination_name: str | None = None,
        *,
        run_async: bool = True,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> BatchStats:
        """Process every stale entity and return aggregated counts."""
        if page_size < 1:
            msg = f"page_size must be a positive integer, got {page_size}"
            raise ValueError(msg)

        stats = BatchStats()
        async with self.session_factory() as session:
            queries = await self.finder.find(session, entity_types, destination_name)

        for entity_type, per_destination in queries.items():
            progress = _Progress()
            for name, query in per_destination.items():
                await self._process(entity_type, name, query, run_async, page_size, progress)

            type_name = self.registry.type_name(entity_type)
            stats.per_entity_type[type_name] = (
                stats.per_entity_type.get(type_name, 0) + progress.count
            )
            stats.total += progress.count
            stats.errors += progress.errors
            stats.coalesced += progress.coalesced

        logger.info(
            "Batch sync finished: %d processed, %d errors, %d coalesced (%s)",
            stats.total,
            stats.errors,
            stats.coalesced,
            "async" if run_async else "inline",
        )
        return stats

    async def _process(
        self,
        entity_type: type,
        destination_name: str,
        query: Select[Any],
        run_async: bool,
        page_size: int,
        progress: _Progress,
    ) -> None:
        table = table_of(entity_type)
        pk = table.c[primary_key_name(table)]
        last_id: Any = None

        while True:
            page_query = query if last_id is None else query.where(pk > last_id)
            async with self.session_factory() as session:
                result = await session.execute(page_query.limit(page_size))
                ids = list(result.scalars())
            if not ids:
                break

            if run_async:
                progress.coalesced += await self._enqueue(entity_type, destination_name, ids)
                progress.count += len(ids)
            else:
                for entity_id in ids:
                    await self._sync_inline(entity_type, destination_name, entity_id, progress)

            if len(ids) < page_size:
                break
            last_id = ids[-1]

    async def _enqueue(self, entity_type: type, destination_name: str, ids: list[Any]) -> int:
        """Submit *ids* and return how many the job declined as already pending."""
        declaration = self.registry.config_for(entity_type, destination_name)
        job = declaration.resolved_job or self.job
        if job is None:
            msg = f"No job configured for asynchronous sync to {destination_name!r}"
            raise ConfigurationError(msg)

        type_name = self.registry.type_name(entity_type)
        declined = 0
        for entity_id in ids:
            try:
                scheduled = await job.enqueue(type_name, entity_id, destination_name)
            except Exception:
                logger.exception(
                    "Failed to enqueue sync of %s#%s to %s", type_name, entity_id, destination_name
                )
                raise
            if not scheduled:
                declined += 1
        if declined:
            logger.info(
                "%d of %d %s syncs to %s were already pending and coalesced",
                declined,
                len(ids),
                type_name,
                destination_name,
            )
        return declined

    async def _sync_inline(
        self,
        entity_type: type,
        destination_name: str,
        entity_id: Any,
        progress: _Progress,
    ) -> None:
        try:
            async with self.session_factory() as session:
                entity = await session.get(entity_type, entity_id)
                if entity is None:
                    return
                result = await Synchronizer.call(session, self.registry, entity, destination_name)
        except Exception:
            logger.exception(
                "Inline sync of %s#%s to %s failed",
                self.registry.type_name(entity_type),
                entity_id,
                destination_name,
            )
            progress.errors += 1
            return

        progress.count += 1
        if isinstance(result, SyncFailed):
            progress.errors += 1
