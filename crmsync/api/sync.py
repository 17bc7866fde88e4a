"""Sync API endpoints: batch runs, single-entity sync and delete, state listing."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crmsync.api.deps import (
    get_registry,
    get_session,
    get_session_factory,
    get_settings,
    get_sync_job,
    require_token,
)
from crmsync.config import Settings
from crmsync.database import SessionFactory
from crmsync.destinations.registry import DestinationRegistry
from crmsync.jobs.sync_job import SyncJob
from crmsync.models.sync_state import SyncState
from crmsync.schemas.sync import (
    BatchSyncRequest,
    BatchSyncResponse,
    EntityDeleteResponse,
    EntitySyncResponse,
    SyncStateResponse,
)
from crmsync.services.batch_sync import BatchSync
from crmsync.services.datetime_service import format_iso
from crmsync.services.entity_service import delete_entity, sync_entity
from crmsync.services.synchronizer import Synced, SyncFailed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"], dependencies=[Depends(require_token)])


def _resolve_entity_type(registry: DestinationRegistry, name: str) -> type:
    entity_type = registry.resolve_type(name)
    if entity_type is None:
        raise HTTPException(status_code=404, detail=f"Unknown entity type: {name}")
    return entity_type


async def _load_entity(
    session: AsyncSession, registry: DestinationRegistry, resource_type: str, resource_id: int
) -> Any:
    entity_type = _resolve_entity_type(registry, resource_type)
    entity = await session.get(entity_type, resource_id)
    if entity is None:
        raise HTTPException(
            status_code=404, detail=f"{resource_type}#{resource_id} not found"
        )
    return entity


def _state_response(state: SyncState) -> SyncStateResponse:
    return SyncStateResponse(
        id=state.id,
        resource_type=state.resource_type,
        resource_id=state.resource_id,
        destination_name=state.destination_name,
        remote_id=state.remote_id,
        last_digest=state.last_digest,
        last_synced_at=format_iso(state.last_synced_at),
        last_error=state.last_error,
    )


@router.post("/batch", response_model=BatchSyncResponse)
async def run_batch_sync(
    body: BatchSyncRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    registry: Annotated[DestinationRegistry, Depends(get_registry)],
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
    job: Annotated[SyncJob | None, Depends(get_sync_job)],
) -> BatchSyncResponse:
    """Sync every stale entity, optionally restricted to some types or one destination."""
    entity_types = None
    if body.entity_types is not None:
        entity_types = [_resolve_entity_type(registry, name) for name in body.entity_types]
    if body.destination is not None:
        registry.destination(body.destination)

    stats = await BatchSync(registry, session_factory, job).call(
        entity_types,
        body.destination,
        run_async=body.run_async,
        page_size=body.page_size or settings.batch_size,
    )
    return BatchSyncResponse(**stats.as_dict())


@router.get("/states", response_model=list[SyncStateResponse])
async def list_sync_states(
    session: Annotated[AsyncSession, Depends(get_session)],
    destination: Annotated[str | None, Query()] = None,
    errors_only: Annotated[bool, Query()] = False,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> list[SyncStateResponse]:
    """List sync states, most recently updated first."""
    stmt = SyncState.with_error() if errors_only else select(SyncState)
    if destination is not None:
        stmt = stmt.where(SyncState.destination_name == destination)
    stmt = stmt.order_by(SyncState.updated_at.desc(), SyncState.id.desc()).limit(limit)
    result = await session.scalars(stmt)
    return [_state_response(state) for state in result]


@router.post("/{resource_type}/{resource_id}", response_model=EntitySyncResponse)
async def sync_one(
    resource_type: str,
    resource_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[DestinationRegistry, Depends(get_registry)],
    job: Annotated[SyncJob | None, Depends(get_sync_job)],
    destination: Annotated[str, Query(min_length=1)],
    run_async: Annotated[bool, Query()] = True,
) -> EntitySyncResponse:
    """Sync one entity now, or schedule it."""
    entity = await _load_entity(session, registry, resource_type, resource_id)
    declaration = registry.config_for(type(entity), destination)
    enqueuer = declaration.resolved_job or job

    result = await sync_entity(
        session, registry, entity, destination, run_async=run_async, job=enqueuer
    )
    response = EntitySyncResponse(
        resource_type=resource_type, resource_id=resource_id, destination=destination
    )
    if isinstance(result, bool):
        if run_async:
            response.scheduled = result
        else:
            response.outcome = "skipped"
        return response

    response.outcome = result.outcome.value
    if isinstance(result, Synced):
        response.remote_id = result.remote_id
    elif isinstance(result, SyncFailed):
        response.error = result.message
    return response


@router.delete("/{resource_type}/{resource_id}", response_model=EntityDeleteResponse)
async def delete_one(
    resource_type: str,
    resource_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[DestinationRegistry, Depends(get_registry)],
    destination: Annotated[str, Query(min_length=1)],
) -> EntityDeleteResponse:
    """Delete one entity's remote copy from a destination."""
    entity = await _load_entity(session, registry, resource_type, resource_id)
    outcome = await delete_entity(session, registry, entity, destination)
    return EntityDeleteResponse(
        resource_type=resource_type,
        resource_id=resource_id,
        destination=destination,
        outcome=outcome.value,
    )
