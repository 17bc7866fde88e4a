"""Sync API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class BatchSyncRequest(BaseModel):
    """Request to sync every stale entity."""

    entity_types: list[str] | None = Field(
        default=None, description="Entity type names to restrict the run to; all when omitted"
    )
    destination: str | None = Field(
        default=None, description="Destination name to restrict the run to; all when omitted"
    )
    run_async: bool = Field(default=True, description="Enqueue jobs instead of syncing inline")
    page_size: int | None = Field(default=None, ge=1, description="Primary keys fetched per page")


class BatchSyncResponse(BaseModel):
    """Counts aggregated over a batch run."""

    total: int
    per_entity_type: dict[str, int]
    errors: int
    coalesced: int = 0


class EntitySyncResponse(BaseModel):
    """Result of syncing one entity."""

    resource_type: str
    resource_id: int
    destination: str
    scheduled: bool | None = None
    outcome: str | None = None
    remote_id: str | None = None
    error: str | None = None


class EntityDeleteResponse(BaseModel):
    """Result of deleting one entity from a destination."""

    resource_type: str
    resource_id: int
    destination: str
    outcome: str


class SyncStateResponse(BaseModel):
    """One sync state row."""

    id: int
    resource_type: str
    resource_id: int
    destination_name: str
    remote_id: str | None = None
    last_digest: str | None = None
    last_synced_at: str | None = None
    last_error: str | None = None
