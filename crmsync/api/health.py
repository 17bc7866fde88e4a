"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crmsync import __version__
from crmsync.api.deps import get_registry, get_session
from crmsync.destinations.registry import DestinationRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    destinations: list[str]
    entity_types: list[str]
    pending_jobs: int


async def _probe_database(session: AsyncSession) -> str:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Health check database query failed", exc_info=True)
        return "error"
    return "ok"


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[DestinationRegistry, Depends(get_registry)],
) -> HealthResponse:
    """Report database reachability and what this instance synchronizes."""
    database = await _probe_database(session)
    backend = getattr(request.app.state, "job_backend", None)
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=__version__,
        database=database,
        destinations=registry.destination_names(),
        entity_types=sorted(registry.type_name(t) for t in registry.entity_types()),
        pending_jobs=getattr(backend, "pending", 0),
    )
