"""Shared API dependencies: settings, DB session, registry, auth."""

from __future__ import annotations

import secrets
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from crmsync.config import Settings
from crmsync.database import SessionFactory
from crmsync.destinations.registry import DestinationRegistry
from crmsync.jobs.sync_job import SyncJob

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_session_factory(request: Request) -> SessionFactory:
    """Get the session factory from app state."""
    session_factory: SessionFactory = request.app.state.session_factory
    return session_factory


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_registry(request: Request) -> DestinationRegistry:
    """Get the destination registry from app state."""
    registry: DestinationRegistry = request.app.state.registry
    return registry


def get_sync_job(request: Request) -> SyncJob | None:
    """Get the application's sync job, if one was started."""
    job: SyncJob | None = getattr(request.app.state, "sync_job", None)
    return job


async def require_token(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> None:
    """Require the configured API token as a Bearer credential."""
    if (
        credentials is None
        or not settings.api_token
        or not secrets.compare_digest(credentials.credentials, settings.api_token)
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
