"""Shared test fixtures for crmsync."""

from __future__ import annotations

import itertools
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from crmsync.config import Settings
from crmsync.destinations.registry import DestinationRegistry
from crmsync.jobs.backend import AsyncioJobBackend
from crmsync.jobs.lock_store import InMemoryLockStore
from crmsync.jobs.sync_job import SyncJob
from crmsync.main import create_app
from crmsync.models.base import Base
from tests.sample_models import SampleBase, User, UserSerializer

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

TEST_API_TOKEN = "test-api-token-with-at-least-32-characters"

# Entities are created "in the past" so a sync made now is fresher than them.
PAST = datetime(2020, 1, 1, tzinfo=UTC)


def in_future(**kwargs: float) -> datetime:
    """A timestamp after any sync a test can perform."""
    return datetime.now(UTC) + timedelta(**kwargs or {"hours": 1})


class RecordingAdapter:
    """Destination double that records calls and hands out unique remote ids."""

    def __init__(self, prefix: str = "remote", *, fail_with: Exception | None = None) -> None:
        self.prefix = prefix
        self.fail_with = fail_with
        self.upserts: list[tuple[str, dict[str, Any], str | None]] = []
        self.deletes: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    async def upsert(
        self,
        object_type: str,
        payload: dict[str, Any],
        id_property: str | None = None,
    ) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.upserts.append((object_type, payload, id_property))
        return f"{self.prefix}-{next(self._ids)}"

    async def delete(self, object_type: str, remote_id: str) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        self.deletes.append((object_type, remote_id))
        return True


class RecordingEnqueuer:
    """Job double that records what would be scheduled."""

    def __init__(self, *, accept: bool = True) -> None:
        self.accept = accept
        self.calls: list[tuple[str, int, str]] = []

    async def enqueue(self, resource_type: str, resource_id: int, destination_name: str) -> bool:
        self.calls.append((resource_type, resource_id, destination_name))
        return self.accept


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        api_token=TEST_API_TOKEN,
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with every table in place."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(SampleBase.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def adapter() -> RecordingAdapter:
    return RecordingAdapter("hubspot")


@pytest.fixture
def registry(adapter: RecordingAdapter) -> DestinationRegistry:
    """Registry with a ``hubspot`` destination and users mirrored as contacts."""
    reg = DestinationRegistry()
    reg.register_destination("hubspot", lambda: adapter)
    reg.declare(
        User,
        "hubspot",
        serializer=UserSerializer,
        object_type="contacts",
        id_property="email",
    )
    return reg


async def create_user(session: AsyncSession, **fields: Any) -> User:
    """Persist a user last modified at :data:`PAST` unless told otherwise."""
    fields.setdefault("email", "ada@example.com")
    fields.setdefault("name", "Ada")
    fields.setdefault("updated_at", PAST)
    user = User(**fields)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def app(
    test_settings: Settings,
    registry: DestinationRegistry,
) -> AsyncGenerator[FastAPI]:
    """Application with its state initialized.

    Performs the work of the application lifespan by hand because
    ASGITransport does not trigger it.
    """
    from crmsync.database import create_engine as create_db_engine

    application = create_app(test_settings, registry)
    test_settings.validate_runtime_security()

    engine, factory = create_db_engine(test_settings)
    application.state.engine = engine
    application.state.session_factory = factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.run_sync(SampleBase.metadata.create_all)

    job_backend = AsyncioJobBackend()
    lock_store = InMemoryLockStore()
    application.state.job_backend = job_backend
    application.state.lock_store = lock_store
    application.state.sync_job = SyncJob(registry, factory, lock_store, job_backend)

    yield application

    await job_backend.close()
    await engine.dispose()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Authenticated HTTP client for the test application."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {TEST_API_TOKEN}"},
    ) as ac:
        yield ac
