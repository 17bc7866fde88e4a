"""Sync state model: one row per (entity, destination) pair."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    Select,
    String,
    Text,
    UniqueConstraint,
    select,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from crmsync.models.base import Base
from crmsync.services.datetime_service import now_utc

SYNC_STATE_TABLE = "sync_states"


class SyncState(Base):
    """Last pushed digest, remote id and outcome of an entity on one destination.

    The owner is referenced polymorphically through ``resource_type`` and
    ``resource_id``, so there is no foreign key; rows are removed by the
    delete listener the registry installs on every declared entity type.
    """

    __tablename__ = SYNC_STATE_TABLE

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    resource_id: Mapped[int] = mapped_column(Integer, nullable=False)
    destination_name: Mapped[str] = mapped_column(String, nullable=False)
    remote_id: Mapped[str | None] = mapped_column(String, nullable=True)
    last_digest: Mapped[str | None] = mapped_column(String, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc
    )

    __table_args__ = (
        UniqueConstraint(
            "resource_type",
            "resource_id",
            "destination_name",
            name="uq_sync_states_resource_destination",
        ),
        Index(
            "ix_sync_states_remote_id",
            "remote_id",
            unique=True,
            sqlite_where=text("remote_id IS NOT NULL"),
            postgresql_where=text("remote_id IS NOT NULL"),
        ),
    )

    def is_stale(self, digest: str) -> bool:
        """Return True when *digest* differs from the last pushed one."""
        return self.last_digest != digest

    @classmethod
    def with_error(cls) -> Select[tuple[SyncState]]:
        """Select states whose last attempt failed."""
        return select(cls).where(cls.last_error.is_not(None))

    @classmethod
    def without_error(cls) -> Select[tuple[SyncState]]:
        """Select states with no recorded failure."""
        return select(cls).where(cls.last_error.is_(None))

    def __repr__(self) -> str:
        return (
            f"SyncState({self.resource_type}#{self.resource_id} -> {self.destination_name}, "
            f"remote_id={self.remote_id!r})"
        )
