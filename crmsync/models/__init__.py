"""SQLAlchemy ORM models for crmsync."""

from crmsync.models.base import Base
from crmsync.models.sync_state import SyncState

__all__ = [
    "Base",
    "SyncState",
]
