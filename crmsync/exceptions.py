"""Exception types raised by crmsync.

Convention:
- ``ConfigurationError``: programmer errors (an entity type used with a
  destination it never declared, an unregistered destination, a broken
  schema). Always raised to the caller, never swallowed.
- ``DestinationError`` and its subclasses: raised by destination adapters.
  The synchronizer records them on the sync state; the deleter wraps them in
  ``SynchronizationError``.
"""

from __future__ import annotations

from typing import Any


class CrmSyncError(Exception):
    """Base class for all crmsync errors."""


class ConfigurationError(CrmSyncError):
    """Raised when sync metadata or registration is missing or invalid."""


class MissingColumnError(ConfigurationError):
    """Raised at startup when the sync state table lacks a required column."""


class SynchronizationError(CrmSyncError):
    """Raised by the deleter when the destination adapter fails."""


class DestinationError(CrmSyncError):
    """Failure reported by a destination adapter.

    Carries the HTTP status (0 for transport failures) and whatever the
    destination told us about the error.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int,
        code: str | None = None,
        category: str | None = None,
        correlation_id: str | None = None,
        details: Any = None,
        raw: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.category = category
        self.correlation_id = correlation_id
        self.details = details
        self.raw = raw


class TransportError(DestinationError):
    """Network-level failure (DNS, TLS, connection, timeout)."""


class ApiError(DestinationError):
    """Destination answered with a non-success status."""


class Unauthorized(ApiError):
    """401/403."""


class NotFound(ApiError):
    """404."""


class ValidationFailed(ApiError):
    """409/422."""


class RateLimited(ApiError):
    """429."""
