"""Base protocol for destination adapters."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class DestinationAdapter(Protocol):
    """Protocol for destination-specific upsert/delete implementations."""

    async def upsert(
        self,
        object_type: str,
        payload: dict[str, Any],
        id_property: str | None = None,
    ) -> str:
        """Create or update an object. Returns the destination's id for it."""
        ...

    async def delete(self, object_type: str, remote_id: str) -> bool:
        """Delete an object. Returns False when the destination reports it absent."""
        ...


# Zero-argument factory: an adapter class, or a functools.partial binding credentials.
AdapterFactory = Callable[[], DestinationAdapter]
