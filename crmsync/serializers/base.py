"""Base serializer turning an entity into a destination payload."""

from __future__ import annotations

from typing import Any


class BaseSerializer:
    """Build the payload pushed to a destination for one entity.

    Subclasses implement :meth:`as_payload` as a pure function of the entity's
    current state; the synchronizer digests its result to skip no-op pushes.
    """

    def __init__(self, entity: Any) -> None:
        self.entity = entity

    def as_payload(self) -> dict[str, Any]:
        """Return a mapping of destination field name to value."""
        raise NotImplementedError(f"{type(self).__name__} must implement as_payload()")
