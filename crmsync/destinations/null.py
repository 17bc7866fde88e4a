"""No-op destination for development and tests."""

from __future__ import annotations

import uuid
from typing import Any


class NullAdapter:
    """Accept every upsert and delete without talking to anything."""

    async def upsert(
        self,
        object_type: str,
        payload: dict[str, Any],
        id_property: str | None = None,
    ) -> str:
        remote_id = payload.get("id")
        if remote_id is None:
            return uuid.uuid4().hex
        return str(remote_id)

    async def delete(self, object_type: str, remote_id: str) -> bool:
        return True
