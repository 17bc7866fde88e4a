"""HubSpot destination adapter using the CRM v3 objects API."""

from __future__ import annotations

import functools
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from crmsync.exceptions import (
    ApiError,
    DestinationError,
    NotFound,
    RateLimited,
    TransportError,
    Unauthorized,
    ValidationFailed,
)

if TYPE_CHECKING:
    from crmsync.config import Settings
    from crmsync.destinations.base import AdapterFactory

logger = logging.getLogger(__name__)

HUBSPOT_API_BASE = "https://api.hubapi.com"
DEFAULT_TIMEOUT_SECONDS = 15.0
FALLBACK_ERROR_MESSAGE = "HubSpot API request failed"


def _error_class(status: int) -> type[ApiError]:
    if status in (401, 403):
        return Unauthorized
    if status == 404:
        return NotFound
    if status in (409, 422):
        return ValidationFailed
    if status == 429:
        return RateLimited
    return ApiError


def _parse_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class HubSpotAdapter:
    """Create, update and delete HubSpot CRM objects.

    ``object_type`` is any HubSpot object type: native ones such as
    ``contacts`` or ``companies`` and custom ones such as ``p12345_widgets``.
    An injected ``client`` is used as is and never closed by the adapter.
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = HUBSPOT_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def upsert(
        self,
        object_type: str,
        payload: dict[str, Any],
        id_property: str | None = None,
    ) -> str:
        """Update the object matching ``payload[id_property]``, or create one."""
        self._require_object_type(object_type)
        if not isinstance(payload, dict):
            msg = "payload must be a dict"
            raise ValueError(msg)

        properties = {str(key): value for key, value in payload.items()}
        unique_value = properties.pop(id_property, None) if id_property else None

        object_id = None
        if id_property and unique_value is not None:
            object_id = await self._find_object_id(object_type, id_property, unique_value)

        if object_id is not None:
            await self._update_object(object_type, object_id, properties)
            return object_id

        if id_property and unique_value is not None:
            properties[id_property] = unique_value
        return await self._create_object(object_type, properties)

    async def delete(self, object_type: str, remote_id: str) -> bool:
        """Archive an object. Returns False when HubSpot does not know it."""
        self._require_object_type(object_type)
        if remote_id is None or not str(remote_id).strip():
            msg = "remote_id must be provided"
            raise ValueError(msg)

        path = f"/crm/v3/objects/{object_type}/{remote_id}"
        response = await self._request("DELETE", path)
        if _is_success(response.status_code):
            return True
        if response.status_code == 404:
            return False
        raise self._error_for(response, path)

    # ── HubSpot calls ────────────────────────────────

    async def _find_object_id(self, object_type: str, prop: str, value: Any) -> str | None:
        path = f"/crm/v3/objects/{object_type}/search"
        body = {
            "filterGroups": [
                {"filters": [{"propertyName": prop, "operator": "EQ", "value": value}]}
            ],
            "properties": ["hs_object_id"],
            "limit": 1,
        }
        response = await self._request("POST", path, body)
        if response.status_code == 200:
            data = _parse_json(response)
            results = data.get("results") if isinstance(data, dict) else None
            if isinstance(results, list) and results:
                return str(results[0]["id"])
            return None
        if response.status_code == 404:
            return None
        raise self._error_for(response, path)

    async def _update_object(
        self, object_type: str, object_id: str, properties: dict[str, Any]
    ) -> None:
        path = f"/crm/v3/objects/{object_type}/{object_id}"
        response = await self._request("PATCH", path, {"properties": properties})
        if not _is_success(response.status_code):
            raise self._error_for(response, path)

    async def _create_object(self, object_type: str, properties: dict[str, Any]) -> str:
        path = f"/crm/v3/objects/{object_type}"
        response = await self._request("POST", path, {"properties": properties})
        if not _is_success(response.status_code):
            raise self._error_for(response, path)
        data = _parse_json(response)
        if isinstance(data, dict) and data.get("id"):
            return str(data["id"])
        msg = f"HubSpot create response has no object id (path={path})"
        raise ApiError(msg, status=response.status_code, raw=response.text)

    # ── Transport ────────────────────────────────────

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                return await self._client.request(
                    method, url, headers=headers, json=body, timeout=self._timeout
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            logger.warning("HubSpot %s %s failed: %s", method, path, exc)
            msg = f"HTTP transport error: {type(exc).__name__}: {exc}"
            raise TransportError(msg, status=0) from exc

    @staticmethod
    def _error_for(response: httpx.Response, path: str) -> DestinationError:
        status = response.status_code
        data = _parse_json(response)
        body = data if isinstance(data, dict) else {}

        message = body.get("message") or FALLBACK_ERROR_MESSAGE
        category = body.get("category")
        correlation_id = body.get("correlationId")
        details = body.get("errors") or body.get("context")
        code = body.get("status") or body.get("errorType") or category

        full_message = f"{message} (status={status}, path={path}"
        if category:
            full_message += f", category={category}"
        if correlation_id:
            full_message += f", correlationId={correlation_id}"
        full_message += ")"

        return _error_class(status)(
            full_message,
            status=status,
            code=code,
            category=category,
            correlation_id=correlation_id,
            details=details,
            raw=response.text,
        )

    @staticmethod
    def _require_object_type(object_type: str) -> None:
        if not isinstance(object_type, str) or not object_type.strip():
            msg = "object_type must be a non-empty string"
            raise ValueError(msg)


def adapter_from_settings(settings: Settings) -> AdapterFactory:
    """Adapter factory bound to the configured access token, API base and timeout."""
    return functools.partial(
        HubSpotAdapter,
        settings.hubspot_access_token,
        base_url=settings.hubspot_api_base,
        timeout=settings.http_timeout_seconds,
    )
