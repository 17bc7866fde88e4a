"""Command-line client for the crmsync server."""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any
from urllib.parse import urlparse

try:
    import httpx
except ImportError:
    print("Error: httpx is required. Install with: pip install httpx")
    sys.exit(1)

SERVER_ENV = "CRMSYNC_SERVER"
TOKEN_ENV = "CRMSYNC_TOKEN"
DEFAULT_SERVER = "http://localhost:8000"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class SyncApiClient:
    """Thin wrapper over the crmsync HTTP API."""

    def __init__(
        self,
        server_url: str,
        token: str,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.server_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=300.0,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> SyncApiClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def batch(
        self,
        entity_types: list[str] | None = None,
        destination: str | None = None,
        *,
        run_async: bool = True,
        page_size: int | None = None,
    ) -> dict[str, Any]:
        """Sync every stale entity."""
        body: dict[str, Any] = {"run_async": run_async}
        if entity_types:
            body["entity_types"] = entity_types
        if destination:
            body["destination"] = destination
        if page_size is not None:
            body["page_size"] = page_size
        resp = self.client.post("/api/sync/batch", json=body)
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def sync(
        self, resource_type: str, resource_id: int, destination: str, *, run_async: bool = True
    ) -> dict[str, Any]:
        """Sync or schedule one entity."""
        resp = self.client.post(
            f"/api/sync/{resource_type}/{resource_id}",
            params={"destination": destination, "run_async": str(run_async).lower()},
        )
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def delete(self, resource_type: str, resource_id: int, destination: str) -> dict[str, Any]:
        """Delete one entity from a destination."""
        resp = self.client.delete(
            f"/api/sync/{resource_type}/{resource_id}",
            params={"destination": destination},
        )
        resp.raise_for_status()
        result: dict[str, Any] = resp.json()
        return result

    def errors(self, destination: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        """List sync states whose last attempt failed."""
        params: dict[str, Any] = {"errors_only": "true", "limit": limit}
        if destination:
            params["destination"] = destination
        resp = self.client.get("/api/sync/states", params=params)
        resp.raise_for_status()
        result: list[dict[str, Any]] = resp.json()
        return result


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crmsync-sync",
        description="Trigger and inspect CRM synchronization on a crmsync server",
    )
    parser.add_argument("--server", "-s", help=f"Server URL (default: ${SERVER_ENV})")
    parser.add_argument("--token", "-t", help=f"API token (default: ${TOKEN_ENV})")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")

    batch = subparsers.add_parser("batch", help="Sync every stale entity")
    batch.add_argument("--type", dest="entity_types", action="append", help="Entity type name")
    batch.add_argument("--destination", help="Destination name")
    batch.add_argument("--inline", action="store_true", help="Sync inline instead of enqueuing")
    batch.add_argument("--page-size", type=int, help="Primary keys fetched per page")

    sync = subparsers.add_parser("sync", help="Sync one entity")
    sync.add_argument("resource_type")
    sync.add_argument("resource_id", type=int)
    sync.add_argument("--destination", required=True, help="Destination name")
    sync.add_argument("--inline", action="store_true", help="Sync inline instead of enqueuing")

    delete = subparsers.add_parser("delete", help="Delete one entity from a destination")
    delete.add_argument("resource_type")
    delete.add_argument("resource_id", type=int)
    delete.add_argument("--destination", required=True, help="Destination name")

    errors = subparsers.add_parser("errors", help="List failed synchronizations")
    errors.add_argument("--destination", help="Destination name")
    errors.add_argument("--limit", type=int, default=100)

    return parser


def _print_batch(stats: dict[str, Any]) -> None:
    print("Batch sync:")
    print(f"  Processed: {stats.get('total', 0)}")
    print(f"  Errors:    {stats.get('errors', 0)}")
    if stats.get("coalesced"):
        print(f"  Coalesced: {stats['coalesced']}")
    for type_name, count in sorted(stats.get("per_entity_type", {}).items()):
        print(f"    {type_name}: {count}")


def _print_errors(states: list[dict[str, Any]]) -> None:
    if not states:
        print("No failed synchronizations.")
        return
    for state in states:
        print(
            f"  {state['resource_type']}#{state['resource_id']} -> "
            f"{state['destination_name']}: {state.get('last_error')}"
        )


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    configured_server_url = args.server or os.environ.get(SERVER_ENV) or DEFAULT_SERVER
    try:
        server_url = validate_server_url(configured_server_url, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    token = args.token or os.environ.get(TOKEN_ENV)
    if not token:
        print(f"Error: No API token. Pass --token or set {TOKEN_ENV}.")
        sys.exit(1)

    with SyncApiClient(server_url, token) as client:
        try:
            if args.command == "batch":
                _print_batch(
                    client.batch(
                        args.entity_types,
                        args.destination,
                        run_async=not args.inline,
                        page_size=args.page_size,
                    )
                )
            elif args.command == "sync":
                result = client.sync(
                    args.resource_type,
                    args.resource_id,
                    args.destination,
                    run_async=not args.inline,
                )
                print(json.dumps(result, indent=2))
            elif args.command == "delete":
                result = client.delete(args.resource_type, args.resource_id, args.destination)
                print(json.dumps(result, indent=2))
            elif args.command == "errors":
                _print_errors(client.errors(args.destination, args.limit))
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text
            print(f"Error: {exc.response.status_code} {detail}")
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Error: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
