"""Job backends: where scheduled synchronizations are handed off for execution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobRequest:
    """Arguments of one scheduled synchronization."""

    resource_type: str
    resource_id: int
    destination_name: str
    attempt: int = 1


JobHandler = Callable[[JobRequest], Awaitable[None]]


@runtime_checkable
class JobBackend(Protocol):
    """Queue that runs ``handler(request)`` later, possibly in another process."""

    async def submit(self, handler: JobHandler, request: JobRequest, *, delay: float = 0.0) -> None:
        """Schedule *handler* for *request* after *delay* seconds."""
        ...


class AsyncioJobBackend:
    """Run jobs as background tasks on the current event loop.

    Jobs do not survive a restart. Failures are logged, not raised: the job
    has already decided whether to retry by the time its exception gets here.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of jobs scheduled or running."""
        return len(self._tasks)

    async def submit(self, handler: JobHandler, request: JobRequest, *, delay: float = 0.0) -> None:
        task = asyncio.create_task(
            self._run(handler, request, delay),
            name=f"sync:{request.resource_type}:{request.resource_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every job, including retries scheduled meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding jobs."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    async def _run(handler: JobHandler, request: JobRequest, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await handler(request)
        except Exception:
            logger.exception(
                "Sync job for %s#%s on %s failed (attempt %d)",
                request.resource_type,
                request.resource_id,
                request.destination_name,
                request.attempt,
            )
