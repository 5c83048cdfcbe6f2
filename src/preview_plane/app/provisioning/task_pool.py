"""Bounded owner for background provisioning tasks.

Provisioning runs detached from the request that scheduled it. The pool keeps
a strong reference to every task (so none is garbage-collected mid-flight),
caps how many run remote calls at once, and cancels stragglers on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ProvisioningTaskPool:
    """Run at most ``max_concurrent`` provisioning coroutines at a time.

    Tasks are keyed by record id; submitting a key that is still running
    returns the existing task instead of starting a second one.
    """

    def __init__(self, max_concurrent: int = 8) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._closed = False

    @property
    def active_keys(self) -> frozenset[str]:
        return frozenset(key for key, task in self._tasks.items() if not task.done())

    def __len__(self) -> int:
        return len(self.active_keys)

    def submit(
        self,
        key: str,
        factory: Callable[[], Awaitable[None]],
    ) -> asyncio.Task[None]:
        """Schedule ``factory()`` under ``key``.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        if self._closed:
            raise RuntimeError("task pool is shut down")

        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            logger.debug("Provisioning already running for %s", key, extra={"record_id": key})
            return existing

        task = asyncio.get_running_loop().create_task(
            self._run(key, factory), name=f"provision:{key}"
        )
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return task

    async def _run(self, key: str, factory: Callable[[], Awaitable[None]]) -> None:
        async with self._semaphore:
            try:
                await factory()
            except asyncio.CancelledError:
                logger.info("Provisioning cancelled for %s", key, extra={"record_id": key})
                raise
            except Exception:
                # The orchestrator settles its own failures.
                logger.exception(
                    "Unhandled error in provisioning task %s",
                    key,
                    extra={"record_id": key},
                )

    def _forget(self, key: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    async def wait(self, key: str) -> None:
        """Wait for the task under ``key`` (no-op if none is running)."""
        task = self._tasks.get(key)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def wait_all(self) -> None:
        """Wait until every submitted task, including ones submitted meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def cancel(self, key: str) -> bool:
        task = self._tasks.get(key)
        if task is None or task.done():
            return False
        return task.cancel()

    async def shutdown(self) -> None:
        """Refuse new work, cancel in-flight tasks and wait for them to unwind."""
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d provisioning task(s) on shutdown", len(tasks))
