"""Track background work items so they can be cancelled as a group."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, Set

from reading_tracker.cli.logging_utils import ERROR_LOG_LABEL, LOGGER


class BackgroundTasks:
    """Own a set of fire-and-forget tasks spawned on the running loop."""

    def __init__(self, label: str):
        self._label = label
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coroutine: Coroutine[Any, Any, Any], reason: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)

        def _discard_on_completion(fut: asyncio.Task) -> None:
            self._tasks.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                LOGGER.log(
                    ERROR_LOG_LABEL,
                    f"Background work '{reason}' failed: {exc}",
                    error=True,
                    exc_info=exc,
                )

        task.add_done_callback(_discard_on_completion)
        LOGGER.verbose(self._label, f"Scheduled background work ({reason}).")
        return task

    def cancel(self, reason: str) -> None:
        if not self._tasks:
            return
        LOGGER.verbose(
            self._label,
            f"Canceling {len(self._tasks)} pending background task(s) ({reason}).",
        )
        for pending in tuple(self._tasks):
            pending.cancel()

    async def drain(self) -> None:
        if not self._tasks:
            return
        for pending in tuple(self._tasks):
            pending.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
