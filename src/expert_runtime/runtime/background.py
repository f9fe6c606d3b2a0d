"""Periodic background sweeps (approval timeouts, dedupe eviction)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundSweeper:
    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def running(self) -> list[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    def start(self, name: str, interval: float, sweep: Callable[[], Awaitable[Any]]) -> None:
        if name in self._tasks and not self._tasks[name].done():
            return
        self._tasks[name] = asyncio.create_task(
            self._loop(name, interval, sweep), name=f"sweep-{name}"
        )

    async def _loop(self, name: str, interval: float, sweep: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await sweep()
            except Exception:
                # One failed sweep must not stop the schedule.
                logger.exception("Background sweep failed", extra={"sweep": name})

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
