"""Named FIFO queues for trigger dispatch.

Modes:

- ``parallel``: run immediately.
- ``serial``: one queue per trigger name, across all keys.
- ``serial_per_key`` (and any other mode): one queue per trigger name and
  resolved key; a missing key falls back to a single per-trigger queue.

Each queue is a chain of futures. A task waits for the tail that was current
when it was enqueued, so tasks run one at a time in arrival order. The tail is
released whether the task succeeds or fails, and each caller only sees its own
task's result or exception.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

PARALLEL = "parallel"
SERIAL = "serial"
SERIAL_PER_KEY = "serial_per_key"


def queue_name(mode: str, trigger_name: str, key: str | None) -> str | None:
    if mode == PARALLEL:
        return None
    if mode == SERIAL:
        return f"serial:{trigger_name}"
    return f"key:{trigger_name}:{key if key is not None else f'fallback:{trigger_name}'}"


def _release(done: asyncio.Future[None]) -> None:
    if not done.done():
        done.set_result(None)


class ConcurrencyQueue:
    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future[None]] = {}

    def active_queues(self) -> list[str]:
        return sorted(self._tails)

    async def enqueue(
        self,
        mode: str,
        trigger_name: str,
        key: str | None,
        task: Callable[[], Awaitable[T]],
    ) -> T:
        name = queue_name(mode, trigger_name, key)
        if name is None:
            return await task()

        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        previous = self._tails.get(name)
        self._tails[name] = done
        try:
            if previous is not None:
                await asyncio.shield(previous)
            return await task()
        finally:
            if previous is not None and not previous.done():
                # Cancelled while waiting: keep the chain ordered behind `previous`.
                previous.add_done_callback(lambda _f: _release(done))
            else:
                _release(done)
            if self._tails.get(name) is done:
                del self._tails[name]
