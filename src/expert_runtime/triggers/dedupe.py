"""Suppression of repeat trigger firings inside a time window.

State is a flat JSON object ``{"<expert>:<trigger>:<value>": epoch_seconds}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from expert_runtime.fileio import write_atomic

logger = logging.getLogger(__name__)


def dedupe_key(expert_name: str, trigger_name: str, value: str) -> str:
    return f"{expert_name}:{trigger_name}:{value}"


@dataclass
class DedupeStore:
    path: Path
    window_seconds: float
    clock: Callable[[], float] = field(default=time.time)

    def __post_init__(self) -> None:
        self._lock = asyncio.Lock()
        self._entries: dict[str, float] = {}

    def _read_unlocked(self) -> dict[str, float]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Dedupe state is corrupt; starting empty", extra={"path": str(self.path)})
            return {}
        if not isinstance(raw, dict):
            return {}
        return {
            str(k): float(v)
            for k, v in raw.items()
            if isinstance(v, (int, float)) and not isinstance(v, bool)
        }

    def _write_unlocked(self, entries: dict[str, float]) -> None:
        write_atomic(self.path, json.dumps(entries, indent=2, sort_keys=True) + "\n")

    def _in_window(self, ts: float, now: float) -> bool:
        return now - ts < self.window_seconds

    def last_seen(self, key: str) -> float | None:
        return self._entries.get(key)

    async def load(self) -> int:
        """Reload persisted entries, dropping any already outside the window."""

        async with self._lock:
            saved = await asyncio.to_thread(self._read_unlocked)
            now = self.clock()
            self._entries = {k: ts for k, ts in saved.items() if self._in_window(ts, now)}
            return len(self._entries)

    async def check_and_record(self, key: str) -> bool:
        """Record a firing for `key`.

        Returns False (and records nothing) when `key` already fired inside the
        window; True when the firing should proceed.
        """

        async with self._lock:
            now = self.clock()
            previous = self._entries.get(key)
            if previous is not None and self._in_window(previous, now):
                return False
            self._entries[key] = now
            await asyncio.to_thread(self._write_unlocked, dict(self._entries))
            return True

    async def sweep(self) -> int:
        """Evict entries older than the window. Returns the number evicted."""

        async with self._lock:
            now = self.clock()
            kept = {k: ts for k, ts in self._entries.items() if self._in_window(ts, now)}
            evicted = len(self._entries) - len(kept)
            self._entries = kept
            await asyncio.to_thread(self._write_unlocked, dict(kept))
        if evicted:
            logger.debug("Dedupe entries evicted", extra={"evicted": evicted})
        return evicted
