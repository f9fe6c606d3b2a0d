"""Typed access to the host configuration document.

The host's configuration is an opaque nested JSON document. The runtime only
needs a handful of values from it, addressed by dotted paths such as
``mcp.entries`` or ``hooks.token``:

- :meth:`HostConfig.get` walks the path and returns ``default`` as soon as a
  segment is missing or a non-mapping value is met.
- :meth:`HostConfig.set` creates (or replaces with) mappings along the path and
  assigns the leaf.

Writes are whole-document rewrites via :meth:`HostConfig.save`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from expert_runtime.fileio import write_atomic

logger = logging.getLogger(__name__)


@dataclass
class HostConfig:
    data: dict[str, Any] = field(default_factory=dict)
    source: Path | None = None

    @classmethod
    def load(cls, path: Path | None) -> HostConfig:
        if path is None or not path.exists():
            return cls(data={}, source=path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            logger.warning("Host config is not valid JSON; treating as empty", extra={"path": str(path)})
            return cls(data={}, source=path)
        return cls(data=raw if isinstance(raw, dict) else {}, source=path)

    def save(self) -> None:
        if self.source is None:
            raise ValueError("Host config has no backing file")
        write_atomic(self.source, json.dumps(self.data, indent=2, ensure_ascii=False) + "\n")

    def get(self, path: str, default: Any = None) -> Any:
        current: Any = self.data
        for part in path.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def set(self, path: str, value: Any) -> None:
        parts = path.split(".")
        current = self.data
        for part in parts[:-1]:
            nxt = current.get(part)
            if not isinstance(nxt, dict):
                nxt = {}
                current[part] = nxt
            current = nxt
        current[parts[-1]] = value

    def keys(self, path: str) -> list[str]:
        """Keys of the mapping at `path` (empty when absent or not a mapping)."""

        value = self.get(path)
        return list(value) if isinstance(value, dict) else []

    def strings(self, path: str) -> list[str]:
        value = self.get(path)
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]

    def flag(self, path: str) -> bool:
        return self.get(path) is True

    def text(self, path: str, default: str = "") -> str:
        value = self.get(path)
        return value if isinstance(value, str) else default
