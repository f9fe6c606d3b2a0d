"""Persisted tool bindings, one YAML file per expert.

A binding resolves an abstract tool a package requires (``crm``) to something
the host can actually call: an MCP server or a skill.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from expert_runtime.errors import BindingsInvalid
from expert_runtime.fileio import write_atomic

logger = logging.getLogger(__name__)

BINDINGS_FILENAME = "bindings.yaml"


class ToolBinding(BaseModel):
    type: Literal["mcp", "skill"]
    server: str | None = None
    skill: str | None = None

    # Per-operation rename: abstract operation -> name exposed by the target.
    operations: dict[str, str] = Field(default_factory=dict)
    # Extra names to try for an operation when the mapped name is not found.
    aliases: dict[str, str | list[str]] = Field(default_factory=dict)

    @property
    def target(self) -> str | None:
        return self.server if self.type == "mcp" else self.skill

    def mapped_operation(self, operation: str) -> str:
        return self.operations.get(operation) or operation

    def operation_aliases(self, operation: str) -> list[str]:
        value = self.aliases.get(operation)
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    def describe(self) -> str:
        return f"{self.type}:{self.target or 'unknown'}"


class BindingFile(BaseModel):
    tools: dict[str, ToolBinding] = Field(default_factory=dict)


def bindings_path(config_dir: Path, expert_name: str) -> Path:
    return config_dir / expert_name / BINDINGS_FILENAME


def read_bindings_file(path: Path) -> BindingFile:
    """Load `path`; a missing file is empty, an unparsable one raises.

    Raises:
        BindingsInvalid: The file is not YAML, not a mapping, or holds an entry
            that does not describe a binding. The file is not modified.
    """

    if not path.exists():
        return BindingFile()
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise BindingsInvalid(f"Unreadable bindings file {path}: {e}") from e
    if raw is None:
        return BindingFile()
    if not isinstance(raw, dict):
        raise BindingsInvalid(f"Bindings file {path} must be a mapping")
    try:
        return BindingFile.model_validate({"tools": raw.get("tools") or {}})
    except ValidationError as e:
        raise BindingsInvalid(
            f"Malformed bindings file {path}: {e.error_count()} invalid field(s)"
        ) from e


def write_bindings_file(path: Path, bindings: BindingFile) -> None:
    payload = bindings.model_dump(mode="json", exclude_defaults=True)
    payload.setdefault("tools", {})
    write_atomic(path, yaml.safe_dump(payload, sort_keys=True))


class BindingStore:
    """Binding files under `config_dir/<expert>/bindings.yaml`."""

    def __init__(self, config_dir: Path) -> None:
        self._config_dir = config_dir
        self._lock = asyncio.Lock()

    def path_for(self, expert_name: str) -> Path:
        return bindings_path(self._config_dir, expert_name)

    async def read(self, expert_name: str) -> BindingFile:
        return await asyncio.to_thread(read_bindings_file, self.path_for(expert_name))

    async def upsert(self, expert_name: str, tool: str, binding: ToolBinding) -> BindingFile:
        path = self.path_for(expert_name)
        async with self._lock:
            current = await asyncio.to_thread(read_bindings_file, path)
            current.tools[tool] = binding
            await asyncio.to_thread(write_bindings_file, path, current)
        logger.info(
            "Tool bound",
            extra={"expert": expert_name, "tool": tool, "binding": binding.describe()},
        )
        return current
