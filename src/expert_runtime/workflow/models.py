"""Compiled workflow documents, in the external engine's native YAML shape."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

WORKFLOW_SUFFIX = ".lobster"


class WorkflowStep(BaseModel):
    id: str
    command: str
    operation: str | None = None
    approval: Literal["required"] | None = None
    input: dict[str, Any] | None = None
    # Callable names the engine tries in order for a bound operation.
    candidates: list[str] | None = None

    @property
    def requires_approval(self) -> bool:
        return self.approval == "required"


class CompiledWorkflow(BaseModel):
    name: str
    args: dict[str, dict[str, str]] = Field(default_factory=dict)
    steps: list[WorkflowStep] = Field(default_factory=list)

    def to_yaml(self) -> str:
        return yaml.safe_dump(
            self.model_dump(mode="json", exclude_none=True), sort_keys=False, allow_unicode=True
        )

    @classmethod
    def from_yaml(cls, text: str) -> CompiledWorkflow:
        return cls.model_validate(yaml.safe_load(text) or {})


def workflow_path(compiled_dir: Path, expert_name: str, process_name: str) -> Path:
    return compiled_dir / expert_name / f"{process_name}{WORKFLOW_SUFFIX}"


def load_workflow(path: Path) -> CompiledWorkflow:
    return CompiledWorkflow.from_yaml(path.read_text(encoding="utf-8"))


def is_stale(compiled: Path, source: Path) -> bool:
    """A compiled workflow is stale when missing or older than its process file."""

    if not compiled.exists():
        return True
    if not source.exists():
        return False
    return compiled.stat().st_mtime < source.stat().st_mtime
