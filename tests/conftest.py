"""Test configuration and fixtures."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest
import yaml

from expert_runtime.runtime.config import RuntimeSettings
from expert_runtime.workflow.engine import EngineResult

BASE_MANIFEST: dict[str, Any] = {
    "spec": "1.0",
    "name": "support",
    "version": "1.0.0",
    "description": "Customer support expert",
    "components": {
        "orchestrator": "orchestrator.md",
        "persona": ["persona/identity.md"],
        "functions": ["functions/summarize.md"],
        "processes": ["processes/triage.md"],
        "tools": ["tools/crm.yaml"],
    },
    "requires": {"tools": ["crm"]},
    "policy": {"approval": {"default": "confirm", "overrides": {"crm.lookup": "auto"}}},
    "triggers": [
        {
            "name": "new_ticket",
            "type": "webhook",
            "process": "triage",
            "preset": "gmail",
            "dedupe_key": "ticket.id",
        }
    ],
}

TRIAGE_PROCESS = """---
name: triage
description: Triage an inbound ticket
trigger: new_ticket
functions: [summarize]
tools: [crm]
inputs:
  - name: ticket
    type: object
---
# Triage

- [ ] Look up the customer with crm.lookup
- [ ] Update the ticket with crm.update_ticket
- [ ] Reply to the customer
"""

SUMMARIZE_FUNCTION = """---
name: summarize
description: Summarize a thread
outputs:
  - name: summary
    type: string
---
Summarize the thread.
"""

CRM_TOOL = {
    "name": "crm",
    "operations": [
        {"name": "lookup", "input": {"email": "string"}},
        {"name": "update_ticket"},
    ],
}


def write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def write_expert(
    root: Path,
    *,
    manifest: dict[str, Any] | None = None,
    files: dict[str, str] | None = None,
    dirname: str | None = None,
) -> Path:
    """Write a complete expert package under `root` and return its directory.

    `manifest` entries are merged over the base manifest (top-level keys
    replace); `files` add or replace component files by relative path.
    """

    data = copy.deepcopy(BASE_MANIFEST)
    data.update(manifest or {})
    expert_dir = root / (dirname or str(data.get("name") or "expert"))

    write(expert_dir / "expert.yaml", yaml.safe_dump(data, sort_keys=False))
    defaults = {
        "orchestrator.md": "# How to operate\n\nFollow the declared processes.\n",
        "persona/identity.md": "You are a calm, precise support agent.\n",
        "functions/summarize.md": SUMMARIZE_FUNCTION,
        "processes/triage.md": TRIAGE_PROCESS,
        "tools/crm.yaml": yaml.safe_dump(CRM_TOOL, sort_keys=False),
    }
    defaults.update(files or {})
    for rel, content in defaults.items():
        write(expert_dir / rel, content)
    return expert_dir


class FakeEngine:
    """Scripted workflow engine: returns queued results and records calls."""

    def __init__(self, results: list[EngineResult] | None = None) -> None:
        self.results = list(results or [])
        self.runs: list[tuple[Path, dict[str, Any], float | None]] = []
        self.resumes: list[tuple[str, bool]] = []
        self.resume_result = EngineResult(ok=True, stdout="resumed")

    async def run(
        self, workflow_path: Path, payload: dict[str, Any], timeout: float | None
    ) -> EngineResult:
        self.runs.append((workflow_path, payload, timeout))
        if self.results:
            return self.results.pop(0)
        return EngineResult(ok=True, stdout="done")

    async def resume(self, resume_token: str, approve: bool, timeout: float | None) -> EngineResult:
        self.resumes.append((resume_token, approve))
        return self.resume_result


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RuntimeSettings:
    """Settings rooted in a temporary data dir, isolated from any local .env."""

    monkeypatch.chdir(tmp_path)
    return RuntimeSettings(data_dir=tmp_path / "data", _env_file=None)


@pytest.fixture
def expert_dir(settings: RuntimeSettings) -> Path:
    return write_expert(settings.experts_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_expert(settings: RuntimeSettings):
    """Factory writing expert packages into the installed experts dir."""

    def _make(**kwargs: Any) -> Path:
        return write_expert(settings.experts_dir, **kwargs)

    return _make
