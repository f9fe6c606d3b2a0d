"""Adapter for the external workflow engine.

The engine is a separate executable. It is invoked as::

    <engine> run <workflow.lobster> --args-json '<payload>'
    <engine> resume --token <resume-token> --approve true|false

and reports through its exit code and output streams.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineResult:
    ok: bool
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def combined_output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    @property
    def error(self) -> str:
        return self.stderr or self.stdout or "unknown error"


class WorkflowEngine(Protocol):
    async def run(
        self, workflow_path: Path, payload: dict[str, Any], timeout: float | None
    ) -> EngineResult: ...

    async def resume(self, resume_token: str, approve: bool, timeout: float | None) -> EngineResult: ...


class SubprocessEngine:
    """Run the engine executable as a child process."""

    def __init__(self, command: str = "lobster") -> None:
        self.command = command

    async def run(
        self, workflow_path: Path, payload: dict[str, Any], timeout: float | None
    ) -> EngineResult:
        return await self._exec(
            ["run", str(workflow_path), "--args-json", json.dumps(payload)], timeout
        )

    async def resume(self, resume_token: str, approve: bool, timeout: float | None) -> EngineResult:
        return await self._exec(
            ["resume", "--token", resume_token, "--approve", "true" if approve else "false"],
            timeout,
        )

    async def version(self) -> str | None:
        result = await self._exec(["--version"], timeout=10.0)
        if not result.ok:
            return None
        return (result.stdout or result.stderr).strip() or "ok"

    async def _exec(self, args: list[str], timeout: float | None) -> EngineResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return EngineResult(ok=False, stderr=str(e))

        try:
            out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout or None)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning(
                "Engine invocation timed out",
                extra={"command": self.command, "action": args[0], "timeout": timeout},
            )
            return EngineResult(
                ok=False,
                stderr=f"{self.command} {args[0]} timed out after {timeout}s",
                timed_out=True,
            )

        stdout = out.decode("utf-8", errors="replace").strip()
        stderr = err.decode("utf-8", errors="replace").strip()
        if proc.returncode == 0:
            return EngineResult(ok=True, stdout=stdout, stderr=stderr)
        return EngineResult(
            ok=False,
            stdout=stdout,
            stderr=stderr or f"{self.command} {args[0]} exited with code {proc.returncode}",
        )
