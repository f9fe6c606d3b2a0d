"""Run compiled workflows with retry, and pause/resume them around approvals."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from expert_runtime.approvals import ApprovalRequest, ApprovalStore, decision_state
from expert_runtime.errors import ApprovalNotFound, WorkflowNotFound
from expert_runtime.runtime.logging import log_context
from expert_runtime.spec.manifest import ExpertManifest
from expert_runtime.workflow.durations import backoff_delay, parse_duration
from expert_runtime.workflow.engine import WorkflowEngine
from expert_runtime.workflow.models import workflow_path
from expert_runtime.workflow.signals import parse_approval_signal

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_OPERATION = "unknown.operation"
DEFAULT_PAUSE_REASON = "Lobster step requires approval"

RunStatus = Literal["succeeded", "failed", "paused"]

ApprovalNotifier = Callable[[ApprovalRequest, str], Awaitable[None]]
DirectResolver = Callable[[ApprovalRequest], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RunOutcome:
    status: RunStatus
    output: str = ""
    error: str | None = None
    request_id: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "succeeded"

    @property
    def paused(self) -> bool:
        return self.status == "paused"

    def describe(self) -> str:
        if self.paused:
            return f"Paused awaiting approval. requestId={self.request_id}"
        if self.ok:
            return self.output or "Process completed."
        return self.error or "Process failed."


async def _no_notification(request: ApprovalRequest, message: str) -> None:
    return None


class ProcessExecutor:
    """Execute compiled workflows through a :class:`WorkflowEngine`.

    Args:
        compiled_dir: Root of the compiled workflow tree.
        approvals: Store that receives pause requests.
        engine: External engine adapter.
        default_timeout: Per-attempt timeout (seconds) when the manifest sets none.
        on_approval_required: Awaited after a pause request is recorded.
        on_direct_resolution: Awaited when a request without a resume token is
            approved; applies the request's payload.
        sleep: Backoff sleeper. Tests replace it to observe delays.
    """

    def __init__(
        self,
        *,
        compiled_dir: Path,
        approvals: ApprovalStore,
        engine: WorkflowEngine,
        default_timeout: float,
        on_approval_required: ApprovalNotifier | None = None,
        on_direct_resolution: DirectResolver | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.compiled_dir = compiled_dir
        self.approvals = approvals
        self.engine = engine
        self.default_timeout = default_timeout
        self._notify = on_approval_required or _no_notification
        self._on_direct_resolution = on_direct_resolution
        self._sleep = sleep

    async def run(
        self,
        expert_name: str,
        process_name: str,
        payload: dict[str, Any],
        manifest: ExpertManifest,
    ) -> RunOutcome:
        with log_context(expert=expert_name, process_name=process_name):
            return await self._run(expert_name, process_name, payload, manifest)

    async def _run(
        self,
        expert_name: str,
        process_name: str,
        payload: dict[str, Any],
        manifest: ExpertManifest,
    ) -> RunOutcome:
        path = workflow_path(self.compiled_dir, expert_name, process_name)
        if not await asyncio.to_thread(path.exists):
            raise WorkflowNotFound(f"Compiled workflow not found for process '{process_name}'")

        retry = manifest.execution.retry
        max_attempts = max(1, retry.max_attempts)
        base_delay = parse_duration(retry.delay)
        timeout = parse_duration(manifest.execution.timeout) or self.default_timeout

        failures: list[str] = []
        for attempt in range(1, max_attempts + 1):
            result = await self.engine.run(path, payload, timeout)

            signal = parse_approval_signal(result.combined_output)
            if signal is not None:
                request = await self.approvals.create(
                    expert_name=expert_name,
                    operation=signal.operation or DEFAULT_PAUSE_OPERATION,
                    tier=signal.tier,
                    reason=signal.reason or DEFAULT_PAUSE_REASON,
                    payload=payload,
                    timeout_seconds=parse_duration(manifest.policy.approval.timeout) or None,
                    resume_token=signal.resume_token,
                    workflow_path=str(path),
                    process_name=process_name,
                )
                await self._notify(
                    request, f"Approval required for {request.operation}. requestId={request.id}"
                )
                logger.info("Process paused awaiting approval", extra={"request_id": request.id})
                return RunOutcome(
                    status="paused", output=result.stdout, request_id=request.id, attempts=attempt
                )

            if result.ok:
                logger.info("Process succeeded", extra={"attempt": attempt})
                return RunOutcome(status="succeeded", output=result.stdout, attempts=attempt)

            failures.append(f"attempt {attempt}: {result.error}")
            logger.warning(
                "Process attempt failed",
                extra={"attempt": attempt, "timed_out": result.timed_out},
            )
            if attempt < max_attempts:
                await self._sleep(backoff_delay(retry.backoff, base_delay, attempt))

        return RunOutcome(status="failed", error="; ".join(failures), attempts=max_attempts)

    async def resume(self, request_id: str, approve: bool) -> RunOutcome:
        request = await self.approvals.get(request_id)
        if request is None:
            raise ApprovalNotFound(f"Approval request not found: {request_id}")

        outcome = decision_state(approve)
        if request.resume_token is None:
            if approve and self._on_direct_resolution is not None:
                await self._on_direct_resolution(request)
            await self.approvals.resolve(request_id, outcome)
            return RunOutcome(status="succeeded", output=f"Request {outcome.value}.", attempts=0)

        with log_context(expert=request.expert_name, process_name=request.process_name):
            try:
                result = await self.engine.resume(request.resume_token, approve, self.default_timeout)
            finally:
                await self.approvals.resolve(request_id, outcome)

        logger.info(
            "Resumed suspended process",
            extra={"request_id": request_id, "approved": approve, "ok": result.ok},
        )
        if result.ok:
            return RunOutcome(status="succeeded", output=result.stdout, attempts=1)
        return RunOutcome(status="failed", output=result.stdout, error=result.error, attempts=1)
