"""FastAPI app factory.

Endpoints are thin wrappers over :class:`ExpertRuntime`. The webhook ingress
feeds inbound events to the trigger runtime; it does not schedule anything.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, HTTPException

from expert_runtime import __version__
from expert_runtime.approvals import ApprovalRequest
from expert_runtime.errors import (
    ActivationBlocked,
    ApprovalNotFound,
    ExpertNotFound,
    ExpertRuntimeError,
    TriggerConfigError,
    WorkflowNotFound,
)
from expert_runtime.runtime.service import ExpertRuntime
from expert_runtime.server.models import (
    ApiApproval,
    ApiExpert,
    ApiFinding,
    ApiRunOutcome,
    ApiValidation,
    RunRequest,
    TriggerAccepted,
)
from expert_runtime.spec.validator import render_report
from expert_runtime.workflow.executor import RunOutcome

logger = logging.getLogger(__name__)


def _http_error(e: ExpertRuntimeError) -> HTTPException:
    if isinstance(e, (ExpertNotFound, ApprovalNotFound, WorkflowNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ActivationBlocked):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, TriggerConfigError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _to_api_approval(request: ApprovalRequest) -> ApiApproval:
    return ApiApproval(
        id=request.id,
        expert_name=request.expert_name,
        operation=request.operation,
        tier=request.tier,
        reason=request.reason,
        created_at=request.created_at,
        timeout_at=request.timeout_at,
        resumable=request.resumable,
        process_name=request.process_name,
    )


def _to_api_outcome(outcome: RunOutcome) -> ApiRunOutcome:
    return ApiRunOutcome(
        status=outcome.status,
        output=outcome.output,
        error=outcome.error,
        request_id=outcome.request_id,
        attempts=outcome.attempts,
    )


def create_app(runtime: ExpertRuntime | None = None) -> FastAPI:
    rt = runtime or ExpertRuntime()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await rt.boot()
        await rt.on_startup()
        rt.start_background()
        try:
            yield
        finally:
            await rt.shutdown()

    app = FastAPI(
        title="Expert Runtime",
        version=__version__,
        description="REST API over the expert runtime.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Expose the runtime for request handlers that want to read it.
    app.state.runtime = rt
    app.state.settings = rt.settings

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/v1/experts", response_model=list[ApiExpert])
    async def list_experts() -> list[ApiExpert]:
        summaries = await rt.list_experts()
        return [
            ApiExpert(
                name=s.name,
                version=s.version,
                status="active" if s.status == "active" else "installed",
                bound=s.bound,
                required=s.required,
                triggers=s.triggers,
            )
            for s in summaries
        ]

    @app.post("/api/v1/experts/{expert}/validate", response_model=ApiValidation)
    async def validate_expert(expert: str) -> ApiValidation:
        try:
            result = await rt.validate(expert)
        except ExpertRuntimeError as e:
            raise _http_error(e) from e
        return ApiValidation(
            ok=result.ok,
            report=render_report(result.findings),
            findings=[
                ApiFinding(
                    severity=f.severity,
                    code=f.code,
                    message=f.message,
                    path=f.path,
                    category=f.category,
                )
                for f in result.findings
            ],
        )

    @app.post("/api/v1/experts/{expert}/processes/{process}/run", response_model=ApiRunOutcome)
    async def run_process(expert: str, process: str, req: RunRequest) -> ApiRunOutcome:
        try:
            outcome = await rt.run(expert, process, req.payload)
        except ExpertRuntimeError as e:
            raise _http_error(e) from e
        return _to_api_outcome(outcome)

    @app.post("/api/v1/experts/{expert}/triggers/{trigger}", response_model=TriggerAccepted)
    async def webhook(
        expert: str, trigger: str, payload: dict[str, Any] | None = Body(default=None)
    ) -> TriggerAccepted:
        try:
            accepted = await rt.fire_trigger(expert, trigger, payload or {})
        except ExpertRuntimeError as e:
            raise _http_error(e) from e
        return TriggerAccepted(expert=expert, trigger=trigger, deduplicated=not accepted)

    @app.get("/api/v1/approvals", response_model=list[ApiApproval])
    async def list_approvals() -> list[ApiApproval]:
        return [_to_api_approval(r) for r in await rt.pending_approvals()]

    @app.post("/api/v1/approvals/{request_id}/approve", response_model=ApiRunOutcome)
    async def approve(request_id: str) -> ApiRunOutcome:
        try:
            outcome = await rt.approve(request_id)
        except ExpertRuntimeError as e:
            raise _http_error(e) from e
        return _to_api_outcome(outcome)

    @app.post("/api/v1/approvals/{request_id}/reject", response_model=ApiRunOutcome)
    async def reject(request_id: str) -> ApiRunOutcome:
        try:
            outcome = await rt.reject(request_id)
        except ExpertRuntimeError as e:
            raise _http_error(e) from e
        return _to_api_outcome(outcome)

    return app
