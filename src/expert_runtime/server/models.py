"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ApiExpert(BaseModel):
    name: str
    version: str
    status: Literal["active", "installed"]
    bound: int
    required: int
    triggers: int


class ApiFinding(BaseModel):
    severity: Literal["error", "warn"]
    code: str
    message: str
    path: str | None = None
    category: str = "manifest"


class ApiValidation(BaseModel):
    ok: bool
    report: str
    findings: list[ApiFinding] = Field(default_factory=list)


class ApiApproval(BaseModel):
    id: str
    expert_name: str
    operation: str
    tier: str
    reason: str
    created_at: str
    timeout_at: float | None = None
    resumable: bool = False
    process_name: str | None = None


class ApiRunOutcome(BaseModel):
    status: Literal["succeeded", "failed", "paused"]
    output: str = ""
    error: str | None = None
    request_id: str | None = None
    attempts: int = 0


class RunRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class TriggerAccepted(BaseModel):
    expert: str
    trigger: str
    deduplicated: bool
