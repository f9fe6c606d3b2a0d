"""Persisted pending-approval requests.

Only pending requests are stored. Resolving or expiring a request removes it;
terminal states are reported to the caller, never retained.

Every read-modify-write happens under one lock, so concurrent callers never
interleave a read and a write on the file.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from expert_runtime.approvals.state_machine import ApprovalState, transition
from expert_runtime.fileio import write_atomic

logger = logging.getLogger(__name__)


class ApprovalRequest(BaseModel):
    id: str
    expert_name: str
    operation: str
    tier: str
    reason: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    state: ApprovalState = ApprovalState.PENDING

    # Absolute deadline, seconds since the epoch.
    timeout_at: float | None = None
    # Correlates the request with a suspended engine execution.
    resume_token: str | None = None
    workflow_path: str | None = None
    process_name: str | None = None

    @property
    def resumable(self) -> bool:
        return self.resume_token is not None

    def is_expired(self, now: float) -> bool:
        return self.timeout_at is not None and self.timeout_at <= now


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class ApprovalStore:
    path: Path
    clock: Callable[[], float] = field(default=time.time)

    def __post_init__(self) -> None:
        self._lock = asyncio.Lock()

    def _load_unlocked(self) -> list[ApprovalRequest]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Pending approvals file is corrupt; starting empty", extra={"path": str(self.path)})
            return []
        items = raw.get("approvals") if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            return []
        return [ApprovalRequest.model_validate(item) for item in items]

    def _save_unlocked(self, requests: list[ApprovalRequest]) -> None:
        payload = {"approvals": [r.model_dump(mode="json") for r in requests]}
        write_atomic(self.path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")

    async def _load(self) -> list[ApprovalRequest]:
        return await asyncio.to_thread(self._load_unlocked)

    async def _save(self, requests: list[ApprovalRequest]) -> None:
        await asyncio.to_thread(self._save_unlocked, requests)

    async def list_pending(self) -> list[ApprovalRequest]:
        async with self._lock:
            return await self._load()

    async def get(self, request_id: str) -> ApprovalRequest | None:
        async with self._lock:
            for request in await self._load():
                if request.id == request_id:
                    return request
            return None

    async def create(
        self,
        *,
        expert_name: str,
        operation: str,
        tier: str,
        reason: str,
        payload: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
        resume_token: str | None = None,
        workflow_path: str | None = None,
        process_name: str | None = None,
    ) -> ApprovalRequest:
        """Record a new pending request.

        A resume token maps to at most one pending request: if one already
        exists for `resume_token`, it is returned unchanged.
        """

        async with self._lock:
            requests = await self._load()
            if resume_token is not None:
                for existing in requests:
                    if existing.resume_token == resume_token:
                        logger.info(
                            "Approval already pending for resume token",
                            extra={"request_id": existing.id},
                        )
                        return existing

            record = ApprovalRequest(
                id=uuid.uuid4().hex,
                expert_name=expert_name,
                operation=operation,
                tier=tier,
                reason=reason,
                payload=dict(payload or {}),
                created_at=_utc_iso_now(),
                timeout_at=self.clock() + timeout_seconds if timeout_seconds else None,
                resume_token=resume_token,
                workflow_path=workflow_path,
                process_name=process_name,
            )
            requests.append(record)
            await self._save(requests)

        logger.info(
            "Approval requested",
            extra={"request_id": record.id, "expert": expert_name, "operation": operation, "tier": tier},
        )
        return record

    async def resolve(
        self, request_id: str, outcome: ApprovalState = ApprovalState.APPROVED
    ) -> ApprovalRequest | None:
        """Move a pending request to `outcome` and drop it.

        Returns the removed request in its terminal state, or None when no such
        request is pending. A stored record that is not pending raises
        :class:`IllegalTransitionError` and is left in place.
        """

        async with self._lock:
            requests = await self._load()
            found = next((r for r in requests if r.id == request_id), None)
            if found is None:
                return None
            removed = found.model_copy(update={"state": transition(current=found.state, to=outcome)})
            await self._save([r for r in requests if r.id != request_id])

        logger.info("Approval resolved", extra={"request_id": request_id, "outcome": outcome.value})
        return removed

    async def expire_timed_out(self, now: float | None = None) -> list[ApprovalRequest]:
        """Remove and return every request whose deadline has passed.

        The removal and the read happen under one lock, so each request is
        reported by exactly one sweep.
        """

        async with self._lock:
            current = self.clock() if now is None else now
            requests = await self._load()
            expired = [
                r.model_copy(update={"state": transition(current=r.state, to=ApprovalState.EXPIRED)})
                for r in requests
                if r.is_expired(current)
            ]
            if not expired:
                return []
            expired_ids = {r.id for r in expired}
            await self._save([r for r in requests if r.id not in expired_ids])

        for request in expired:
            logger.warning(
                "Approval timed out",
                extra={"request_id": request.id, "operation": request.operation},
            )
        return expired
