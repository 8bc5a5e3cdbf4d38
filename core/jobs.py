# core/jobs.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from core.backend import BackendClient, extract_detail
from core.errors import BackendRejection, NetworkFailure
from core.history import RunRecord
from core.normalizer import SERIES_FIELDS, SUMMARY_FIELDS, TRADE_FIELDS

logger = logging.getLogger(__name__)

JOB_ID_FIELDS = ("job_id", "jobId")
RESULT_FIELDS = ("result", "run", "data")
GENERIC_REJECTION = "Failed to start backtest"
NETWORK_REJECTION = "Error starting backtest"


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, raw: Any) -> "JobStatus | None":
        if not isinstance(raw, str):
            return None
        tag = raw.strip().lower()
        return STATUS_ALIASES.get(tag)


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# backend variants report the same states under different tags
STATUS_ALIASES = {
    "submitted": JobStatus.SUBMITTED,
    "queued": JobStatus.SUBMITTED,
    "pending": JobStatus.SUBMITTED,
    "started": JobStatus.RUNNING,
    "running": JobStatus.RUNNING,
    "in_progress": JobStatus.RUNNING,
    "completed": JobStatus.COMPLETED,
    "complete": JobStatus.COMPLETED,
    "done": JobStatus.COMPLETED,
    "finished": JobStatus.COMPLETED,
    "success": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "error": JobStatus.FAILED,
    "cancelled": JobStatus.CANCELLED,
    "canceled": JobStatus.CANCELLED,
}


@dataclass(frozen=True)
class DateRange:
    start_date: str
    end_date: str


@dataclass(frozen=True)
class SyncResult:
    record: RunRecord


@dataclass(frozen=True)
class AsyncJob:
    # None when the backend only says "started" without a pollable id
    job_id: str | None


@dataclass(frozen=True)
class Rejected:
    reason: str
    # the backend was never reached, so nothing about the run is known
    network: bool = False


Outcome = Union[SyncResult, AsyncJob, Rejected]


def _job_id(payload: dict[str, Any]) -> str | None:
    for key in JOB_ID_FIELDS:
        val = payload.get(key)
        if val not in (None, ""):
            return str(val)
    # some variants return {"id": ..., "status": "queued"}
    if payload.get("id") not in (None, "") and "status" in payload:
        return str(payload["id"])
    return None


def embedded_result(payload: Any) -> RunRecord | None:
    """Run record carried inside a submit or status response, if any."""
    if not isinstance(payload, dict):
        return None
    for key in RESULT_FIELDS:
        val = payload.get(key)
        if isinstance(val, dict) and val:
            return val
        if key == "data" and isinstance(val, list) and val and isinstance(val[0], dict):
            return val[0]
    for key in SERIES_FIELDS + TRADE_FIELDS + SUMMARY_FIELDS:
        if payload.get(key) is not None:
            return payload
    return None


def classify_response(payload: Any) -> Outcome:
    if not isinstance(payload, dict):
        return Rejected(GENERIC_REJECTION)
    job_id = _job_id(payload)
    if job_id is not None:
        return AsyncJob(job_id)
    record = embedded_result(payload)
    if record is not None:
        return SyncResult(record)
    started = JobStatus.parse(payload.get("status")) is JobStatus.RUNNING
    # a plain "message" on a started job is informational
    if started and not (payload.get("error") or payload.get("detail")):
        return AsyncJob(None)
    return Rejected(extract_detail(payload) or GENERIC_REJECTION)


class JobSubmissionClient:
    path = "/run_strategy"

    def __init__(self, backend: BackendClient) -> None:
        self.backend = backend

    def build_body(self, strategy_id: str, date_range: DateRange) -> dict[str, Any]:
        return {
            "strategy": strategy_id,
            "start_date": date_range.start_date,
            "end_date": date_range.end_date,
            "symbols_file": self.backend.settings.symbols_file,
        }

    async def submit(self, strategy_id: str, date_range: DateRange) -> Outcome:
        """Start a run. Not idempotent: every call may start a backend job."""
        body = self.build_body(strategy_id, date_range)
        try:
            payload = await self.backend.post_json(self.path, body)
        except BackendRejection as exc:
            return Rejected(exc.detail)
        except NetworkFailure as exc:
            logger.warning("submit failed: %s", exc)
            return Rejected(NETWORK_REJECTION, network=True)
        outcome = classify_response(payload)
        logger.info(
            "submit %s %s..%s -> %s", strategy_id, date_range.start_date, date_range.end_date, type(outcome).__name__
        )
        return outcome
