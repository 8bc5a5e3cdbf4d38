# core/poller.py
"""Fixed-interval status polling for one background backtest job.

The poller owns a single ``asyncio.Task``. Starting a new job cancels the
previous task synchronously before the new one is created, so at most one
loop is ever alive.  Each loop also carries a generation number; a status
response that arrives after its loop was superseded is dropped without
touching poller state.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from core.backend import BackendClient, extract_detail
from core.errors import BackendRejection, NetworkFailure
from core.jobs import JobStatus, embedded_result

logger = logging.getLogger(__name__)

STATUS_FIELDS = ("status", "state")


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PollerState.COMPLETED, PollerState.FAILED, PollerState.CANCELLED)


TERMINAL_STATE = {
    JobStatus.COMPLETED: PollerState.COMPLETED,
    JobStatus.FAILED: PollerState.FAILED,
    JobStatus.CANCELLED: PollerState.CANCELLED,
}


@dataclass(frozen=True)
class PollUpdate:
    job_id: str
    state: PollerState
    message: str
    status: JobStatus | None = None
    polls: int = 0
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def result(self) -> dict[str, Any] | None:
        return embedded_result(self.payload)


UpdateCallback = Callable[[PollUpdate], Any]


def read_status(payload: Any) -> JobStatus | None:
    """Job status from a status payload, tolerating the backend variants."""
    if not isinstance(payload, dict):
        return None
    for key in STATUS_FIELDS:
        status = JobStatus.parse(payload.get(key))
        if status is not None:
            return status
    if embedded_result(payload) is not None:
        return JobStatus.COMPLETED
    if payload.get("error"):
        return JobStatus.FAILED
    return None


def describe(job_id: str, status: JobStatus | None, payload: dict[str, Any], polls: int) -> str:
    if status is JobStatus.COMPLETED:
        return "Backtest completed, loading results"
    if status is JobStatus.FAILED:
        return extract_detail(payload) or "Backtest failed"
    if status is JobStatus.CANCELLED:
        return extract_detail(payload) or "Backtest cancelled"
    note = payload.get("message") or payload.get("progress")
    if status is JobStatus.SUBMITTED:
        text = f"Job {job_id} queued"
    elif status is JobStatus.RUNNING:
        text = f"Job {job_id} running"
    else:
        text = f"Job {job_id} status: {payload.get('status', 'unknown')}"
    if note not in (None, ""):
        text += f" ({note})"
    return f"{text} · check {polls}"


class JobPoller:
    path_template = "/job_status/{job_id}"

    def __init__(
        self,
        backend: BackendClient,
        interval: float | None = None,
        max_polls: int | None = None,
        on_update: UpdateCallback | None = None,
        on_terminal: UpdateCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.interval = backend.settings.poll_interval if interval is None else interval
        self.max_polls = backend.settings.max_polls if max_polls is None else max_polls
        self.on_update = on_update
        self.on_terminal = on_terminal
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self.state = PollerState.IDLE
        self.job_id: str | None = None
        self.polls = 0
        self.last_update: PollUpdate | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self, job_id: str) -> asyncio.Task[None]:
        """Begin polling ``job_id``, cancelling whatever loop was running."""
        self.cancel()
        self._generation += 1
        self.job_id = job_id
        self.polls = 0
        self.state = PollerState.POLLING
        self._task = asyncio.get_running_loop().create_task(
            self._run(job_id, self._generation), name=f"job-poll-{job_id}"
        )
        logger.info("polling job %s every %.1fs", job_id, self.interval)
        return self._task

    def cancel(self) -> None:
        """Stop the active loop now. Late responses from it are discarded."""
        task, self._task = self._task, None
        self._generation += 1
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self.state is PollerState.POLLING:
            self.state = PollerState.CANCELLED
            logger.info("polling for job %s cancelled locally", self.job_id)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _fetch(self, job_id: str) -> dict[str, Any]:
        payload = await self.backend.get_json(self.path_template.format(job_id=job_id))
        return payload if isinstance(payload, dict) else {}

    async def _run(self, job_id: str, generation: int) -> None:
        while True:
            await self._sleep(self.interval)
            if not self._is_current(generation):
                return
            if self.max_polls is not None and self.polls >= self.max_polls:
                message = f"Gave up waiting for job {job_id} after {self.polls} checks"
                await self._finish(generation, job_id, PollerState.FAILED, None, message, {})
                return
            self.polls += 1
            try:
                payload = await self._fetch(job_id)
            except BackendRejection as exc:
                if not self._is_current(generation):
                    return
                if exc.status_code == 404:
                    await self._finish(generation, job_id, PollerState.FAILED, None, exc.detail, {})
                    return
                await self._emit(generation, job_id, None, f"Status check failed: {exc.detail}", {})
                continue
            except NetworkFailure:
                if not self._is_current(generation):
                    return
                await self._emit(generation, job_id, None, "Lost contact with backend, retrying", {})
                continue

            if not self._is_current(generation):
                logger.debug("discarding stale status for job %s", job_id)
                return

            status = read_status(payload)
            message = describe(job_id, status, payload, self.polls)
            if status is not None and status.is_terminal:
                await self._finish(generation, job_id, TERMINAL_STATE[status], status, message, payload)
                return
            await self._emit(generation, job_id, status, message, payload)

    async def _emit(
        self,
        generation: int,
        job_id: str,
        status: JobStatus | None,
        message: str,
        payload: dict[str, Any],
    ) -> None:
        if not self._is_current(generation):
            return
        update = PollUpdate(job_id, self.state, message, status, self.polls, payload)
        self.last_update = update
        await _call(self.on_update, update)

    async def _finish(
        self,
        generation: int,
        job_id: str,
        state: PollerState,
        status: JobStatus | None,
        message: str,
        payload: dict[str, Any],
    ) -> None:
        if not self._is_current(generation):
            return
        self.state = state
        update = PollUpdate(job_id, state, message, status, self.polls, payload)
        self.last_update = update
        logger.info("job %s reached %s after %d checks", job_id, state.value, self.polls)
        await _call(self.on_terminal, update)


async def _call(callback: UpdateCallback | None, update: PollUpdate) -> None:
    if callback is None:
        return
    result = callback(update)
    if inspect.isawaitable(result):
        await result
