# core/controller.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import httpx

from core.backend import BackendClient
from core.config import DashboardSettings
from core.errors import AuthPreconditionError, BackendRejection, DashboardError
from core.history import HistoryStoreClient, RunRecord
from core.jobs import AsyncJob, DateRange, JobSubmissionClient, Outcome, Rejected, SyncResult
from core.normalizer import ChartModel, normalize_run
from core.poller import JobPoller, PollerState, PollUpdate

logger = logging.getLogger(__name__)

AUTH_REQUIRED_MESSAGE = "No valid Kite token. Use 'Login with Kite' before running a backtest."
BACKEND_DOWN_MESSAGE = "Failed to contact backend"


class ViewState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    READY = "ready"
    ERROR = "error"


BUSY_STATES = (ViewState.SUBMITTING, ViewState.POLLING)


@dataclass(frozen=True)
class DashboardSnapshot:
    view_state: ViewState
    status_message: str
    token_valid: bool
    chart: ChartModel | None
    history: tuple[RunRecord, ...]
    job_id: str | None
    polls: int

    @property
    def busy(self) -> bool:
        return self.view_state in BUSY_STATES


class DashboardController:
    """Owns the view state and routes user actions to the backend clients.

    Every method runs on a single event loop.  Nothing here retries on its
    own; a failed run stays failed until the user submits again.
    """

    def __init__(
        self,
        settings: DashboardSettings,
        backend: BackendClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.backend = backend or BackendClient(settings, transport=transport)
        self.history_client = HistoryStoreClient(self.backend)
        self.jobs = JobSubmissionClient(self.backend)
        self.poller = JobPoller(
            self.backend,
            on_update=self._on_poll_update,
            on_terminal=self._on_poll_terminal,
            sleep=sleep,
        )
        self._sleep = sleep
        self._refresh_task: asyncio.Task[None] | None = None
        self._submission = 0

        self.view_state = ViewState.IDLE
        self.status_message = ""
        self.token_valid = False
        self.login_url: str | None = None
        self.chart: ChartModel | None = None
        self.history: tuple[RunRecord, ...] = ()
        self.job_id: str | None = None

    @property
    def busy(self) -> bool:
        return self.view_state in BUSY_STATES

    def snapshot(self) -> DashboardSnapshot:
        return DashboardSnapshot(
            view_state=self.view_state,
            status_message=self.status_message,
            token_valid=self.token_valid,
            chart=self.chart,
            history=self.history,
            job_id=self.job_id,
            polls=self.poller.polls if self.job_id else 0,
        )

    # -- auth -----------------------------------------------------------

    async def check_auth(self) -> bool:
        """Refresh ``token_valid`` from the backend health (or config) endpoint."""
        paths = [self.settings.health_path]
        if self.settings.health_path != "/config":
            paths.append("/config")
        for path in paths:
            try:
                payload = await self.backend.get_json(path)
            except BackendRejection as exc:
                if exc.status_code == 404:
                    continue
                self.status_message = BACKEND_DOWN_MESSAGE
                return self.token_valid
            except DashboardError:
                self.status_message = BACKEND_DOWN_MESSAGE
                return self.token_valid
            self.token_valid = bool(isinstance(payload, dict) and payload.get("token_valid"))
            return self.token_valid
        self.status_message = BACKEND_DOWN_MESSAGE
        return self.token_valid

    def ensure_token(self) -> None:
        if not self.token_valid:
            raise AuthPreconditionError(AUTH_REQUIRED_MESSAGE)

    async def request_login_url(self) -> str | None:
        try:
            payload = await self.backend.get_json("/generate_token_url")
        except DashboardError:
            self.status_message = "Error fetching login URL"
            return None
        url = payload.get("login_url") if isinstance(payload, dict) else None
        if not url:
            self.status_message = "Could not get login URL"
            return None
        self.login_url = url
        self.status_message = "Opened Kite login, complete and return here"
        return url

    def handle_login_redirect(self, query: Mapping[str, Any]) -> None:
        """Apply the ``?login=success|error`` markers the backend redirects back with."""
        marker = query.get("login")
        if marker == "success":
            self.status_message = "Kite login successful"
        elif marker == "error":
            reason = query.get("reason") or "unknown error"
            self.status_message = f"Kite login failed: {reason}"

    # -- actions --------------------------------------------------------

    async def start(self) -> None:
        """Initial page load: auth indicator plus latest history."""
        await self.check_auth()
        await self.refresh()

    async def submit(
        self,
        strategy_id: str,
        start_date: str,
        end_date: str,
        supersede: bool = False,
    ) -> Outcome | None:
        try:
            self.ensure_token()
        except AuthPreconditionError as exc:
            self.status_message = str(exc)
            return None
        if self.busy and not supersede:
            logger.info("ignoring submit while %s", self.view_state.value)
            return None

        self.cancel()
        self._submission += 1
        submission = self._submission
        self.view_state = ViewState.SUBMITTING
        self.status_message = "Starting backtest..."

        outcome = await self.jobs.submit(strategy_id, DateRange(start_date, end_date))
        if submission != self._submission:
            # superseded while the request was in flight
            return outcome

        if isinstance(outcome, SyncResult):
            self._accept(outcome.record, "Backtest completed")
        elif isinstance(outcome, AsyncJob) and outcome.job_id:
            self.job_id = outcome.job_id
            self.view_state = ViewState.POLLING
            self.status_message = f"Backtest {outcome.job_id} submitted, waiting for results"
            self.poller.start(outcome.job_id)
        elif isinstance(outcome, AsyncJob):
            self.view_state = ViewState.POLLING
            self.status_message = "Backtest launched in background, refreshing history shortly"
            self._refresh_task = asyncio.get_running_loop().create_task(
                self._delayed_refresh(submission), name="history-refresh"
            )
        elif isinstance(outcome, Rejected) and outcome.network:
            self.view_state = ViewState.READY if self.chart is not None else ViewState.IDLE
            self.status_message = outcome.reason
        elif isinstance(outcome, Rejected):
            self.view_state = ViewState.ERROR
            self.status_message = outcome.reason
        return outcome

    async def refresh(self) -> ChartModel | None:
        """Reload history and show the most recent run."""
        runs = await self.history_client.fetch_runs()
        if self.history_client.last_error:
            self.status_message = f"Could not load history: {self.history_client.last_error}"
            return None
        self.history = tuple(runs)
        if not runs:
            if not self.busy:
                self.status_message = "No backtests yet, run one to see results"
            return None
        chart = normalize_run(runs[0])
        if not self.busy:
            self.chart = chart
            self.view_state = ViewState.READY
        return chart

    def cancel(self, reason: str | None = None) -> None:
        """Drop the active job, if any. Late responses for it are ignored."""
        self.poller.cancel()
        self._submission += 1
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self.job_id = None
        if self.busy:
            self.view_state = ViewState.READY if self.chart is not None else ViewState.IDLE
            if reason:
                self.status_message = reason

    async def wait(self) -> None:
        """Wait until the active job, if any, reaches a terminal state."""
        while True:
            pending = [t for t in (self.poller.task, self._refresh_task) if t is not None and not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    async def close(self) -> None:
        self.cancel()
        await self.backend.aclose()

    # -- internals ------------------------------------------------------

    def _accept(self, record: RunRecord, message: str) -> None:
        self.chart = normalize_run(record)
        self.view_state = ViewState.READY
        self.status_message = message
        if self.chart.win_rate_consistent is False:
            self.status_message += " (reported win rate disagrees with trade list)"

    async def _delayed_refresh(self, submission: int) -> None:
        await self._sleep(self.settings.started_refresh_delay)
        if submission != self._submission:
            return
        runs = await self.history_client.fetch_runs()
        if submission != self._submission:
            return
        if self.history_client.last_error:
            self.view_state = ViewState.ERROR
            self.status_message = f"Could not load history: {self.history_client.last_error}"
            return
        self.history = tuple(runs)
        if runs:
            self._accept(runs[0], "History refreshed")
        else:
            self.view_state = ViewState.IDLE
            self.status_message = "Backtest still running, refresh history in a moment"

    def _on_poll_update(self, update: PollUpdate) -> None:
        if update.job_id != self.job_id:
            return
        self.status_message = update.message

    async def _on_poll_terminal(self, update: PollUpdate) -> None:
        if update.job_id != self.job_id:
            return
        if update.state is not PollerState.COMPLETED:
            self.job_id = None
            self.view_state = ViewState.ERROR
            self.status_message = update.message
            return

        self.status_message = update.message
        record = update.result
        if record is None:
            runs = await self.history_client.fetch_runs()
            if update.job_id != self.job_id:
                return
            if not self.history_client.last_error:
                self.history = tuple(runs)
            record = runs[0] if runs else None
        self.job_id = None
        if record is None:
            self.view_state = ViewState.ERROR
            detail = self.history_client.last_error or "no runs in history"
            self.status_message = f"Backtest completed but results could not be loaded: {detail}"
            return
        self._accept(record, "Backtest completed")
