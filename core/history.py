# core/history.py
from __future__ import annotations

import logging
from typing import Any

import pandas as pd

from core.backend import BackendClient, extract_detail
from core.errors import DashboardError
from core.normalizer import to_number, to_timestamp

logger = logging.getLogger(__name__)

RunRecord = dict[str, Any]


def run_timestamp(run: RunRecord) -> pd.Timestamp | None:
    raw = run.get("timestamp")
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        seconds = to_number(raw)
        # epoch seconds
        return pd.Timestamp(seconds, unit="s") if seconds is not None else None
    return to_timestamp(raw)


def order_runs(runs: list[RunRecord]) -> list[RunRecord]:
    """Most recent first by ``timestamp``.

    Runs without a readable timestamp go after the timestamped ones and keep
    the backend's order among themselves; the sort is stable, so duplicate
    timestamps also keep backend order.
    """
    stamped = []
    unstamped = []
    for run in runs:
        ts = run_timestamp(run)
        if ts is None:
            unstamped.append(run)
        else:
            stamped.append((ts, run))
    stamped.sort(key=lambda pair: pair[0], reverse=True)
    # reverse=True keeps stable order for ties, so the first listed duplicate stays first
    return [run for _, run in stamped] + unstamped


class HistoryStoreClient:
    def __init__(self, backend: BackendClient, path: str | None = None) -> None:
        self.backend = backend
        self.path = path or backend.settings.history_path
        self.last_error: str | None = None

    async def fetch_runs(self) -> list[RunRecord]:
        """Past runs, most recent first. Empty on any failure."""
        self.last_error = None
        try:
            payload = await self.backend.get_json(self.path)
        except DashboardError as exc:
            self.last_error = str(exc)
            logger.warning("history fetch failed: %s", exc)
            return []

        if not isinstance(payload, dict) or payload.get("status") != "ok":
            self.last_error = extract_detail(payload) or "History unavailable"
            logger.warning("history endpoint returned non-ok payload: %s", self.last_error)
            return []

        data = payload.get("data")
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            return []
        return order_runs([run for run in data if isinstance(run, dict)])

    async def fetch_latest(self) -> RunRecord | None:
        runs = await self.fetch_runs()
        return runs[0] if runs else None
