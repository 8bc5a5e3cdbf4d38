from __future__ import annotations

import asyncio
import json
from collections import defaultdict, deque
from typing import Any

import httpx
import pytest

from core.backend import BackendClient
from core.config import DashboardSettings


class FakeBackend:
    """Scripted stand-in for the backtest service behind an httpx.MockTransport.

    ``routes`` maps "METHOD /path" to either a single response or a list of
    responses served in order (the last one repeats).  A response is a
    ``(status_code, json_body)`` tuple, a bare dict (status 200), or an
    exception instance to raise as a transport failure.
    """

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes: dict[str, deque] = {}
        self.calls: dict[str, int] = defaultdict(int)
        self.requests: list[httpx.Request] = []
        self.gates: dict[str, asyncio.Event] = {}
        for key, value in (routes or {}).items():
            self.set(key, value)

    def set(self, key: str, value: Any) -> None:
        items = value if isinstance(value, list) else [value]
        self.routes[key] = deque(items)

    def hold(self, key: str) -> asyncio.Event:
        """Block responses for ``key`` until the returned event is set."""
        gate = asyncio.Event()
        self.gates[key] = gate
        return gate

    def body(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        key = f"{request.method} {request.url.path}"
        self.requests.append(request)
        self.calls[key] += 1
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, json={"detail": "Not Found"})
        item = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, tuple):
            status, payload = item
        else:
            status, payload = 200, item
        return httpx.Response(status, json=payload)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings() -> DashboardSettings:
    return DashboardSettings(
        backend_url="http://backend.test",
        poll_interval=0.001,
        started_refresh_delay=0.0,
    )


@pytest.fixture
def make_backend(settings):
    def _make(fake: FakeBackend) -> BackendClient:
        return BackendClient(settings, transport=fake.transport())

    return _make


def sample_run(timestamp: str = "2024-03-05T10:00:00", trades=None) -> dict[str, Any]:
    return {
        "timestamp": timestamp,
        "strategy": "swing",
        "equity_curve": [
            {"date": "2024-03-01", "portfolio_equity": 100000},
            {"date": "2024-03-04", "portfolio_equity": 100450.5},
            {"date": "2024-03-05", "portfolio_equity": 99980},
        ],
        "trades": trades if trades is not None else [
            {"date": "2024-03-04", "action": "SELL", "price": 101.2, "PnL": 450.5},
            {"date": "2024-03-05", "action": "SELL", "price": 98.7, "PnL": -470.5},
        ],
    }
