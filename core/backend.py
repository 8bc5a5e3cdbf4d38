# core/backend.py
from __future__ import annotations

import logging
from typing import Any

import httpx

from core.config import DashboardSettings
from core.errors import BackendRejection, NetworkFailure

logger = logging.getLogger(__name__)

DETAIL_FIELDS = ("detail", "error", "message")


def extract_detail(payload: Any) -> str | None:
    """First non-empty error string in a backend payload, if any."""
    if not isinstance(payload, dict):
        return None
    for key in DETAIL_FIELDS:
        val = payload.get(key)
        if val is None or val == "":
            continue
        # FastAPI validation errors arrive as a list of dicts; str() keeps them readable enough
        return str(val)
    return None


class BackendClient:
    """Thin JSON transport over httpx bound to one backend base URL."""

    def __init__(
        self,
        settings: DashboardSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.backend_url,
            timeout=settings.request_timeout,
            transport=transport,
            headers={"accept": "application/json"},
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_json(self, path: str) -> Any:
        return await self._request("GET", path)

    async def post_json(self, path: str, body: dict[str, Any]) -> Any:
        return await self._request("POST", path, json=body)

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise NetworkFailure(f"{method} {path} failed: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            if resp.is_error:
                raise BackendRejection(f"HTTP {resp.status_code}", resp.status_code) from exc
            raise NetworkFailure(f"{method} {path} returned a non-JSON body") from exc

        if resp.is_error:
            detail = extract_detail(payload) or f"HTTP {resp.status_code}"
            logger.warning("%s %s rejected (%s): %s", method, path, resp.status_code, detail)
            raise BackendRejection(detail, resp.status_code)
        return payload
