# core/errors.py
from __future__ import annotations


class DashboardError(Exception):
    """Base class for failures surfaced by the backend clients."""


class NetworkFailure(DashboardError):
    """The request never completed (connection, timeout, unreadable body)."""


class BackendRejection(DashboardError):
    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class AuthPreconditionError(DashboardError):
    pass
