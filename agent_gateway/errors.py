"""
Structured error kinds shared by the core and the HTTP boundary.

Failures carry an `ErrorKind` tag from the point where they are raised, so
the boundary maps them to status codes without inspecting message text.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    PROVIDER = "PROVIDER_ERROR"
    INTERNAL = "INTERNAL_ERROR"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.PROVIDER: 502,
    ErrorKind.INTERNAL: 500,
}


class AgentError(Exception):
    """Base failure with a machine-readable kind."""

    def __init__(self, kind: ErrorKind, message: str, details: Any = None):
        self.kind = kind
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND.get(self.kind, 500)


class ProviderError(AgentError):
    """Raised by provider adapters when the upstream call fails."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        provider: str,
        upstream_status: Optional[int] = None,
    ):
        details: Dict[str, Any] = {"provider": provider}
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(kind, message, details)
        self.provider = provider
        self.upstream_status = upstream_status


def kind_for_status(status_code: int) -> ErrorKind:
    """Tag an upstream HTTP status with the matching error kind."""
    if status_code == 401:
        return ErrorKind.UNAUTHORIZED
    if status_code == 403:
        return ErrorKind.FORBIDDEN
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 409:
        return ErrorKind.CONFLICT
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    return ErrorKind.PROVIDER


def new_request_id() -> str:
    return str(uuid.uuid4())


def build_error_envelope(
    *,
    request_id: str,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> Tuple[int, Dict[str, Any]]:
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "meta": {"request_id": request_id},
    }
    return status_code, body
