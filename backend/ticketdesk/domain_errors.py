"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class ValidationError(DomainError):
    """Missing or malformed input, rejected before any store access."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None, http_status: int = 400):
        super().__init__(code=code, http_status=http_status, message=message, details=details)


class AuthorizationError(DomainError):
    """Role or membership gate failed."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=403, message=message, details=details)


class NotFoundError(DomainError):
    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=404, message=message, details=details)


class ConflictError(DomainError):
    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=409, message=message, details=details)


class DownstreamError(DomainError):
    """Store or outbound channel call failed on a primary write."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=502, message=message, details=details)


class UpstreamPartialFailure(DomainError):
    """A batch inside a multi-chunk read failed while the others succeeded.

    Collected by the aggregation loader and reported next to the data; it is
    never raised to the caller.
    """

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=206, message=message, details=details)
