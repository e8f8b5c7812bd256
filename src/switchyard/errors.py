"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the shared application error taxonomy.

Every error surfaced by the runner, the task layer or the storage layer is an
`AppError` carrying one of a fixed set of codes. Callers branch on `code`
rather than on concrete exception classes when they only care about the kind
of failure (for example, to decide whether a retry makes sense).
"""

from __future__ import annotations

from typing import Any, Literal, TypeAlias

ErrorCode: TypeAlias = Literal[
    "BadRequest",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "Timeout",
    "TooManyRequests",
    "InternalServer",
    "GatewayTimeout",
]

RETRYABLE_CODES: frozenset[str] = frozenset(
    {"Timeout", "TooManyRequests", "InternalServer", "GatewayTimeout"}
)


class AppError(Exception):
    """
    Base exception for all structured application failures.

    Attributes:
        code: Error kind from the fixed taxonomy.
        message: Human-readable message.
        metadata: Optional JSON-like diagnostic context.
    """

    code: ErrorCode = "InternalServer"

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.metadata: dict[str, Any] = dict(metadata or {})

    @property
    def retryable(self) -> bool:
        """Return `True` when callers may retry the failed operation."""
        return self.code in RETRYABLE_CODES

    def to_dict(self) -> dict[str, Any]:
        """
        Return the user-visible `{code, message}` payload.

        Returns:
            JSON-safe error payload.
        """
        return {"code": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class BadRequestError(AppError):
    """Payload or validation failure. Never retried automatically."""

    code: ErrorCode = "BadRequest"


class UnauthorizedError(AppError):
    code: ErrorCode = "Unauthorized"


class ForbiddenError(AppError):
    code: ErrorCode = "Forbidden"


class NotFoundError(AppError):
    """Missing manifest, state, or task."""

    code: ErrorCode = "NotFound"


class RequestTimeoutError(AppError):
    """Wall-clock or step-level timeout."""

    code: ErrorCode = "Timeout"


class TooManyRequestsError(AppError):
    """Upstream rate limiting; eligible for caller-driven retry with backoff."""

    code: ErrorCode = "TooManyRequests"


class InternalServerError(AppError):
    """Unexpected failure, including hook failures."""

    code: ErrorCode = "InternalServer"


class GatewayTimeoutError(AppError):
    """Upstream model or queue unreachable."""

    code: ErrorCode = "GatewayTimeout"


def error_from_exception(exc: BaseException) -> AppError:
    """
    Normalize an arbitrary exception into the error taxonomy.

    Args:
        exc: Exception raised by runtime code or a collaborator.

    Returns:
        The exception itself when it already is an `AppError`, otherwise an
        `InternalServerError` wrapping its message.
    """
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, TimeoutError):
        return GatewayTimeoutError(str(exc) or "Upstream call timed out")
    return InternalServerError(
        str(exc) or type(exc).__name__,
        metadata={"exception_type": type(exc).__name__},
    )
