"""Error taxonomy for the reconciliation subsystem.

Guard failures carry a stable ``reason`` code so callers can show a
specific message ("select a delivery method first") instead of a generic
failure.
"""

from __future__ import annotations

from typing import Any


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Structured form for transport acks."""
        return {
            "error": type(self).__name__,
            "reason": self.reason,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ReconciliationError):
    """A guard condition was not met."""


class LockedError(ReconciliationError):
    """A mutation was attempted after the record was approved."""


class RenderError(ReconciliationError):
    """An export artifact could not be produced from the snapshot."""


class IntegrityUnavailable(ReconciliationError):
    """No usable cryptographic hashing primitive is available."""


__all__ = [
    "IntegrityUnavailable",
    "LockedError",
    "ReconciliationError",
    "RenderError",
    "ValidationError",
]
