"""Typed error hierarchy for the gamification core.

Every failure the engines report to a caller is one of these. HTTP status
codes live here so the API layer maps them without a lookup table.
"""

from __future__ import annotations

from typing import Any


class GamificationError(Exception):
    """Base class for all gamification errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        user_id: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "error": self.__class__.__name__,
            "detail": self.message,
        }


class NotFoundError(GamificationError):
    """Quest, recommendation, streak or user is absent or not owned by the caller."""

    status_code = 404


class InvalidStateError(GamificationError):
    """Action attempted on a terminal or expired entity."""

    status_code = 409


class ValidationError(GamificationError):
    """Missing or unrecognized input, e.g. an unknown streak type."""

    status_code = 422


class StorageError(GamificationError):
    """Persistence failure. Transient, safe to retry."""

    status_code = 503


class ComputationError(GamificationError):
    """Unexpected arithmetic or rule evaluation failure."""

    status_code = 500
