from __future__ import annotations

from typing import Any


class ArtworkError(Exception):
    """Base class for failures surfaced to API callers."""

    code = "ARTWORK_ERROR"
    http_status = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ArtworkError):
    """Raised when an envelope is missing its provenance or id, or names an unknown one."""

    code = "VALIDATION_FAILED"
    http_status = 400


class NotFoundError(ArtworkError):
    """Raised when a record is absent or soft-deleted."""

    code = "NOT_FOUND"
    http_status = 404


class UpstreamUnavailable(ArtworkError):
    """Raised when a store connection or query fails."""

    code = "UPSTREAM_UNAVAILABLE"
    http_status = 503


class VerificationMismatch(ArtworkError):
    """Raised when the post-write readback differs from the derived record."""

    code = "VERIFICATION_MISMATCH"
    http_status = 409

    def __init__(
        self,
        message: str,
        *,
        mismatches: dict[str, dict[str, Any]],
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        merged["mismatches"] = mismatches
        super().__init__(message, details=merged)
        self.mismatches = mismatches
