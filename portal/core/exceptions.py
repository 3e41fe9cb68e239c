"""
Portal-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
map them to consistent HTTP status codes via ``portal.utils.errors``.

Usage:
    from portal.core.exceptions import NotFoundError, TransitionError

    raise NotFoundError(resource="Request", resource_id=42)
    raise TransitionError("PR-2026-0001", "close", "DRAFT")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from portal.services.splintering import SplinteringCheckResult


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Request").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class TransitionError(Exception):
    """Raised when a request status transition is not allowed.

    Maps to HTTP 409.
    """

    def __init__(self, reference: str, action: str, current: str | None, reason: str | None = None):
        msg = f"Cannot '{action}' request {reference} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.reference = reference
        self.action = action
        self.current_status = current
        self.reason = reason


class SplinteringBlockedError(ValidationError):
    """Raised when the splintering policy is ``block`` and the detector flagged.

    Carries the detector result so the caller can show the evidence.
    """

    def __init__(self, reference: str, result: SplinteringCheckResult) -> None:
        super().__init__(
            f"Request {reference} blocked: combined spend {result.combined} "
            f"reaches the splintering threshold {result.threshold}",
            details={"splintering": result.to_dict()},
        )
        self.reference = reference
        self.result = result


class SplinteringOverrideRequired(ValidationError):
    """Raised when the policy is ``override`` and no supervisor override was given."""

    def __init__(self, reference: str, result: SplinteringCheckResult) -> None:
        super().__init__(
            f"Request {reference} requires a supervisor override: combined spend "
            f"{result.combined} reaches the splintering threshold {result.threshold}",
            details={"splintering": result.to_dict()},
        )
        self.reference = reference
        self.result = result


class StatusCorruptionError(Exception):
    """Raised when a request still cannot be read after a status repair.

    This is a hard failure. Maps to HTTP 500.
    """

    def __init__(self, context: str, cause: Exception | None = None) -> None:
        msg = f"Unrecognised request status persists after repair ({context})"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.context = context
        self.cause = cause
