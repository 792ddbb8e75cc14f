# Overview: Domain error taxonomy shared by services and routes.

"""
LabTrace domain errors

All errors subclass LabTraceError (a ValueError) so services can raise them
freely and routes can map them to HTTP responses in one place.

HTTP MAPPING (see error_response):
    NotFound             -> 404
    ValidationFailed     -> 400
    InvalidTransition    -> 409
    InsufficientStock    -> 409
    DuplicateLot         -> 409
    DuplicateCode        -> 409
    ComplianceViolation  -> 409
    Unauthorized         -> 401
    Forbidden            -> 403
"""

from __future__ import annotations


class LabTraceError(ValueError):
    """Base class for domain errors. Never a technical failure."""
    status_code = 400


class NotFound(LabTraceError):
    """Entity missing or soft-deleted."""
    status_code = 404


class ValidationFailed(LabTraceError):
    """Input or business-rule mismatch (QC checklist, bad quantities, ...)."""
    status_code = 400


class InvalidTransition(LabTraceError):
    """Illegal state change attempted."""
    status_code = 409


class InsufficientStock(LabTraceError):
    """FIFO selection cannot satisfy the requested quantity."""
    status_code = 409

    def __init__(self, message: str, *, material_code: str | None = None, available=None, needed=None):
        super().__init__(message)
        self.material_code = material_code
        self.available = available
        self.needed = needed


class DuplicateLot(LabTraceError):
    status_code = 409


class DuplicateCode(LabTraceError):
    status_code = 409


class ComplianceViolation(LabTraceError):
    """
    Attempted removal of something with traceability history.

    MDR requires material -> device linkage to survive; callers should
    mark the lot RECALLED instead of deleting it.
    """
    status_code = 409


class Unauthorized(LabTraceError):
    status_code = 401


class Forbidden(LabTraceError):
    status_code = 403


def error_response(exc: LabTraceError):
    """Render a domain error as the (body, status) pair routes return."""
    from flask import jsonify

    body = {"error": str(exc), "type": type(exc).__name__}
    if isinstance(exc, InsufficientStock):
        body["material_code"] = exc.material_code
        body["available"] = str(exc.available) if exc.available is not None else None
        body["needed"] = str(exc.needed) if exc.needed is not None else None
    return jsonify(body), exc.status_code
