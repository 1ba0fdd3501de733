"""errors.py — Domain error taxonomy.

Domain errors carry the HTTP status an outer surface should map them to.
Store/transport errors (botocore ClientError, BotoCoreError) are NOT wrapped;
they propagate as-is and are distinguishable from everything here.
"""
from __future__ import annotations

from typing import Any, Dict

__all__ = [
    "ConditionalCheckFailed",
    "ConflictError",
    "DependencyFailure",
    "DomainError",
    "ForbiddenError",
    "NotFoundError",
    "UnauthorizedError",
    "ValidationError",
]


class DomainError(Exception):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message, "error_code": self.error_code}


class ConflictError(DomainError):
    """Unique-key violation (email, event name)."""

    status_code = 409
    error_code = "conflict"


class NotFoundError(DomainError):
    """Target record is absent or soft-deleted."""

    status_code = 404
    error_code = "not_found"


class UnauthorizedError(DomainError):
    """Credentials or token missing, invalid or expired."""

    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(DomainError):
    """An authorization rule denied the operation."""

    status_code = 403
    error_code = "forbidden"


class ValidationError(DomainError):
    status_code = 400
    error_code = "validation_error"


class DependencyFailure(DomainError):
    """An outbound dependency (object storage) failed; nothing was retried."""

    status_code = 500
    error_code = "dependency_failure"


class ConditionalCheckFailed(Exception):
    """A conditional store write did not apply (DynamoDB ConditionalCheckFailedException)."""
