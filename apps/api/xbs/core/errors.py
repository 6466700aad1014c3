"""Caller-visible billing errors.

Each error carries a stable machine-readable ``code`` and the HTTP status the
API layer responds with. Services raise them before any write happens; they
are never retried internally.
"""

from __future__ import annotations

from typing import Any


class BillingError(Exception):
    code = "BILLING_ERROR"
    status_code = 400

    def __init__(self, message: str, *, code: str | None = None, context: dict[str, Any] | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(BillingError):
    """Malformed input, failed precondition or a transition the current status does not allow."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(BillingError):
    """Entity absent, or outside the caller's tenant and mode."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(BillingError):
    """External id already used within the tenant and mode."""

    code = "CONFLICT"
    status_code = 409
