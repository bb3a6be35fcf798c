# Overview: Domain error taxonomy shared by the cash and reconciliation workflows.

"""
Every workflow failure is one of these. Routes map them to HTTP statuses
with `status_code` and render `to_dict()` unchanged.

- ValidationError: bad input; caller fixes and re-submits.
- CriticalVarianceError: count blocked until the variance is acknowledged.
- NotFoundError: referenced record does not exist.
- AuthorizationError: role may not perform the action (raised before any mutation).
- StateConflictError: record already resolved / not editable in its status.
- InsufficientBalanceError: movement would take a pool below zero.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for expected workflow failures."""

    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(DomainError):
    """400-level input problem."""

    status_code = 400
    code = "VALIDATION_ERROR"


class CriticalVarianceError(ValidationError):
    """Count variance is at or above the critical threshold and was not acknowledged."""

    status_code = 422
    code = "CRITICAL_VARIANCE"

    def __init__(self, message: str, *, total_paise: int, expected_paise: int, variance_paise: int):
        super().__init__(message)
        self.total_paise = total_paise
        self.expected_paise = expected_paise
        self.variance_paise = variance_paise

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "total_paise": self.total_paise,
            "expected_paise": self.expected_paise,
            "variance_paise": self.variance_paise,
            "requires_acknowledgment": True,
        }


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class AuthorizationError(DomainError):
    """Role lacks permission for the action."""

    status_code = 403
    code = "PERMISSION_DENIED"

    def __init__(self, message: str, *, action: str | None = None, role: str | None = None):
        super().__init__(message)
        self.action = action
        self.role = role

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.action:
            payload["required_permission"] = self.action
        return payload


class StateConflictError(DomainError):
    """409-level state conflict (already resolved, not editable, double initialization)."""

    status_code = 409
    code = "STATE_CONFLICT"

    def __init__(self, message: str, *, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.current_status is not None:
            payload["current_status"] = self.current_status
        return payload


class InsufficientBalanceError(DomainError):
    status_code = 409
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, message: str, *, current_balance_paise: int, requested_paise: int | None = None):
        super().__init__(message)
        self.current_balance_paise = current_balance_paise
        self.requested_paise = requested_paise

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "current_balance_paise": self.current_balance_paise,
            "requested_paise": self.requested_paise,
        }
