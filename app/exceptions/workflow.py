"""Workflow exceptions for the transfer iteration.

Each step of an iteration raises one of these when it cannot proceed. The
workflow executor turns them into a failed step result at the state
boundary, so none of them ever escapes an iteration.
"""

from __future__ import annotations

from typing import Any

from app.exceptions.base import BankSimError


class WorkflowError(BankSimError):
    """Base exception for iteration step failures."""

    error_type = "workflow_error"

    def __init__(
        self,
        code: str,
        message: str,
        *,
        step: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = {"step": step}
        if details:
            merged.update(details)
        super().__init__(code, message, details=merged)
        self.step = step


class AuthError(WorkflowError):
    """Login returned a non-200 status or no token."""

    error_type = "auth_failure"

    def __init__(self, message: str, *, step: str, status: int | None = None, account_number: int | None = None) -> None:
        super().__init__(
            "AUTH_FAILURE",
            message,
            step=step,
            details={"status": status, "account_number": account_number},
        )
        self.status = status
        self.account_number = account_number


class RequestError(WorkflowError):
    """A non-login call returned a non-200 status or failed in transport."""

    error_type = "request_failure"

    def __init__(
        self,
        message: str,
        *,
        step: str,
        status: int | None = None,
        transport_error: str | None = None,
    ) -> None:
        super().__init__(
            "REQUEST_FAILURE",
            message,
            step=step,
            details={"status": status, "transport_error": transport_error},
        )
        self.status = status
        self.transport_error = transport_error


class MissingFieldError(WorkflowError):
    """A required field is absent from an otherwise successful response."""

    error_type = "missing_field"

    def __init__(self, field: str, *, step: str) -> None:
        super().__init__(
            "MISSING_FIELD",
            f"response is missing required field '{field}'",
            step=step,
            details={"field": field},
        )
        self.field = field


class CleanupError(WorkflowError):
    """Deleting a created account failed."""

    error_type = "cleanup_failure"

    def __init__(self, message: str, *, account_id: int, status: int | None = None) -> None:
        super().__init__(
            "CLEANUP_FAILURE",
            message,
            step="Cleanup",
            details={"account_id": account_id, "status": status},
        )
        self.account_id = account_id
        self.status = status


class MalformedFieldError(MissingFieldError):
    """A required field is present but does not hold an integer."""

    def __init__(self, field: str, value: Any, *, step: str) -> None:
        WorkflowError.__init__(
            self,
            "MALFORMED_FIELD",
            f"response field '{field}' is not an integer: {value!r}",
            step=step,
            details={"field": field, "value": repr(value)},
        )
        self.field = field
        self.value = value
