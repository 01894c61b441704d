"""Exception classes for gobank-sim.

Base exceptions carry a code, a message and structured details; workflow
exceptions describe why a transfer iteration could not proceed.
"""

from app.exceptions.base import (
    BankSimError,
    ConfigurationError,
    ValidationError,
)
from app.exceptions.workflow import (
    AuthError,
    CleanupError,
    MalformedFieldError,
    MissingFieldError,
    RequestError,
    WorkflowError,
)

__all__ = [
    # Base exceptions
    "BankSimError",
    "ValidationError",
    "ConfigurationError",
    # Workflow exceptions
    "WorkflowError",
    "AuthError",
    "RequestError",
    "MissingFieldError",
    "MalformedFieldError",
    "CleanupError",
]
