"""Base exception hierarchy for gobank-sim.

Every error carries a machine-readable ``code``, a human-readable
``message`` and an optional ``details`` dict with structured context.
"""

from __future__ import annotations

from typing import Any


class BankSimError(Exception):
    """Base class for all gobank-sim errors."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.code = code
        self.message = message
        self.details: dict[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.code}: {self.message} (details: {self.details})"
        return f"{self.code}: {self.message}"


class ValidationError(BankSimError):
    """Raised when user-provided input (profiles, ranges, arguments) is invalid."""

    pass


class ConfigurationError(BankSimError):
    """Raised when the harness cannot be assembled from its configuration."""

    pass
