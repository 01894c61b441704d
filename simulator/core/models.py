from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from app.exceptions import MalformedFieldError, MissingFieldError, ValidationError


class Mode(str, Enum):
    """Simulation execution mode.

    live: drive a running money-transfer service at --base-url
    fixture: drive the in-memory fake bank (CI-safe)
    """

    LIVE = "live"
    FIXTURE = "fixture"


class RampPhase(str, Enum):
    RAMPING_UP = "RampingUp"
    STEADY = "Steady"
    RAMPING_DOWN = "RampingDown"
    COMPLETE = "Complete"


class WorkflowState(str, Enum):
    """States of one transfer iteration, in execution order."""

    START = "Start"
    ADMIN_LOGIN = "AdminLogin"
    PROBE_ACCOUNTS = "ProbeAccounts"
    CREATE_FROM_ACCOUNT = "CreateFromAccount"
    CREATE_TO_ACCOUNT = "CreateToAccount"
    LOGIN_AS_FROM_ACCOUNT = "LoginAsFromAccount"
    EXECUTE_TRANSFER = "ExecuteTransfer"
    FETCH_UPDATED_TO_ACCOUNT = "FetchUpdatedToAccount"
    VERIFY_INVARIANT = "VerifyInvariant"
    CLEANUP = "Cleanup"
    DONE = "Done"
    FAILED = "Failed"


class RejectedTransferPolicy(str, Enum):
    """How a transfer the service refuses for insufficient funds is judged.

    failure: any non-200 transfer fails the iteration
    expected: a 400 for an amount above the source balance is a passing
        outcome, followed by a check that neither balance moved
    """

    FAILURE = "failure"
    EXPECTED = "expected"


@dataclass(frozen=True)
class Stage:
    """One step of the ramp profile: hold ``target`` iterations for a duration."""

    target: int
    duration_seconds: float

    def __post_init__(self) -> None:
        if self.target < 0:
            raise ValidationError(
                "INVALID_STAGE",
                "stage target must be >= 0",
                details={"target": self.target},
            )
        if self.duration_seconds < 0:
            raise ValidationError(
                "INVALID_STAGE",
                "stage duration must be >= 0",
                details={"duration_seconds": self.duration_seconds},
            )


@dataclass(frozen=True)
class IntRange:
    """Integer range, min inclusive and max exclusive."""

    min: int
    max: int

    def __post_init__(self) -> None:
        if self.min >= self.max:
            raise ValidationError(
                "INVALID_RANGE",
                "range min must be lower than max",
                details={"min": self.min, "max": self.max},
            )

    def sample(self, rng: random.Random) -> int:
        return rng.randrange(self.min, self.max)

    def __contains__(self, value: object) -> bool:
        return isinstance(value, int) and self.min <= value < self.max


def integer_field(payload: Mapping[str, Any], field_name: str, *, step: str) -> int:
    """Return ``payload[field_name]`` as an int.

    Raises MissingFieldError when the field is absent or null and
    MalformedFieldError when it holds anything but a whole number.
    """
    value = payload.get(field_name)
    if value is None:
        raise MissingFieldError(field_name, step=step)
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise MalformedFieldError(field_name, value, step=step)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedFieldError(field_name, value, step=step) from exc


@dataclass(frozen=True)
class Account:
    """Snapshot of an account as returned by the service."""

    id: int
    number: int
    first_name: str
    last_name: str
    balance: int
    admin_account: int | None = None

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        *,
        step: str,
        admin_account: int | None = None,
    ) -> "Account":
        """Build an account from a response body.

        ``number``, ``id`` and ``balance`` are required; anything else is
        optional.
        """
        if not isinstance(payload, Mapping):
            raise MissingFieldError("number", step=step)
        for required in ("number", "id", "balance"):
            if payload.get(required) is None:
                raise MissingFieldError(required, step=step)

        return cls(
            id=integer_field(payload, "id", step=step),
            number=integer_field(payload, "number", step=step),
            first_name=str(payload.get("firstName", "")),
            last_name=str(payload.get("lastName", "")),
            balance=integer_field(payload, "balance", step=step),
            admin_account=admin_account,
        )


@dataclass(frozen=True)
class Session:
    """A login for one account, valid for the remainder of one iteration."""

    account_number: int
    token: str = field(repr=False)


@dataclass(frozen=True)
class TransferIntent:
    from_number: int
    to_number: int
    amount: int

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValidationError(
                "INVALID_TRANSFER",
                "transfer amount must be positive",
                details={"amount": self.amount},
            )

    def to_payload(self) -> dict[str, int]:
        return {
            "from_number": self.from_number,
            "to_number": self.to_number,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    timestamp: float = field(default_factory=time.time)
    detail: str | None = None


@dataclass(frozen=True)
class WorkflowPolicy:
    """Fixed parameters of the transfer workflow.

    Balances and the transfer amount are drawn from their ranges with the
    simulator's seeded generator; the amount is independent of balances and
    may exceed the source account's funds.
    """

    admin_number: int = 1107
    admin_password: str = "gobank"
    account_password: str = "gobank"
    first_name: str = "simTest"
    from_last_name: str = "FromAccount"
    to_last_name: str = "ToAccount"
    from_balance: IntRange = IntRange(1000, 3000)
    to_balance: IntRange = IntRange(0, 20)
    transfer_amount: IntRange = IntRange(20, 100)
    rejected_transfer: RejectedTransferPolicy = RejectedTransferPolicy.FAILURE

    def __post_init__(self) -> None:
        if self.transfer_amount.min <= 0:
            raise ValidationError(
                "INVALID_RANGE",
                "transfer amounts must be positive",
                details={"min": self.transfer_amount.min},
            )
        if self.from_balance.min < 0 or self.to_balance.min < 0:
            raise ValidationError("INVALID_RANGE", "opening balances must be non-negative")


@dataclass(frozen=True)
class SimulationConfig:
    mode: Mode
    base_url: str | None
    stages: tuple[Stage, ...]
    policy: WorkflowPolicy = WorkflowPolicy()
    timeout_seconds: float | None = None
    pacing_seconds: float = 5.0
    tick_seconds: float = 0.1
    drain_timeout_seconds: float | None = None
    seed: int | None = None

    @property
    def profile_seconds(self) -> float:
        return sum(stage.duration_seconds for stage in self.stages)


@dataclass
class SimulationResult:
    started_at_monotonic: float
    ended_at_monotonic: float
    iteration_count: int
    failed_iteration_count: int
    peak_concurrency: int
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at_monotonic - self.started_at_monotonic)

    @property
    def iterations_per_second(self) -> float:
        duration = self.duration_seconds
        return (self.iteration_count / duration) if duration > 0 else 0.0

    @property
    def all_passed(self) -> bool:
        return bool(self.summary.get("all_passed", False))
