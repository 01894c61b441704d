from __future__ import annotations

from app.logger import Logger, session_logger

from simulator.core.models import CheckResult

FROM_DEBITED = "from balance decreased by transfer amount"
TO_CREDITED = "to balance increased by transfer amount"
FROM_UNCHANGED = "from balance unchanged after rejected transfer"
TO_UNCHANGED = "to balance unchanged after rejected transfer"


class InvariantChecker:
    """Checks that a transfer conserves funds between its two accounts.

    Each equation is reported as its own CheckResult. A violation is data:
    nothing here raises.
    """

    def __init__(self, *, logger: Logger | None = None) -> None:
        self._logger = logger or session_logger

    def check(
        self,
        from_before: int,
        from_after: int | None,
        to_before: int,
        to_after: int | None,
        amount: int,
    ) -> tuple[CheckResult, CheckResult]:
        return (
            self._equation(FROM_DEBITED, from_before - amount, from_after),
            self._equation(TO_CREDITED, to_before + amount, to_after),
        )

    def check_unchanged(
        self,
        from_before: int,
        from_after: int | None,
        to_before: int,
        to_after: int | None,
    ) -> tuple[CheckResult, CheckResult]:
        return (
            self._equation(FROM_UNCHANGED, from_before, from_after),
            self._equation(TO_UNCHANGED, to_before, to_after),
        )

    def _equation(self, name: str, expected: int, actual: int | None) -> CheckResult:
        passed = actual is not None and expected == actual
        detail = None if passed else f"expected {expected}, observed {actual}"
        if not passed:
            self._logger.warning(
                "sim.invariant_violation",
                event="sim.invariant_violation",
                check=name,
                expected=expected,
                observed=actual,
            )
        return CheckResult(name=name, passed=passed, detail=detail)
