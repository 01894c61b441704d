from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from app.logger import Logger, session_logger

from simulator.core.http_client import HttpOutcome
from simulator.core.metrics import LatencyMetrics
from simulator.core.models import CheckResult, WorkflowState

if TYPE_CHECKING:
    from simulator.core.workflow import IterationOutcome


@dataclass
class _CheckTally:
    passes: int = 0
    fails: int = 0

    @property
    def total(self) -> int:
        return self.passes + self.fails


@dataclass
class _IterationTally:
    done: int = 0
    failed: int = 0
    failed_by_state: dict[str, int] = field(default_factory=dict)
    durations: LatencyMetrics = field(default_factory=LatencyMetrics)


class ResultAggregator:
    """Collects named checks, step latencies and iteration outcomes.

    Shared by every running iteration; all writes go through one lock.
    """

    def __init__(self, *, sample_size: int = 5000, logger: Logger | None = None) -> None:
        self._logger = logger or session_logger
        self._lock = asyncio.Lock()
        self._checks: dict[str, _CheckTally] = {}
        self._failures: list[CheckResult] = []
        self._max_failures_kept = 100
        self._latency = LatencyMetrics(sample_size=sample_size)
        self._iterations = _IterationTally(durations=LatencyMetrics(sample_size=sample_size))

    async def record_check(self, result: CheckResult) -> None:
        async with self._lock:
            tally = self._checks.setdefault(result.name, _CheckTally())
            if result.passed:
                tally.passes += 1
            else:
                tally.fails += 1
                if len(self._failures) < self._max_failures_kept:
                    self._failures.append(result)

        if not result.passed:
            self._logger.debug(
                "sim.check_failed",
                event="sim.check_failed",
                check=result.name,
                detail=result.detail,
            )

    async def record_step(
        self,
        step: str,
        duration_ms: int,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        async with self._lock:
            self._latency.observe(step, duration_ms, success, error_type)

    async def observe_response(self, outcome: HttpOutcome) -> None:
        """Record the status check and latency of one HTTP call."""
        await self.record_check(
            CheckResult(
                name=outcome.check_name,
                passed=outcome.status_accepted,
                detail=None if outcome.status_accepted else outcome.error_type,
            )
        )
        await self.record_step(
            outcome.name,
            outcome.duration_ms,
            outcome.status_accepted,
            None if outcome.status_accepted else outcome.error_type,
        )

    async def record_iteration(self, outcome: "IterationOutcome") -> None:
        async with self._lock:
            tally = self._iterations
            if outcome.final_state is WorkflowState.DONE:
                tally.done += 1
            else:
                tally.failed += 1
                key = outcome.failed_state.value if outcome.failed_state else "unknown"
                tally.failed_by_state[key] = tally.failed_by_state.get(key, 0) + 1
            tally.durations.observe(
                "iteration",
                outcome.duration_ms,
                outcome.final_state is WorkflowState.DONE,
                outcome.error_type,
            )

    async def counts(self) -> tuple[int, int]:
        """Return (done, failed) iteration counts."""
        async with self._lock:
            return self._iterations.done, self._iterations.failed

    async def summary(self) -> dict[str, Any]:
        async with self._lock:
            checks = {
                name: {
                    "passes": tally.passes,
                    "fails": tally.fails,
                    "pass_rate_pct": round(tally.passes / tally.total * 100, 2) if tally.total else 0.0,
                }
                for name, tally in sorted(self._checks.items())
            }
            iterations = self._iterations
            failed_checks = sum(t.fails for t in self._checks.values())

            return {
                "all_passed": failed_checks == 0 and iterations.failed == 0,
                "checks": checks,
                "failed_check_samples": [
                    {"name": r.name, "detail": r.detail, "timestamp": r.timestamp}
                    for r in self._failures
                ],
                "steps": self._latency.report(),
                "iterations": {
                    "started": iterations.done + iterations.failed,
                    "done": iterations.done,
                    "failed": iterations.failed,
                    "failed_by_state": dict(sorted(iterations.failed_by_state.items())),
                    "duration": iterations.durations.report()["overall"],
                },
            }
