from __future__ import annotations

import asyncio
import random
import signal
import time

import httpx

from app.exceptions import ConfigurationError
from app.logger import Logger, session_logger

from simulator.core.cleanup import CleanupManager
from simulator.core.http_client import BankClient
from simulator.core.invariants import InvariantChecker
from simulator.core.models import Mode, SimulationConfig, SimulationResult
from simulator.core.ramp import RampController
from simulator.core.results import ResultAggregator
from simulator.core.session import SessionManager
from simulator.core.workflow import WorkflowExecutor
from simulator.fixtures.fake_bank import BASE_URL as FAKE_BANK_URL
from simulator.fixtures.fake_bank import FakeBank


class Simulator:
    """Wires the harness together and runs one ramp profile."""

    def __init__(
        self,
        config: SimulationConfig,
        *,
        logger: Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        bank: FakeBank | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or session_logger
        self._transport = transport
        self._bank = bank

    @property
    def bank(self) -> FakeBank | None:
        """The in-memory bank used in fixture mode (None in live mode)."""
        return self._bank

    async def run(self) -> SimulationResult:
        if not self._config.stages:
            raise ConfigurationError("EMPTY_PROFILE", "at least one stage is required")

        base_url, transport = self._resolve_target()

        stop_event = asyncio.Event()
        results = ResultAggregator(logger=self._logger)
        rng = random.Random(self._config.seed)

        self._logger.info(
            "sim.start",
            event="sim.start",
            mode=self._config.mode.value,
            base_url=base_url,
            stages=len(self._config.stages),
            profile_seconds=self._config.profile_seconds,
            pacing_seconds=self._config.pacing_seconds,
            admin_number=self._config.policy.admin_number,
            rejected_transfer=self._config.policy.rejected_transfer.value,
            seed=self._config.seed,
        )

        def _handle_signal(signum: int, _frame) -> None:  # pragma: no cover
            self._logger.warning("sim.signal", event="sim.signal", signum=signum)
            stop_event.set()

        async with BankClient(
            base_url,
            timeout_seconds=self._config.timeout_seconds,
            transport=transport,
            observer=results.observe_response,
            logger=self._logger,
        ) as client:
            executor = WorkflowExecutor(
                client,
                sessions=SessionManager(client, logger=self._logger),
                checker=InvariantChecker(logger=self._logger),
                cleanup=CleanupManager(client, results=results, logger=self._logger),
                results=results,
                policy=self._config.policy,
                rng=rng,
                pacing_seconds=self._config.pacing_seconds,
                logger=self._logger,
            )
            controller = RampController(
                self._config.stages,
                executor.run_iteration,
                tick_seconds=self._config.tick_seconds,
                drain_timeout_seconds=self._config.drain_timeout_seconds,
                stop_event=stop_event,
                logger=self._logger,
            )

            with _SignalHandlers(_handle_signal):
                stats = await controller.run()

        done, failed = await results.counts()
        summary = await results.summary()
        summary["ramp"] = {
            "iterations_started": stats.iterations_started,
            "iterations_crashed": stats.iterations_crashed,
            "iterations_cancelled": stats.iterations_cancelled,
            "peak_concurrency": stats.peak_concurrency,
        }
        if stats.iterations_crashed or stats.iterations_cancelled:
            summary["all_passed"] = False

        result = SimulationResult(
            started_at_monotonic=stats.started_at_monotonic,
            ended_at_monotonic=time.monotonic(),
            iteration_count=done + failed,
            failed_iteration_count=failed,
            peak_concurrency=stats.peak_concurrency,
            summary=summary,
        )

        self._logger.info(
            "sim.end",
            event="sim.end",
            iteration_count=result.iteration_count,
            failed_iteration_count=result.failed_iteration_count,
            peak_concurrency=result.peak_concurrency,
            duration_seconds=result.duration_seconds,
            iterations_per_second=result.iterations_per_second,
            all_passed=result.all_passed,
        )
        return result

    def _resolve_target(self) -> tuple[str, httpx.AsyncBaseTransport | None]:
        if self._config.mode == Mode.FIXTURE:
            if self._bank is None:
                self._bank = FakeBank(
                    admin_number=self._config.policy.admin_number,
                    admin_password=self._config.policy.admin_password,
                    seed=self._config.seed,
                    logger=self._logger,
                )
            return self._config.base_url or FAKE_BANK_URL, self._transport or self._bank.transport()

        if not self._config.base_url:
            raise ConfigurationError(
                "MISSING_BASE_URL",
                "base_url must be provided for live mode",
                details={"mode": self._config.mode.value},
            )
        return self._config.base_url, self._transport


class _SignalHandlers:
    def __init__(self, handler) -> None:
        self._handler = handler
        self._previous: dict[int, object] = {}

    def __enter__(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handler)
            except ValueError:
                # Not the main thread (e.g. when embedded in a test runner).
                pass
        return self

    def __exit__(self, exc_type, exc, tb):
        for signum, previous in self._previous.items():
            signal.signal(signum, previous)  # type: ignore[arg-type]
        return False
