"""Stage-driven concurrency control.

The controller owns a set of slots. Each slot is a task that runs
iterations back to back. On every tick the controller looks up the active
stage and launches slots until the running count reaches its target. When
the target drops, surplus slots retire after their current iteration
finishes; nothing is interrupted mid-step. Once the last stage elapses no
new iterations start and the controller waits for the slots to drain.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from app.exceptions import ValidationError
from app.logger import Logger, session_logger

from simulator.core.models import RampPhase, Stage

Iteration = Callable[[int], Awaitable[Any]]


def desired_concurrency(stages: Sequence[Stage], elapsed_seconds: float) -> int | None:
    """Return the active stage's target at ``elapsed_seconds``.

    Stages are consumed in order, each for its declared duration. Returns
    None once the whole profile has elapsed.
    """
    boundary = 0.0
    for stage in stages:
        boundary += stage.duration_seconds
        if elapsed_seconds < boundary:
            return stage.target
    return None


def ramp_phase(target: int, running: int) -> RampPhase:
    if running < target:
        return RampPhase.RAMPING_UP
    if running > target:
        return RampPhase.RAMPING_DOWN
    return RampPhase.STEADY


@dataclass(frozen=True)
class RampStats:
    iterations_started: int
    iterations_finished: int
    iterations_crashed: int
    iterations_cancelled: int
    peak_concurrency: int
    started_at_monotonic: float
    ended_at_monotonic: float


class RampController:
    """Runs ``iteration`` under a staged target-concurrency profile.

    Holds only counts and task handles; iterations are opaque callables
    taking an iteration id.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        iteration: Iteration,
        *,
        tick_seconds: float = 0.1,
        drain_timeout_seconds: float | None = None,
        stop_event: asyncio.Event | None = None,
        logger: Logger | None = None,
    ) -> None:
        if not stages:
            raise ValidationError("EMPTY_PROFILE", "at least one stage is required")
        if tick_seconds <= 0:
            raise ValidationError(
                "INVALID_TICK",
                "tick_seconds must be > 0",
                details={"tick_seconds": tick_seconds},
            )

        self._stages = tuple(stages)
        self._iteration = iteration
        self._tick_seconds = tick_seconds
        self._drain_timeout_seconds = drain_timeout_seconds
        self._stop_event = stop_event or asyncio.Event()
        self._logger = logger or session_logger

        self._slots: set[asyncio.Task[None]] = set()
        self._slot_ids = itertools.count(1)
        self._iteration_ids = itertools.count(1)
        self._target = 0
        self._draining = False
        self._phase = RampPhase.RAMPING_UP

        self._started = 0
        self._finished = 0
        self._crashed = 0
        self._peak = 0

    @property
    def running(self) -> int:
        return len(self._slots)

    @property
    def target(self) -> int:
        return self._target

    @property
    def phase(self) -> RampPhase:
        return self._phase

    @property
    def peak_concurrency(self) -> int:
        return self._peak

    def stop(self) -> None:
        """Stop launching iterations; in-flight ones drain."""
        self._stop_event.set()

    async def run(self) -> RampStats:
        started = time.monotonic()
        self._logger.info(
            "sim.ramp_start",
            event="sim.ramp_start",
            stages=[{"target": s.target, "duration_seconds": s.duration_seconds} for s in self._stages],
        )

        while not self._stop_event.is_set():
            target = desired_concurrency(self._stages, time.monotonic() - started)
            if target is None:
                break

            if target != self._target:
                self._logger.info(
                    "sim.ramp_target",
                    event="sim.ramp_target",
                    target=target,
                    previous_target=self._target,
                    running=self.running,
                )
            self._target = target

            while self.running < self._target:
                self._launch_slot()
            self._set_phase(ramp_phase(self._target, self.running))

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._tick_seconds)
            except asyncio.TimeoutError:
                pass

        cancelled = await self._drain()
        self._set_phase(RampPhase.COMPLETE)

        stats = RampStats(
            iterations_started=self._started,
            iterations_finished=self._finished,
            iterations_crashed=self._crashed,
            iterations_cancelled=cancelled,
            peak_concurrency=self._peak,
            started_at_monotonic=started,
            ended_at_monotonic=time.monotonic(),
        )
        self._logger.info(
            "sim.ramp_complete",
            event="sim.ramp_complete",
            iterations_started=stats.iterations_started,
            iterations_finished=stats.iterations_finished,
            iterations_crashed=stats.iterations_crashed,
            iterations_cancelled=stats.iterations_cancelled,
            peak_concurrency=stats.peak_concurrency,
        )
        return stats

    def _launch_slot(self) -> None:
        slot_id = next(self._slot_ids)
        task = asyncio.create_task(self._run_slot(slot_id), name=f"sim-slot-{slot_id}")
        self._slots.add(task)
        task.add_done_callback(self._slots.discard)
        self._peak = max(self._peak, self.running)

    async def _run_slot(self, slot_id: int) -> None:
        current = asyncio.current_task()
        while not self._should_retire():
            iteration_id = next(self._iteration_ids)
            self._started += 1
            try:
                await self._iteration(iteration_id)
            except Exception as exc:
                self._crashed += 1
                self._logger.error(
                    "sim.iteration_crashed",
                    event="sim.iteration_crashed",
                    slot_id=slot_id,
                    iteration_id=iteration_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            else:
                self._finished += 1
            # Iterations against an in-process transport may never suspend;
            # yield so the controller still gets to tick.
            await asyncio.sleep(0)

        # Leave the slot set before returning so sibling slots see the
        # reduced count when deciding whether they also retire.
        if current is not None:
            self._slots.discard(current)
        self._logger.debug(
            "sim.slot_retired",
            event="sim.slot_retired",
            slot_id=slot_id,
            running=self.running,
            target=self._target,
        )

    def _should_retire(self) -> bool:
        if self._draining or self._stop_event.is_set():
            return True
        return self.running > self._target

    async def _drain(self) -> int:
        self._draining = True
        self._target = 0
        pending = set(self._slots)
        if not pending:
            return 0

        self._set_phase(RampPhase.RAMPING_DOWN)
        self._logger.info(
            "sim.ramp_draining",
            event="sim.ramp_draining",
            in_flight=len(pending),
            drain_timeout_seconds=self._drain_timeout_seconds,
        )
        _done, still_running = await asyncio.wait(pending, timeout=self._drain_timeout_seconds)
        if not still_running:
            return 0

        self._logger.warning(
            "sim.ramp_drain_timeout",
            event="sim.ramp_drain_timeout",
            cancelled=len(still_running),
        )
        for task in still_running:
            task.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
        return len(still_running)

    def _set_phase(self, phase: RampPhase) -> None:
        if phase is not self._phase:
            self._logger.debug(
                "sim.ramp_phase",
                event="sim.ramp_phase",
                phase=phase.value,
                previous_phase=self._phase.value,
                target=self._target,
                running=self.running,
            )
        self._phase = phase
