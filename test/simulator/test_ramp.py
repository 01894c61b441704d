"""Tests for stage-driven concurrency control."""

from __future__ import annotations

import asyncio
import time

import pytest

from app.exceptions import ValidationError
from simulator.core.models import RampPhase, Stage
from simulator.core.ramp import RampController, desired_concurrency, ramp_phase


class _Recorder:
    """Iteration stand-in that tracks how many copies run at once."""

    def __init__(self, duration: float = 0.01, *, fail: bool = False):
        self.duration = duration
        self.fail = fail
        self.active = 0
        self.max_active = 0
        self.ids: list[int] = []
        self.starts: list[tuple[float, int]] = []
        self.finished = 0
        self.cancelled = 0
        self._origin = time.monotonic()

    async def __call__(self, iteration_id: int) -> None:
        self.ids.append(iteration_id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.starts.append((time.monotonic() - self._origin, self.active))
        try:
            await asyncio.sleep(self.duration)
            if self.fail:
                raise RuntimeError("boom")
            self.finished += 1
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1


class TestDesiredConcurrency:
    STAGES = (
        Stage(target=2, duration_seconds=1.0),
        Stage(target=5, duration_seconds=2.0),
        Stage(target=0, duration_seconds=1.0),
    )

    @pytest.mark.parametrize(
        "elapsed,expected",
        [
            (0.0, 2),
            (0.99, 2),
            (1.0, 5),
            (2.9, 5),
            (3.5, 0),
            (4.0, None),
            (60.0, None),
        ],
    )
    def test_active_stage_target(self, elapsed, expected):
        assert desired_concurrency(self.STAGES, elapsed) == expected

    def test_zero_length_stage_is_skipped(self):
        stages = (Stage(target=9, duration_seconds=0.0), Stage(target=1, duration_seconds=1.0))
        assert desired_concurrency(stages, 0.0) == 1


class TestRampPhase:
    def test_phases(self):
        assert ramp_phase(3, 1) is RampPhase.RAMPING_UP
        assert ramp_phase(3, 3) is RampPhase.STEADY
        assert ramp_phase(1, 3) is RampPhase.RAMPING_DOWN


class TestRampControllerValidation:
    def test_empty_profile(self, capture_logger):
        with pytest.raises(ValidationError) as exc_info:
            RampController([], _Recorder(), logger=capture_logger)
        assert exc_info.value.code == "EMPTY_PROFILE"

    def test_tick_must_be_positive(self, capture_logger):
        with pytest.raises(ValidationError) as exc_info:
            RampController([Stage(1, 1.0)], _Recorder(), tick_seconds=0, logger=capture_logger)
        assert exc_info.value.code == "INVALID_TICK"


class TestRampControllerRun:
    @pytest.mark.asyncio
    async def test_reaches_target_and_drains_cleanly(self, capture_logger):
        iteration = _Recorder(duration=0.01)
        controller = RampController(
            [Stage(target=3, duration_seconds=0.2)],
            iteration,
            tick_seconds=0.01,
            logger=capture_logger,
        )
        stats = await controller.run()

        assert stats.peak_concurrency == 3
        assert iteration.max_active == 3
        assert stats.iterations_started > 3
        assert stats.iterations_finished == stats.iterations_started
        assert stats.iterations_crashed == 0
        assert stats.iterations_cancelled == 0
        assert len(set(iteration.ids)) == len(iteration.ids)
        assert controller.running == 0
        assert controller.phase is RampPhase.COMPLETE
        assert "sim.ramp_start" in capture_logger.events("info")
        assert "sim.ramp_complete" in capture_logger.events("info")

    @pytest.mark.asyncio
    async def test_never_exceeds_target_and_retires_surplus(self, capture_logger):
        iteration = _Recorder(duration=0.01)
        controller = RampController(
            [Stage(target=4, duration_seconds=0.3), Stage(target=1, duration_seconds=0.3)],
            iteration,
            tick_seconds=0.01,
            logger=capture_logger,
        )
        stats = await controller.run()

        assert stats.peak_concurrency == 4
        assert iteration.max_active <= 4
        # Well after the drop, only one slot is still starting iterations.
        late = [active for started_at, active in iteration.starts if started_at > 0.45]
        assert late
        assert max(late) == 1
        assert stats.iterations_cancelled == 0

    @pytest.mark.asyncio
    async def test_zero_target_starts_nothing(self, capture_logger):
        iteration = _Recorder()
        controller = RampController(
            [Stage(target=0, duration_seconds=0.05)],
            iteration,
            tick_seconds=0.01,
            logger=capture_logger,
        )
        stats = await controller.run()

        assert stats.iterations_started == 0
        assert stats.peak_concurrency == 0
        assert iteration.ids == []

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight_iterations(self, capture_logger):
        iteration = _Recorder(duration=0.2)
        controller = RampController(
            [Stage(target=2, duration_seconds=0.05)],
            iteration,
            tick_seconds=0.01,
            logger=capture_logger,
        )
        stats = await controller.run()

        assert stats.iterations_started == 2
        assert stats.iterations_finished == 2
        assert stats.iterations_cancelled == 0
        assert iteration.finished == 2
        assert stats.ended_at_monotonic - stats.started_at_monotonic >= 0.2
        assert "sim.ramp_draining" in capture_logger.events("info")

    @pytest.mark.asyncio
    async def test_drain_timeout_cancels_remaining_iterations(self, capture_logger):
        iteration = _Recorder(duration=10.0)
        controller = RampController(
            [Stage(target=2, duration_seconds=0.05)],
            iteration,
            tick_seconds=0.01,
            drain_timeout_seconds=0.05,
            logger=capture_logger,
        )
        stats = await controller.run()

        assert stats.iterations_cancelled == 2
        assert stats.iterations_finished == 0
        assert iteration.cancelled == 2
        assert controller.running == 0
        assert "sim.ramp_drain_timeout" in capture_logger.events("warning")

    @pytest.mark.asyncio
    async def test_crashing_iterations_are_counted_not_fatal(self, capture_logger):
        iteration = _Recorder(duration=0.01, fail=True)
        controller = RampController(
            [Stage(target=2, duration_seconds=0.1)],
            iteration,
            tick_seconds=0.01,
            logger=capture_logger,
        )
        stats = await controller.run()

        assert stats.iterations_started > 2
        assert stats.iterations_crashed == stats.iterations_started
        assert stats.iterations_finished == 0
        assert "sim.iteration_crashed" in capture_logger.events("error")

    @pytest.mark.asyncio
    async def test_stop_ends_run_early(self, capture_logger):
        iteration = _Recorder(duration=0.01)
        controller = RampController(
            [Stage(target=2, duration_seconds=30.0)],
            iteration,
            tick_seconds=0.01,
            logger=capture_logger,
        )
        asyncio.get_running_loop().call_later(0.05, controller.stop)

        started = time.monotonic()
        stats = await controller.run()

        assert time.monotonic() - started < 5.0
        assert stats.iterations_cancelled == 0
        assert stats.iterations_finished == stats.iterations_started
        assert controller.phase is RampPhase.COMPLETE

    @pytest.mark.asyncio
    async def test_shared_stop_event_is_honoured(self, capture_logger):
        stop_event = asyncio.Event()
        stop_event.set()
        iteration = _Recorder()
        controller = RampController(
            [Stage(target=2, duration_seconds=30.0)],
            iteration,
            stop_event=stop_event,
            logger=capture_logger,
        )
        stats = await controller.run()

        assert stats.iterations_started == 0
