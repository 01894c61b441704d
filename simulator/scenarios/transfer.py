"""Transfer scenario: ramped users each running the full transfer workflow.

This module provides a pre-built ``SimulationConfig`` and convenience
runner for the "transfer" scenario. Every simulated user provisions two
accounts, moves funds between them, checks that the funds were conserved,
and deletes both accounts.

Usage from CLI::

    python simulator/run.py --mode fixture --stages 10:30s --pacing 0

Usage as library::

    from simulator.scenarios.transfer import run_transfer_scenario

    result = await run_transfer_scenario(stages="10:30s", pacing_seconds=0)
"""

from __future__ import annotations

from typing import Sequence

from simulator.core.engine import Simulator
from simulator.core.models import Mode, SimulationConfig, SimulationResult, Stage, WorkflowPolicy
from simulator.core.profile import parse_stages
from simulator.fixtures.fake_bank import FakeBank

DEFAULT_STAGES = "10:30s"


def build_transfer_config(
    *,
    stages: str | Sequence[Stage] = DEFAULT_STAGES,
    mode: Mode = Mode.FIXTURE,
    base_url: str | None = None,
    policy: WorkflowPolicy | None = None,
    pacing_seconds: float = 5.0,
    timeout_seconds: float | None = None,
    tick_seconds: float = 0.1,
    drain_timeout_seconds: float | None = None,
    seed: int | None = None,
) -> SimulationConfig:
    """Build a ``SimulationConfig`` for the transfer workflow.

    By default runs in fixture mode against the in-memory bank. Pass
    ``mode=Mode.LIVE`` and ``base_url`` to drive a running service.
    """
    parsed = parse_stages(stages) if isinstance(stages, str) else tuple(stages)
    return SimulationConfig(
        mode=mode,
        base_url=base_url,
        stages=parsed,
        policy=policy or WorkflowPolicy(),
        timeout_seconds=timeout_seconds,
        pacing_seconds=pacing_seconds,
        tick_seconds=tick_seconds,
        drain_timeout_seconds=drain_timeout_seconds,
        seed=seed,
    )


async def run_transfer_scenario(
    *,
    stages: str | Sequence[Stage] = DEFAULT_STAGES,
    mode: Mode = Mode.FIXTURE,
    base_url: str | None = None,
    policy: WorkflowPolicy | None = None,
    pacing_seconds: float = 5.0,
    timeout_seconds: float | None = None,
    tick_seconds: float = 0.1,
    drain_timeout_seconds: float | None = None,
    seed: int | None = None,
    bank: FakeBank | None = None,
) -> SimulationResult:
    """Run the transfer scenario and return the result.

    This is the programmatic entry point used by integration tests and CI.
    """
    config = build_transfer_config(
        stages=stages,
        mode=mode,
        base_url=base_url,
        policy=policy,
        pacing_seconds=pacing_seconds,
        timeout_seconds=timeout_seconds,
        tick_seconds=tick_seconds,
        drain_timeout_seconds=drain_timeout_seconds,
        seed=seed,
    )
    sim = Simulator(config, bank=bank)
    return await sim.run()
