from __future__ import annotations

from typing import Any

from simulator.core.models import SimulationConfig, SimulationResult


def build_simulation_report(config: SimulationConfig, result: SimulationResult) -> dict[str, Any]:
    policy = config.policy
    config_payload = {
        "mode": config.mode.value,
        "base_url": config.base_url,
        "stages": [
            {"target": stage.target, "duration_seconds": stage.duration_seconds}
            for stage in config.stages
        ],
        "timeout_seconds": config.timeout_seconds,
        "pacing_seconds": config.pacing_seconds,
        "drain_timeout_seconds": config.drain_timeout_seconds,
        "seed": config.seed,
        "policy": {
            "admin_number": policy.admin_number,
            "from_balance": [policy.from_balance.min, policy.from_balance.max],
            "to_balance": [policy.to_balance.min, policy.to_balance.max],
            "transfer_amount": [policy.transfer_amount.min, policy.transfer_amount.max],
            "rejected_transfer": policy.rejected_transfer.value,
        },
    }
    return {
        "config": config_payload,
        "result": {
            "iteration_count": result.iteration_count,
            "failed_iteration_count": result.failed_iteration_count,
            "peak_concurrency": result.peak_concurrency,
            "duration_seconds": result.duration_seconds,
            "iterations_per_second": result.iterations_per_second,
            "all_passed": result.all_passed,
        },
        "summary": result.summary,
    }
