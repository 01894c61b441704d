"""Pre-built simulation scenarios."""

from __future__ import annotations

__all__ = ["run_transfer_scenario", "build_transfer_config"]

from simulator.scenarios.transfer import build_transfer_config, run_transfer_scenario
