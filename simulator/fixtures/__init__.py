"""In-memory service fixtures for CI-safe simulation runs."""

from __future__ import annotations

__all__ = ["FakeBank"]

from simulator.fixtures.fake_bank import FakeBank
