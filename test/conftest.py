"""Pytest configuration and fixtures

Provides shared fixtures for all tests: an in-memory fake bank, a capturing
logger, and a helper that wires the harness components together against
the fake bank.
"""

import random
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.logger import Logger  # noqa: E402
from simulator.core.cleanup import CleanupManager  # noqa: E402
from simulator.core.http_client import BankClient  # noqa: E402
from simulator.core.invariants import InvariantChecker  # noqa: E402
from simulator.core.models import WorkflowPolicy  # noqa: E402
from simulator.core.results import ResultAggregator  # noqa: E402
from simulator.core.session import SessionManager  # noqa: E402
from simulator.core.workflow import WorkflowExecutor  # noqa: E402
from simulator.fixtures.fake_bank import BASE_URL, FakeBank  # noqa: E402


class CaptureLogger(Logger):
    """Logger that keeps every record for assertions."""

    def __init__(self):
        self.records = []

    def _record(self, level, message, kwargs):
        self.records.append((level, message, dict(kwargs)))

    def debug(self, message, **kwargs):
        self._record("debug", message, kwargs)

    def info(self, message, **kwargs):
        self._record("info", message, kwargs)

    def warning(self, message, **kwargs):
        self._record("warning", message, kwargs)

    def error(self, message, **kwargs):
        self._record("error", message, kwargs)

    def critical(self, message, **kwargs):
        self._record("critical", message, kwargs)

    def events(self, level=None):
        return [m for lvl, m, _ in self.records if level is None or lvl == level]


@dataclass
class Harness:
    bank: FakeBank
    client: BankClient
    results: ResultAggregator
    sessions: SessionManager
    cleanup: CleanupManager
    executor: WorkflowExecutor
    logger: CaptureLogger


@asynccontextmanager
async def build_harness(bank, *, policy=None, seed=1, pacing_seconds=0.0):
    """Wire every component against ``bank`` the way the Simulator does."""
    logger = CaptureLogger()
    results = ResultAggregator(logger=logger)
    async with BankClient(
        BASE_URL,
        transport=bank.transport(),
        observer=results.observe_response,
        logger=logger,
    ) as client:
        sessions = SessionManager(client, logger=logger)
        cleanup = CleanupManager(client, results=results, logger=logger)
        executor = WorkflowExecutor(
            client,
            sessions=sessions,
            checker=InvariantChecker(logger=logger),
            cleanup=cleanup,
            results=results,
            policy=policy or WorkflowPolicy(),
            rng=random.Random(seed),
            pacing_seconds=pacing_seconds,
            logger=logger,
        )
        yield Harness(bank, client, results, sessions, cleanup, executor, logger)


@pytest.fixture(scope="function")
def fake_bank():
    """Fresh in-memory bank holding only the admin account 1107."""
    return FakeBank(seed=7)


@pytest.fixture(scope="function")
def capture_logger():
    return CaptureLogger()
