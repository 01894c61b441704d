from __future__ import annotations

import asyncio

import pytest

from simulator.core.http_client import HttpOutcome
from simulator.core.metrics import LatencyMetrics, _percentile, _ReservoirSampler
from simulator.core.models import CheckResult, WorkflowState
from simulator.core.results import ResultAggregator
from simulator.core.workflow import IterationContext, IterationOutcome


def _outcome(status: int | None, *, name: str = "POST /transfer", duration_ms: int = 10) -> HttpOutcome:
    return HttpOutcome(
        name=name,
        method="POST",
        path="/transfer",
        status=status,
        body=None,
        transport_error=None if status is not None else "network_timeout",
        duration_ms=duration_ms,
    )


def test_latency_metrics_percentiles_and_grouping():
    metrics = LatencyMetrics(sample_size=50)

    for d in [10, 20, 30, 40, 50]:
        metrics.observe("POST /transfer", d, True)

    # Add a failure to ensure error_count is tracked.
    metrics.observe("POST /transfer", 60, False, "client_error")
    metrics.observe("POST /login", 5, True)

    report = metrics.report()

    assert report["overall"]["count"] == 7
    assert report["overall"]["error_count"] == 1

    by_step = report["by_step"]["POST /transfer"]
    assert by_step["count"] == 6
    assert by_step["error_count"] == 1
    # Values are [10,20,30,40,50,60] => median is (30+40)/2 = 35.
    assert by_step["p50_ms"] == 35.0
    assert by_step["error_rate_pct"] == pytest.approx(16.67, abs=0.01)
    assert by_step["error_types"] == {"client_error": 1}
    assert by_step["min_ms"] == 10
    assert by_step["max_ms"] == 60


def test_percentile_edges():
    assert _percentile([], 0.5) is None
    assert _percentile([5], 0.99) == 5.0
    assert _percentile([1, 2, 3], 0.0) == 1.0
    assert _percentile([1, 2, 3], 1.0) == 3.0


def test_reservoir_sampler_is_bounded():
    sampler = _ReservoirSampler(10, seed=3)
    for value in range(1000):
        sampler.add(value)
    assert len(sampler.values()) == 10


class TestResultAggregator:
    @pytest.mark.asyncio
    async def test_observe_response_records_status_check_and_latency(self):
        results = ResultAggregator()

        await results.observe_response(_outcome(200, duration_ms=12))
        await results.observe_response(_outcome(400, duration_ms=8))
        await results.observe_response(_outcome(None, duration_ms=30))

        summary = await results.summary()
        check = summary["checks"]["POST /transfer status is 200"]
        assert check == {"passes": 1, "fails": 2, "pass_rate_pct": 33.33}
        step = summary["steps"]["by_step"]["POST /transfer"]
        assert step["error_types"] == {"client_error": 1, "network_timeout": 1}
        assert summary["all_passed"] is False

    @pytest.mark.asyncio
    async def test_iteration_counts_by_failing_state(self):
        results = ResultAggregator()
        context = IterationContext(iteration_id=1)

        await results.record_iteration(
            IterationOutcome(iteration_id=1, final_state=WorkflowState.DONE, context=context, duration_ms=5)
        )
        await results.record_iteration(
            IterationOutcome(
                iteration_id=2,
                final_state=WorkflowState.FAILED,
                context=context,
                duration_ms=7,
                failed_state=WorkflowState.EXECUTE_TRANSFER,
                error_type="request_failure",
            )
        )

        assert await results.counts() == (1, 1)
        summary = await results.summary()
        assert summary["iterations"]["started"] == 2
        assert summary["iterations"]["failed_by_state"] == {"ExecuteTransfer": 1}

    @pytest.mark.asyncio
    async def test_all_passed_when_every_check_passes(self):
        results = ResultAggregator()
        await results.record_check(CheckResult(name="delete from account", passed=True))

        summary = await results.summary()
        assert summary["all_passed"] is True
        assert summary["failed_check_samples"] == []

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_all_counted(self):
        results = ResultAggregator()

        async def _writer(n: int) -> None:
            for i in range(50):
                await results.record_check(CheckResult(name="shared", passed=(i + n) % 2 == 0))
                await asyncio.sleep(0)

        await asyncio.gather(*(_writer(n) for n in range(20)))

        summary = await results.summary()
        tally = summary["checks"]["shared"]
        assert tally["passes"] + tally["fails"] == 1000
