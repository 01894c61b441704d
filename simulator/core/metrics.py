from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Any


def _percentile(ordered: list[int], q: float) -> float | None:
    """Interpolated quantile ``q`` (0..1) of ascending millisecond samples."""
    if not ordered:
        return None
    if q <= 0:
        return float(ordered[0])
    if q >= 1:
        return float(ordered[-1])

    rank = (len(ordered) - 1) * q
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(ordered[lower])
    weight = rank - lower
    return float(ordered[lower] + (ordered[upper] - ordered[lower]) * weight)


class _ReservoirSampler:
    """Uniform sample of at most ``max_size`` step durations.

    One per step name, so a long ramp keeps a fixed memory footprint no
    matter how many iterations run.
    """

    def __init__(self, max_size: int, *, seed: int | None = None) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self._max_size = max_size
        self._rng = random.Random(seed)
        self._seen = 0
        self._values: list[int] = []

    def add(self, value: int) -> None:
        self._seen += 1
        if len(self._values) < self._max_size:
            self._values.append(value)
            return

        slot = self._rng.randrange(self._seen)
        if slot < self._max_size:
            self._values[slot] = value

    def values(self) -> list[int]:
        return list(self._values)


@dataclass
class _LatencyAgg:
    """Exact running totals for one step; percentiles come from the sample."""

    count: int = 0
    error_count: int = 0
    sum_ms: int = 0
    min_ms: int | None = None
    max_ms: int | None = None
    error_types: dict[str, int] = field(default_factory=dict)


class LatencyMetrics:
    """Per-step latency and error aggregation.

    Not locked: the owning ResultAggregator serializes access.
    """

    def __init__(self, *, sample_size: int = 5000) -> None:
        self._sample_size = sample_size
        self._overall = _LatencyAgg()
        self._overall_sample = _ReservoirSampler(sample_size)
        self._by_step: dict[str, _LatencyAgg] = {}
        self._by_step_sample: dict[str, _ReservoirSampler] = {}

    def observe(
        self,
        step: str,
        duration_ms: int,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        if duration_ms < 0:
            duration_ms = 0

        self._observe(self._overall, self._overall_sample, duration_ms, success, error_type)

        agg = self._by_step.get(step)
        if agg is None:
            agg = _LatencyAgg()
            self._by_step[step] = agg
            self._by_step_sample[step] = _ReservoirSampler(self._sample_size)
        self._observe(agg, self._by_step_sample[step], duration_ms, success, error_type)

    def report(self) -> dict[str, Any]:
        return {
            "overall": self._agg_to_report(self._overall, self._overall_sample),
            "by_step": {
                step: self._agg_to_report(agg, self._by_step_sample[step])
                for step, agg in sorted(self._by_step.items())
            },
        }

    def _observe(
        self,
        agg: _LatencyAgg,
        sample: _ReservoirSampler,
        duration_ms: int,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        agg.count += 1
        if not success:
            agg.error_count += 1
            et = error_type or "unknown"
            agg.error_types[et] = agg.error_types.get(et, 0) + 1
        agg.sum_ms += duration_ms
        if agg.min_ms is None or duration_ms < agg.min_ms:
            agg.min_ms = duration_ms
        if agg.max_ms is None or duration_ms > agg.max_ms:
            agg.max_ms = duration_ms
        sample.add(duration_ms)

    def _agg_to_report(self, agg: _LatencyAgg, sample: _ReservoirSampler) -> dict[str, Any]:
        values = sample.values()
        values.sort()

        mean = (agg.sum_ms / agg.count) if agg.count else None
        error_rate = (agg.error_count / agg.count * 100) if agg.count else 0.0
        return {
            "count": agg.count,
            "error_count": agg.error_count,
            "error_rate_pct": round(error_rate, 2),
            "error_types": dict(agg.error_types) if agg.error_types else {},
            "min_ms": agg.min_ms,
            "max_ms": agg.max_ms,
            "mean_ms": mean,
            "p50_ms": _percentile(values, 0.50),
            "p95_ms": _percentile(values, 0.95),
            "p99_ms": _percentile(values, 0.99),
            "sample_size": len(values),
        }
