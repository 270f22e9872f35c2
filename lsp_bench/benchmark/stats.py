"""Latency reduction for one server's measured samples."""

from __future__ import annotations

import math
from typing import Iterable, NamedTuple


class LatencyStats(NamedTuple):
    p50: float
    p95: float
    mean: float


def compute_stats(samples_ms: Iterable[float]) -> LatencyStats:
    """Reduce latency samples (milliseconds) to p50/p95/mean.

    Percentiles are read at a truncated index of the sorted samples,
    ``n // 2`` and ``int(n * 0.95)``, without interpolation. This matches
    the indexing of existing result files.

    Raises:
        ValueError: ``samples_ms`` is empty.
    """
    lats_sorted = sorted(samples_ms)
    n = len(lats_sorted)
    if n == 0:
        raise ValueError("no latency samples")
    return LatencyStats(
        p50=lats_sorted[n // 2],
        p95=lats_sorted[int(n * 0.95)],
        mean=sum(lats_sorted) / n,
    )


def round_ms(value: float) -> float:
    # round half up, two decimals
    return math.floor(value * 100.0 + 0.5) / 100.0
