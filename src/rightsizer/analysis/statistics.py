"""
Usage statistics over a window of samples.

Percentiles use the nearest-rank method with floor indexing: the samples are
sorted ascending and the value at ``floor(count * quantile)`` is taken, with
the index clamped to the last element. No interpolation is performed, so a
single sample is its own p95 and p99. Historical recommendations depend on
this exact definition.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Sequence, Union

Number = Union[int, float]

P95 = 0.95
P99 = 0.99


@dataclass(frozen=True)
class UsageStats:
    """Aggregate view of one resource dimension"""
    avg: Number = 0
    max: Number = 0
    p95: Number = 0
    p99: Number = 0
    count: int = 0

    def to_dict(self) -> Dict[str, Number]:
        return asdict(self)


def percentile(sorted_samples: Sequence[Number], quantile: float) -> Number:
    """Nearest-rank percentile of an already sorted, non-empty sequence"""
    if not sorted_samples:
        raise ValueError("percentile of an empty sequence")
    if not 0 <= quantile <= 1:
        raise ValueError(f"quantile must be within [0, 1], got {quantile}")

    index = int(len(sorted_samples) * quantile)
    if index >= len(sorted_samples):
        index = len(sorted_samples) - 1
    return sorted_samples[index]


def _is_integral(samples: Sequence[Number]) -> bool:
    return all(isinstance(v, int) and not isinstance(v, bool) for v in samples)


def compute_stats(samples: Sequence[Number]) -> UsageStats:
    """
    Compute avg, max, p95 and p99 of a sample sequence.

    An empty sequence yields all zeros; callers check ``count`` before trusting
    the result. Integer input (memory bytes) keeps integer results, the
    average being floor-divided.
    """
    if not samples:
        return UsageStats()

    ordered = sorted(samples)
    total = sum(samples)
    count = len(ordered)

    if _is_integral(ordered):
        avg = total // count
    else:
        avg = total / count

    return UsageStats(
        avg=avg,
        max=ordered[-1],
        p95=percentile(ordered, P95),
        p99=percentile(ordered, P99),
        count=count,
    )
