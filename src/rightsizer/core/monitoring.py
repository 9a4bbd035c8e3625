"""
In-process metrics and health checks.

The collection engine and the API record into a MetricsCollector, which the
API exposes on /metrics in the Prometheus text format. Histograms are
exported as summaries (count, sum and a few quantiles over a bounded window
of recent observations).
"""

import logging
import threading
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

METRIC_PREFIX = "rightsizer_"
SUMMARY_QUANTILES = (0.5, 0.95, 0.99)

# (metric name, sorted tag pairs)
SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _series(name: str, tags: Optional[Dict[str, str]]) -> SeriesKey:
    return name, tuple(sorted((k, str(v)) for k, v in (tags or {}).items()))


def _prometheus_name(name: str) -> str:
    return METRIC_PREFIX + name.replace('.', '_').replace('-', '_')


def _labels(pairs, extra: Tuple[Tuple[str, str], ...] = ()) -> str:
    pairs = tuple(pairs) + extra
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in pairs) + "}"


def _number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class MetricsCollector:
    """Thread-safe counters, gauges and histograms keyed by name and tags"""

    def __init__(self, max_histogram_values: int = 1000):
        self.max_histogram_values = max_histogram_values
        self._counters: Dict[SeriesKey, float] = defaultdict(float)
        self._gauges: Dict[SeriesKey, float] = {}
        self._histograms: Dict[SeriesKey, Deque[float]] = {}
        self._histogram_totals: Dict[SeriesKey, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def increment_counter(self, name: str, value: float = 1, tags: Optional[Dict[str, str]] = None):
        with self._lock:
            self._counters[_series(name, tags)] += value

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        with self._lock:
            self._gauges[_series(name, tags)] = value

    def record_histogram(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Add an observation; quantiles only look at the most recent window"""
        key = _series(name, tags)
        with self._lock:
            window = self._histograms.get(key)
            if window is None:
                window = self._histograms[key] = deque(maxlen=self.max_histogram_values)
            window.append(value)
            count, total = self._histogram_totals.get(key, (0, 0.0))
            self._histogram_totals[key] = (count + 1, total + value)

    def get_counter(self, name: str, tags: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get(_series(name, tags), 0)

    def get_gauge(self, name: str, tags: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._gauges.get(_series(name, tags), 0)

    def get_histogram_stats(self, name: str, tags: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """count/min/max/mean/p95 over the retained window; empty dict when nothing was recorded"""
        with self._lock:
            values = sorted(self._histograms.get(_series(name, tags), ()))

        if not values:
            return {}
        return {
            'count': len(values),
            'min': values[0],
            'max': values[-1],
            'mean': sum(values) / len(values),
            'p95': values[min(int(len(values) * 0.95), len(values) - 1)],
        }

    def export_prometheus(self) -> str:
        """Render every series in the Prometheus text exposition format"""
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histograms = {key: sorted(values) for key, values in self._histograms.items() if values}
            totals = dict(self._histogram_totals)

        lines: List[str] = []
        typed = set()

        def declare(metric: str, kind: str):
            if metric not in typed:
                typed.add(metric)
                lines.append(f"# TYPE {metric} {kind}")

        for (name, pairs), value in sorted(counters.items()):
            metric = _prometheus_name(name) + "_total"
            declare(metric, "counter")
            lines.append(f"{metric}{_labels(pairs)} {_number(value)}")

        for (name, pairs), value in sorted(gauges.items()):
            metric = _prometheus_name(name)
            declare(metric, "gauge")
            lines.append(f"{metric}{_labels(pairs)} {_number(value)}")

        for (name, pairs), values in sorted(histograms.items()):
            metric = _prometheus_name(name)
            declare(metric, "summary")
            for quantile in SUMMARY_QUANTILES:
                value = values[min(int(len(values) * quantile), len(values) - 1)]
                lines.append(f"{metric}{_labels(pairs, (('quantile', str(quantile)),))} {_number(value)}")
            count, total = totals[(name, pairs)]
            lines.append(f"{metric}_sum{_labels(pairs)} {_number(total)}")
            lines.append(f"{metric}_count{_labels(pairs)} {count}")

        return "\n".join(lines) + ("\n" if lines else "")

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._histogram_totals.clear()


@dataclass
class HealthStatus:
    """Outcome of one round of health checks"""
    healthy: bool
    checks: Dict[str, bool]
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)


class HealthChecker:
    """Runs named boolean probes concurrently; a probe that raises or times out counts as failed"""

    def __init__(self, timeout: float = 5):
        self.timeout = timeout
        self.checks: Dict[str, Callable[[], bool]] = {}
        self._last_results: Dict[str, bool] = {}

    def register_check(self, name: str, check_func: Callable[[], bool]):
        self.checks[name] = check_func

    def _run(self, name: str, future) -> bool:
        try:
            return bool(future.result(timeout=self.timeout))
        except Exception as e:
            logger.error(f"Health check '{name}' failed: {e}")
            return False

    def check_health(self) -> HealthStatus:
        if not self.checks:
            self._last_results = {}
            return HealthStatus(healthy=True, checks={}, message="No checks registered")

        with ThreadPoolExecutor(max_workers=len(self.checks), thread_name_prefix="health") as executor:
            futures = {name: executor.submit(probe) for name, probe in self.checks.items()}
            results = {name: self._run(name, future) for name, future in futures.items()}

        failed = sorted(name for name, ok in results.items() if not ok)
        self._last_results = results
        return HealthStatus(
            healthy=not failed,
            checks=results,
            message=f"Failing: {', '.join(failed)}" if failed else "All checks passed",
            details={'total_checks': len(results), 'passed': len(results) - len(failed), 'failed': len(failed)},
        )

    def get_last_results(self) -> Dict[str, bool]:
        return dict(self._last_results)
