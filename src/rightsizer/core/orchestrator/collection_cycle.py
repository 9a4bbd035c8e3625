import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ...analysis.recommender import RecommendationEngine
from ...collectors.base import BaseSampleSource
from ...collectors.reconciler import Reconciler
from ...storage.repository import HistoryStore
from ..base import EntityResult, Outcome, WorkloadUnit
from ..config import Settings
from ..exceptions import NoDataError, RightsizerError, SourceUnavailableError
from ..logging import get_performance_logger
from ..monitoring import MetricsCollector
from ..timeutil import utcnow

T = TypeVar("T")

ENUMERATE = "enumerate"
RECONCILE = "reconcile"
ANALYZE = "analyze"


@dataclass
class CycleContext:
    """Everything one cycle needs, passed explicitly through its phases"""
    settings: Settings
    started_at: datetime
    cycle_id: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    namespace: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def log_extra(self) -> Dict[str, Any]:
        return {"cycle_id": self.cycle_id}


@dataclass
class CycleResult:
    """Aggregated outcome of one collection cycle"""
    cycle_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    skipped_overlap: bool = False
    cancelled: bool = False
    units_enumerated: int = 0
    reconciled: List[EntityResult] = field(default_factory=list)
    analyzed: List[EntityResult] = field(default_factory=list)

    @staticmethod
    def _count(results: List[EntityResult]) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in Outcome}
        for result in results:
            counts[result.outcome.value] += 1
        return counts

    @property
    def reconcile_counts(self) -> Dict[str, int]:
        return self._count(self.reconciled)

    @property
    def analyze_counts(self) -> Dict[str, int]:
        return self._count(self.analyzed)

    @property
    def duration_seconds(self) -> float:
        if not self.completed_at:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def failures(self) -> List[EntityResult]:
        return [r for r in self.reconciled + self.analyzed if r.outcome is Outcome.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "skipped_overlap": self.skipped_overlap,
            "cancelled": self.cancelled,
            "units_enumerated": self.units_enumerated,
            "reconcile": self.reconcile_counts,
            "analyze": self.analyze_counts,
            "errors": [r.to_dict() for r in self.failures()],
        }


class CollectionEngine:
    """
    Runs collection cycles: enumerate units, reconcile each into the store,
    then analyze every container that has usage history.

    Only one cycle runs at a time; a cycle requested while another is running
    returns immediately with ``skipped_overlap`` set. Entity-level errors are
    recorded in the CycleResult and never abort the cycle.
    """

    def __init__(self, settings: Settings, store: HistoryStore,
                 source: Optional[BaseSampleSource] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.settings = settings
        self.store = store
        self.source = source
        self.metrics = metrics or MetricsCollector()
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self.performance = get_performance_logger()

        self.reconciler = Reconciler(store, source, settings.kubernetes, clock) if source else None
        self.recommender = RecommendationEngine(store, settings.analysis, clock)
        self._cycle_lock = threading.Lock()

    def new_context(self, cancel_event: Optional[threading.Event] = None,
                    namespace: Optional[str] = None) -> CycleContext:
        started_at = self.clock()
        return CycleContext(
            settings=self.settings,
            started_at=started_at,
            cycle_id=f"cycle_{started_at.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}",
            cancel_event=cancel_event or threading.Event(),
            namespace=namespace or self.settings.kubernetes.namespace,
        )

    @property
    def running(self) -> bool:
        return self._cycle_lock.locked()

    def run_cycle(self, cancel_event: Optional[threading.Event] = None,
                  namespace: Optional[str] = None, reconcile: bool = True) -> CycleResult:
        """Run one cycle; with reconcile=False only the analyze phase runs"""
        ctx = self.new_context(cancel_event, namespace)

        if not self._cycle_lock.acquire(blocking=False):
            self.logger.warning(f"Cycle {ctx.cycle_id} skipped: previous cycle still running",
                                extra=ctx.log_extra)
            self.metrics.increment_counter("cycle.skipped_overlap")
            return CycleResult(ctx.cycle_id, ctx.started_at, completed_at=self.clock(), skipped_overlap=True)

        result = CycleResult(ctx.cycle_id, ctx.started_at)
        start = time.monotonic()
        try:
            self.logger.info(f"Starting collection cycle {ctx.cycle_id}", extra=ctx.log_extra)

            if reconcile:
                units = self._enumerate(ctx, result)
                if units:
                    with self.performance.timer("cycle.reconcile", cycle_id=ctx.cycle_id, phase=RECONCILE):
                        result.reconciled.extend(self._reconcile_phase(ctx, units))

            if not ctx.cancelled:
                with self.performance.timer("cycle.analyze", cycle_id=ctx.cycle_id, phase=ANALYZE):
                    result.analyzed.extend(self._analyze_phase(ctx))

            result.cancelled = ctx.cancelled
        finally:
            result.completed_at = self.clock()
            self._cycle_lock.release()

        self._record_metrics(result, time.monotonic() - start)
        self.logger.info(
            f"Cycle {ctx.cycle_id} complete: reconcile={result.reconcile_counts}, "
            f"analyze={result.analyze_counts}"
            + (" (cancelled)" if result.cancelled else ""),
            extra=ctx.log_extra,
        )
        return result

    def analyze_only(self, cancel_event: Optional[threading.Event] = None) -> CycleResult:
        """Analyze stored history without contacting the sample source"""
        return self.run_cycle(cancel_event=cancel_event, reconcile=False)

    def run_forever(self, interval: Optional[timedelta] = None,
                    stop_event: Optional[threading.Event] = None,
                    on_cycle: Optional[Callable[[CycleResult], None]] = None,
                    max_cycles: Optional[int] = None) -> int:
        """
        Run a cycle immediately and then once per interval until stopped.

        Setting stop_event also cancels the cycle in flight after its current
        entities finish. Returns the number of cycles run.
        """
        stop_event = stop_event or threading.Event()
        if interval is None:
            interval = timedelta(seconds=self.settings.collection_interval_seconds)
        period = interval.total_seconds()
        cycles = 0

        self.logger.info(f"Collecting every {period:g}s")
        while not stop_event.is_set():
            started = time.monotonic()
            result = self.run_cycle(cancel_event=stop_event)
            cycles += 1
            if on_cycle:
                on_cycle(result)
            if max_cycles is not None and cycles >= max_cycles:
                break
            if stop_event.wait(max(period - (time.monotonic() - started), 0)):
                break

        self.logger.info(f"Collector stopped after {cycles} cycles")
        return cycles

    def _enumerate(self, ctx: CycleContext, result: CycleResult) -> List[WorkloadUnit]:
        if self.reconciler is None:
            result.reconciled.append(EntityResult.skipped("inventory", "no sample source configured"))
            return []

        try:
            with self.performance.timer("cycle.enumerate", cycle_id=ctx.cycle_id, phase=ENUMERATE):
                units = self.source.list_running_units(ctx.namespace)
        except SourceUnavailableError as e:
            self.logger.error(f"Cannot enumerate units: {e}", extra=ctx.log_extra)
            result.reconciled.append(EntityResult.failed("inventory", e))
            return []
        except Exception as e:
            self.logger.error(f"Unexpected error enumerating units: {e}",
                              extra={**ctx.log_extra, "phase": ENUMERATE})
            result.reconciled.append(EntityResult.failed("inventory", e))
            return []

        result.units_enumerated = len(units)
        self.logger.info(f"Found {len(units)} pods", extra=ctx.log_extra)
        return units

    def _reconcile_phase(self, ctx: CycleContext, units: List[WorkloadUnit]) -> List[EntityResult]:
        def reconcile(unit: WorkloadUnit) -> EntityResult:
            return self.reconciler.reconcile(unit, now=ctx.started_at)

        return self._fan_out(ctx, units, reconcile, lambda unit: unit.key, RECONCILE)

    def _analyze_phase(self, ctx: CycleContext) -> List[EntityResult]:
        try:
            container_ids = self.store.containers_with_snapshots()
        except RightsizerError as e:
            self.logger.error(f"Cannot list containers for analysis: {e}", extra=ctx.log_extra)
            return [EntityResult.failed("containers", e)]
        except Exception as e:
            self.logger.error(f"Unexpected error listing containers for analysis: {e}",
                              extra={**ctx.log_extra, "phase": ANALYZE})
            return [EntityResult.failed("containers", e)]

        self.logger.info(f"Analyzing {len(container_ids)} containers", extra=ctx.log_extra)

        def analyze(container_id: int) -> EntityResult:
            entity = f"container:{container_id}"
            try:
                self.recommender.analyze(container_id)
            except NoDataError as e:
                return EntityResult.skipped(entity, str(e))
            except RightsizerError as e:
                self.logger.error(f"Error analyzing {entity}: {e}", extra=ctx.log_extra)
                return EntityResult.failed(entity, e)
            return EntityResult.success(entity)

        return self._fan_out(ctx, container_ids, analyze, lambda cid: f"container:{cid}", ANALYZE)

    def _fan_out(self, ctx: CycleContext, items: List[T],
                 func: Callable[[T], EntityResult],
                 describe: Callable[[T], str], phase: str) -> List[EntityResult]:
        """Run func for every item on the worker pool; cancelled items are skipped"""

        def guarded(item: T) -> EntityResult:
            if ctx.cancelled:
                return EntityResult.skipped(describe(item), "cycle cancelled")
            return func(item)

        results = []
        with ThreadPoolExecutor(max_workers=self.settings.collector.max_workers,
                                thread_name_prefix=f"rightsizer-{phase}") as executor:
            futures = {executor.submit(guarded, item): item for item in items}

            for future in as_completed(futures):
                item = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    self.logger.error(f"Unexpected error during {phase} of {describe(item)}: {e}",
                                      extra={**ctx.log_extra, "phase": phase})
                    results.append(EntityResult.failed(describe(item), e))

        return results

    def _record_metrics(self, result: CycleResult, duration: float) -> None:
        self.metrics.increment_counter("cycle.count")
        self.metrics.record_histogram("cycle.duration", duration)
        self.metrics.set_gauge("cycle.units_enumerated", result.units_enumerated)
        for phase, counts in ((RECONCILE, result.reconcile_counts), (ANALYZE, result.analyze_counts)):
            for outcome, count in counts.items():
                if count:
                    self.metrics.increment_counter(f"entity.{outcome}", count, tags={"phase": phase})
