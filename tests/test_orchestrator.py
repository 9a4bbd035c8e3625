"""Tests for the collection cycle"""

import threading
import pytest
from datetime import timedelta

from rightsizer.core.base import Outcome, UsageReading
from rightsizer.core.config import MIB, Settings
from rightsizer.core.exceptions import StoreError
from rightsizer.core.orchestrator import CollectionEngine, CycleResult
from rightsizer.storage import Database, HistoryStore
from rightsizer.storage.models import MetricsSnapshot, Recommendation

from conftest import FakeSampleSource, make_unit


def _usage(*containers):
    return {name: UsageReading(cpu_cores=0.05, memory_bytes=64 * MIB) for name in containers}


@pytest.fixture
def cluster_source():
    source = FakeSampleSource(units=[
        make_unit("default", "web-1"),
        make_unit("default", "web-2", containers=("app", "sidecar")),
        make_unit("kube-system", "etcd-control-plane"),
        make_unit("batch", "job-1", phase="Succeeded"),
    ])
    source.usage = {
        "default/web-1": _usage("app"),
        "default/web-2": _usage("app", "sidecar"),
    }
    return source


@pytest.fixture
def engine(test_settings, store, cluster_source, metrics_collector, clock):
    return CollectionEngine(test_settings, store, cluster_source, metrics=metrics_collector, clock=clock)


class TestCollectionCycle:
    """Test one full cycle"""

    def test_end_to_end(self, engine, row_count):
        result = engine.run_cycle()

        assert isinstance(result, CycleResult)
        assert not result.skipped_overlap
        assert not result.cancelled
        assert result.units_enumerated == 4
        assert result.reconcile_counts == {"success": 2, "skipped": 2, "failed": 0}
        assert result.analyze_counts == {"success": 3, "skipped": 0, "failed": 0}
        assert result.failures() == []
        assert row_count(MetricsSnapshot) == 3
        assert row_count(Recommendation) == 3

    def test_result_serialization(self, engine, now):
        data = engine.run_cycle().to_dict()

        assert data["cycle_id"].startswith("cycle_20260302_120030_")
        assert data["started_at"] == now.isoformat()
        assert data["duration_seconds"] == 0.0
        assert data["reconcile"]["success"] == 2
        assert data["errors"] == []

    def test_namespace_restriction(self, engine):
        result = engine.run_cycle(namespace="batch")

        assert result.units_enumerated == 1
        assert result.reconcile_counts["skipped"] == 1

    def test_enumeration_failure_still_analyzes(self, engine, cluster_source, history):
        history("default", "old-pod", cpu_samples=[0.1] * 5, cpu_request=1.0)
        cluster_source.unavailable = True

        result = engine.run_cycle()

        assert result.units_enumerated == 0
        assert [r.entity for r in result.failures()] == ["inventory"]
        assert result.failures()[0].error == "inventory unreachable"
        assert result.analyze_counts["success"] == 1

    def test_unexpected_enumeration_error_still_analyzes(self, engine, cluster_source, history, monkeypatch):
        history("default", "old-pod", cpu_samples=[0.1] * 5, cpu_request=1.0)

        def reset_by_peer(namespace=None):
            raise ConnectionResetError("connection reset by peer")

        monkeypatch.setattr(cluster_source, "list_running_units", reset_by_peer)

        result = engine.run_cycle()

        assert not engine.running
        assert [r.entity for r in result.failures()] == ["inventory"]
        assert result.failures()[0].error == "connection reset by peer"
        assert result.analyze_counts["success"] == 1

    def test_unexpected_container_listing_error(self, engine, store, monkeypatch):
        def broken():
            raise RuntimeError("cursor closed")

        monkeypatch.setattr(store, "containers_with_snapshots", broken)

        result = engine.run_cycle()

        assert result.reconcile_counts["success"] == 2
        assert [(r.entity, r.error) for r in result.analyzed] == [("containers", "cursor closed")]
        assert result.analyzed[0].outcome is Outcome.FAILED

    def test_run_forever_survives_unexpected_source_errors(self, engine, cluster_source, monkeypatch):
        def broken(namespace=None):
            raise RuntimeError("client crashed")

        monkeypatch.setattr(cluster_source, "list_running_units", broken)
        results = []

        cycles = engine.run_forever(interval=timedelta(0), on_cycle=results.append, max_cycles=2)

        assert cycles == 2
        assert all(r.failures()[0].entity == "inventory" for r in results)

    def test_analysis_failures_are_isolated(self, engine, history, monkeypatch):
        ids = [history("default", f"pod-{i}", cpu_samples=[0.1] * 5, cpu_request=1.0) for i in range(3)]
        analyze = engine.recommender.analyze

        def flaky_analyze(container_id, window=None):
            if container_id == ids[0]:
                raise StoreError("write failed")
            if container_id == ids[1]:
                raise RuntimeError("unexpected")
            return analyze(container_id, window)

        monkeypatch.setattr(engine.recommender, "analyze", flaky_analyze)

        result = engine.run_cycle(reconcile=False)

        assert result.analyze_counts == {"success": 1, "skipped": 0, "failed": 2}
        errors = {r.entity: r.error for r in result.failures()}
        assert errors == {f"container:{ids[0]}": "write failed", f"container:{ids[1]}": "unexpected"}

    def test_container_without_window_data_is_skipped(self, engine, store, history, now):
        container_id = history("default", "stale", cpu_samples=[], cpu_request=1.0)
        store.record_snapshot(container_id, now - timedelta(days=30), 0.2, 64 * MIB)

        result = engine.analyze_only()

        assert result.analyze_counts == {"success": 0, "skipped": 1, "failed": 0}
        assert "No usage samples" in result.analyzed[0].reason

    def test_no_source_configured(self, test_settings, store, history, clock):
        history("default", "web-1", cpu_samples=[0.1] * 5, cpu_request=1.0)
        engine = CollectionEngine(test_settings, store, clock=clock)

        result = engine.run_cycle()

        assert result.reconciled[0].outcome is Outcome.SKIPPED
        assert result.reconciled[0].reason == "no sample source configured"
        assert result.analyze_counts["success"] == 1

    def test_metrics_are_recorded(self, engine, metrics_collector):
        engine.run_cycle()

        assert metrics_collector.get_counter("cycle.count") == 1
        assert metrics_collector.get_gauge("cycle.units_enumerated") == 4
        assert metrics_collector.get_counter("entity.success", tags={"phase": "reconcile"}) == 2
        assert metrics_collector.get_counter("entity.skipped", tags={"phase": "reconcile"}) == 2
        assert metrics_collector.get_counter("entity.success", tags={"phase": "analyze"}) == 3
        assert metrics_collector.get_histogram_stats("cycle.duration")["count"] == 1


class TestCycleControl:
    """Test overlap protection, cancellation and the periodic loop"""

    def test_overlapping_cycle_is_skipped(self, engine, metrics_collector, cluster_source):
        engine._cycle_lock.acquire()
        try:
            assert engine.running
            result = engine.run_cycle()
        finally:
            engine._cycle_lock.release()

        assert result.skipped_overlap
        assert result.reconciled == [] and result.analyzed == []
        assert cluster_source.usage_calls == []
        assert metrics_collector.get_counter("cycle.skipped_overlap") == 1
        assert not engine.running

    def test_cancelled_before_start(self, engine, row_count):
        cancel = threading.Event()
        cancel.set()

        result = engine.run_cycle(cancel_event=cancel)

        assert result.cancelled
        assert all(r.outcome is Outcome.SKIPPED for r in result.reconciled)
        assert result.analyzed == []
        assert row_count(MetricsSnapshot) == 0

    def test_cancelled_mid_cycle(self, engine, cluster_source):
        cancel = threading.Event()
        cluster_source.on_usage = lambda key: cancel.set()

        result = engine.run_cycle(cancel_event=cancel)

        assert result.cancelled
        assert len(cluster_source.usage_calls) == 1
        assert result.reconcile_counts["success"] == 1
        assert sum(1 for r in result.reconciled if r.reason == "cycle cancelled") == 3
        assert result.analyzed == []

    def test_run_forever_stops_after_max_cycles(self, engine):
        results = []

        cycles = engine.run_forever(interval=timedelta(0), on_cycle=results.append, max_cycles=3)

        assert cycles == 3
        assert len(results) == 3
        assert not any(r.skipped_overlap for r in results)

    def test_run_forever_honours_stop_event(self, engine):
        stop = threading.Event()

        cycles = engine.run_forever(interval=timedelta(hours=1), stop_event=stop,
                                    on_cycle=lambda result: stop.set())

        assert cycles == 1

    def test_stop_before_start_runs_nothing(self, engine):
        stop = threading.Event()
        stop.set()

        assert engine.run_forever(stop_event=stop) == 0


@pytest.mark.integration
class TestConcurrentCycle:
    """Test a cycle with several workers against a file-backed database"""

    def test_parallel_reconcile_and_analyze(self, tmp_path, clock):
        database = Database(f"sqlite:///{tmp_path / 'history.db'}")
        database.init_schema()
        store = HistoryStore(database)
        settings = Settings.load(
            database={"url": f"sqlite:///{tmp_path / 'history.db'}"},
            collector={"max_workers": 4},
        )

        names = [f"web-{i}" for i in range(12)]
        source = FakeSampleSource(
            units=[make_unit("default", name) for name in names],
            usage={f"default/{name}": _usage("app") for name in names},
        )
        engine = CollectionEngine(settings, store, source, clock=clock)

        try:
            result = engine.run_cycle()
        finally:
            database.dispose()

        assert result.reconcile_counts == {"success": 12, "skipped": 0, "failed": 0}
        assert result.analyze_counts == {"success": 12, "skipped": 0, "failed": 0}
        assert sorted(source.usage_calls) == sorted(f"default/{name}" for name in names)
