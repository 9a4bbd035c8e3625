"""Tests for unit admission and reconciliation into the store"""

import pytest
from datetime import datetime, timedelta

from sqlalchemy import select

from rightsizer.collectors.reconciler import Reconciler, admit_unit
from rightsizer.core.base import Outcome, UsageReading
from rightsizer.core.config import KubernetesConfig, MIB
from rightsizer.core.exceptions import StoreError
from rightsizer.storage import HistoryStore
from rightsizer.storage.models import Container, MetricsSnapshot, Pod, ResourceRequest

from conftest import FakeSampleSource, make_unit


@pytest.fixture
def reconciler(store, fake_source, clock):
    return Reconciler(store, fake_source, KubernetesConfig(), clock=clock)


class TestAdmission:
    """Test which units are ingested"""

    @pytest.fixture
    def config(self):
        return KubernetesConfig()

    def test_running_pod_is_admitted(self, config):
        assert admit_unit(make_unit("default", "web-1"), config) is None

    def test_non_running_phase_is_filtered(self, config):
        assert admit_unit(make_unit("default", "job-1", phase="Pending"), config) == "phase is Pending"
        assert admit_unit(make_unit("default", "job-2", phase="Succeeded"), config) is not None

    @pytest.mark.parametrize("name", ["coredns-5d78c9869d-abcde", "metrics-server-xyz",
                                      "aws-node-q2k8s", "kube-proxy-7xk2p"])
    def test_allowed_system_pods(self, config, name):
        assert admit_unit(make_unit("kube-system", name), config) is None

    @pytest.mark.parametrize("name", ["etcd-control-plane", "kube-apiserver-node", "CoreDNS-abc"])
    def test_other_system_pods_are_filtered(self, config, name):
        assert admit_unit(make_unit("kube-system", name), config) == "system pod in kube-system"

    def test_prefixes_only_apply_to_system_namespace(self, config):
        assert admit_unit(make_unit("default", "etcd-backup"), config) is None


class TestReconciler:
    """Test reconciliation of units into the history store"""

    def test_new_unit_creates_rows(self, reconciler, fake_source, store, row_count, now):
        unit = make_unit("default", "web-1", containers=("app", "sidecar"))
        fake_source.usage["default/web-1"] = {
            "app": UsageReading(cpu_cores=0.2, memory_bytes=100 * MIB),
            "sidecar": UsageReading(cpu_cores=0.01, memory_bytes=10 * MIB),
        }

        result = reconciler.reconcile(unit)

        assert result.outcome is Outcome.SUCCESS
        assert [c.outcome for c in result.children] == [Outcome.SUCCESS, Outcome.SUCCESS]
        assert row_count(Pod) == 1
        assert row_count(Container) == 2
        assert row_count(ResourceRequest) == 2
        assert row_count(MetricsSnapshot) == 2

        with store.db.session() as session:
            timestamps = set(session.scalars(select(MetricsSnapshot.timestamp)))
            request = session.scalars(select(ResourceRequest).order_by(ResourceRequest.id)).first()
        assert timestamps == {datetime(2026, 3, 2, 12, 0, 0)}
        assert request.cpu_request == 0.5
        assert request.cpu_limit == 1.0
        assert request.mem_request == 256 * MIB
        assert request.updated_at == now

    def test_same_minute_is_idempotent(self, reconciler, fake_source, row_count, now):
        unit = make_unit("default", "web-1")
        fake_source.usage["default/web-1"] = {"app": UsageReading(0.2, 100 * MIB)}

        reconciler.reconcile(unit, now=now)
        result = reconciler.reconcile(unit, now=now + timedelta(seconds=20))

        assert result.outcome is Outcome.SUCCESS
        assert row_count(Pod) == 1
        assert row_count(Container) == 1
        assert row_count(MetricsSnapshot) == 1
        # Request records are append-only
        assert row_count(ResourceRequest) == 2

    def test_next_minute_adds_snapshot(self, reconciler, fake_source, row_count, now):
        unit = make_unit("default", "web-1")
        fake_source.usage["default/web-1"] = {"app": UsageReading(0.2, 100 * MIB)}

        reconciler.reconcile(unit, now=now)
        reconciler.reconcile(unit, now=now + timedelta(minutes=1))

        assert row_count(MetricsSnapshot) == 2

    def test_usage_is_fetched_once_per_unit(self, reconciler, fake_source):
        unit = make_unit("default", "web-1", containers=("a", "b", "c"))
        fake_source.usage["default/web-1"] = {}

        reconciler.reconcile(unit)

        assert fake_source.usage_calls == ["default/web-1"]

    def test_filtered_unit_touches_nothing(self, reconciler, fake_source, row_count):
        result = reconciler.reconcile(make_unit("kube-system", "etcd-master"))

        assert result.outcome is Outcome.SKIPPED
        assert result.reason == "system pod in kube-system"
        assert fake_source.usage_calls == []
        assert row_count(Pod) == 0

    def test_usage_unavailable_stores_requests_only(self, reconciler, row_count):
        result = reconciler.reconcile(make_unit("default", "web-1"))

        assert result.outcome is Outcome.SUCCESS
        assert result.children[0].outcome is Outcome.SKIPPED
        assert result.children[0].reason == "no usage reading"
        assert row_count(ResourceRequest) == 1
        assert row_count(MetricsSnapshot) == 0

    def test_missing_container_reading_is_skipped(self, reconciler, fake_source, row_count):
        unit = make_unit("default", "web-1", containers=("app", "sidecar"))
        fake_source.usage["default/web-1"] = {"app": UsageReading(0.2, 100 * MIB)}

        result = reconciler.reconcile(unit)

        outcomes = {c.entity: c.outcome for c in result.children}
        assert outcomes == {
            "default/web-1/app": Outcome.SUCCESS,
            "default/web-1/sidecar": Outcome.SKIPPED,
        }
        assert row_count(MetricsSnapshot) == 1

    def test_image_is_refreshed(self, reconciler, fake_source, store, now):
        reconciler.reconcile(make_unit("default", "web-1", image="nginx:1.25"), now=now)
        reconciler.reconcile(make_unit("default", "web-1", image="nginx:1.27"),
                             now=now + timedelta(minutes=5))

        with store.db.session() as session:
            container = session.scalars(select(Container)).one()
            pod = session.scalars(select(Pod)).one()
        assert container.image == "nginx:1.27"
        assert container.created_at == now
        assert container.updated_at == now + timedelta(minutes=5)
        assert pod.updated_at == now + timedelta(minutes=5)

    def test_container_failure_does_not_stop_siblings(self, database, clock, row_count):
        class FlakyStore(HistoryStore):
            def upsert_container(self, pod_id, container_name, image, now=None):
                if container_name == "broken":
                    raise StoreError("disk full")
                return super().upsert_container(pod_id, container_name, image, now=now)

        source = FakeSampleSource(usage={
            "default/web-1": {
                "app": UsageReading(0.2, 100 * MIB),
                "broken": UsageReading(0.2, 100 * MIB),
                "sidecar": UsageReading(0.01, 10 * MIB),
            }
        })
        reconciler = Reconciler(FlakyStore(database), source, clock=clock)

        result = reconciler.reconcile(make_unit("default", "web-1", containers=("app", "broken", "sidecar")))

        assert result.outcome is Outcome.FAILED
        assert result.error == "1 of 3 containers failed"
        failed = [c for c in result.children if c.outcome is Outcome.FAILED]
        assert [c.entity for c in failed] == ["default/web-1/broken"]
        assert failed[0].error == "disk full"
        assert row_count(MetricsSnapshot) == 2

    def test_pod_failure_fails_unit(self, database, clock):
        class BrokenStore(HistoryStore):
            def upsert_pod(self, namespace, pod_name, now=None):
                raise StoreError("database is locked")

        source = FakeSampleSource()
        result = Reconciler(BrokenStore(database), source, clock=clock).reconcile(make_unit("default", "web-1"))

        assert result.outcome is Outcome.FAILED
        assert result.error == "database is locked"
        assert source.usage_calls == []
