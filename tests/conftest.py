"""Pytest configuration and fixtures"""

import pytest
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select

from rightsizer.analysis.recommender import RecommendationEngine
from rightsizer.collectors.base import BaseSampleSource
from rightsizer.core.base import ContainerSpec, UsageReading, WorkloadUnit
from rightsizer.core.config import AnalysisConfig, Settings, MIB
from rightsizer.core.exceptions import SourceUnavailableError
from rightsizer.core.monitoring import MetricsCollector
from rightsizer.storage import Database, HistoryStore

NOW = datetime(2026, 3, 2, 12, 0, 30)


class FakeSampleSource(BaseSampleSource):
    """In-memory sample source"""

    def __init__(self, units: Optional[List[WorkloadUnit]] = None,
                 usage: Optional[Dict[str, Dict[str, UsageReading]]] = None):
        super().__init__("fake")
        self.units = units or []
        self.usage = usage or {}
        self.unavailable = False
        self.usage_calls: List[str] = []
        self.on_usage = None

    def list_running_units(self, namespace=None):
        if self.unavailable:
            raise SourceUnavailableError("inventory unreachable")
        return [u for u in self.units if namespace is None or u.namespace == namespace]

    def get_usage(self, namespace, unit_name):
        key = f"{namespace}/{unit_name}"
        self.usage_calls.append(key)
        if self.on_usage:
            self.on_usage(key)
        if key not in self.usage:
            raise SourceUnavailableError(f"no metrics for {key}")
        return self.usage[key]


def make_unit(namespace: str, name: str, containers: Sequence[str] = ("app",),
              phase: str = "Running", cpu_request: float = 0.5,
              memory_request: int = 256 * MIB, image: str = "nginx:1.25") -> WorkloadUnit:
    return WorkloadUnit(
        namespace=namespace,
        name=name,
        phase=phase,
        containers=[
            ContainerSpec(
                name=c,
                image=image,
                cpu_request=cpu_request,
                cpu_limit=cpu_request * 2,
                memory_request=memory_request,
                memory_limit=memory_request * 2,
            )
            for c in containers
        ],
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def test_settings():
    """Create test settings"""
    return Settings.load(
        environment="test",
        database={"url": "sqlite://"},
        logging={"level": "WARNING", "console": False},
        collector={"max_workers": 1},
    )


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def store(database):
    return HistoryStore(database)


@pytest.fixture
def metrics_collector():
    return MetricsCollector()


@pytest.fixture
def fake_source():
    return FakeSampleSource()


@pytest.fixture
def row_count(store):
    """Count rows of a model"""

    def count(model) -> int:
        with store.db.session() as session:
            return session.scalar(select(func.count()).select_from(model))

    return count


@pytest.fixture
def history(store):
    """
    Create a pod/container with one snapshot per minute going back from NOW.

    Returns the container id.
    """

    def create(namespace: str, pod_name: str, container_name: str = "app",
               cpu_samples: Sequence[float] = (), memory_samples: Optional[Sequence[int]] = None,
               cpu_request: Optional[float] = None, memory_request: Optional[int] = None,
               start: datetime = NOW) -> int:
        pod_id = store.upsert_pod(namespace, pod_name, now=start)
        container_id = store.upsert_container(pod_id, container_name, "nginx:1.25", now=start)

        if cpu_request is not None or memory_request is not None:
            store.record_resource_request(
                container_id,
                cpu_request=cpu_request or 0.0,
                cpu_limit=0.0,
                mem_request=memory_request or 0,
                mem_limit=0,
                now=start,
            )

        memory_samples = memory_samples if memory_samples is not None else [64 * MIB] * len(cpu_samples)
        base = start.replace(second=0, microsecond=0)
        for i, (cpu, memory) in enumerate(zip(cpu_samples, memory_samples)):
            store.record_snapshot(container_id, base - timedelta(minutes=i), cpu, memory)
        return container_id

    return create


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset singleton instances between tests"""
    import rightsizer.core.config as config_module
    config_module.settings = None
    yield
    config_module.settings = None


def pytest_configure(config):
    """Configure pytest"""
    config.addinivalue_line(
        "markers", "integration: tests that exercise several layers together"
    )


@pytest.fixture
def populated(store, history, clock):
    """
    Three analyzed containers:
    default/web-1 over-provisioned, default/web-2 under-provisioned,
    production/api-1 optimal. web-1 is analyzed twice.
    """
    engine = RecommendationEngine(store, AnalysisConfig(), clock=clock)
    ids = {
        "web-1": history("default", "web-1", cpu_samples=[0.1] * 30,
                         cpu_request=1.0, memory_request=256 * MIB),
        "web-2": history("default", "web-2", cpu_samples=[2.0] * 5,
                         cpu_request=1.0, memory_request=64 * MIB),
        "api-1": history("production", "api-1", cpu_samples=[0.45] * 25,
                         cpu_request=0.5, memory_request=80 * MIB),
    }
    for container_id in ids.values():
        engine.analyze(container_id)
    engine.analyze(ids["web-1"])
    return ids
