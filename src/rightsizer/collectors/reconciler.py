"""
Ingestion of observed units into the history store.

Each admitted unit is upserted together with its containers; every container
gets a new resource request record and, when the usage backend reports it, a
usage snapshot stamped with the current minute.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from ..core.base import ContainerSpec, EntityResult, Outcome, UsageReading, WorkloadUnit
from ..core.config import KubernetesConfig
from ..core.exceptions import RightsizerError, SourceUnavailableError, StoreError
from ..core.timeutil import truncate_to_minute, utcnow
from ..storage.repository import HistoryStore
from .base import BaseSampleSource

logger = logging.getLogger(__name__)


def admit_unit(unit: WorkloadUnit, config: KubernetesConfig) -> Optional[str]:
    """Return the reason a unit is filtered out, or None when it should be ingested"""
    if unit.phase != config.running_phase:
        return f"phase is {unit.phase or 'unknown'}"
    if unit.namespace == config.system_namespace:
        if not any(unit.name.startswith(prefix) for prefix in config.allowed_system_prefixes):
            return f"system pod in {config.system_namespace}"
    return None


class Reconciler:
    """Writes one observed unit and its containers into the store"""

    def __init__(self, store: HistoryStore, source: BaseSampleSource,
                 config: KubernetesConfig = None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.source = source
        self.config = config or KubernetesConfig()
        self.clock = clock

    def reconcile(self, unit: WorkloadUnit, now: Optional[datetime] = None) -> EntityResult:
        """
        Ingest one unit.

        Never raises for store or source failures; they are reported through
        the returned EntityResult, with one child result per container.
        """
        reason = admit_unit(unit, self.config)
        if reason:
            logger.debug(f"Skipping {unit.key}: {reason}")
            return EntityResult.skipped(unit.key, reason)

        now = now or self.clock()
        log_extra = {"namespace": unit.namespace, "pod": unit.name}

        try:
            pod_id = self.store.upsert_pod(unit.namespace, unit.name, now=now)
        except StoreError as e:
            logger.error(f"Error storing pod {unit.key}: {e}", extra=log_extra)
            return EntityResult.failed(unit.key, e)

        usage = self._fetch_usage(unit)
        snapshot_time = truncate_to_minute(now)

        children = []
        for container in unit.containers:
            children.append(self._reconcile_container(unit, pod_id, container, usage, now, snapshot_time))

        failed = [child for child in children if child.outcome is Outcome.FAILED]
        if failed:
            return EntityResult.failed(
                unit.key,
                StoreError(f"{len(failed)} of {len(children)} containers failed"),
                children=children,
            )
        return EntityResult.success(unit.key, children=children)

    def _fetch_usage(self, unit: WorkloadUnit) -> Optional[Dict[str, UsageReading]]:
        try:
            return self.source.get_usage(unit.namespace, unit.name)
        except SourceUnavailableError as e:
            logger.warning(f"No usage for {unit.key}, storing requests only: {e}",
                           extra={"namespace": unit.namespace, "pod": unit.name})
            return None

    def _reconcile_container(self, unit: WorkloadUnit, pod_id: int, container: ContainerSpec,
                             usage: Optional[Dict[str, UsageReading]],
                             now: datetime, snapshot_time: datetime) -> EntityResult:
        entity = f"{unit.key}/{container.name}"
        log_extra = {"namespace": unit.namespace, "pod": unit.name, "container": container.name}

        try:
            container_id = self.store.upsert_container(pod_id, container.name, container.image, now=now)
            self.store.record_resource_request(
                container_id,
                cpu_request=container.cpu_request,
                cpu_limit=container.cpu_limit,
                mem_request=container.memory_request,
                mem_limit=container.memory_limit,
                now=now,
            )

            reading = usage.get(container.name) if usage is not None else None
            if reading is None:
                return EntityResult.skipped(entity, "no usage reading")

            inserted = self.store.record_snapshot(
                container_id, snapshot_time, reading.cpu_cores, reading.memory_bytes
            )
        except RightsizerError as e:
            logger.error(f"Error storing container {entity}: {e}", extra=log_extra)
            return EntityResult.failed(entity, e)

        if inserted:
            logger.debug(
                f"Stored metrics for {entity}: CPU={reading.cpu_cores:.3f} cores, "
                f"Memory={reading.memory_bytes // (1024 * 1024)} MB",
                extra=log_extra,
            )
        else:
            logger.debug(f"Snapshot for {entity} at {snapshot_time} already recorded", extra=log_extra)
        return EntityResult.success(entity)
