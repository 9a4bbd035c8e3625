"""Synthetic usage history for demos and local development"""

import logging
import random
from datetime import datetime, timedelta
from typing import Optional

from ..core.config import MIB
from ..core.timeutil import truncate_to_minute, utcnow
from .repository import HistoryStore

logger = logging.getLogger(__name__)

NAMESPACES = ["default", "kube-system", "production", "staging", "development"]
POD_PREFIXES = ["api-server", "web-app", "worker", "database", "cache", "queue", "auth-service"]
CONTAINER_NAMES = ["app", "sidecar", "init", "proxy"]


def seed_history(store: HistoryStore, pods: int = 50, samples: int = 100,
                 rng: Optional[random.Random] = None, now: Optional[datetime] = None) -> int:
    """
    Write random pods with one container each, a resource request record and
    hourly usage snapshots going back ``samples`` hours.

    Usage is drawn well below the request so most containers come out
    over-provisioned. Returns the number of containers written.
    """
    rng = rng or random.Random()
    now = truncate_to_minute(now or utcnow())
    containers = 0

    for _ in range(pods):
        namespace = rng.choice(NAMESPACES)
        pod_name = f"{rng.choice(POD_PREFIXES)}-{rng.randrange(1000)}"

        pod_id = store.upsert_pod(namespace, pod_name, now=now)
        container_id = store.upsert_container(pod_id, rng.choice(CONTAINER_NAMES), "nginx:latest", now=now)

        cpu_request = (rng.randrange(4000) + 500) / 1000.0  # 0.5 to 4.5 cores
        mem_request = (rng.randrange(8000) + 512) * MIB  # 512Mi to ~8.3Gi
        store.record_resource_request(
            container_id,
            cpu_request=cpu_request,
            cpu_limit=cpu_request * 1.5,
            mem_request=mem_request,
            mem_limit=mem_request * 2,
            now=now,
        )

        for hour in range(samples):
            store.record_snapshot(
                container_id,
                now - timedelta(hours=hour),
                cpu_request * (rng.random() * 0.6 + 0.1),
                int(mem_request * (rng.random() * 0.7 + 0.1)),
            )
        containers += 1

    logger.info(f"Seeded {containers} containers with {samples} samples each")
    return containers
