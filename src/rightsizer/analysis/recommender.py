"""
Right-sizing recommendations.

For every container the p95 of observed usage plus headroom becomes the
recommended request, bounded below by a minimum. Waste compares the current
request with the recommendation, and savings are priced only for dimensions
that are over-provisioned.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Tuple

from ..core.base import Confidence, ProvisioningStatus, RightsizingResult
from ..core.config import AnalysisConfig, GIB
from ..core.exceptions import NoDataError
from ..core.timeutil import utcnow
from ..storage.models import Analysis, Recommendation
from ..storage.repository import HistoryStore
from .statistics import compute_stats

logger = logging.getLogger(__name__)

REASON_TEMPLATE = "Based on {count} data points over {days:g} days. CPU waste: {cpu:.1f}%, Memory waste: {memory:.1f}%"


def waste_percent(current: float, recommended: float) -> float:
    """Share of the current request that the recommendation would release"""
    if current <= 0:
        return 0.0
    waste = (current - recommended) / current * 100
    return max(waste, -100.0)


def classify(cpu_waste: float, memory_waste: float, config: AnalysisConfig) -> ProvisioningStatus:
    if cpu_waste > config.over_provisioned_threshold or memory_waste > config.over_provisioned_threshold:
        return ProvisioningStatus.OVER_PROVISIONED
    if cpu_waste < config.under_provisioned_threshold or memory_waste < config.under_provisioned_threshold:
        return ProvisioningStatus.UNDER_PROVISIONED
    return ProvisioningStatus.OPTIMAL


def grade_confidence(sample_count: int, config: AnalysisConfig) -> Confidence:
    if sample_count >= config.high_confidence_samples:
        return Confidence.HIGH
    if sample_count >= config.medium_confidence_samples:
        return Confidence.MEDIUM
    return Confidence.LOW


def derive_recommendation(
    cpu_samples: Sequence[float],
    memory_samples: Sequence[int],
    current_cpu: float,
    current_memory: int,
    config: AnalysisConfig,
) -> RightsizingResult:
    """
    Apply the right-sizing rules to one container's samples.

    Args:
        cpu_samples: CPU usage in cores, one per snapshot
        memory_samples: Memory usage in bytes, aligned with cpu_samples
        current_cpu: Current CPU request in cores
        current_memory: Current memory request in bytes
        config: Thresholds, headroom and prices

    Returns:
        RightsizingResult with statistics, recommendation, waste and savings
    """
    cpu = compute_stats(cpu_samples)
    memory = compute_stats([int(v) for v in memory_samples])

    recommended_cpu = max(cpu.p95 * config.headroom, config.min_cpu_cores)
    recommended_memory = max(int(float(memory.p95) * config.headroom), config.min_memory_bytes)

    cpu_waste = waste_percent(current_cpu, recommended_cpu)
    memory_waste = waste_percent(current_memory, recommended_memory)

    cpu_savings = 0.0
    memory_savings = 0.0
    if cpu_waste > 0:
        cpu_savings = (current_cpu - recommended_cpu) * config.cpu_cost_per_core
    if memory_waste > 0:
        memory_savings = (current_memory - recommended_memory) / GIB * config.memory_cost_per_gb
    monthly_savings = max(cpu_savings + memory_savings, 0.0)

    return RightsizingResult(
        cpu=cpu,
        memory=memory,
        current_cpu_request=current_cpu,
        current_mem_request=current_memory,
        recommended_cpu=recommended_cpu,
        recommended_memory=recommended_memory,
        cpu_waste_percent=cpu_waste,
        memory_waste_percent=memory_waste,
        monthly_savings=monthly_savings,
        status=classify(cpu_waste, memory_waste, config),
        confidence=grade_confidence(cpu.count, config),
        sample_count=cpu.count,
    )


class RecommendationEngine:
    """Turns stored usage history into persisted analyses and recommendations"""

    def __init__(self, store: HistoryStore, config: AnalysisConfig,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.config = config
        self.clock = clock

    def current_requests(self, container_id: int) -> Tuple[float, int]:
        """Latest declared requests, or the configured defaults when none were recorded"""
        record = self.store.latest_resource_request(container_id)
        if record is None:
            return self.config.default_cpu_request, self.config.default_memory_request
        return record.cpu_request or 0.0, record.mem_request or 0

    def analyze(self, container_id: int,
                window: Optional[timedelta] = None) -> Tuple[Analysis, Recommendation]:
        """
        Analyze one container over the window ending now.

        Raises:
            NoDataError: No snapshot in the window; nothing is written
            NotFoundError: The container row is gone; nothing is written
            StoreError: The history store failed
        """
        window = window or timedelta(days=self.config.window_days)
        window_end = self.clock()
        window_start = window_end - window
        window_days = window.total_seconds() / 86400

        snapshots = self.store.snapshots_since(container_id, window_start, window_end)
        if not snapshots:
            raise NoDataError(container_id, window_days)

        current_cpu, current_memory = self.current_requests(container_id)
        result = derive_recommendation(
            [s.cpu_usage for s in snapshots],
            [s.memory_usage for s in snapshots],
            current_cpu,
            current_memory,
            self.config,
        )
        identity = self.store.get_container_identity(container_id)

        analysis = self.store.save_analysis(Analysis(
            container_id=container_id,
            analyzed_at=window_end,
            window_start=window_start,
            window_end=window_end,
            sample_count=result.sample_count,
            avg_cpu=result.cpu.avg,
            max_cpu=result.cpu.max,
            p95_cpu=result.cpu.p95,
            p99_cpu=result.cpu.p99,
            avg_memory=result.memory.avg,
            max_memory=result.memory.max,
            p95_memory=result.memory.p95,
            p99_memory=result.memory.p99,
            current_cpu_request=result.current_cpu_request,
            current_mem_request=result.current_mem_request,
            recommended_cpu=result.recommended_cpu,
            recommended_memory=result.recommended_memory,
            cpu_waste_percent=result.cpu_waste_percent,
            memory_waste_percent=result.memory_waste_percent,
            monthly_savings=result.monthly_savings,
            status=result.status.value,
            confidence=result.confidence.value,
        ))

        reason = REASON_TEMPLATE.format(
            count=result.sample_count,
            days=window_days,
            cpu=result.cpu_waste_percent,
            memory=result.memory_waste_percent,
        )
        recommendation = self.store.save_recommendation(Recommendation(
            analysis_id=analysis.id,
            namespace=identity.namespace,
            pod_name=identity.pod_name,
            container_name=identity.container_name,
            current_cpu=result.current_cpu_request,
            current_memory=result.current_mem_request,
            recommended_cpu=result.recommended_cpu,
            recommended_memory=result.recommended_memory,
            monthly_savings=result.monthly_savings,
            confidence=result.confidence.value,
            status=result.status.value,
            reason=reason,
            applied=False,
            created_at=window_end,
        ))

        logger.info(
            f"Analyzed {identity.namespace}/{identity.pod_name}/{identity.container_name}: "
            f"status={result.status.value}, savings=${result.monthly_savings:.2f}/month",
            extra={"namespace": identity.namespace, "pod": identity.pod_name,
                   "container": identity.container_name},
        )
        return analysis, recommendation
