from dataclasses import dataclass
from enum import Enum

from ...analysis.statistics import UsageStats


class ProvisioningStatus(str, Enum):
    OVER_PROVISIONED = "over-provisioned"
    UNDER_PROVISIONED = "under-provisioned"
    OPTIMAL = "optimal"


class Confidence(str, Enum):
    """Reliability grade derived from the number of samples"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class RightsizingResult:
    """Outcome of one statistical pass before it is persisted"""

    cpu: UsageStats
    memory: UsageStats
    current_cpu_request: float
    current_mem_request: int
    recommended_cpu: float
    recommended_memory: int
    cpu_waste_percent: float
    memory_waste_percent: float
    monthly_savings: float
    status: ProvisioningStatus
    confidence: Confidence
    sample_count: int

