from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Any, Optional


@dataclass
class WorkloadSummary:
    """Latest analysis of one container, flattened for listings"""
    namespace: str
    pod_name: str
    container_name: str
    status: str
    cpu_waste_percent: float
    memory_waste_percent: float
    monthly_savings: float
    current_cpu: float
    current_memory: int
    recommended_cpu: float
    recommended_memory: int
    confidence: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UsagePoint:
    timestamp: datetime
    cpu: float
    memory: int

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "cpu": self.cpu, "memory": self.memory}


@dataclass
class ClusterStatistics:
    """Aggregate counts and sums over the latest analyses"""
    total_pods: int = 0
    over_provisioned: int = 0
    under_provisioned: int = 0
    optimal: int = 0
    total_monthly_savings: float = 0.0
    total_cpu_waste_cores: float = 0.0
    total_memory_waste_gb: float = 0.0
    last_analysis: Optional[datetime] = None
    last_collection: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_analysis"] = self.last_analysis.isoformat() if self.last_analysis else None
        data["last_collection"] = self.last_collection.isoformat() if self.last_collection else None
        return data
