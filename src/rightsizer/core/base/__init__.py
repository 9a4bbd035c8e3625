from .workload import WorkloadUnit, ContainerSpec, UsageReading
from .rightsizing import ProvisioningStatus, Confidence, RightsizingResult
from .projections import WorkloadSummary, UsagePoint, ClusterStatistics
from .outcomes import Outcome, EntityResult

__all__ = [
    'WorkloadUnit', 'ContainerSpec', 'UsageReading',
    'ProvisioningStatus', 'Confidence', 'RightsizingResult',
    'WorkloadSummary', 'UsagePoint', 'ClusterStatistics',
    'Outcome', 'EntityResult'
]
