from dataclasses import dataclass, field
from typing import List


@dataclass
class UsageReading:
    """Point-in-time usage of one container"""
    cpu_cores: float = 0.0
    memory_bytes: int = 0


@dataclass
class ContainerSpec:
    """Declared resources of one container; absent declarations are zero"""
    name: str
    image: str = ""
    cpu_request: float = 0.0
    cpu_limit: float = 0.0
    memory_request: int = 0
    memory_limit: int = 0


@dataclass
class WorkloadUnit:
    """A running pod as reported by the sample source"""

    namespace: str
    name: str
    phase: str = "Running"
    containers: List[ContainerSpec] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

