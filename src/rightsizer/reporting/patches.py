"""
Resource patches derived from recommendations.

The recommended request becomes the container request; limits are set at
1.2x the request. CPU is rendered in millicores and memory in whole MiB.
"""

from dataclasses import dataclass
from typing import Dict, Any

import yaml

from ..core.config import MIB
from ..storage.models import Recommendation

LIMIT_FACTOR = 1.2


@dataclass(frozen=True)
class ResourcePair:
    cpu: str
    memory: str

    def to_dict(self) -> Dict[str, str]:
        return {"cpu": self.cpu, "memory": self.memory}


@dataclass(frozen=True)
class ResourcePatch:
    """Typed request/limit patch for one container"""
    namespace: str
    pod_name: str
    container_name: str
    requests: ResourcePair
    limits: ResourcePair

    @classmethod
    def from_recommendation(cls, recommendation: Recommendation) -> "ResourcePatch":
        millicores = recommendation.recommended_cpu * 1000
        mib = recommendation.recommended_memory // MIB

        return cls(
            namespace=recommendation.namespace,
            pod_name=recommendation.pod_name,
            container_name=recommendation.container_name,
            requests=ResourcePair(cpu="%.0fm" % millicores, memory=f"{mib}Mi"),
            limits=ResourcePair(cpu="%.0fm" % (millicores * LIMIT_FACTOR), memory=f"{mib * 120 // 100}Mi"),
        )

    @property
    def filename(self) -> str:
        return f"patch-{self.namespace}-{self.pod_name}-{self.container_name}.yaml"

    def to_manifest(self) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": self.pod_name,
                "namespace": self.namespace,
            },
            "spec": {
                "containers": [
                    {
                        "name": self.container_name,
                        "resources": {
                            "requests": self.requests.to_dict(),
                            "limits": self.limits.to_dict(),
                        },
                    }
                ]
            },
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_manifest(), default_flow_style=False, sort_keys=False)
