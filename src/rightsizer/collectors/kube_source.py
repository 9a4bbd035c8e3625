"""
Sample source backed by the Kubernetes API and metrics-server.

Units are listed through the core API; usage comes from the
``metrics.k8s.io/v1beta1`` pods resource.
"""

from typing import Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from ..core.base import ContainerSpec, UsageReading, WorkloadUnit
from ..core.config import KubernetesConfig
from ..core.exceptions import ConfigurationError, SourceUnavailableError
from .base import BaseSampleSource
from .quantities import parse_cpu, parse_memory

METRICS_GROUP = "metrics.k8s.io"
METRICS_VERSION = "v1beta1"
METRICS_PLURAL = "pods"


def _container_spec(container) -> ContainerSpec:
    resources = container.resources
    requests = (resources.requests if resources else None) or {}
    limits = (resources.limits if resources else None) or {}
    return ContainerSpec(
        name=container.name,
        image=container.image or "",
        cpu_request=parse_cpu(requests.get("cpu")),
        cpu_limit=parse_cpu(limits.get("cpu")),
        memory_request=parse_memory(requests.get("memory")),
        memory_limit=parse_memory(limits.get("memory")),
    )


class KubernetesSampleSource(BaseSampleSource):
    """Reads pods and their live usage from a cluster"""

    def __init__(self, kube_config: KubernetesConfig = None,
                 core_api: client.CoreV1Api = None,
                 custom_api: client.CustomObjectsApi = None):
        super().__init__("kubernetes")
        self.config = kube_config or KubernetesConfig()

        if core_api is None or custom_api is None:
            self._load_client_config()
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()

    def _load_client_config(self) -> None:
        try:
            if self.config.in_cluster:
                config.load_incluster_config()
                self.logger.info("Using in-cluster Kubernetes configuration")
            else:
                config_file = str(self.config.kubeconfig) if self.config.kubeconfig else None
                config.load_kube_config(config_file=config_file, context=self.config.context)
                self.logger.info(f"Using kubeconfig {config_file or '~/.kube/config'}"
                                 f" (context: {self.config.context or 'current'})")
        except (ConfigException, OSError) as e:
            raise ConfigurationError(f"Cannot load Kubernetes configuration: {e}") from e

    def list_running_units(self, namespace: Optional[str] = None) -> List[WorkloadUnit]:
        namespace = namespace or self.config.namespace
        try:
            if namespace:
                pods = self.core_api.list_namespaced_pod(
                    namespace, _request_timeout=self.config.request_timeout
                )
            else:
                pods = self.core_api.list_pod_for_all_namespaces(
                    _request_timeout=self.config.request_timeout
                )
        except ApiException as e:
            raise SourceUnavailableError(f"Failed to list pods: {e.status} {e.reason}") from e
        except Exception as e:
            raise SourceUnavailableError(f"Failed to list pods: {e}") from e

        units = []
        for pod in pods.items:
            spec = pod.spec
            units.append(WorkloadUnit(
                namespace=pod.metadata.namespace,
                name=pod.metadata.name,
                phase=pod.status.phase if pod.status else "",
                containers=[_container_spec(c) for c in (spec.containers if spec else None) or []],
            ))

        self.logger.debug(f"Listed {len(units)} pods in {namespace or 'all namespaces'}")
        return units

    def get_usage(self, namespace: str, unit_name: str) -> Dict[str, UsageReading]:
        try:
            metrics = self.custom_api.get_namespaced_custom_object(
                group=METRICS_GROUP,
                version=METRICS_VERSION,
                namespace=namespace,
                plural=METRICS_PLURAL,
                name=unit_name,
                _request_timeout=self.config.request_timeout,
            )
        except ApiException as e:
            raise SourceUnavailableError(
                f"Metrics unavailable for {namespace}/{unit_name}: {e.status} {e.reason}"
            ) from e
        except Exception as e:
            raise SourceUnavailableError(f"Metrics unavailable for {namespace}/{unit_name}: {e}") from e

        usage = {}
        for container in metrics.get("containers", []):
            reading = container.get("usage", {})
            usage[container["name"]] = UsageReading(
                cpu_cores=parse_cpu(reading.get("cpu")),
                memory_bytes=parse_memory(reading.get("memory")),
            )
        return usage
