"""Tests for resource patch rendering"""

import yaml

from rightsizer.core.config import MIB
from rightsizer.reporting import ResourcePatch
from rightsizer.storage.models import Recommendation


def _recommendation(cpu: float, memory: int) -> Recommendation:
    return Recommendation(
        id=7,
        analysis_id=1,
        namespace="production",
        pod_name="api-1",
        container_name="app",
        recommended_cpu=cpu,
        recommended_memory=memory,
    )


class TestResourcePatch:
    """Test patches derived from recommendations"""

    def test_requests_and_limits(self):
        patch = ResourcePatch.from_recommendation(_recommendation(0.25, 256 * MIB))

        assert patch.requests.to_dict() == {"cpu": "250m", "memory": "256Mi"}
        assert patch.limits.to_dict() == {"cpu": "300m", "memory": "307Mi"}

    def test_memory_is_floored_to_whole_mib(self):
        patch = ResourcePatch.from_recommendation(_recommendation(0.01, int(76.8 * MIB)))

        assert patch.requests.memory == "76Mi"
        assert patch.limits.memory == "91Mi"
        assert patch.requests.cpu == "10m"
        assert patch.limits.cpu == "12m"

    def test_manifest_layout(self):
        patch = ResourcePatch.from_recommendation(_recommendation(0.5, 512 * MIB))

        document = yaml.safe_load(patch.to_yaml())

        assert document["apiVersion"] == "v1"
        assert document["kind"] == "Pod"
        assert document["metadata"] == {"name": "api-1", "namespace": "production"}
        container = document["spec"]["containers"][0]
        assert container["name"] == "app"
        assert container["resources"]["requests"] == {"cpu": "500m", "memory": "512Mi"}
        assert container["resources"]["limits"] == {"cpu": "600m", "memory": "614Mi"}

    def test_yaml_keeps_manifest_key_order(self):
        text = ResourcePatch.from_recommendation(_recommendation(0.5, 512 * MIB)).to_yaml()

        assert text.index("apiVersion") < text.index("kind") < text.index("metadata") < text.index("spec")

    def test_filename(self):
        patch = ResourcePatch.from_recommendation(_recommendation(0.5, 512 * MIB))

        assert patch.filename == "patch-production-api-1-app.yaml"
