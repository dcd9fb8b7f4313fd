# ABOUTME: Integration tests for the Kubernetes API client against a live cluster
# ABOUTME: Requires KUBECONFIG pointing at a test cluster

"""Integration tests for KubeClient against a live API server.

These tests require:
- A reachable cluster (a Kind cluster is enough)
- KUBECONFIG in the environment (DEVENV_KUBE_CONTEXT picks a context)

They only read; nothing is created on the cluster.
"""

from __future__ import annotations

import pytest

from devenv_operator.constants import ENVIRONMENT
from devenv_operator.utils.client import KubeClient, KubeError, ResourceKind

# Served by every API server, so it works as a cluster-scoped read target.
API_SERVICE = ResourceKind(
    group="apiregistration.k8s.io",
    version="v1",
    plural="apiservices",
    kind="APIService",
    namespaced=False,
)


@pytest.mark.integration
class TestLiveKubeClient:
    """Read-only checks against a real API server."""

    async def test_get_api_service(self, live_kube_client: KubeClient | None):
        """Test reading an object every cluster has."""
        if live_kube_client is None:
            pytest.skip("KUBECONFIG not set")

        api_service = await live_kube_client.get(API_SERVICE, "v1.apps")

        assert api_service["metadata"]["name"] == "v1.apps"

    async def test_missing_object_is_not_found(self, live_kube_client: KubeClient | None):
        """Test a missing object surfaces as a not-found KubeError."""
        if live_kube_client is None:
            pytest.skip("KUBECONFIG not set")

        with pytest.raises(KubeError) as exc_info:
            await live_kube_client.get(API_SERVICE, "v1.devenv-operator-does-not-exist")

        assert exc_info.value.is_not_found
        assert exc_info.value.reason == "NotFound"

    async def test_environment_kind_path(self, live_kube_client: KubeClient | None):
        """Test the Environment kind is addressable once the CRD is installed."""
        if live_kube_client is None:
            pytest.skip("KUBECONFIG not set")

        with pytest.raises(KubeError) as exc_info:
            await live_kube_client.get(ENVIRONMENT, "devenv-operator-does-not-exist")

        assert exc_info.value.code == 404
