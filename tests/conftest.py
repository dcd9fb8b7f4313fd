# ABOUTME: Pytest fixtures and configuration for devenv operator tests
# ABOUTME: Provides an in-memory API server double and sample Environment objects

import copy
import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import pytest

from devenv_operator.config import OperatorSettings
from devenv_operator.constants import (
    ARGOCD_APPLICATION,
    ENVIRONMENT,
    GKE_CLUSTER_CLASS,
    KUBERNETES_CLUSTER,
)
from devenv_operator.utils.client import KubeClient, KubeError, ResourceKind, load_configuration
from devenv_operator.utils.logging import AuditLogger

CROSSPLANE_NAMESPACE = "crossplane-system"
ARGOCD_NAMESPACE = "argocd"

ENV_NAME = "demo"
ENV_UID = "3f0c9a1e-0000-4000-8000-000000000001"
CLUSTER_NAME = "demo-cluster"
CLASS_LABEL = "standard-gke"
PROVIDER_NAME = "gcp-provider"
MANAGED_RESOURCE = "kubernetescluster-4f7d2"

T0 = datetime(2024, 1, 15, 8, 0, 0, tzinfo=UTC)


# =============================================================================
# IN-MEMORY API SERVER
# =============================================================================


class FakeKubeClient:
    """
    Stand-in for KubeClient backed by a dict.

    Behaves like the API server where the engine can tell: 400 on an empty
    name, 404 NotFound on missing objects, 409 AlreadyExists on duplicate
    creates, 409 Conflict on a stale resourceVersion, and a resourceVersion
    bump on every write.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self._failures: dict[tuple[str, str, str], KubeError] = {}
        self._version = 100

    # -- helpers for tests ----------------------------------------------------

    @staticmethod
    def _key(kind: ResourceKind, name: str, namespace: str | None) -> tuple[str, str | None, str]:
        return (kind.plural, namespace if kind.namespaced else None, name)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def put(self, kind: ResourceKind, obj: dict[str, Any], namespace: str | None = None) -> None:
        """Store an object as if someone else created it."""
        obj = copy.deepcopy(obj)
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("resourceVersion", self._next_version())
        self.objects[self._key(kind, metadata["name"], namespace)] = obj

    def fetch(self, kind: ResourceKind, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        return self.objects.get(self._key(kind, name, namespace))

    def fail_on(self, method: str, kind: ResourceKind, name: str, error: KubeError) -> None:
        """Make every ``method`` call on the named object raise ``error``."""
        self._failures[(method, kind.plural, name)] = error

    def count(self, method: str, kind: ResourceKind | None = None) -> int:
        return sum(
            1
            for m, plural, _ in self.calls
            if m == method and (kind is None or plural == kind.plural)
        )

    def _check(self, method: str, kind: ResourceKind, name: str) -> None:
        self.calls.append((method, kind.plural, name))
        if not name:
            raise KubeError(400, f"{kind.kind} name may not be empty", reason="BadRequest")
        error = self._failures.get((method, kind.plural, name))
        if error is not None:
            raise error

    # -- KubeClient interface ------------------------------------------------

    async def get(self, kind: ResourceKind, name: str, namespace: str | None = None) -> dict[str, Any]:
        self._check("get", kind, name)
        obj = self.fetch(kind, name, namespace)
        if obj is None:
            raise KubeError(404, f"{kind.plural} {name!r} not found", reason="NotFound")
        return copy.deepcopy(obj)

    async def create(
        self, kind: ResourceKind, body: dict[str, Any], namespace: str | None = None
    ) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self._check("create", kind, name)
        if self.fetch(kind, name, namespace) is not None:
            raise KubeError(409, f"{kind.plural} {name!r} already exists", reason="AlreadyExists")
        obj = copy.deepcopy(body)
        obj["metadata"]["resourceVersion"] = self._next_version()
        obj["metadata"].setdefault("uid", f"uid-{kind.plural}-{name}")
        self.objects[self._key(kind, name, namespace)] = obj
        return copy.deepcopy(obj)

    async def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
        propagation_policy: str = "Background",
    ) -> dict[str, Any]:
        self._check("delete", kind, name)
        obj = self.objects.pop(self._key(kind, name, namespace), None)
        if obj is None:
            raise KubeError(404, f"{kind.plural} {name!r} not found", reason="NotFound")
        return {"kind": "Status", "status": "Success"}

    async def replace_status(
        self, kind: ResourceKind, body: dict[str, Any], namespace: str | None = None
    ) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self._check("replace_status", kind, name)
        obj = self.fetch(kind, name, namespace)
        if obj is None:
            raise KubeError(404, f"{kind.plural} {name!r} not found", reason="NotFound")
        sent_version = body["metadata"].get("resourceVersion")
        if sent_version and sent_version != obj["metadata"]["resourceVersion"]:
            raise KubeError(409, "the object has been modified", reason="Conflict")
        obj["status"] = copy.deepcopy(body.get("status", {}))
        obj["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(obj)


# =============================================================================
# SAMPLE OBJECTS
# =============================================================================


def environment_object(
    ttl: str | None = None,
    dependencies: list[dict[str, Any]] | None = None,
    status: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """An Environment as the API server would return it."""
    spec: dict[str, Any] = {
        "clusterName": CLUSTER_NAME,
        "clusterClassLabel": CLASS_LABEL,
        "source": {
            "name": "guestbook",
            "namespace": "default",
            "repoURL": "https://github.com/argoproj/argocd-example-apps.git",
            "path": "guestbook",
            "revision": "HEAD",
        },
        "dependencies": dependencies if dependencies is not None else [
            {
                "name": "redis",
                "namespace": "default",
                "repoURL": "https://charts.bitnami.com/bitnami",
                "chartName": "redis",
                "revision": "17.3.7",
            }
        ],
    }
    if ttl is not None:
        spec["ttl"] = ttl

    obj: dict[str, Any] = {
        "apiVersion": ENVIRONMENT.api_version,
        "kind": ENVIRONMENT.kind,
        "metadata": {"name": ENV_NAME, "uid": ENV_UID, "resourceVersion": "1"},
        "spec": spec,
    }
    if status is not None:
        obj["status"] = status
    return obj


def cluster_class_object() -> dict[str, Any]:
    return {
        "apiVersion": GKE_CLUSTER_CLASS.api_version,
        "kind": GKE_CLUSTER_CLASS.kind,
        "metadata": {"name": CLASS_LABEL, "labels": {"className": CLASS_LABEL}},
        "specTemplate": {"providerRef": {"name": PROVIDER_NAME}, "zone": "us-central1-a"},
    }


def bind_claim(kube: FakeKubeClient, managed_resource: str = MANAGED_RESOURCE) -> None:
    """Do what Crossplane does once the cluster is provisioned."""
    claim = kube.fetch(KUBERNETES_CLUSTER, CLUSTER_NAME, CROSSPLANE_NAMESPACE)
    assert claim is not None
    claim["spec"]["resourceRef"] = {"name": managed_resource}
    claim["status"] = {"bindingPhase": "Bound"}


def set_app_health(
    kube: FakeKubeClient, name: str, health: str = "Healthy", sync: str = "Synced"
) -> None:
    """Do what Argo CD does once an application has synced."""
    app = kube.fetch(ARGOCD_APPLICATION, name, ARGOCD_NAMESPACE)
    assert app is not None
    app["status"] = {"health": {"status": health}, "sync": {"status": sync}}


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def kube() -> FakeKubeClient:
    """API server double holding the cluster class every test needs."""
    fake = FakeKubeClient()
    fake.put(GKE_CLUSTER_CLASS, cluster_class_object())
    return fake


@pytest.fixture
def operator_settings() -> OperatorSettings:
    """Settings with defaults, unaffected by the test runner's environment."""
    return OperatorSettings(
        crossplane_namespace=CROSSPLANE_NAMESPACE,
        argocd_namespace=ARGOCD_NAMESPACE,
        poll_interval=10.0,
        retry_delay=1.0,
        max_retry_delay=300.0,
    )


@pytest.fixture
def audit_logger() -> AuditLogger:
    """Audit logger writing through structlog."""
    return AuditLogger()


# Integration test fixtures


@pytest.fixture
def kubeconfig() -> str | None:
    """Get the kubeconfig path from environment."""
    return os.environ.get("KUBECONFIG")


@pytest.fixture
async def live_kube_client(kubeconfig: str | None) -> AsyncIterator[KubeClient | None]:
    """Create a live API client for integration tests."""
    if not kubeconfig:
        yield None
        return

    configuration = await load_configuration(
        context=os.environ.get("DEVENV_KUBE_CONTEXT") or None,
    )
    async with KubeClient(configuration) as client:
        yield client
