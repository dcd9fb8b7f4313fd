# ABOUTME: Crossplane adapter for cluster claims, cluster classes, and node pools
# ABOUTME: Creates provisioning requests and reports binding and managed resources

"""
Cluster Provisioner adapter.

=============================================================================
HOW A CLUSTER GETS PROVISIONED
=============================================================================

1. The operator creates a KubernetesCluster CLAIM in the Crossplane namespace.
   The claim selects a GKEClusterClass by label (className=<label>).
2. Crossplane provisions a GKE cluster from the class, binds the claim
   (status.bindingPhase = Bound) and records the managed resource it created
   in spec.resourceRef.name.
3. Only then can the operator create a NodePool, because the pool must
   reference that managed resource by name.

This adapter never waits for any of that. It creates what is missing and
reports what it sees; the reconcile loop polls until the picture converges.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from devenv_operator.constants import (
    BINDING_PHASE_BOUND,
    CLASS_NAME_LABEL,
    EXTERNAL_NAME_ANNOTATION,
    GKE_CLUSTER_CLASS,
    KUBERNETES_CLUSTER,
    NODE_POOL,
    NODE_POOL_INITIAL_NODE_COUNT,
)
from devenv_operator.utils.client import KubeError
from devenv_operator.utils.ownership import set_controller_reference

if TYPE_CHECKING:
    from devenv_operator.models import Environment
    from devenv_operator.utils.client import KubeClient
    from devenv_operator.utils.logging import AuditLogger

logger = structlog.get_logger(__name__)


class ClusterClassNotFound(Exception):
    """
    The Environment references a cluster class that does not exist.

    This is a configuration problem: it will not fix itself until someone
    creates the class or edits the Environment. The loop keeps retrying.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"cluster class {name!r} not found")


# =============================================================================
# OBSERVED OBJECTS
# =============================================================================


@dataclass
class ClusterClaim:
    """
    The fields of a KubernetesCluster claim the operator cares about.

    - binding_phase: "Unbound", "Bound", "Released", or "" before Crossplane
      has touched the claim
    - managed_resource_name: spec.resourceRef.name, empty until bound
    """

    name: str
    namespace: str
    binding_phase: str
    managed_resource_name: str

    @property
    def is_bound(self) -> bool:
        return self.binding_phase == BINDING_PHASE_BOUND

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ClusterClaim:
        metadata = data.get("metadata", {})
        spec = data.get("spec", {})
        status = data.get("status", {})
        resource_ref = spec.get("resourceRef") or {}

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            binding_phase=status.get("bindingPhase", ""),
            managed_resource_name=resource_ref.get("name", ""),
        )


@dataclass
class ClusterClass:
    """A resolved GKEClusterClass and the provider its template points at."""

    name: str
    provider_name: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> ClusterClass:
        spec_template = data.get("specTemplate", {})
        provider_ref = spec_template.get("providerRef") or {}
        return cls(
            name=data.get("metadata", {}).get("name", ""),
            provider_name=provider_ref.get("name", ""),
        )


# =============================================================================
# ADAPTER
# =============================================================================


class ClusterProvisioner:
    """Creates and inspects Crossplane resources on behalf of Environments."""

    def __init__(self, client: KubeClient, namespace: str, audit: AuditLogger) -> None:
        """
        Args:
            client: Kubernetes API client
            namespace: Crossplane namespace where claims live
            audit: Audit trail for created resources
        """
        self._client = client
        self._namespace = namespace
        self._audit = audit

    # -------------------------------------------------------------------------
    # CLUSTER CLAIM
    # -------------------------------------------------------------------------

    async def get_cluster_claim(self, name: str) -> ClusterClaim | None:
        """
        Fetch a claim by cluster name.

        Returns:
            The claim, or None if it does not exist

        Raises:
            KubeError: For anything other than 404
        """
        try:
            data = await self._client.get(KUBERNETES_CLUSTER, name, self._namespace)
        except KubeError as e:
            if e.is_not_found:
                return None
            raise
        return ClusterClaim.from_api_response(data)

    async def observe_claim(self, name: str) -> ClusterClaim | None:
        """The claim, or None when it is missing or cannot be read. Failures are logged."""
        try:
            return await self.get_cluster_claim(name)
        except KubeError as e:
            logger.warning("Could not get cluster claim", cluster=name, error=str(e))
            return None

    async def is_bound(self, name: str) -> bool:
        """
        Whether the claim is bound to a provisioned cluster.

        A readiness probe: any failure, including a missing claim, is
        logged and reported as "not bound".
        """
        claim = await self.observe_claim(name)
        if claim is None:
            logger.info("Cluster claim not available", cluster=name)
            return False

        if claim.is_bound:
            logger.debug("Cluster has been provisioned", cluster=name)
            return True

        logger.info("Cluster is not ready yet", cluster=name, phase=claim.binding_phase or "unknown")
        return False

    def build_cluster_claim(self, env: Environment) -> dict[str, Any]:
        """Desired KubernetesCluster claim for an Environment."""
        cluster_name = env.spec.cluster_name
        return {
            "apiVersion": KUBERNETES_CLUSTER.api_version,
            "kind": KUBERNETES_CLUSTER.kind,
            "metadata": {
                "name": cluster_name,
                "namespace": self._namespace,
                "annotations": {EXTERNAL_NAME_ANNOTATION: cluster_name},
            },
            "spec": {
                "classSelector": {
                    "matchLabels": {CLASS_NAME_LABEL: env.spec.cluster_class_label},
                },
                "writeConnectionSecretToRef": {"name": cluster_name},
            },
        }

    async def create_cluster_claim(self, env: Environment) -> ClusterClaim:
        """
        Create the claim and return it as re-read from the API server.

        The re-read matters: the caller checks the returned claim for a
        managed-resource reference before deciding on the node pool.
        AlreadyExists is tolerated.

        Raises:
            KubeError: If the create (other than AlreadyExists) or re-read fails
        """
        name = env.spec.cluster_name
        log = logger.bind(environment=env.name, cluster=name)
        log.info("Creating cluster claim", cluster_class=env.spec.cluster_class_label)

        claim = set_controller_reference(env.owner, self.build_cluster_claim(env))
        try:
            await self._client.create(KUBERNETES_CLUSTER, claim, self._namespace)
            self._audit.log_write(
                "create_cluster_claim", name, "created", {"environment": env.name}
            )
        except KubeError as e:
            if not e.is_already_exists:
                log.error("Could not create cluster claim", error=str(e))
                self._audit.log_error("create_cluster_claim", name, str(e))
                raise
            log.info("Cluster claim already exists")

        data = await self._client.get(KUBERNETES_CLUSTER, name, self._namespace)
        log.info("Created cluster claim")
        return ClusterClaim.from_api_response(data)

    # -------------------------------------------------------------------------
    # CLUSTER CLASS
    # -------------------------------------------------------------------------

    async def resolve_cluster_class(self, name: str) -> ClusterClass:
        """
        Fetch the cluster class an Environment references.

        Raises:
            ClusterClassNotFound: If no class has that name
            KubeError: For any other API failure
        """
        if not name:
            raise ClusterClassNotFound(name)
        try:
            data = await self._client.get(GKE_CLUSTER_CLASS, name)
        except KubeError as e:
            if e.is_not_found:
                raise ClusterClassNotFound(name) from e
            raise
        return ClusterClass.from_api_response(data)

    # -------------------------------------------------------------------------
    # NODE POOL
    # -------------------------------------------------------------------------

    async def get_node_pool(self, name: str) -> dict[str, Any] | None:
        """Fetch a node pool by cluster name, or None if it does not exist."""
        try:
            return await self._client.get(NODE_POOL, name)
        except KubeError as e:
            if e.is_not_found:
                return None
            raise

    def build_node_pool(
        self,
        env: Environment,
        cluster_class: ClusterClass,
        managed_resource_name: str,
    ) -> dict[str, Any]:
        """Desired NodePool attached to the provisioned GKE cluster."""
        cluster_name = env.spec.cluster_name
        return {
            "apiVersion": NODE_POOL.api_version,
            "kind": NODE_POOL.kind,
            "metadata": {"name": cluster_name},
            "spec": {
                "providerRef": {"name": cluster_class.provider_name},
                "writeConnectionSecretToRef": {
                    "name": f"{cluster_name}-nodepool",
                    "namespace": self._namespace,
                },
                "forProvider": {
                    "clusterRef": {"name": managed_resource_name},
                    "initialNodeCount": NODE_POOL_INITIAL_NODE_COUNT,
                },
            },
        }

    async def create_node_pool(
        self,
        env: Environment,
        cluster_class: ClusterClass,
        managed_resource_name: str,
    ) -> dict[str, Any]:
        """
        Create the node pool for a cluster whose managed resource is known.

        Raises:
            ValueError: If managed_resource_name is empty
            KubeError: If the create fails with anything but AlreadyExists
        """
        if not managed_resource_name:
            raise ValueError("node pool requires the cluster's managed resource name")

        name = env.spec.cluster_name
        log = logger.bind(environment=env.name, nodepool=name, managed_resource=managed_resource_name)
        log.info("Creating node pool")

        pool = set_controller_reference(
            env.owner, self.build_node_pool(env, cluster_class, managed_resource_name)
        )
        try:
            created = await self._client.create(NODE_POOL, pool)
        except KubeError as e:
            if not e.is_already_exists:
                log.error("Could not create node pool", error=str(e))
                self._audit.log_error("create_node_pool", name, str(e))
                raise
            log.info("Node pool already exists")
            return pool

        self._audit.log_write("create_node_pool", name, "created", {"environment": env.name})
        log.info("Created node pool")
        return created
