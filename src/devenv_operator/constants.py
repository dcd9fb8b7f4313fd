# ABOUTME: Fixed API groups, resource kinds, label and annotation keys
# ABOUTME: Process-wide immutable values shared by the adapters and the engine

"""
Constants for the devenv operator.

Everything here is a plain immutable value. Settings that an operator
deployment may want to change (namespaces, timing) live in config.py instead.
"""

from __future__ import annotations

from devenv_operator.utils.client import ResourceKind

# =============================================================================
# ENVIRONMENT RESOURCE
# =============================================================================

ENVIRONMENT_GROUP = "dev.vadasambar.github.io"
ENVIRONMENT_VERSION = "v1alpha1"

ENVIRONMENT = ResourceKind(
    group=ENVIRONMENT_GROUP,
    version=ENVIRONMENT_VERSION,
    plural="environments",
    kind="Environment",
    namespaced=False,
)

# =============================================================================
# CROSSPLANE RESOURCES
# =============================================================================

KUBERNETES_CLUSTER = ResourceKind(
    group="compute.crossplane.io",
    version="v1alpha1",
    plural="kubernetesclusters",
    kind="KubernetesCluster",
    namespaced=True,
)

GKE_CLUSTER_CLASS = ResourceKind(
    group="container.gcp.crossplane.io",
    version="v1beta1",
    plural="gkeclusterclasses",
    kind="GKEClusterClass",
    namespaced=False,
)

NODE_POOL = ResourceKind(
    group="container.gcp.crossplane.io",
    version="v1alpha1",
    plural="nodepools",
    kind="NodePool",
    namespaced=False,
)

# Label the cluster class carries so a claim can select it.
CLASS_NAME_LABEL = "className"

# Crossplane uses this annotation as the provider-side resource name.
EXTERNAL_NAME_ANNOTATION = "crossplane.io/external-name"

BINDING_PHASE_BOUND = "Bound"

# Node pools are not part of the cluster class yet, so every pool starts
# with the same size.
NODE_POOL_INITIAL_NODE_COUNT = 2

# =============================================================================
# ARGO CD RESOURCES
# =============================================================================

ARGOCD_APPLICATION = ResourceKind(
    group="argoproj.io",
    version="v1alpha1",
    plural="applications",
    kind="Application",
    namespaced=True,
)

ARGOCD_DEFAULT_PROJECT = "default"

HEALTH_STATUS_HEALTHY = "Healthy"
SYNC_STATUS_SYNCED = "Synced"

# =============================================================================
# FINALIZERS
# =============================================================================

# kopf adds this to every Environment because of the poll timer, and removes it
# once the timer has stopped after deletion is requested.
ENVIRONMENT_FINALIZER = "dev-environment/finalizers.environment.vadasambar.github.io"
