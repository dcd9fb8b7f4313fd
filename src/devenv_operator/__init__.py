# ABOUTME: devenv operator package initialization
# ABOUTME: Exposes version information

"""
devenv operator - throwaway development environments on Kubernetes.

=============================================================================
WHAT DOES IT DO?
=============================================================================

The operator watches Environment resources. For each one it:

1. REQUESTS a GKE cluster through a Crossplane KubernetesCluster claim
2. DEPLOYS the source application and its dependency charts through Argo CD
3. ADDS a node pool once Crossplane reports the provisioned cluster
4. REPORTS readiness in the Environment's status
5. DELETES the Environment once its TTL has run out while ready

Every created resource is owned by its Environment, so deleting the
Environment cleans up everything.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

devenv_operator/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Configuration management (env vars, settings)
├── constants.py         <- API groups, resource kinds, label keys
├── models.py            <- Environment spec/status models
├── operator.py          <- kopf handlers and main()
├── reconciler.py        <- Reconciliation engine (the step pipeline)
├── status.py            <- Readiness aggregation and status writes
├── ttl.py               <- TTL parsing and expiry policy
├── adapters/
│   ├── cluster.py       <- Crossplane claims, classes, node pools
│   └── applications.py  <- Argo CD applications
└── utils/
    ├── client.py        <- Kubernetes API client (kubernetes_asyncio)
    ├── logging.py       <- Structured logging with audit trails
    └── ownership.py     <- Owner references for cascading deletion
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
