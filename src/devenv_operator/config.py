# ABOUTME: Configuration management for the devenv operator
# ABOUTME: Handles environment variables, kubeconfig selection, and namespaces

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module handles all configuration for the operator. It:

1. READS environment variables (like DEVENV_POLL_INTERVAL)
2. VALIDATES them (log levels are real levels, timings are positive, etc.)
3. PROVIDES typed access to settings throughout the operator

=============================================================================
API SERVER CREDENTIALS
=============================================================================

Credentials are NOT configured here. utils/client.py loads them with
kubernetes_asyncio:

1. DEVENV_KUBECONFIG set     -> that kubeconfig (and DEVENV_KUBE_CONTEXT)
2. Running in a pod          -> the service account, token re-read as it rotates
3. Otherwise                 -> the default kubeconfig ($KUBECONFIG or ~/.kube/config)

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

API server:
    DEVENV_KUBECONFIG           -> Explicit kubeconfig path
    DEVENV_KUBE_CONTEXT         -> Context within the kubeconfig

Operator behavior (DEVENV_ prefix):
    DEVENV_CROSSPLANE_NAMESPACE -> Namespace for cluster claims
    DEVENV_ARGOCD_NAMESPACE     -> Namespace for Argo CD applications
    DEVENV_POLL_INTERVAL        -> Steady-state requeue delay (default: 10s)
    DEVENV_RETRY_DELAY          -> Delay before an immediate retry (default: 1s)
    DEVENV_MAX_RETRY_DELAY      -> Cap for the doubling retry delay (default: 300s)
    DEVENV_REQUEST_TIMEOUT      -> Timeout per API call (default: 30s)
    DEVENV_LOG_LEVEL            -> Logging level (default: INFO)
    DEVENV_JSON_LOGS            -> Emit JSON log lines
    DEVENV_AUDIT_LOG            -> Path to audit log file
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# OPERATOR SETTINGS
# =============================================================================


class OperatorSettings(BaseSettings):
    """
    Main operator configuration.

    This is the top-level configuration container that:
    1. Selects which kubeconfig and context to use outside a cluster
    2. Names the namespaces where child resources are created
    3. Configures reconcile timing, logging, and auditing

    USAGE:
    ------
        settings = load_settings()
        print(settings.argocd_namespace)   # "argocd"
        print(settings.poll_interval)      # 10.0
    """

    model_config = SettingsConfigDict(
        env_prefix="DEVENV_",
        extra="ignore",
        populate_by_name=True,
        # Allows using field name OR alias when creating instances
    )

    # -------------------------------------------------------------------------
    # API SERVER
    # -------------------------------------------------------------------------

    kubeconfig: Path | None = Field(
        default=None,
        description="Kubeconfig to use instead of in-cluster credentials",
    )

    kube_context: str | None = Field(
        default=None,
        description="Kubeconfig context; the current context when unset",
    )

    @field_validator("kubeconfig", "kube_context", mode="before")
    @classmethod
    def empty_as_unset(cls, v: object) -> object:
        """Treat ``DEVENV_KUBECONFIG=`` like an unset variable."""
        return None if v == "" else v

    # -------------------------------------------------------------------------
    # CHILD RESOURCE NAMESPACES
    # -------------------------------------------------------------------------

    crossplane_namespace: str = Field(
        default="crossplane-system",
        description="Namespace holding KubernetesCluster claims",
    )

    argocd_namespace: str = Field(
        default="argocd",
        description="Namespace holding Argo CD Application resources",
    )

    # -------------------------------------------------------------------------
    # RECONCILE TIMING
    # -------------------------------------------------------------------------

    poll_interval: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between steady-state reconcile passes",
    )
    # Children are not watched directly, so the operator re-polls their
    # status on this interval.

    retry_delay: float = Field(
        default=1.0,
        gt=0,
        description="Seconds before retrying a failed reconcile pass",
    )

    max_retry_delay: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound for the doubling retry delay",
    )
    # Retries double from retry_delay: 1s, 2s, 4s, ... up to this bound.

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single API call",
    )

    # -------------------------------------------------------------------------
    # OBSERVABILITY
    # -------------------------------------------------------------------------

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    json_logs: bool = Field(
        default=False,
        description="Render log lines as JSON",
    )

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # When None, audit entries go to stdout through structlog.


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> OperatorSettings:
    """
    Load settings from environment with validation.

    If DEVENV_ENV_FILE is set, additional variables are read from that file.
    Useful for running the operator locally against a kind cluster:

        DEVENV_KUBECONFIG=/home/me/.kube/kind
        DEVENV_KUBE_CONTEXT=kind-dev
        DEVENV_LOG_LEVEL=DEBUG

    Returns:
        Fully validated OperatorSettings instance.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return OperatorSettings(
        _env_file=os.environ.get("DEVENV_ENV_FILE"),
    )
