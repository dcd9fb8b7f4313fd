# ABOUTME: kopf operator wiring and main entry point
# ABOUTME: Delivers Environment events to the reconciler and maps requeue directives

"""devenv operator: kopf handlers around the reconciliation engine."""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import kopf
import structlog

from devenv_operator.config import OperatorSettings, load_settings
from devenv_operator.constants import (
    ENVIRONMENT,
    ENVIRONMENT_FINALIZER,
    ENVIRONMENT_GROUP,
)
from devenv_operator.reconciler import Reconciler, Requeue
from devenv_operator.utils.client import KubeClient, load_configuration
from devenv_operator.utils.logging import AuditLogger, configure_logging

logger = structlog.get_logger(__name__)

# Global state (initialized in startup)
_settings: OperatorSettings | None = None
_client: KubeClient | None = None
_reconciler: Reconciler | None = None


def get_settings() -> OperatorSettings:
    """Get operator settings."""
    if not _settings:
        raise RuntimeError("Operator not initialized")
    return _settings


def get_reconciler() -> Reconciler:
    """Get the shared reconciler."""
    if not _reconciler:
        raise RuntimeError("Operator not initialized")
    return _reconciler


def backoff_delay(settings: OperatorSettings, retry: int) -> float:
    """Retry delay doubling per consecutive failure, capped at max_retry_delay."""
    return min(settings.retry_delay * (2 ** max(retry, 0)), settings.max_retry_delay)


# =============================================================================
# LIFECYCLE
# =============================================================================


async def startup(settings: kopf.OperatorSettings, **_: Any) -> None:
    """Configure kopf storage and connect to the API server."""
    global _client, _reconciler

    operator_settings = get_settings()

    # kopf keeps its own bookkeeping in annotations; status belongs to the engine.
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=ENVIRONMENT_GROUP
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=ENVIRONMENT_GROUP,
        key="last-handled-configuration",
    )
    settings.persistence.finalizer = ENVIRONMENT_FINALIZER
    settings.posting.enabled = False

    configuration = await load_configuration(
        operator_settings.kubeconfig,
        operator_settings.kube_context,
    )
    client = KubeClient(configuration, timeout=operator_settings.request_timeout)
    await client.__aenter__()
    _client = client
    _reconciler = Reconciler(client, operator_settings, AuditLogger(operator_settings.audit_log))

    logger.info(
        "Operator started",
        api_server=configuration.host,
        crossplane_namespace=operator_settings.crossplane_namespace,
        argocd_namespace=operator_settings.argocd_namespace,
        poll_interval=operator_settings.poll_interval,
    )


async def cleanup(**_: Any) -> None:
    """Close the API client on shutdown."""
    global _client, _reconciler

    if _client is not None:
        await _client.__aexit__(None, None, None)
    _client = None
    _reconciler = None
    logger.info("Operator stopped")


# =============================================================================
# RECONCILE HANDLER
# =============================================================================


async def reconcile_environment(
    name: str,
    retry: int = 0,
    memo: Any = None,
    **_: Any,
) -> None:
    """
    Run one reconcile pass for an Environment.

    Registered for create, resume, spec updates, and the poll timer. kopf
    runs timers alongside change handlers, so a per-object lock keeps one
    pass in flight per Environment.

    Raises:
        kopf.TemporaryError: When the pass asks for an immediate retry
    """
    if memo is None:
        lock = asyncio.Lock()
    else:
        lock = memo.setdefault("reconcile_lock", asyncio.Lock())

    async with lock:
        result = await get_reconciler().reconcile(name)

    if result.requeue is Requeue.IMMEDIATE:
        delay = backoff_delay(get_settings(), retry)
        message = str(result.error) if result.error else "waiting on pending child resources"
        raise kopf.TemporaryError(message, delay=delay)


def register_handlers(
    settings: OperatorSettings,
    registry: kopf.OperatorRegistry | None = None,
) -> kopf.OperatorRegistry:
    """
    Register lifecycle and reconcile handlers.

    Args:
        settings: Operator settings; the poll interval is fixed at registration
        registry: Registry to use; kopf's default registry when omitted

    Returns:
        The registry the handlers were added to.
    """
    global _settings

    _settings = settings
    registry = registry if registry is not None else kopf.get_default_registry()
    group, version, plural = ENVIRONMENT.group, ENVIRONMENT.version, ENVIRONMENT.plural

    kopf.on.startup(registry=registry)(startup)
    kopf.on.cleanup(registry=registry)(cleanup)

    kopf.on.create(group, version, plural, id="reconcile-create", registry=registry)(
        reconcile_environment
    )
    kopf.on.resume(group, version, plural, id="reconcile-resume", registry=registry)(
        reconcile_environment
    )
    kopf.on.update(
        group, version, plural, field="spec", id="reconcile-update", registry=registry
    )(reconcile_environment)
    kopf.timer(
        group,
        version,
        plural,
        id="reconcile-poll",
        interval=settings.poll_interval,
        initial_delay=settings.poll_interval,
        registry=registry,
    )(reconcile_environment)

    return registry


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the devenv operator."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)
    logger.info("devenv operator starting")

    registry = register_handlers(settings)

    try:
        kopf.run(registry=registry, clusterwide=True)
    except KeyboardInterrupt:
        logger.info("Operator interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Operator error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
