# ABOUTME: Aggregates child resource observations into Environment status
# ABOUTME: Derives the Ready flag and clears the TTL stamp when readiness is lost

"""
Status aggregation.

Ready is a plain conjunction:

    ready = cluster claim Bound
            AND source application Healthy and Synced
            AND every dependency application Healthy and Synced

With no dependencies the last clause holds trivially.

The aggregator also owns the "disarm" half of the TTL state machine: any
status it builds with ready=False has no ttlStartTimestamp, so the TTL
countdown restarts from zero once readiness comes back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from devenv_operator.constants import ENVIRONMENT
from devenv_operator.models import EnvironmentStatus, SubresourceStatus
from devenv_operator.utils.client import KubeError

if TYPE_CHECKING:
    from devenv_operator.adapters.applications import Application, ApplicationDeployer
    from devenv_operator.adapters.cluster import ClusterClaim, ClusterProvisioner
    from devenv_operator.models import Environment
    from devenv_operator.utils.client import KubeClient

logger = structlog.get_logger(__name__)


@dataclass
class Readiness:
    """
    One snapshot of every child an Environment depends on.

    None means the child could not be read (missing or probe failure).
    """

    claim: ClusterClaim | None = None
    source: Application | None = None
    dependencies: dict[str, Application | None] = field(default_factory=dict)

    @property
    def cluster_bound(self) -> bool:
        return self.claim is not None and self.claim.is_bound

    @property
    def source_ready(self) -> bool:
        return self.source is not None and self.source.is_ready

    @property
    def dependencies_ready(self) -> bool:
        return all(app is not None and app.is_ready for app in self.dependencies.values())

    @property
    def ready(self) -> bool:
        return self.cluster_bound and self.source_ready and self.dependencies_ready


def _describe_app(app: Application | None) -> str:
    if app is None:
        return "not found"
    return f"health={app.health_status} sync={app.sync_status}"


class StatusAggregator:
    """Observes children, derives status, and writes it back."""

    def __init__(
        self,
        client: KubeClient,
        provisioner: ClusterProvisioner,
        deployer: ApplicationDeployer,
    ) -> None:
        self._client = client
        self._provisioner = provisioner
        self._deployer = deployer

    async def observe(self, env: Environment) -> Readiness:
        """
        Probe the claim, the source application and every dependency.

        Probe failures never raise: they show up as None in the snapshot and
        make the Environment not ready.
        """
        readiness = Readiness(
            claim=await self._provisioner.observe_claim(env.spec.cluster_name),
            source=await self._deployer.observe(env.spec.source.name),
        )
        for dependency in env.spec.dependencies:
            readiness.dependencies[dependency.name] = await self._deployer.observe(
                dependency.name
            )
        return readiness

    def build_status(self, env: Environment, readiness: Readiness) -> EnvironmentStatus:
        """
        Derive the status to persist.

        The TTL stamp survives only while the Environment is ready and a TTL
        is configured.
        """
        ready = readiness.ready
        keep_stamp = ready and env.spec.ttl is not None

        return EnvironmentStatus(
            cluster_status=self._cluster_status(env, readiness),
            application_status=self._application_status(readiness),
            dependency_status=self._dependency_status(readiness),
            ready=ready,
            ttl_start_timestamp=env.status.ttl_start_timestamp if keep_stamp else None,
        )

    async def persist(self, env: Environment, status: EnvironmentStatus) -> None:
        """
        Replace the status subresource.

        Written on every pass whether or not anything changed.

        Raises:
            KubeError: If the write fails (including a stale resourceVersion)
        """
        env.status = status
        try:
            updated = await self._client.replace_status(ENVIRONMENT, env.status_body())
        except KubeError as e:
            logger.error("Could not update status of environment", environment=env.name, error=str(e))
            raise
        env.refresh_resource_version(updated)
        logger.debug(
            "Status updated",
            environment=env.name,
            ready=status.ready,
            ttl_start=status.ttl_start_timestamp.isoformat() if status.ttl_start_timestamp else None,
        )

    async def update(self, env: Environment) -> EnvironmentStatus:
        """Observe, derive and persist in one go."""
        readiness = await self.observe(env)
        status = self.build_status(env, readiness)
        await self.persist(env, status)
        return status

    # -------------------------------------------------------------------------
    # SUB-RESOURCE ENTRIES
    # -------------------------------------------------------------------------

    @staticmethod
    def _cluster_status(env: Environment, readiness: Readiness) -> SubresourceStatus:
        claim = readiness.claim
        name = env.spec.cluster_name
        if claim is None:
            return SubresourceStatus.failure("NotFound", f"cluster claim {name} not found")
        phase = claim.binding_phase or "Unknown"
        if claim.is_bound:
            return SubresourceStatus.success(phase, f"cluster claim {name} is {phase}")
        return SubresourceStatus.failure(phase, f"cluster claim {name} is {phase}")

    @staticmethod
    def _application_status(readiness: Readiness) -> SubresourceStatus:
        message = _describe_app(readiness.source)
        if readiness.source_ready:
            return SubresourceStatus.success("Ready", message)
        reason = "NotFound" if readiness.source is None else "NotReady"
        return SubresourceStatus.failure(reason, message)

    @staticmethod
    def _dependency_status(readiness: Readiness) -> SubresourceStatus:
        total = len(readiness.dependencies)
        if total == 0:
            return SubresourceStatus.success("Ready", "no dependencies")

        pending = {
            name: app
            for name, app in readiness.dependencies.items()
            if app is None or not app.is_ready
        }
        ready_count = total - len(pending)
        if not pending:
            return SubresourceStatus.success("Ready", f"{ready_count}/{total} dependencies ready")

        details = ", ".join(f"{name} ({_describe_app(app)})" for name, app in pending.items())
        return SubresourceStatus.failure(
            "NotReady", f"{ready_count}/{total} dependencies ready; waiting on {details}"
        )
