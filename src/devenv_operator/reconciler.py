# ABOUTME: Reconciliation engine converging one Environment per invocation
# ABOUTME: Runs a fixed pipeline of idempotent steps and returns a requeue directive

"""
Reconciliation engine.

=============================================================================
WHAT HAPPENS IN ONE PASS
=============================================================================

    load Environment ------- gone? -----------------------> NONE
         |
    1. ttl                   ready + TTL set: arm timer, or delete on expiry
    2. cluster_class         resolve the GKEClusterClass
    3. cluster_claim         create KubernetesCluster claim if missing
    4. source_application    create source Argo CD Application if missing
    5. dependency_applications   one Application per dependency
    6. node_pool             create NodePool once the claim has a
                             managed-resource reference; PENDING until then
    7. status                derive Ready, clear TTL stamp if not ready, write

Every step is idempotent: it reads before it writes and tolerates
AlreadyExists. Running the pipeline twice without outside change creates
nothing the second time and writes the same status.

Steps 2 to 6 stop at the first failure. The status step runs after every
pass that did not delete the Environment, so Ready and the TTL stamp always
track the latest observation.

=============================================================================
REQUEUE DIRECTIVES
=============================================================================

    NONE          nothing left to do (Environment gone, deleted by TTL, or
                  its spec is invalid and only a spec change can help)
    IMMEDIATE     a step failed, or the node pool is waiting on Crossplane
    AFTER_DELAY   converged for now; poll again after poll_interval because
                  children are not watched directly

The engine keeps no state between passes. Everything it needs is read from
the API server at the start of each pass.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from devenv_operator.adapters.applications import ApplicationDeployer
from devenv_operator.adapters.cluster import (
    ClusterClaim,
    ClusterClass,
    ClusterClassNotFound,
    ClusterProvisioner,
)
from devenv_operator.constants import ENVIRONMENT
from devenv_operator.models import Environment
from devenv_operator.status import StatusAggregator
from devenv_operator.ttl import TTLDecision, TTLExpiryPolicy, utc_now
from devenv_operator.utils.client import TRANSPORT_ERRORS, KubeError
from devenv_operator.utils.logging import AuditLogger, new_correlation_id
from devenv_operator.utils.ownership import OwnershipError

if TYPE_CHECKING:
    from devenv_operator.config import OperatorSettings
    from devenv_operator.utils.client import KubeClient

logger = structlog.get_logger(__name__)


class DependencyErrors(Exception):
    """One or more dependency applications could not be ensured."""

    def __init__(self, errors: dict[str, Exception]) -> None:
        self.errors = errors
        failed = ", ".join(f"{name}: {error}" for name, error in errors.items())
        super().__init__(f"{len(errors)} dependency application(s) failed: {failed}")


# Failures a step reports instead of raising. Anything else is a bug and
# propagates to the scheduler.
RECONCILE_ERRORS: tuple[type[Exception], ...] = (
    KubeError,
    ClusterClassNotFound,
    DependencyErrors,
    OwnershipError,
    *TRANSPORT_ERRORS,
)


# =============================================================================
# RESULTS
# =============================================================================


class Requeue(str, Enum):
    """When the scheduler should run the next pass."""

    NONE = "none"
    IMMEDIATE = "immediate"
    AFTER_DELAY = "after_delay"


class StepOutcome(str, Enum):
    """Tag attached to every step of a pass."""

    DONE = "done"  # already converged
    CREATED = "created"
    SKIPPED = "skipped"  # not applicable this pass
    PENDING = "pending"  # waiting on an external precondition
    DELETED = "deleted"  # TTL expiry removed the Environment
    FAILED = "failed"


@dataclass
class StepResult:
    step: str
    outcome: StepOutcome
    detail: str = ""
    error: Exception | None = None


@dataclass
class ReconcileResult:
    """What one pass did and what the scheduler should do next."""

    requeue: Requeue
    delay: float = 0.0
    error: Exception | None = None
    steps: list[StepResult] = field(default_factory=list)

    def outcome_of(self, step: str) -> StepOutcome | None:
        """The outcome of a step, or None if the step did not run."""
        for result in self.steps:
            if result.step == step:
                return result.outcome
        return None


@dataclass
class _Pass:
    """Values handed from one step to the next within a single pass."""

    env: Environment
    now: datetime
    cluster_class: ClusterClass | None = None
    claim: ClusterClaim | None = None


_Step = Callable[[_Pass], Awaitable[StepResult]]


# =============================================================================
# ENGINE
# =============================================================================


class Reconciler:
    """
    Converges Environments.

    One instance serves every Environment. ``reconcile`` may run for
    different Environments concurrently; the scheduler ensures one pass at
    a time per Environment.
    """

    def __init__(
        self,
        client: KubeClient,
        settings: OperatorSettings,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Args:
            client: Kubernetes API client (already entered)
            settings: Namespaces and poll interval
            audit: Audit trail; stdout when omitted
            clock: Source of "now", injectable for tests
        """
        audit = audit or AuditLogger(settings.audit_log)
        self._client = client
        self._settings = settings
        self._clock = clock
        self.provisioner = ClusterProvisioner(client, settings.crossplane_namespace, audit)
        self.deployer = ApplicationDeployer(client, settings.argocd_namespace, audit)
        self.ttl_policy = TTLExpiryPolicy(client, audit)
        self.status = StatusAggregator(client, self.provisioner, self.deployer)

        self._pipeline: list[tuple[str, _Step]] = [
            ("cluster_class", self._ensure_cluster_class),
            ("cluster_claim", self._ensure_cluster_claim),
            ("source_application", self._ensure_source_application),
            ("dependency_applications", self._ensure_dependency_applications),
            ("node_pool", self._ensure_node_pool),
        ]

    async def reconcile(self, name: str) -> ReconcileResult:
        """
        Run one pass for the named Environment.

        Never raises for the failures listed in RECONCILE_ERRORS; those come
        back in ``ReconcileResult.error`` with an IMMEDIATE requeue.
        """
        new_correlation_id()
        with structlog.contextvars.bound_contextvars(environment=name):
            return await self._reconcile(name)

    async def _reconcile(self, name: str) -> ReconcileResult:
        logger.info("Reconciling environment")

        try:
            data = await self._client.get(ENVIRONMENT, name)
        except KubeError as e:
            if e.is_not_found:
                logger.info("Environment no longer exists")
                return ReconcileResult(requeue=Requeue.NONE)
            logger.error("Could not get environment", error=str(e))
            return ReconcileResult(requeue=Requeue.IMMEDIATE, error=e)
        except TRANSPORT_ERRORS as e:
            logger.error("Could not get environment", error=str(e))
            return ReconcileResult(requeue=Requeue.IMMEDIATE, error=e)

        try:
            env = Environment.from_api_response(data)
        except ValidationError as e:
            logger.error("Environment spec is invalid", error=str(e))
            return ReconcileResult(requeue=Requeue.NONE, error=e)

        ctx = _Pass(env=env, now=self._clock())
        steps: list[StepResult] = []

        ttl_result = await self._run("ttl", self._apply_ttl, ctx)
        steps.append(ttl_result)
        if ttl_result.outcome is StepOutcome.DELETED:
            return ReconcileResult(requeue=Requeue.NONE, steps=steps)

        if ttl_result.outcome is not StepOutcome.FAILED:
            for step_name, step in self._pipeline:
                result = await self._run(step_name, step, ctx)
                steps.append(result)
                if result.outcome is StepOutcome.FAILED:
                    break

        steps.append(await self._run("status", self._update_status, ctx))
        return self._result(steps)

    async def _run(self, name: str, step: _Step, ctx: _Pass) -> StepResult:
        """Run one step, turning reportable failures into a FAILED result."""
        try:
            result = await step(ctx)
        except RECONCILE_ERRORS as e:
            logger.error("Reconcile step failed", step=name, error=str(e))
            return StepResult(step=name, outcome=StepOutcome.FAILED, error=e)
        logger.debug("Reconcile step finished", step=name, outcome=result.outcome.value, detail=result.detail)
        return result

    def _result(self, steps: list[StepResult]) -> ReconcileResult:
        failed = [s for s in steps if s.outcome is StepOutcome.FAILED]
        if failed:
            return ReconcileResult(requeue=Requeue.IMMEDIATE, error=failed[0].error, steps=steps)
        if any(s.outcome is StepOutcome.PENDING for s in steps):
            return ReconcileResult(requeue=Requeue.IMMEDIATE, steps=steps)
        return ReconcileResult(
            requeue=Requeue.AFTER_DELAY, delay=self._settings.poll_interval, steps=steps
        )

    # =========================================================================
    # STEPS
    # =========================================================================

    async def _apply_ttl(self, ctx: _Pass) -> StepResult:
        env = ctx.env
        if env.spec.ttl is None:
            return StepResult("ttl", StepOutcome.SKIPPED, "no ttl configured")

        readiness = await self.status.observe(env)
        if not readiness.ready:
            return StepResult("ttl", StepOutcome.SKIPPED, "environment not ready")

        outcome = await self.ttl_policy.apply(env, ctx.now)
        if outcome.decision is TTLDecision.EXPIRE:
            return StepResult("ttl", StepOutcome.DELETED, f"ttl {env.spec.ttl} exceeded")
        return StepResult("ttl", StepOutcome.DONE, outcome.decision.value)

    async def _ensure_cluster_class(self, ctx: _Pass) -> StepResult:
        label = ctx.env.spec.cluster_class_label
        try:
            ctx.cluster_class = await self.provisioner.resolve_cluster_class(label)
        except ClusterClassNotFound:
            logger.error(
                "Could not get cluster class referenced in the environment",
                cluster_class=label,
                namespace=self._settings.crossplane_namespace,
            )
            raise
        return StepResult("cluster_class", StepOutcome.DONE, ctx.cluster_class.name)

    async def _ensure_cluster_claim(self, ctx: _Pass) -> StepResult:
        name = ctx.env.spec.cluster_name
        claim = await self.provisioner.get_cluster_claim(name)
        if claim is not None:
            ctx.claim = claim
            return StepResult("cluster_claim", StepOutcome.DONE, name)

        ctx.claim = await self.provisioner.create_cluster_claim(ctx.env)
        return StepResult("cluster_claim", StepOutcome.CREATED, name)

    async def _ensure_source_application(self, ctx: _Pass) -> StepResult:
        name = ctx.env.spec.source.name
        if await self.deployer.exists(name):
            return StepResult("source_application", StepOutcome.DONE, name)

        logger.info("Creating argocd source application", source=name)
        await self.deployer.create(ctx.env, self.deployer.build_source_application(ctx.env))
        return StepResult("source_application", StepOutcome.CREATED, name)

    async def _ensure_dependency_applications(self, ctx: _Pass) -> StepResult:
        env = ctx.env
        created: list[str] = []
        errors: dict[str, Exception] = {}

        for dependency in env.spec.dependencies:
            try:
                if await self.deployer.exists(dependency.name):
                    continue
                logger.info("Creating argocd dependency application", dependency=dependency.name)
                desired = self.deployer.build_dependency_application(
                    dependency, env.spec.cluster_name
                )
                await self.deployer.create(env, desired)
                created.append(dependency.name)
            except RECONCILE_ERRORS as e:
                logger.error(
                    "Could not ensure dependency application",
                    dependency=dependency.name,
                    error=str(e),
                )
                errors[dependency.name] = e

        if errors:
            raise DependencyErrors(errors)
        if created:
            return StepResult("dependency_applications", StepOutcome.CREATED, ", ".join(created))
        return StepResult("dependency_applications", StepOutcome.DONE)

    async def _ensure_node_pool(self, ctx: _Pass) -> StepResult:
        env = ctx.env
        managed_resource = ctx.claim.managed_resource_name if ctx.claim else ""
        if not managed_resource:
            logger.info("Node pool pending", reason="cluster claim has no managed resource yet")
            return StepResult("node_pool", StepOutcome.PENDING, "no managed resource reference")

        name = env.spec.cluster_name
        if await self.provisioner.get_node_pool(name) is not None:
            return StepResult("node_pool", StepOutcome.DONE, name)

        if ctx.cluster_class is None:
            raise RuntimeError("cluster class must be resolved before the node pool step")
        await self.provisioner.create_node_pool(env, ctx.cluster_class, managed_resource)
        return StepResult("node_pool", StepOutcome.CREATED, name)

    async def _update_status(self, ctx: _Pass) -> StepResult:
        status = await self.status.update(ctx.env)
        return StepResult("status", StepOutcome.DONE, f"ready={status.ready}")
