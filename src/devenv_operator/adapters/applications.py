# ABOUTME: Argo CD adapter for the source application and its dependencies
# ABOUTME: Builds Application manifests and reports their health and sync state

"""
Application Deployer adapter.

Every Environment deploys one SOURCE application (manifests at a path in a
Git repository) and any number of DEPENDENCY applications (Helm charts from a
chart repository). Both become Argo CD Application resources targeting the
provisioned cluster:

    apiVersion: argoproj.io/v1alpha1
    kind: Application
    metadata:
      name: guestbook
      namespace: argocd
    spec:
      project: default
      source:
        repoURL: https://github.com/argoproj/argocd-example-apps.git
        path: guestbook                 # or chart: redis for dependencies
        targetRevision: HEAD
      destination:
        name: demo-cluster              # cluster registered in Argo CD
        namespace: default
      syncPolicy:
        automated:
          prune: true
          selfHeal: true

An application counts as ready when Argo CD reports it Healthy AND Synced.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from devenv_operator.constants import (
    ARGOCD_APPLICATION,
    ARGOCD_DEFAULT_PROJECT,
    HEALTH_STATUS_HEALTHY,
    SYNC_STATUS_SYNCED,
)
from devenv_operator.utils.client import KubeError
from devenv_operator.utils.ownership import set_controller_reference

if TYPE_CHECKING:
    from devenv_operator.models import DependencySource, Environment
    from devenv_operator.utils.client import KubeClient
    from devenv_operator.utils.logging import AuditLogger

logger = structlog.get_logger(__name__)


# =============================================================================
# APPLICATION DATA CLASS
# =============================================================================


@dataclass
class Application:
    """
    Argo CD Application representation.

    Flattens the nested API object into the fields the operator reads:
    app.name, app.sync_status, app.health_status, etc.

    - sync_status: "Synced", "OutOfSync", "Unknown"
    - health_status: "Healthy", "Degraded", "Progressing", "Missing", "Unknown"
    """

    name: str
    namespace: str
    project: str

    repo_url: str
    path: str
    chart: str
    target_revision: str

    destination_name: str
    destination_namespace: str

    sync_status: str
    health_status: str

    @property
    def is_ready(self) -> bool:
        return (
            self.health_status == HEALTH_STATUS_HEALTHY
            and self.sync_status == SYNC_STATUS_SYNCED
        )

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Application:
        """
        Create Application from an API object.

        Missing fields fall back to defaults: Argo CD omits empty status
        sections on freshly created applications.
        """
        metadata = data.get("metadata", {})
        spec = data.get("spec", {})
        status = data.get("status", {})

        source = spec.get("source", {})
        destination = spec.get("destination", {})

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", "argocd"),
            project=spec.get("project", ARGOCD_DEFAULT_PROJECT),
            repo_url=source.get("repoURL", ""),
            path=source.get("path", ""),
            chart=source.get("chart", ""),
            target_revision=source.get("targetRevision", "HEAD"),
            destination_name=destination.get("name", ""),
            destination_namespace=destination.get("namespace", ""),
            sync_status=status.get("sync", {}).get("status", "Unknown"),
            health_status=status.get("health", {}).get("status", "Unknown"),
        )


def _sync_policy() -> dict[str, Any]:
    return {"automated": {"prune": True, "selfHeal": True}}


# =============================================================================
# ADAPTER
# =============================================================================


class ApplicationDeployer:
    """Creates and inspects Argo CD Applications on behalf of Environments."""

    def __init__(self, client: KubeClient, namespace: str, audit: AuditLogger) -> None:
        """
        Args:
            client: Kubernetes API client
            namespace: Namespace Argo CD watches for Application resources
            audit: Audit trail for created applications
        """
        self._client = client
        self._namespace = namespace
        self._audit = audit

    async def get_application(self, name: str) -> Application:
        """
        Fetch an application.

        Raises:
            KubeError: If it does not exist (404) or the API call fails
        """
        data = await self._client.get(ARGOCD_APPLICATION, name, self._namespace)
        return Application.from_api_response(data)

    async def exists(self, name: str) -> bool:
        """
        Existence probe used to decide between create and skip.

        Raises:
            KubeError: For anything other than 404
        """
        try:
            await self._client.get(ARGOCD_APPLICATION, name, self._namespace)
        except KubeError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def observe(self, name: str) -> Application | None:
        """The application, or None when it cannot be read. Failures are logged."""
        try:
            return await self.get_application(name)
        except KubeError as e:
            logger.warning("Could not get argocd application", application=name, error=str(e))
            return None

    async def is_ready(self, name: str) -> bool:
        """Healthy and Synced; False when not, or when the probe fails."""
        app = await self.observe(name)
        if app is None:
            return False
        if app.is_ready:
            logger.debug("Argo CD application is ready", application=name)
            return True
        logger.info(
            "Argo CD application is not ready yet",
            application=name,
            health=app.health_status,
            sync=app.sync_status,
        )
        return False

    # -------------------------------------------------------------------------
    # MANIFEST BUILDERS
    # -------------------------------------------------------------------------

    def build_source_application(self, env: Environment) -> dict[str, Any]:
        """Application deploying the Environment's main source path."""
        source = env.spec.source
        return {
            "apiVersion": ARGOCD_APPLICATION.api_version,
            "kind": ARGOCD_APPLICATION.kind,
            "metadata": {"name": source.name, "namespace": self._namespace},
            "spec": {
                "project": ARGOCD_DEFAULT_PROJECT,
                "source": {
                    "repoURL": source.repo_url,
                    "path": source.path,
                    "targetRevision": source.revision,
                },
                "destination": {
                    "namespace": source.namespace,
                    "name": env.spec.cluster_name,
                },
                "syncPolicy": _sync_policy(),
            },
        }

    def build_dependency_application(
        self,
        dependency: DependencySource,
        cluster_name: str,
    ) -> dict[str, Any]:
        """Application deploying a dependency chart to the same cluster."""
        source: dict[str, Any] = {
            "repoURL": dependency.repo_url,
            "targetRevision": dependency.revision,
        }
        if dependency.chart_name:
            source["chart"] = dependency.chart_name

        return {
            "apiVersion": ARGOCD_APPLICATION.api_version,
            "kind": ARGOCD_APPLICATION.kind,
            "metadata": {"name": dependency.name, "namespace": self._namespace},
            "spec": {
                "project": ARGOCD_DEFAULT_PROJECT,
                "source": source,
                "destination": {
                    "namespace": dependency.namespace,
                    "name": cluster_name,
                },
                "syncPolicy": _sync_policy(),
            },
        }

    # -------------------------------------------------------------------------
    # CREATE
    # -------------------------------------------------------------------------

    async def create(self, env: Environment, desired: dict[str, Any]) -> Application:
        """
        Create an application owned by the Environment and return it re-read.

        AlreadyExists is tolerated, so a create racing another pass is not an
        error.

        Raises:
            KubeError: If the create (other than AlreadyExists) or re-read fails
        """
        name = desired["metadata"]["name"]
        log = logger.bind(environment=env.name, application=name, namespace=self._namespace)
        log.info("Creating argocd application")

        set_controller_reference(env.owner, desired)
        try:
            await self._client.create(ARGOCD_APPLICATION, desired, self._namespace)
            self._audit.log_write(
                "create_application", name, "created", {"environment": env.name}
            )
        except KubeError as e:
            if not e.is_already_exists:
                log.error("Could not create argocd application", error=str(e))
                self._audit.log_error("create_application", name, str(e))
                raise
            log.info("Argo CD application already exists")

        app = await self.get_application(name)
        log.info("Created argocd application")
        return app
