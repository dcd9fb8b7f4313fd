# ABOUTME: Kubernetes API client wrapper with retry logic and error handling
# ABOUTME: Provides async get/create/delete/status access to any custom resource kind

"""
Kubernetes API client with retry logic and structured error handling.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides the client the operator uses for EVERY read and write:
the Environment itself, Crossplane claims and node pools, and Argo CD
applications. It wraps kubernetes_asyncio's CustomObjectsApi and handles:

1. CREDENTIALS: In-cluster service account or kubeconfig (load_configuration)
2. DISPATCH: Picking the namespaced or cluster-scoped API call per kind
3. ERROR HANDLING: Converting ApiException Status bodies to KubeError
4. RETRY LOGIC: Retrying requests that failed in transit

=============================================================================
KUBERNETES ERRORS
=============================================================================

Errors come back as a Status object in the ApiException body:

    {"kind": "Status", "status": "Failure", "reason": "NotFound",
     "message": "environments.dev... \"demo\" not found", "code": 404}

The ``reason`` is what distinguishes an AlreadyExists (409) from a Conflict
(also 409, a stale resourceVersion).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path  # noqa: TC003 - Used in load_configuration signature
from typing import Any

import aiohttp
import structlog
from kubernetes_asyncio import config as kube_config
from kubernetes_asyncio.client import ApiClient, Configuration, CustomObjectsApi
from kubernetes_asyncio.client.exceptions import ApiException
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

# Failures where the request may never have reached the API server.
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (aiohttp.ClientError, TimeoutError)


# =============================================================================
# KUBERNETES ERROR CLASS
# =============================================================================


class KubeError(Exception):
    """
    Structured Kubernetes API error.

    The code and reason let callers tell expected outcomes apart from real
    failures:

        try:
            await client.get(KUBERNETES_CLUSTER, "demo", "crossplane-system")
        except KubeError as e:
            if e.is_not_found:
                ...  # create it
            raise
    """

    def __init__(
        self,
        code: int,
        message: str,
        reason: str | None = None,
        details: str | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.reason = reason
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"Kubernetes API error ({self.code}): {self.message}"
        if self.reason:
            base += f" [{self.reason}]"
        if self.details:
            base += f" - {self.details}"
        return base

    @classmethod
    def from_api_exception(cls, exc: ApiException) -> KubeError:
        """Build from an ApiException, reading the Status body when there is one."""
        code = exc.status or 0
        message = f"HTTP {code}"
        reason = None
        details = None

        body = exc.body
        if body:
            try:
                status = json.loads(body)
            except (TypeError, ValueError):
                text = body.decode(errors="replace") if isinstance(body, bytes) else str(body)
                details = text[:200]
            else:
                if isinstance(status, dict):
                    message = status.get("message") or message
                    reason = status.get("reason")

        return cls(code=code, message=message, reason=reason, details=details)

    @property
    def is_not_found(self) -> bool:
        """True for 404 responses."""
        return self.code == 404

    @property
    def is_already_exists(self) -> bool:
        """True when a create found the name taken."""
        return self.code == 409 and self.reason == "AlreadyExists"


# =============================================================================
# RESOURCE KIND
# =============================================================================


@dataclass(frozen=True)
class ResourceKind:
    """
    Identifies a custom resource type and how to address it.

    FIELDS EXPLAINED:
    -----------------
    - group/version: API group and version, e.g. "argoproj.io" / "v1alpha1"
    - plural: URL segment, e.g. "applications"
    - kind: Value of the "kind" field in manifests, e.g. "Application"
    - namespaced: Whether objects live in a namespace
    """

    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        """The "apiVersion" manifest field, e.g. "argoproj.io/v1alpha1"."""
        return f"{self.group}/{self.version}"

    @property
    def scope(self) -> str:
        """Infix of the CustomObjectsApi method names: "namespaced" or "cluster"."""
        return "namespaced" if self.namespaced else "cluster"

    def arguments(self, namespace: str | None = None) -> dict[str, str]:
        """
        Keyword arguments shared by every CustomObjectsApi call for this kind.

        Raises:
            ValueError: If a namespaced kind is addressed without a namespace
        """
        arguments = {"group": self.group, "version": self.version, "plural": self.plural}
        if self.namespaced:
            if not namespace:
                raise ValueError(f"{self.kind} is namespaced; a namespace is required")
            arguments["namespace"] = namespace
        return arguments


def _require_name(kind: ResourceKind, name: str | None) -> str:
    """
    Reject an empty object name.

    An empty name would address the whole collection, which the API server
    happily answers with a List.
    """
    if not name:
        raise KubeError(400, f"{kind.kind} name may not be empty", reason="BadRequest")
    return name


# =============================================================================
# CREDENTIALS
# =============================================================================


async def load_configuration(
    kubeconfig: Path | None = None,
    context: str | None = None,
) -> Configuration:
    """
    Load API server credentials.

    An explicit kubeconfig wins. Otherwise the in-cluster service account is
    tried first, with the projected token re-read as the kubelet rotates it,
    and the default kubeconfig is the fallback for local runs.

    Raises:
        kubernetes_asyncio.config.ConfigException: If no credentials are found
    """
    configuration = Configuration()

    if kubeconfig is None:
        try:
            kube_config.load_incluster_config(
                client_configuration=configuration,
                try_refresh_token=True,
            )
        except kube_config.ConfigException:
            logger.debug("Not running in a cluster, falling back to kubeconfig")
        else:
            logger.debug("Loaded in-cluster configuration")
            return configuration

    await kube_config.load_kube_config(
        config_file=str(kubeconfig) if kubeconfig is not None else None,
        context=context,
        client_configuration=configuration,
    )
    logger.debug("Loaded kubeconfig", kubeconfig=str(kubeconfig) if kubeconfig else None, context=context)
    return configuration


# =============================================================================
# KUBERNETES CLIENT
# =============================================================================


class KubeClient:
    """
    Async Kubernetes API client with retry logic.

    LIFECYCLE:
    ----------
    ALWAYS use the context manager pattern:

        configuration = await load_configuration()
        async with KubeClient(configuration) as client:
            env = await client.get(ENVIRONMENT, "demo")

    RETRY LOGIC:
    ------------
    Timeouts and connection failures are retried with exponential backoff
    (3 attempts). API error responses are NOT retried here; they are
    converted to KubeError and the reconcile loop decides whether to requeue.
    """

    def __init__(self, configuration: Configuration | None = None, timeout: float = 30.0) -> None:
        """
        Initialize the client.

        Args:
            configuration: Credentials from load_configuration(); the
                kubernetes_asyncio default configuration when None
            timeout: Per-request timeout in seconds
        """
        self._configuration = configuration
        self._timeout = timeout
        self._api_client: ApiClient | None = None
        self._api: CustomObjectsApi | None = None

    async def __aenter__(self) -> KubeClient:
        self._api_client = ApiClient(configuration=self._configuration)
        self._api = CustomObjectsApi(self._api_client)
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._api_client:
            await self._api_client.close()
        self._api_client = None
        self._api = None

    @retry(
        retry=retry_if_exception_type(TRANSPORT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        """
        Call one CustomObjectsApi method.

        This is the CORE REQUEST METHOD. All other methods use this.

        Args:
            operation: Method name, e.g. "get_namespaced_custom_object"
            **kwargs: Method arguments (group, version, plural, name, body, ...)

        Returns:
            API response as dictionary

        Raises:
            KubeError: On API error (4xx, 5xx)
            aiohttp.ClientError: On connection failure (after retries)
            RuntimeError: If client not initialized (forgot async with)
        """
        if not self._api:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(operation=operation, plural=kwargs.get("plural"), name=kwargs.get("name"))
        log.debug("Making Kubernetes API request")

        try:
            result = await getattr(self._api, operation)(_request_timeout=self._timeout, **kwargs)
        except ApiException as e:
            log.debug("Kubernetes API error", status=e.status)
            raise KubeError.from_api_exception(e) from e

        return result if isinstance(result, dict) else {}

    # =========================================================================
    # OBJECT OPERATIONS
    # =========================================================================

    async def get(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
    ) -> dict[str, Any]:
        """
        Fetch one object.

        Raises:
            KubeError: 404 when the object does not exist, 400 for an empty name
        """
        return await self._call(
            f"get_{kind.scope}_custom_object",
            name=_require_name(kind, name),
            **kind.arguments(namespace),
        )

    async def create(
        self,
        kind: ResourceKind,
        body: dict[str, Any],
        namespace: str | None = None,
    ) -> dict[str, Any]:
        """
        Create an object from a full manifest.

        Raises:
            KubeError: 409 AlreadyExists when the name is taken
        """
        return await self._call(
            f"create_{kind.scope}_custom_object",
            body=body,
            **kind.arguments(namespace),
        )

    async def delete(
        self,
        kind: ResourceKind,
        name: str,
        namespace: str | None = None,
        propagation_policy: str = "Background",
    ) -> dict[str, Any]:
        """
        Delete an object.

        Background propagation lets the garbage collector remove owned
        children after the owner is gone.
        """
        return await self._call(
            f"delete_{kind.scope}_custom_object",
            name=_require_name(kind, name),
            propagation_policy=propagation_policy,
            **kind.arguments(namespace),
        )

    async def replace_status(
        self,
        kind: ResourceKind,
        body: dict[str, Any],
        namespace: str | None = None,
    ) -> dict[str, Any]:
        """
        Replace the status subresource.

        The body must carry metadata.name and metadata.resourceVersion; the
        API server rejects stale versions with 409 Conflict.
        """
        name = body.get("metadata", {}).get("name")
        return await self._call(
            f"replace_{kind.scope}_custom_object_status",
            name=_require_name(kind, name),
            body=body,
            **kind.arguments(namespace),
        )
