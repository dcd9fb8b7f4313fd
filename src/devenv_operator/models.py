# ABOUTME: Pydantic models for the Environment custom resource
# ABOUTME: Validates spec fields and serializes the status subresource

"""
Environment resource models.

=============================================================================
WHAT IS AN ENVIRONMENT?
=============================================================================

An Environment is a cluster-scoped custom resource describing a throwaway
development environment:

    apiVersion: dev.vadasambar.github.io/v1alpha1
    kind: Environment
    metadata:
      name: demo
    spec:
      clusterName: demo-cluster
      clusterClassLabel: standard-gke
      ttl: 1d
      source:
        name: guestbook
        namespace: default
        repoURL: https://github.com/argoproj/argocd-example-apps.git
        path: guestbook
        revision: HEAD
      dependencies:
      - name: redis
        namespace: default
        repoURL: https://charts.bitnami.com/bitnami
        chartName: redis
        revision: 17.3.7
    status:
      ready: false
      ttlStartTimestamp: null
      clusterStatus: {...}
      applicationStatus: {...}
      dependencyStatus: {...}

The API uses camelCase; the models expose snake_case attributes and accept
either spelling on input (populate_by_name).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from devenv_operator.constants import ENVIRONMENT
from devenv_operator.ttl import parse_ttl

_MODEL_CONFIG = ConfigDict(populate_by_name=True, extra="ignore")


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way Kubernetes does: ``2024-01-15T08:30:00Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# =============================================================================
# SPEC
# =============================================================================


class AppSource(BaseModel):
    """Where the main application's manifests come from."""

    model_config = _MODEL_CONFIG

    name: str = Field(min_length=1)
    namespace: str = ""
    path: str = Field(min_length=1)
    revision: str = Field(min_length=1)
    chart_name: str | None = Field(default=None, alias="chartName")
    repo_url: str = Field(min_length=1, alias="repoURL")


class DependencySource(BaseModel):
    """A Helm chart the main application needs, deployed alongside it."""

    model_config = _MODEL_CONFIG

    name: str = Field(min_length=1)
    namespace: str = ""
    revision: str = Field(min_length=1)
    chart_name: str | None = Field(default=None, alias="chartName")
    repo_url: str = Field(min_length=1, alias="repoURL")


class EnvironmentSpec(BaseModel):
    """Desired state of an Environment."""

    model_config = _MODEL_CONFIG

    source: AppSource
    dependencies: list[DependencySource] = Field(default_factory=list)
    cluster_class_label: str = Field(default="", alias="clusterClassLabel")
    cluster_name: str = Field(default="", alias="clusterName")
    ttl: str | None = None

    @field_validator("ttl")
    @classmethod
    def validate_ttl(cls, v: str | None) -> str | None:
        """Reject TTL strings with an unknown unit instead of treating them as zero."""
        if v in (None, ""):
            return None
        parse_ttl(v)
        return v

    @property
    def ttl_duration(self) -> timedelta | None:
        """The parsed TTL, or None when no TTL is configured."""
        return parse_ttl(self.ttl) if self.ttl else None


# =============================================================================
# STATUS
# =============================================================================


class SubresourceStatus(BaseModel):
    """
    Last observation of one child resource, shaped like a Kubernetes Status.

    Examples:
        {"status": "Success", "reason": "Bound", "message": "cluster claim demo is Bound"}
        {"status": "Failure", "reason": "NotReady", "message": "health=Progressing sync=OutOfSync"}
    """

    model_config = _MODEL_CONFIG

    status: str = ""
    reason: str = ""
    message: str = ""

    @classmethod
    def success(cls, reason: str, message: str) -> SubresourceStatus:
        return cls(status="Success", reason=reason, message=message)

    @classmethod
    def failure(cls, reason: str, message: str) -> SubresourceStatus:
        return cls(status="Failure", reason=reason, message=message)


class EnvironmentStatus(BaseModel):
    """Observed state of an Environment."""

    model_config = _MODEL_CONFIG

    cluster_status: SubresourceStatus = Field(
        default_factory=SubresourceStatus, alias="clusterStatus"
    )
    application_status: SubresourceStatus = Field(
        default_factory=SubresourceStatus, alias="applicationStatus"
    )
    dependency_status: SubresourceStatus = Field(
        default_factory=SubresourceStatus, alias="dependencyStatus"
    )
    ready: bool = False
    ttl_start_timestamp: datetime | None = Field(default=None, alias="ttlStartTimestamp")

    @field_serializer("ttl_start_timestamp")
    def serialize_ttl_start(self, value: datetime | None) -> str | None:
        return format_timestamp(value) if value else None

    def to_api(self) -> dict[str, Any]:
        """Serialize with API field names."""
        return self.model_dump(by_alias=True)


# =============================================================================
# ENVIRONMENT
# =============================================================================


class Environment(BaseModel):
    """
    An Environment as read from the API server.

    Besides the parsed spec and status, it keeps the identity fields needed
    to write status back (resourceVersion) and to own children (uid).
    """

    model_config = _MODEL_CONFIG

    name: str
    uid: str = ""
    resource_version: str = ""
    spec: EnvironmentSpec
    status: EnvironmentStatus = Field(default_factory=EnvironmentStatus)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Environment:
        """
        Create an Environment from an API object.

        Raises:
            pydantic.ValidationError: If the spec is malformed, including an
                                      unrecognized TTL unit
        """
        metadata = data.get("metadata", {})
        return cls(
            name=metadata.get("name", ""),
            uid=metadata.get("uid", ""),
            resource_version=metadata.get("resourceVersion", ""),
            spec=data.get("spec") or {},
            status=data.get("status") or {},
        )

    @property
    def owner(self) -> dict[str, Any]:
        """Minimal object for building owner references to this Environment."""
        return {
            "apiVersion": ENVIRONMENT.api_version,
            "kind": ENVIRONMENT.kind,
            "metadata": {"name": self.name, "uid": self.uid},
        }

    def status_body(self) -> dict[str, Any]:
        """Request body for replacing the status subresource."""
        metadata: dict[str, Any] = {"name": self.name}
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": ENVIRONMENT.api_version,
            "kind": ENVIRONMENT.kind,
            "metadata": metadata,
            "status": self.status.to_api(),
        }

    def refresh_resource_version(self, updated: dict[str, Any]) -> None:
        """Adopt the resourceVersion returned by a write so the next write is not stale."""
        version = updated.get("metadata", {}).get("resourceVersion")
        if version:
            self.resource_version = version
