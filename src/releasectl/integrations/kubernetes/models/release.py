"""Data models for release records.

A release is one version of a named deployment. Records are immutable in
identity (``name``, ``version``) and are persisted as JSON by the release
store, so every model here round-trips through ``model_dump_json``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Kinds that are never namespaced. Anything else is treated as namespaced.
CLUSTER_SCOPED_KINDS = frozenset(
    {
        "APIService",
        "ClusterRole",
        "ClusterRoleBinding",
        "CustomResourceDefinition",
        "IngressClass",
        "MutatingWebhookConfiguration",
        "Namespace",
        "PersistentVolume",
        "PriorityClass",
        "RuntimeClass",
        "StorageClass",
        "ValidatingWebhookConfiguration",
    }
)


def utcnow() -> datetime:
    """Current time, timezone aware."""
    return datetime.now(UTC)


class ReleaseStatus(StrEnum):
    """Lifecycle status of a single release version."""

    UNKNOWN = "unknown"
    DEPLOYED = "deployed"
    DELETED = "deleted"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    PENDING_INSTALL = "pending-install"
    PENDING_UPGRADE = "pending-upgrade"
    PENDING_ROLLBACK = "pending-rollback"
    PENDING_DELETE = "pending-delete"

    def is_pending(self) -> bool:
        """True for the transient ``pending-*`` statuses."""
        return self.value.startswith("pending-")


class HookEvent(StrEnum):
    """Lifecycle events a hook can be attached to."""

    PRE_INSTALL = "pre-install"
    POST_INSTALL = "post-install"
    PRE_UPGRADE = "pre-upgrade"
    POST_UPGRADE = "post-upgrade"
    PRE_ROLLBACK = "pre-rollback"
    POST_ROLLBACK = "post-rollback"
    PRE_DELETE = "pre-delete"
    POST_DELETE = "post-delete"
    TEST = "test"


class HookDeletePolicy(StrEnum):
    """When a hook's resource is removed from the cluster."""

    BEFORE_HOOK_CREATION = "before-hook-creation"
    HOOK_SUCCEEDED = "hook-succeeded"
    HOOK_FAILED = "hook-failed"


class HookPhase(StrEnum):
    """Outcome of the most recent hook run."""

    UNKNOWN = "unknown"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ResourceRef(BaseModel):
    """Identity of a live cluster object.

    Two references are equal when they name the same object: same API group,
    kind, namespace and name. The version part of ``api_version`` is only
    used to address the API, so ``apps/v1beta2`` and ``apps/v1`` Deployments
    with one name are the same object.
    """

    model_config = ConfigDict(frozen=True)

    api_version: str
    kind: str
    name: str
    namespace: str | None = None

    @classmethod
    def from_manifest(
        cls,
        manifest: dict[str, Any],
        default_namespace: str | None = None,
    ) -> ResourceRef:
        """Build a reference from a parsed manifest.

        Namespaced kinds without an explicit ``metadata.namespace`` fall back
        to ``default_namespace``; cluster-scoped kinds never carry one.
        """
        kind = str(manifest.get("kind", ""))
        metadata = manifest.get("metadata") or {}
        namespace: str | None = None
        if kind not in CLUSTER_SCOPED_KINDS:
            namespace = metadata.get("namespace") or default_namespace
        return cls(
            api_version=str(manifest.get("apiVersion", "")),
            kind=kind,
            name=str(metadata.get("name", "")),
            namespace=namespace,
        )

    @property
    def group(self) -> str:
        """API group without the version; empty for the core group."""
        return self.api_version.rpartition("/")[0]

    @property
    def identity(self) -> tuple[str, str, str | None, str]:
        return (self.group, self.kind, self.namespace, self.name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceRef):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


class HookExecution(BaseModel):
    """Record of the last time a hook ran."""

    phase: HookPhase = HookPhase.UNKNOWN
    started_at: datetime | None = None
    completed_at: datetime | None = None


class Hook(BaseModel):
    """A manifest run at a lifecycle event, outside the main resource set."""

    name: str
    kind: str
    path: str = ""
    manifest: str
    events: list[HookEvent] = Field(default_factory=list)
    weight: int = 0
    delete_policies: list[HookDeletePolicy] = Field(default_factory=list)
    last_run: HookExecution | None = None

    def fresh_copy(self) -> Hook:
        """Deep copy with no run history, for use in a new release version."""
        return self.model_copy(deep=True, update={"last_run": None})


class ChartReference(BaseModel):
    """Metadata identifying the chart a release was rendered from."""

    name: str
    version: str = ""
    app_version: str = ""
    description: str = ""

    def __str__(self) -> str:
        return f"{self.name}-{self.version}" if self.version else self.name


class Chart(BaseModel):
    """A loaded chart: metadata, template sources and default values."""

    metadata: ChartReference
    templates: dict[str, str] = Field(default_factory=dict)
    values: dict[str, Any] = Field(default_factory=dict)


class ReleaseInfo(BaseModel):
    """Mutable status information of a release version."""

    status: ReleaseStatus = ReleaseStatus.UNKNOWN
    description: str = ""
    first_deployed: datetime | None = None
    last_deployed: datetime | None = None
    deleted: datetime | None = None
    notes: str = ""


class Release(BaseModel):
    """One version of a named deployment."""

    name: str
    version: int
    namespace: str
    manifest: str = ""
    chart: ChartReference
    config: dict[str, Any] = Field(default_factory=dict)
    info: ReleaseInfo = Field(default_factory=ReleaseInfo)
    hooks: list[Hook] = Field(default_factory=list)

    @property
    def status(self) -> ReleaseStatus:
        return self.info.status

    @property
    def key(self) -> tuple[str, int]:
        return (self.name, self.version)

    def set_status(self, status: ReleaseStatus, description: str | None = None) -> None:
        """Update status (and optionally description) in place."""
        self.info.status = status
        if description is not None:
            self.info.description = description

    def __str__(self) -> str:
        return f"{self.name}.v{self.version}"
