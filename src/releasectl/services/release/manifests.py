"""Classification and ordering of rendered manifests.

Rendered chart output is a set of YAML streams. This module splits them into
individual documents, separates lifecycle hooks (objects annotated with
``helm.sh/hook``) from ordinary resources, orders resources so that
dependencies such as Namespaces and ConfigMaps come first, and converts a
stored release manifest back into a keyed resource set.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
import yaml

from releasectl.integrations.kubernetes.models.release import (
    Hook,
    HookDeletePolicy,
    HookEvent,
    ResourceRef,
)
from releasectl.services.release.exceptions import ManifestError

logger = structlog.get_logger()

HOOK_ANNOTATION = "helm.sh/hook"
HOOK_WEIGHT_ANNOTATION = "helm.sh/hook-weight"
HOOK_DELETE_POLICY_ANNOTATION = "helm.sh/hook-delete-policy"
RESOURCE_POLICY_ANNOTATION = "helm.sh/resource-policy"
KEEP_RESOURCE_POLICY = "keep"

YAML_EXTENSIONS = (".yaml", ".yml")
REQUIRED_MANIFEST_FIELDS = ("apiVersion", "kind", "metadata")

_DOCUMENT_SEPARATOR = re.compile(r"^---[ \t]*$", re.MULTILINE)
_SOURCE_COMMENT = "# Source: "

INSTALL_ORDER: tuple[str, ...] = (
    "Namespace",
    "NetworkPolicy",
    "ResourceQuota",
    "LimitRange",
    "PodSecurityPolicy",
    "PodDisruptionBudget",
    "ServiceAccount",
    "Secret",
    "SecretList",
    "ConfigMap",
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "CustomResourceDefinition",
    "ClusterRole",
    "ClusterRoleList",
    "ClusterRoleBinding",
    "ClusterRoleBindingList",
    "Role",
    "RoleList",
    "RoleBinding",
    "RoleBindingList",
    "Service",
    "DaemonSet",
    "Pod",
    "ReplicationController",
    "ReplicaSet",
    "Deployment",
    "HorizontalPodAutoscaler",
    "StatefulSet",
    "Job",
    "CronJob",
    "IngressClass",
    "Ingress",
    "APIService",
)
_INSTALL_RANK = {kind: rank for rank, kind in enumerate(INSTALL_ORDER)}


@dataclass
class Manifest:
    """One rendered document and where it came from."""

    path: str
    content: str
    head: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return str(self.head.get("kind", ""))

    @property
    def name(self) -> str:
        return str((self.head.get("metadata") or {}).get("name", ""))


def install_rank(kind: str) -> int:
    """Position of ``kind`` in install order; unknown kinds sort last."""
    return _INSTALL_RANK.get(kind, len(INSTALL_ORDER))


def sort_for_install(refs: Iterable[ResourceRef]) -> list[ResourceRef]:
    return sorted(refs, key=lambda r: (install_rank(r.kind), r.namespace or "", r.name))


def sort_for_uninstall(refs: Iterable[ResourceRef]) -> list[ResourceRef]:
    return list(reversed(sort_for_install(refs)))


def split_documents(text: str, path: str = "") -> list[Manifest]:
    """Split a YAML stream into documents, keeping each document's source text.

    Empty documents (whitespace or comments only) are dropped.

    Raises:
        ManifestError: If a document is not valid YAML or not a mapping.
    """
    documents: list[Manifest] = []
    for chunk in _DOCUMENT_SEPARATOR.split(text):
        source = path
        lines = []
        for line in chunk.strip("\n").splitlines():
            if line.startswith(_SOURCE_COMMENT) and not lines:
                source = line[len(_SOURCE_COMMENT) :].strip()
                continue
            lines.append(line)
        content = "\n".join(lines).strip("\n")
        try:
            head = yaml.safe_load(content) if content.strip() else None
        except yaml.YAMLError as e:
            raise ManifestError(f"{source or 'manifest'}: invalid YAML: {e}") from e
        if head is None:
            continue
        if not isinstance(head, dict):
            raise ManifestError(
                f"{source or 'manifest'}: expected a mapping, got {type(head).__name__}"
            )
        documents.append(Manifest(path=source, content=content + "\n", head=head))
    return documents


def _validate(manifest: Manifest) -> None:
    missing = [f for f in REQUIRED_MANIFEST_FIELDS if f not in manifest.head]
    if missing:
        raise ManifestError(f"{manifest.path}: missing required field(s): {', '.join(missing)}")
    if not manifest.name:
        raise ManifestError(f"{manifest.path}: missing required field: metadata.name")


def _parse_hook(manifest: Manifest, annotations: Mapping[str, Any]) -> Hook:
    events: list[HookEvent] = []
    for raw in str(annotations[HOOK_ANNOTATION]).split(","):
        value = raw.strip()
        if not value:
            continue
        try:
            events.append(HookEvent(value))
        except ValueError as e:
            raise ManifestError(f"{manifest.path}: unknown hook event '{value}'") from e

    weight = 0
    raw_weight = annotations.get(HOOK_WEIGHT_ANNOTATION)
    if raw_weight is not None:
        try:
            weight = int(str(raw_weight).strip())
        except ValueError:
            logger.warning(
                "invalid_hook_weight", hook=manifest.name, path=manifest.path, weight=raw_weight
            )

    policies: list[HookDeletePolicy] = []
    for raw in str(annotations.get(HOOK_DELETE_POLICY_ANNOTATION, "")).split(","):
        value = raw.strip()
        if not value:
            continue
        try:
            policies.append(HookDeletePolicy(value))
        except ValueError:
            logger.warning(
                "unknown_hook_delete_policy", hook=manifest.name, path=manifest.path, policy=value
            )
    if not policies:
        policies = [HookDeletePolicy.BEFORE_HOOK_CREATION]

    return Hook(
        name=manifest.name,
        kind=manifest.kind,
        path=manifest.path,
        manifest=manifest.content,
        events=events,
        weight=weight,
        delete_policies=policies,
    )


def sort_manifests(files: Mapping[str, str]) -> tuple[list[Hook], list[Manifest]]:
    """Split rendered files into hooks and ordinary resources.

    Files are processed in name order; non-YAML files (``NOTES.txt``) and
    partials (names starting with ``_``) are skipped. Resources are returned
    in install order.

    Args:
        files: Rendered output keyed by template path.

    Returns:
        ``(hooks, resources)``.

    Raises:
        ManifestError: On unparsable documents, missing required fields or
            unknown hook events.
    """
    hooks: list[Hook] = []
    resources: list[Manifest] = []

    for path in sorted(files):
        basename = path.rsplit("/", 1)[-1]
        if not basename.endswith(YAML_EXTENSIONS) or basename.startswith("_"):
            continue
        for manifest in split_documents(files[path], path):
            _validate(manifest)
            annotations = (manifest.head.get("metadata") or {}).get("annotations") or {}
            if HOOK_ANNOTATION in annotations:
                hooks.append(_parse_hook(manifest, annotations))
            else:
                resources.append(manifest)

    resources.sort(key=lambda m: (install_rank(m.kind), m.path, m.name))
    return hooks, resources


def join_manifests(manifests: Iterable[Manifest]) -> str:
    """Concatenate documents into a release manifest with source comments."""
    return "".join(f"---\n{_SOURCE_COMMENT}{m.path}\n{m.content}" for m in manifests)


def parse_manifest_set(
    manifest: str,
    default_namespace: str | None = None,
) -> dict[ResourceRef, dict[str, Any]]:
    """Key every document of a release manifest by its resource identity.

    Returns:
        Parsed documents keyed by reference, in manifest order.

    Raises:
        ManifestError: If the manifest cannot be parsed or two documents
            describe the same object.
    """
    resources: dict[ResourceRef, dict[str, Any]] = {}
    for document in split_documents(manifest):
        ref = ResourceRef.from_manifest(document.head, default_namespace)
        if ref in resources:
            raise ManifestError(f"duplicate resource {ref} in manifest")
        resources[ref] = document.head
    return resources


def is_kept(manifest: Mapping[str, Any]) -> bool:
    """True if the object is annotated to survive deletion."""
    annotations = (manifest.get("metadata") or {}).get("annotations") or {}
    return str(annotations.get(RESOURCE_POLICY_ANNOTATION, "")).strip() == KEEP_RESOURCE_POLICY
