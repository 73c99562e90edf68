"""Diff/apply engine.

Given the manifest of the release currently on the cluster and the manifest
of the release being rolled out, the engine plans which objects to create,
update and delete, then carries the plan out. It keeps no state between
calls.

Creates and updates run first, in install order; deletes run last, in
reverse install order. A failed operation does not stop the rest: failures
are collected and raised together once every operation has been attempted.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from releasectl.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
)
from releasectl.integrations.kubernetes.models.release import ResourceRef
from releasectl.services.release.exceptions import ApplyFailureError
from releasectl.services.release.manifests import (
    is_kept,
    parse_manifest_set,
    sort_for_install,
    sort_for_uninstall,
)

if TYPE_CHECKING:
    from releasectl.integrations.kubernetes.cluster import ClusterClient

logger = structlog.get_logger()

LiveLookup = Callable[[ResourceRef], bool]


@dataclass
class ApplyPlan:
    """Actions needed to move the cluster from one manifest set to another."""

    creates: list[ResourceRef] = field(default_factory=list)
    updates: list[ResourceRef] = field(default_factory=list)
    deletes: list[ResourceRef] = field(default_factory=list)
    kept: list[ResourceRef] = field(default_factory=list)
    manifests: dict[ResourceRef, dict[str, Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)

    def summary(self) -> dict[str, int]:
        return {
            "create": len(self.creates),
            "update": len(self.updates),
            "delete": len(self.deletes),
            "keep": len(self.kept),
        }


@dataclass
class ApplyResult:
    """What actually happened when a plan was executed."""

    created: list[ResourceRef] = field(default_factory=list)
    updated: list[ResourceRef] = field(default_factory=list)
    deleted: list[ResourceRef] = field(default_factory=list)
    failures: list[tuple[ResourceRef, Exception]] = field(default_factory=list)

    @property
    def mutated(self) -> bool:
        """True once any create, update or delete call has succeeded."""
        return bool(self.created or self.updated or self.deleted)

    @property
    def succeeded(self) -> bool:
        return not self.failures


class DiffApplyEngine:
    """Plans and applies the difference between two manifest sets."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    def plan(
        self,
        previous: str,
        target: str,
        namespace: str,
        live_lookup: LiveLookup | None = None,
    ) -> ApplyPlan:
        """Compute the actions that turn ``previous`` into ``target``.

        Args:
            previous: Manifest currently deployed (empty for a fresh install).
            target: Manifest to roll out.
            namespace: Default namespace for namespaced objects.
            live_lookup: Reports whether an object exists on the cluster.
                Defaults to asking the cluster client.

        Returns:
            The plan. Objects present in both sets but missing live are
            recreated; deletes of objects already gone, or annotated to be
            kept, are left out.
        """
        exists = live_lookup or self._cluster.exists
        old = parse_manifest_set(previous, namespace)
        new = parse_manifest_set(target, namespace)

        plan = ApplyPlan(manifests=new)
        for ref in new:
            if ref not in old:
                plan.creates.append(ref)
            elif exists(ref):
                plan.updates.append(ref)
            else:
                plan.creates.append(ref)

        for ref, manifest in old.items():
            if ref in new:
                continue
            if is_kept(manifest):
                plan.kept.append(ref)
            elif exists(ref):
                plan.deletes.append(ref)

        logger.debug("apply_plan_computed", namespace=namespace, **plan.summary())
        return plan

    def execute(self, plan: ApplyPlan, namespace: str) -> ApplyResult:
        """Carry out ``plan``.

        Raises:
            ApplyFailureError: If any operation failed; ``error.result`` holds
                the partial outcome.
        """
        result = ApplyResult()
        creates = set(plan.creates)

        for ref in sort_for_install([*plan.creates, *plan.updates]):
            try:
                self._cluster.apply(plan.manifests[ref], namespace)
            except KubernetesError as e:
                logger.error("resource_apply_failed", resource=str(ref), error=str(e))
                result.failures.append((ref, e))
                continue
            (result.created if ref in creates else result.updated).append(ref)

        for ref in sort_for_uninstall(plan.deletes):
            try:
                self._cluster.delete(ref)
            except KubernetesNotFoundError:
                continue
            except KubernetesError as e:
                logger.error("resource_delete_failed", resource=str(ref), error=str(e))
                result.failures.append((ref, e))
                continue
            result.deleted.append(ref)

        logger.info(
            "apply_completed",
            namespace=namespace,
            created=len(result.created),
            updated=len(result.updated),
            deleted=len(result.deleted),
            failed=len(result.failures),
        )
        if result.failures:
            raise ApplyFailureError(result.failures, result)
        return result

    def reconcile(self, previous: str, target: str, namespace: str) -> ApplyResult:
        """Plan and execute in one step."""
        return self.execute(self.plan(previous, target, namespace), namespace)

    def delete_all(self, manifest: str, namespace: str) -> ApplyResult:
        """Delete every object of ``manifest`` (honouring the keep policy)."""
        return self.reconcile(manifest, "", namespace)

    def wait_for(self, refs: Iterable[ResourceRef], timeout: float) -> None:
        """Wait until every object in ``refs`` is ready.

        ``timeout`` bounds the whole wait, not each object.

        Raises:
            ApplyFailureError: Listing every object that failed or timed out.
        """
        deadline = time.monotonic() + timeout
        failures: list[tuple[ResourceRef, Exception]] = []
        for ref in refs:
            try:
                self._cluster.wait_ready(ref, max(deadline - time.monotonic(), 0.0))
            except KubernetesError as e:
                logger.error("resource_not_ready", resource=str(ref), error=str(e))
                failures.append((ref, e))
        if failures:
            raise ApplyFailureError(failures)
