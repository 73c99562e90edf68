"""Lifecycle hook execution.

Hooks bound to an event run one at a time, ordered by ``(weight, name)``.
Each hook is applied, waited on, and stamped with a run record. The first
failing hook aborts the rest of the batch; the caller decides what that means
for the release.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple

import structlog
import yaml

from releasectl.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
)
from releasectl.integrations.kubernetes.models.release import (
    Hook,
    HookDeletePolicy,
    HookEvent,
    HookExecution,
    HookPhase,
    ResourceRef,
    utcnow,
)
from releasectl.services.release.exceptions import HookFailureError, ManifestError

if TYPE_CHECKING:
    from releasectl.integrations.kubernetes.cluster import ClusterClient
    from releasectl.integrations.kubernetes.models.release import Release

logger = structlog.get_logger()


class DeletionRule(NamedTuple):
    """When a delete policy removes the hook's object."""

    before_creation: bool
    after_phases: frozenset[HookPhase]


DELETION_RULES: dict[HookDeletePolicy, DeletionRule] = {
    HookDeletePolicy.BEFORE_HOOK_CREATION: DeletionRule(True, frozenset()),
    HookDeletePolicy.HOOK_SUCCEEDED: DeletionRule(False, frozenset({HookPhase.SUCCEEDED})),
    HookDeletePolicy.HOOK_FAILED: DeletionRule(False, frozenset({HookPhase.FAILED})),
}


def hooks_for_event(hooks: list[Hook], event: HookEvent) -> list[Hook]:
    """Hooks bound to ``event`` in execution order."""
    return sorted((h for h in hooks if event in h.events), key=lambda h: (h.weight, h.name))


def _deletes_before_creation(hook: Hook) -> bool:
    return any(DELETION_RULES[p].before_creation for p in hook.delete_policies)


def _deletes_after(hook: Hook, phase: HookPhase) -> bool:
    return any(phase in DELETION_RULES[p].after_phases for p in hook.delete_policies)


class HookExecutor:
    """Runs a release's hooks for one lifecycle event against the cluster."""

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    def execute(self, release: Release, event: HookEvent, timeout: float) -> list[Hook]:
        """Run every hook of ``release`` bound to ``event``.

        Run records are written onto the release's own hook objects.

        Args:
            release: Release whose hooks run; its namespace is the default
                for namespaced hook objects.
            event: Lifecycle event being executed.
            timeout: Seconds each hook may take to become ready.

        Returns:
            The hooks that ran, in execution order.

        Raises:
            HookFailureError: On the first hook that fails; later hooks in the
                batch are not run.
        """
        batch = hooks_for_event(release.hooks, event)
        log = logger.bind(release=release.name, version=release.version, event=event.value)
        if not batch:
            return []

        log.info("executing_hooks", count=len(batch))
        for hook in batch:
            self._run(hook, event, release.namespace, timeout)
        log.info("hooks_completed", count=len(batch))
        return batch

    def _run(self, hook: Hook, event: HookEvent, namespace: str, timeout: float) -> None:
        log = logger.bind(hook=hook.name, kind=hook.kind, event=event.value, weight=hook.weight)
        document = self._parse(hook)
        ref = ResourceRef.from_manifest(document, namespace)

        hook.last_run = HookExecution(phase=HookPhase.RUNNING, started_at=utcnow())
        if _deletes_before_creation(hook):
            try:
                self._delete(ref)
            except KubernetesError as e:
                hook.last_run.phase = HookPhase.FAILED
                hook.last_run.completed_at = utcnow()
                log.error("hook_previous_instance_delete_failed", error=str(e))
                raise HookFailureError(hook, event, e) from e

        log.debug("hook_started")
        try:
            self._cluster.apply(document, namespace)
            self._cluster.wait_ready(ref, timeout)
        except KubernetesError as e:
            hook.last_run.phase = HookPhase.FAILED
            hook.last_run.completed_at = utcnow()
            log.error("hook_failed", error=str(e))
            if _deletes_after(hook, HookPhase.FAILED):
                try:
                    self._delete(ref)
                except KubernetesError as cleanup_error:
                    log.warning("hook_cleanup_failed", error=str(cleanup_error))
            raise HookFailureError(hook, event, e) from e

        hook.last_run.phase = HookPhase.SUCCEEDED
        hook.last_run.completed_at = utcnow()
        log.info("hook_succeeded")
        if _deletes_after(hook, HookPhase.SUCCEEDED):
            try:
                self._delete(ref)
            except KubernetesError as e:
                raise HookFailureError(hook, event, e) from e

    def _delete(self, ref: ResourceRef) -> None:
        """Delete a hook object; an already-absent object is not an error."""
        try:
            self._cluster.delete(ref)
        except KubernetesNotFoundError:
            return
        logger.debug("hook_resource_deleted", resource=str(ref), namespace=ref.namespace)

    @staticmethod
    def _parse(hook: Hook) -> dict[str, Any]:
        try:
            document = yaml.safe_load(hook.manifest)
        except yaml.YAMLError as e:
            raise ManifestError(f"hook {hook.name}: invalid YAML: {e}") from e
        if not isinstance(document, dict):
            raise ManifestError(f"hook {hook.name}: manifest is not a mapping")
        return document
