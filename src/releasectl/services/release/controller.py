"""Release transition controller.

Orchestrates install, upgrade, rollback and uninstall as transitions over the
release store: each operation records a ``pending-*`` version, runs the
event's hooks around the diff/apply step, and settles the new version as
``deployed`` or ``failed``.

Failure handling differs per operation once the cluster has been touched:

* upgrade: the previously deployed version is marked ``superseded`` only if
  the apply step made at least one successful change; otherwise it stays
  ``deployed``.
* rollback: the previously deployed version is always marked ``superseded``.

Operations on the same release name are serialised by a per-name lock held
for the whole transition.
"""

from __future__ import annotations

import copy
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NoReturn

import structlog

from releasectl.integrations.kubernetes.exceptions import KubernetesError
from releasectl.integrations.kubernetes.models.release import (
    Chart,
    HookEvent,
    Release,
    ReleaseInfo,
    ReleaseStatus,
    utcnow,
)
from releasectl.services.release.apply import DiffApplyEngine
from releasectl.services.release.exceptions import (
    ApplyFailureError,
    InvalidStateError,
    ReleaseError,
    ReleaseNotFoundError,
)
from releasectl.services.release.hooks import HookExecutor
from releasectl.services.release.manifests import join_manifests, sort_manifests
from releasectl.services.release.postrender import post_render
from releasectl.services.release.renderer import (
    JinjaRenderer,
    ReleaseOptions,
    Renderer,
    merge_values,
)

if TYPE_CHECKING:
    from releasectl.integrations.kubernetes.cluster import ClusterClient
    from releasectl.services.release.postrender import PostRenderer
    from releasectl.services.release.store import ReleaseStore

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 300.0
NOTES_FILE = "NOTES.txt"

# Statuses after which a release name may be installed again.
REUSABLE_STATUSES = frozenset({ReleaseStatus.DELETED, ReleaseStatus.FAILED})


@dataclass
class ActionOptions:
    """Flags shared by the lifecycle operations.

    Attributes:
        disable_hooks: Skip hook execution entirely.
        timeout: Seconds allowed for each hook and for ``wait``.
        wait: After applying, wait for created/updated objects to be ready.
        keep: Uninstall only; leave the release's objects on the cluster.
        dry_run: Render and return the release without touching the store
            or the cluster.
        description: Custom description for the new release version.
        namespace: Target namespace (install only; later operations use the
            release's own namespace).
        reuse_values: Upgrade only; merge new values over the previous ones.
        reset_values: Upgrade only; ignore previous values entirely.
    """

    disable_hooks: bool = False
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    wait: bool = False
    keep: bool = False
    dry_run: bool = False
    description: str | None = None
    namespace: str | None = None
    reuse_values: bool = False
    reset_values: bool = False


class ReleaseController:
    """Runs lifecycle transitions for named releases."""

    def __init__(
        self,
        store: ReleaseStore,
        cluster: ClusterClient,
        renderer: Renderer | None = None,
        *,
        post_renderer: PostRenderer | None = None,
        default_namespace: str = "default",
    ) -> None:
        self._store = store
        self._cluster = cluster
        self._renderer = renderer or JinjaRenderer()
        self._post_renderer = post_renderer
        self._default_namespace = default_namespace
        self._hooks = HookExecutor(cluster)
        self._engine = DiffApplyEngine(cluster)
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    @property
    def store(self) -> ReleaseStore:
        return self._store

    @contextmanager
    def _locked(self, name: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks[name]
        with lock:
            yield

    # -----------------------------------------------------------------------
    # Install
    # -----------------------------------------------------------------------

    def install(
        self,
        name: str,
        chart: Chart,
        values: Mapping[str, Any] | None = None,
        options: ActionOptions | None = None,
    ) -> Release:
        """Install ``chart`` as a new release called ``name``.

        The name must be unused, or its latest version must be ``deleted`` or
        ``failed`` with no version deployed. Version numbers continue from the
        existing history.

        Raises:
            InvalidStateError: If the name is in use.
            RenderError, ManifestError: If the chart cannot be rendered.
            HookFailureError, ApplyFailureError: If the rollout failed; the
                ``failed`` release is attached to the error.
        """
        opts = options or ActionOptions()
        namespace = opts.namespace or self._default_namespace
        log = logger.bind(release=name, namespace=namespace)

        with self._locked(name):
            self._ensure_name_available(name)
            version = self._store.next_version(name)
            release = self._build_release(
                name,
                version,
                namespace,
                chart,
                dict(values or {}),
                is_install=True,
            )
            release.set_status(ReleaseStatus.PENDING_INSTALL, "Initial install underway")

            if opts.dry_run:
                release.info.description = "Dry run complete"
                log.info("install_dry_run", version=version)
                return release

            self._store.create(release)
            log.info("installing_release", version=version, chart=str(release.chart))
            self._transition(
                release,
                previous=None,
                previous_manifest="",
                events=(HookEvent.PRE_INSTALL, HookEvent.POST_INSTALL),
                opts=opts,
                success_description=opts.description or "Install complete",
                operation="install",
                supersede_on_failure=lambda mutated: False,
            )
            return release

    def _ensure_name_available(self, name: str) -> None:
        try:
            history = self._store.history(name)
        except ReleaseNotFoundError:
            return
        last = history[-1]
        deployed = [r for r in history if r.status == ReleaseStatus.DEPLOYED]
        if deployed or last.status not in REUSABLE_STATUSES:
            raise InvalidStateError(
                f"cannot re-use release name '{name}': version {last.version} "
                f"is {last.status.value}"
            )

    # -----------------------------------------------------------------------
    # Upgrade
    # -----------------------------------------------------------------------

    def upgrade(
        self,
        name: str,
        chart: Chart,
        values: Mapping[str, Any] | None = None,
        options: ActionOptions | None = None,
    ) -> Release:
        """Roll out a new version of a deployed release.

        Values: with ``reset_values`` only ``values`` are used; with
        ``reuse_values``, or when no values are given, ``values`` are merged
        over the deployed version's values.

        Raises:
            ReleaseNotFoundError: If the name has no history.
            InvalidStateError: If no version is deployed or an operation is
                still pending.
            HookFailureError, ApplyFailureError: If the rollout failed.
        """
        opts = options or ActionOptions()
        supplied = dict(values or {})

        with self._locked(name):
            last = self._store.last(name)
            self._ensure_not_pending(last)
            try:
                current = self._store.deployed(name)
            except ReleaseNotFoundError as e:
                raise InvalidStateError(
                    f"release '{name}' has no deployed version to upgrade"
                ) from e

            if opts.reset_values:
                config = supplied
            elif opts.reuse_values or not supplied:
                config = merge_values(current.config, supplied)
            else:
                config = supplied

            release = self._build_release(
                name,
                last.version + 1,
                current.namespace,
                chart,
                config,
                is_upgrade=True,
            )
            release.info.first_deployed = current.info.first_deployed
            release.set_status(ReleaseStatus.PENDING_UPGRADE, "Preparing upgrade")

            log = logger.bind(release=name, version=release.version)
            if opts.dry_run:
                release.info.description = "Dry run complete"
                log.info("upgrade_dry_run")
                return release

            self._store.create(release)
            log.info("upgrading_release", previous=current.version, chart=str(release.chart))
            self._transition(
                release,
                previous=current,
                previous_manifest=current.manifest,
                events=(HookEvent.PRE_UPGRADE, HookEvent.POST_UPGRADE),
                opts=opts,
                success_description=opts.description or "Upgrade complete",
                operation="upgrade",
                supersede_on_failure=lambda mutated: mutated,
            )
            return release

    # -----------------------------------------------------------------------
    # Rollback
    # -----------------------------------------------------------------------

    def rollback(
        self,
        name: str,
        version: int = 0,
        options: ActionOptions | None = None,
    ) -> Release:
        """Roll back to an earlier version by creating a new version from it.

        ``version=0`` targets the most recent ``superseded`` version older
        than the current one (falling back to the version right before it).
        The new version copies the target's manifest, chart, values and
        hooks; hook run records start empty.

        When no version is deployed (e.g. after uninstall), the latest version
        acts as the current one.

        Raises:
            ReleaseNotFoundError: If the name or the target version is unknown.
            InvalidStateError: If the target is the deployed version, there is
                no earlier version, or an operation is still pending.
            HookFailureError, ApplyFailureError: If the rollout failed.
        """
        opts = options or ActionOptions()

        with self._locked(name):
            history = self._store.history(name)
            last = history[-1]
            self._ensure_not_pending(last)
            try:
                current: Release | None = self._store.deployed(name)
            except ReleaseNotFoundError:
                current = None
            base = current or last

            target_version = version or self._previous_version(history, base.version)
            if target_version < 1:
                raise InvalidStateError(f"release '{name}' has no previous version to roll back to")
            target = next((r for r in history if r.version == target_version), None)
            if target is None:
                raise ReleaseNotFoundError(name, target_version)
            if current is not None and target.version == current.version:
                raise InvalidStateError(
                    f"release '{name}' is already deployed at version {target.version}"
                )

            description = opts.description or f"Rollback to {target.version}"
            now = utcnow()
            release = Release(
                name=name,
                version=last.version + 1,
                namespace=target.namespace,
                manifest=target.manifest,
                chart=target.chart.model_copy(deep=True),
                config=copy.deepcopy(target.config),
                info=ReleaseInfo(
                    status=ReleaseStatus.PENDING_ROLLBACK,
                    description=description,
                    first_deployed=base.info.first_deployed or now,
                    last_deployed=now,
                    notes=target.info.notes,
                ),
                hooks=[hook.fresh_copy() for hook in target.hooks],
            )

            log = logger.bind(release=name, version=release.version, target=target.version)
            if opts.dry_run:
                log.info("rollback_dry_run")
                return release

            previous = current
            if previous is None and base.status == ReleaseStatus.DELETED:
                previous = base

            self._store.create(release)
            log.info("rolling_back_release", current=base.version)
            self._transition(
                release,
                previous=previous,
                previous_manifest=base.manifest,
                events=(HookEvent.PRE_ROLLBACK, HookEvent.POST_ROLLBACK),
                opts=opts,
                success_description=description,
                operation="rollback",
                supersede_on_failure=lambda mutated: True,
            )
            return release

    @staticmethod
    def _previous_version(history: Iterable[Release], current_version: int) -> int:
        candidates = [
            r.version
            for r in history
            if r.version < current_version and r.status == ReleaseStatus.SUPERSEDED
        ]
        return max(candidates) if candidates else current_version - 1

    # -----------------------------------------------------------------------
    # Uninstall
    # -----------------------------------------------------------------------

    def uninstall(self, name: str, options: ActionOptions | None = None) -> Release:
        """Remove a release's objects from the cluster and mark it ``deleted``.

        The record is kept, so version numbers are never reused. With
        ``keep`` the objects are left on the cluster.

        Raises:
            ReleaseNotFoundError: If the name has no history.
            InvalidStateError: If the release is already deleted or an
                operation is pending.
            HookFailureError, ApplyFailureError: If removal failed.
        """
        opts = options or ActionOptions()

        with self._locked(name):
            last = self._store.last(name)
            self._ensure_not_pending(last)
            try:
                release = self._store.deployed(name)
            except ReleaseNotFoundError:
                if last.status == ReleaseStatus.DELETED:
                    raise InvalidStateError(f"release '{name}' is already deleted") from None
                release = last

            log = logger.bind(release=name, version=release.version, keep=opts.keep)
            if opts.dry_run:
                log.info("uninstall_dry_run")
                return release

            release.set_status(ReleaseStatus.PENDING_DELETE, "Deletion in progress")
            self._store.update(release)
            log.info("uninstalling_release")

            try:
                if not opts.disable_hooks:
                    self._hooks.execute(release, HookEvent.PRE_DELETE, opts.timeout)
                if not opts.keep:
                    self._engine.delete_all(release.manifest, release.namespace)
                if not opts.disable_hooks:
                    self._hooks.execute(release, HookEvent.POST_DELETE, opts.timeout)
            except (ReleaseError, KubernetesError) as e:
                release.set_status(ReleaseStatus.FAILED, f"Uninstall failed: {e}")
                self._store.update(release)
                log.error("uninstall_failed", error=str(e))
                self._reraise(e, release)

            release.set_status(
                ReleaseStatus.DELETED, opts.description or "Uninstallation complete"
            )
            release.info.deleted = utcnow()
            self._store.update(release)
            self._verify_single_deployed(name)
            log.info("release_uninstalled")
            return release

    # -----------------------------------------------------------------------
    # Test
    # -----------------------------------------------------------------------

    def test(self, name: str, options: ActionOptions | None = None) -> Release:
        """Run the deployed release's ``test`` hooks and record the results.

        Raises:
            ReleaseNotFoundError: If nothing is deployed under ``name``.
            HookFailureError: If a test hook failed.
        """
        opts = options or ActionOptions()

        with self._locked(name):
            release = self._store.deployed(name)
            log = logger.bind(release=name, version=release.version)
            try:
                self._hooks.execute(release, HookEvent.TEST, opts.timeout)
            except (ReleaseError, KubernetesError) as e:
                self._store.update(release)
                log.error("release_test_failed", error=str(e))
                self._reraise(e, release)
            self._store.update(release)
            log.info("release_test_passed")
            return release

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def status(self, name: str, version: int = 0) -> Release:
        """A specific version, or the latest one when ``version`` is 0."""
        if version:
            return self._store.get(name, version)
        return self._store.last(name)

    def history(self, name: str) -> list[Release]:
        return self._store.history(name)

    def list_releases(
        self,
        namespace: str | None = None,
        statuses: Iterable[ReleaseStatus] | None = None,
    ) -> list[Release]:
        return self._store.list_releases(namespace=namespace, statuses=statuses)

    def get_manifest(self, name: str, version: int = 0) -> str:
        return self.status(name, version).manifest

    def get_values(self, name: str, version: int = 0) -> dict[str, Any]:
        return copy.deepcopy(self.status(name, version).config)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _build_release(
        self,
        name: str,
        version: int,
        namespace: str,
        chart: Chart,
        config: dict[str, Any],
        *,
        is_install: bool = False,
        is_upgrade: bool = False,
    ) -> Release:
        """Render ``chart`` into a new, not yet persisted release record."""
        render_options = ReleaseOptions(
            name=name,
            namespace=namespace,
            revision=version,
            is_install=is_install,
            is_upgrade=is_upgrade,
        )
        files = self._renderer.render(chart, merge_values(chart.values, config), render_options)
        notes = next(
            (text for path, text in files.items() if path.rsplit("/", 1)[-1] == NOTES_FILE),
            "",
        )
        if self._post_renderer is not None:
            files = post_render(files, self._post_renderer)
        hooks, resources = sort_manifests(files)

        now = utcnow()
        return Release(
            name=name,
            version=version,
            namespace=namespace,
            manifest=join_manifests(resources),
            chart=chart.metadata.model_copy(deep=True),
            config=copy.deepcopy(config),
            info=ReleaseInfo(first_deployed=now, last_deployed=now, notes=notes.strip()),
            hooks=hooks,
        )

    def _transition(
        self,
        release: Release,
        *,
        previous: Release | None,
        previous_manifest: str,
        events: tuple[HookEvent, HookEvent],
        opts: ActionOptions,
        success_description: str,
        operation: str,
        supersede_on_failure: Callable[[bool], bool],
    ) -> None:
        """Run hooks and apply for a persisted ``pending-*`` release and settle it.

        Args:
            supersede_on_failure: Called with whether the cluster was changed;
                returns True if ``previous`` must be superseded on failure.
        """
        pre_event, post_event = events
        log = logger.bind(release=release.name, version=release.version, operation=operation)
        mutated = False

        try:
            if not opts.disable_hooks:
                self._hooks.execute(release, pre_event, opts.timeout)
            try:
                result = self._engine.reconcile(
                    previous_manifest, release.manifest, release.namespace
                )
            except ApplyFailureError as e:
                mutated = e.result is not None and e.result.mutated
                raise
            mutated = result.mutated
            if opts.wait:
                self._engine.wait_for([*result.created, *result.updated], opts.timeout)
            if not opts.disable_hooks:
                self._hooks.execute(release, post_event, opts.timeout)
        except (ReleaseError, KubernetesError) as e:
            release.set_status(
                ReleaseStatus.FAILED, f"{operation.capitalize()} \"{release.name}\" failed: {e}"
            )
            release.info.last_deployed = utcnow()
            if previous is not None and supersede_on_failure(mutated):
                previous.set_status(ReleaseStatus.SUPERSEDED)
                self._store.update(previous)
            self._store.update(release)
            log.error(
                "release_transition_failed",
                error=str(e),
                cluster_changed=mutated,
                previous=previous.version if previous else None,
                previous_status=previous.status.value if previous else None,
            )
            self._verify_single_deployed(release.name)
            self._reraise(e, release)

        if previous is not None:
            previous.set_status(ReleaseStatus.SUPERSEDED)
            self._store.update(previous)
        release.set_status(ReleaseStatus.DEPLOYED, success_description)
        release.info.last_deployed = utcnow()
        self._store.update(release)
        self._verify_single_deployed(release.name)
        log.info("release_deployed", previous=previous.version if previous else None)

    @staticmethod
    def _ensure_not_pending(release: Release) -> None:
        if release.status.is_pending():
            raise InvalidStateError(
                f"release '{release.name}' version {release.version} is "
                f"{release.status.value}; another operation is in progress"
            )

    def _verify_single_deployed(self, name: str) -> None:
        """Raise InvariantViolationError if more than one version is deployed."""
        try:
            self._store.deployed(name)
        except ReleaseNotFoundError:
            return

    @staticmethod
    def _reraise(error: Exception, release: Release) -> NoReturn:
        """Re-raise ``error`` as a ReleaseError carrying ``release``."""
        if isinstance(error, ReleaseError):
            error.release = release
            raise error
        raise ReleaseError(f"cluster error: {error}", release=release) from error
