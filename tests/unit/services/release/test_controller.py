"""Unit tests for the release transition controller."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest

from releasectl.integrations.kubernetes.exceptions import KubernetesError
from releasectl.integrations.kubernetes.models.release import (
    Chart,
    HookPhase,
    ReleaseStatus,
)
from releasectl.services.release.controller import ActionOptions, ReleaseController
from releasectl.services.release.exceptions import (
    ApplyFailureError,
    HookFailureError,
    InvalidStateError,
    InvariantViolationError,
    ReleaseError,
    ReleaseNotFoundError,
    RenderError,
)
from releasectl.services.release.store import ReleaseStore

if TYPE_CHECKING:
    from conftest import FakeCluster

DEPLOYED = ReleaseStatus.DEPLOYED
SUPERSEDED = ReleaseStatus.SUPERSEDED
FAILED = ReleaseStatus.FAILED
DELETED = ReleaseStatus.DELETED


def statuses(store: ReleaseStore, name: str) -> dict[int, ReleaseStatus]:
    return {r.version: r.status for r in store.history(name)}


def deployed_count(store: ReleaseStore, name: str) -> int:
    return sum(1 for r in store.history(name) if r.status == DEPLOYED)


@pytest.fixture
def hooked_chart(
    make_chart: Callable[..., Chart],
    templates: dict[str, str],
    make_hook: Callable[..., str],
) -> Chart:
    """Chart with one Job hook bound to every lifecycle event."""
    events = (
        "pre-install,post-install,pre-upgrade,post-upgrade,"
        "pre-rollback,post-rollback,pre-delete,post-delete"
    )
    return make_chart(
        templates={
            "templates/configmap.yaml": templates["configmap"],
            "templates/deployment.yaml": templates["deployment"],
            "templates/hooks/all.yaml": make_hook("lifecycle", events),
        }
    )


@pytest.mark.unit
class TestInstall:
    """Tests for install."""

    def test_install_deploys_first_version(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """Install creates version 1 in deployed status and applies resources."""
        release = controller.install("myapp", chart)

        assert release.version == 1
        assert release.status == DEPLOYED
        assert release.info.description == "Install complete"
        assert release.info.first_deployed is not None
        assert statuses(store, "myapp") == {1: DEPLOYED}
        assert fake_cluster.names() == {"myapp", "myapp-config"}

    def test_install_applies_in_install_order(
        self,
        controller: ReleaseController,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """ConfigMaps are applied before Deployments."""
        controller.install("myapp", chart)

        assert fake_cluster.applied() == ["ConfigMap/myapp-config", "Deployment/myapp"]

    def test_install_stores_supplied_values(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """Only user-supplied values are recorded; rendering merges chart defaults."""
        controller.install("myapp", chart, {"greeting": "hi"})

        assert store.get("myapp", 1).config == {"greeting": "hi"}
        configmap = next(o for o in fake_cluster.objects.values() if o["kind"] == "ConfigMap")
        assert configmap["data"]["greeting"] == "hi"

    def test_install_records_notes(
        self,
        controller: ReleaseController,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
    ) -> None:
        """Rendered NOTES.txt ends up in the release info, not in the manifest."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/NOTES.txt": templates["notes"],
            }
        )

        release = controller.install("myapp", chart)

        assert release.info.notes == "Thank you for installing myapp (revision 1)."
        assert "Thank you" not in release.manifest

    def test_install_uses_namespace_option(
        self,
        controller: ReleaseController,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """Resources land in the namespace given in the options."""
        release = controller.install("myapp", chart, options=ActionOptions(namespace="prod"))

        assert release.namespace == "prod"
        assert {ref.namespace for ref in fake_cluster.objects} == {"prod"}

    def test_install_rejects_name_in_use(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        chart: Chart,
    ) -> None:
        """Installing over a deployed release fails without writing a record."""
        controller.install("myapp", chart)

        with pytest.raises(InvalidStateError, match="cannot re-use"):
            controller.install("myapp", chart)

        assert statuses(store, "myapp") == {1: DEPLOYED}

    def test_install_reuses_name_after_uninstall(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        chart: Chart,
    ) -> None:
        """A deleted name can be installed again; numbering continues."""
        controller.install("myapp", chart)
        controller.uninstall("myapp")

        release = controller.install("myapp", chart)

        assert release.version == 2
        assert statuses(store, "myapp") == {1: DELETED, 2: DEPLOYED}

    def test_install_dry_run_touches_nothing(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """Dry run returns the rendered release without storing or applying it."""
        release = controller.install("myapp", chart, options=ActionOptions(dry_run=True))

        assert "kind: ConfigMap" in release.manifest
        assert release.info.description == "Dry run complete"
        assert fake_cluster.calls == []
        with pytest.raises(ReleaseNotFoundError):
            store.history("myapp")

    def test_install_render_error_writes_nothing(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        make_chart: Callable[..., Chart],
    ) -> None:
        """A template referencing a missing value fails before any record exists."""
        chart = make_chart(templates={"templates/cm.yaml": "value: {{ Values.missing.key }}\n"})

        with pytest.raises(RenderError):
            controller.install("myapp", chart)

        with pytest.raises(ReleaseNotFoundError):
            store.history("myapp")

    def test_install_hook_failure_marks_release_failed(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        make_hook: Callable[..., str],
    ) -> None:
        """A failing pre-install hook stops the install before resources are applied."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/migrate.yaml": make_hook("migrate", "pre-install"),
            }
        )
        fake_cluster.fail_ready.add("myapp-migrate")

        with pytest.raises(HookFailureError) as exc_info:
            controller.install("myapp", chart)

        assert exc_info.value.release is not None
        assert exc_info.value.release.status == FAILED
        assert statuses(store, "myapp") == {1: FAILED}
        assert "myapp-config" not in fake_cluster.names()
        stored_hook = store.get("myapp", 1).hooks[0]
        assert stored_hook.last_run is not None
        assert stored_hook.last_run.phase == HookPhase.FAILED

    def test_install_apply_failure_attempts_everything(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
    ) -> None:
        """One failed apply does not stop the others; the release ends failed."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/deployment.yaml": templates["deployment"],
                "templates/service.yaml": templates["service"],
            }
        )
        fake_cluster.fail_apply["myapp-svc"] = KubernetesError("admission denied")

        with pytest.raises(ApplyFailureError) as exc_info:
            controller.install("myapp", chart)

        error = exc_info.value
        assert [str(ref) for ref, _ in error.failures] == ["Service/myapp-svc"]
        assert error.release is not None
        assert error.release.info.description.startswith('Install "myapp" failed')
        assert fake_cluster.names() == {"myapp", "myapp-config"}
        assert statuses(store, "myapp") == {1: FAILED}

    def test_install_after_failed_install(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """A failed install can be retried under the same name."""
        fake_cluster.fail_apply["myapp"] = KubernetesError("boom")
        with pytest.raises(ApplyFailureError):
            controller.install("myapp", chart)

        fake_cluster.fail_apply.clear()
        release = controller.install("myapp", chart)

        assert release.version == 2
        assert statuses(store, "myapp") == {1: FAILED, 2: DEPLOYED}

    def test_install_runs_hooks_by_weight_then_name(
        self,
        controller: ReleaseController,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        make_hook: Callable[..., str],
    ) -> None:
        """Hooks sharing an event run in (weight, name) order around the resources."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/b.yaml": make_hook("b", "pre-install", weight=0),
                "templates/a.yaml": make_hook("a", "pre-install", weight=0),
                "templates/c.yaml": make_hook("c", "pre-install", weight=-1),
                "templates/post.yaml": make_hook("post", "post-install"),
            }
        )

        controller.install("myapp", chart)

        assert fake_cluster.applied() == [
            "Job/myapp-c",
            "Job/myapp-a",
            "Job/myapp-b",
            "ConfigMap/myapp-config",
            "Job/myapp-post",
        ]


@pytest.mark.unit
class TestUpgrade:
    """Tests for upgrade."""

    def test_upgrade_supersedes_previous(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        chart: Chart,
    ) -> None:
        """A successful upgrade deploys version 2 and supersedes version 1."""
        controller.install("myapp", chart)

        release = controller.upgrade("myapp", chart, {"tag": "1.26"})

        assert release.version == 2
        assert release.info.description == "Upgrade complete"
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: DEPLOYED}

    def test_upgrade_keeps_first_deployed(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        """first_deployed carries over from the deployed version."""
        first = controller.install("myapp", chart)

        upgraded = controller.upgrade("myapp", chart)

        assert upgraded.info.first_deployed == first.info.first_deployed

    def test_upgrade_deletes_removed_resources(
        self,
        controller: ReleaseController,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        chart: Chart,
    ) -> None:
        """Objects that disappear from the chart are deleted from the cluster."""
        controller.install("myapp", chart)
        smaller = make_chart(templates={"templates/configmap.yaml": templates["configmap"]})

        controller.upgrade("myapp", smaller)

        assert fake_cluster.names() == {"myapp-config"}
        assert fake_cluster.deleted() == ["Deployment/myapp"]

    def test_upgrade_unknown_release(self, controller: ReleaseController, chart: Chart) -> None:
        """Upgrading a name with no history raises ReleaseNotFoundError."""
        with pytest.raises(ReleaseNotFoundError):
            controller.upgrade("ghost", chart)

    def test_upgrade_requires_deployed_version(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        """A deleted release cannot be upgraded."""
        controller.install("myapp", chart)
        controller.uninstall("myapp")

        with pytest.raises(InvalidStateError, match="no deployed version"):
            controller.upgrade("myapp", chart)

    def test_upgrade_failure_after_apply_began_supersedes_previous(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """Once any apply call succeeded, the previous version is superseded."""
        controller.install("myapp", chart)
        fake_cluster.fail_apply["myapp"] = KubernetesError("image pull policy rejected")

        with pytest.raises(ApplyFailureError) as exc_info:
            controller.upgrade("myapp", chart, {"greeting": "changed"})

        assert exc_info.value.release is not None
        assert exc_info.value.release.version == 2
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: FAILED}

    def test_upgrade_failure_before_any_apply_keeps_previous_deployed(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """If every apply call failed, the previous version stays deployed."""
        controller.install("myapp", chart)
        fake_cluster.fail_apply["myapp"] = KubernetesError("denied")
        fake_cluster.fail_apply["myapp-config"] = KubernetesError("denied")

        with pytest.raises(ApplyFailureError):
            controller.upgrade("myapp", chart)

        assert statuses(store, "myapp") == {1: DEPLOYED, 2: FAILED}

    def test_upgrade_pre_hook_failure_keeps_previous_deployed(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        make_hook: Callable[..., str],
    ) -> None:
        """A pre-upgrade hook failure happens before the cluster is touched."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/migrate.yaml": make_hook("migrate", "pre-upgrade"),
            }
        )
        controller.install("myapp", chart)
        fake_cluster.fail_ready.add("myapp-migrate")

        with pytest.raises(HookFailureError):
            controller.upgrade("myapp", chart, {"greeting": "changed"})

        assert statuses(store, "myapp") == {1: DEPLOYED, 2: FAILED}
        assert store.deployed("myapp").version == 1

    def test_upgrade_after_failed_upgrade(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """A failed version is skipped over; numbering stays contiguous."""
        controller.install("myapp", chart)
        fake_cluster.fail_apply["myapp"] = KubernetesError("denied")
        fake_cluster.fail_apply["myapp-config"] = KubernetesError("denied")
        with pytest.raises(ApplyFailureError):
            controller.upgrade("myapp", chart)
        fake_cluster.fail_apply.clear()

        release = controller.upgrade("myapp", chart)

        assert release.version == 3
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: FAILED, 3: DEPLOYED}

    def test_upgrade_reuses_values_when_none_given(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart, {"greeting": "hi"})

        assert controller.upgrade("myapp", chart).config == {"greeting": "hi"}

    def test_upgrade_replaces_values_by_default(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart, {"greeting": "hi"})

        assert controller.upgrade("myapp", chart, {"tag": "1.26"}).config == {"tag": "1.26"}

    def test_upgrade_reuse_values_merges(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart, {"greeting": "hi"})

        release = controller.upgrade(
            "myapp", chart, {"tag": "1.26"}, ActionOptions(reuse_values=True)
        )

        assert release.config == {"greeting": "hi", "tag": "1.26"}

    def test_upgrade_reset_values(self, controller: ReleaseController, chart: Chart) -> None:
        controller.install("myapp", chart, {"greeting": "hi"})

        release = controller.upgrade("myapp", chart, options=ActionOptions(reset_values=True))

        assert release.config == {}

    def test_upgrade_dry_run(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """Dry run renders version 2 but leaves store and cluster untouched."""
        controller.install("myapp", chart)
        calls_before = list(fake_cluster.calls)

        release = controller.upgrade("myapp", chart, options=ActionOptions(dry_run=True))

        assert release.version == 2
        assert fake_cluster.calls == calls_before
        assert statuses(store, "myapp") == {1: DEPLOYED}

    def test_upgrade_wait_failure_supersedes_previous(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """With wait, a resource that never becomes ready fails the upgrade."""
        controller.install("myapp", chart)
        fake_cluster.fail_ready.add("myapp")

        with pytest.raises(ApplyFailureError):
            controller.upgrade("myapp", chart, options=ActionOptions(wait=True, timeout=5))

        assert ("wait", "Deployment/myapp") in fake_cluster.calls
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: FAILED}

    def test_upgrade_blocked_by_pending_operation(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        chart: Chart,
    ) -> None:
        """A pending-* latest version means another operation is in flight."""
        controller.install("myapp", chart)
        pending = store.get("myapp", 1).model_copy(deep=True, update={"version": 2})
        pending.set_status(ReleaseStatus.PENDING_UPGRADE)
        store.create(pending)

        with pytest.raises(InvalidStateError, match="in progress"):
            controller.upgrade("myapp", chart)


@pytest.mark.unit
class TestRollback:
    """Tests for rollback."""

    def test_rollback_scenario(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        chart: Chart,
    ) -> None:
        """install, upgrade, rollback(1), rollback() walks versions 1..4."""
        v1 = controller.install("myapp", chart)
        v2 = controller.upgrade("myapp", chart, {"greeting": "v2"})
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: DEPLOYED}

        v3 = controller.rollback("myapp", 1)
        assert v3.version == 3
        assert v3.manifest == v1.manifest
        assert v3.info.description == "Rollback to 1"
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: SUPERSEDED, 3: DEPLOYED}

        v4 = controller.rollback("myapp")
        assert v4.version == 4
        assert v4.manifest == v2.manifest
        assert v4.info.description == "Rollback to 2"
        assert statuses(store, "myapp") == {
            1: SUPERSEDED,
            2: SUPERSEDED,
            3: SUPERSEDED,
            4: DEPLOYED,
        }

    def test_rollback_default_skips_failed_versions(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """The default target is the latest superseded version, not a failed one."""
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart, {"greeting": "v2"})
        fake_cluster.fail_apply["myapp-config"] = KubernetesError("denied")
        fake_cluster.fail_apply["myapp"] = KubernetesError("denied")
        with pytest.raises(ApplyFailureError):
            controller.upgrade("myapp", chart, {"greeting": "v3"})
        fake_cluster.fail_apply.clear()
        controller.upgrade("myapp", chart, {"greeting": "v4"})

        release = controller.rollback("myapp")

        assert release.info.description == "Rollback to 2"

    def test_rollback_copies_values_and_chart(
        self,
        controller: ReleaseController,
        chart: Chart,
        make_chart: Callable[..., Chart],
    ) -> None:
        controller.install("myapp", chart, {"greeting": "one"})
        controller.upgrade("myapp", make_chart(version="2.0.0"), {"greeting": "two"})

        release = controller.rollback("myapp", 1)

        assert release.config == {"greeting": "one"}
        assert release.chart.version == "1.0.0"

    def test_rollback_custom_description(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart)

        release = controller.rollback("myapp", 1, ActionOptions(description="bad deploy"))

        assert release.info.description == "bad deploy"

    def test_rollback_to_current_version_rejected(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart)

        with pytest.raises(InvalidStateError, match="already deployed"):
            controller.rollback("myapp", 2)

    def test_rollback_unknown_version(self, controller: ReleaseController, chart: Chart) -> None:
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart)

        with pytest.raises(ReleaseNotFoundError):
            controller.rollback("myapp", 7)

    def test_rollback_without_previous_version(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart)

        with pytest.raises(InvalidStateError, match="no previous version"):
            controller.rollback("myapp")

    def test_rollback_failure_supersedes_previous(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """A failed rollback never leaves the old version deployed."""
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart, {"greeting": "v2"})
        fake_cluster.fail_apply["myapp-config"] = KubernetesError("denied")
        fake_cluster.fail_apply["myapp"] = KubernetesError("denied")

        with pytest.raises(ApplyFailureError) as exc_info:
            controller.rollback("myapp", 1)

        assert exc_info.value.release is not None
        assert exc_info.value.release.version == 3
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: SUPERSEDED, 3: FAILED}
        assert deployed_count(store, "myapp") == 0

    def test_rollback_hook_failure_supersedes_previous(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        make_hook: Callable[..., str],
    ) -> None:
        """Even a pre-rollback hook failure supersedes the deployed version."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/guard.yaml": make_hook("guard", "pre-rollback"),
            }
        )
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart)
        fake_cluster.fail_ready.add("myapp-guard")

        with pytest.raises(HookFailureError):
            controller.rollback("myapp", 1)

        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: SUPERSEDED, 3: FAILED}

    def test_rollback_after_uninstall_restores_resources(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """With nothing deployed, the latest version is the base for rollback."""
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart, {"greeting": "v2"})
        controller.uninstall("myapp")
        assert fake_cluster.names() == set()

        release = controller.rollback("myapp")

        assert release.version == 3
        assert release.info.description == "Rollback to 1"
        assert fake_cluster.names() == {"myapp", "myapp-config"}
        assert statuses(store, "myapp") == {1: SUPERSEDED, 2: SUPERSEDED, 3: DEPLOYED}

    def test_rollback_resets_hook_runs(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        make_hook: Callable[..., str],
    ) -> None:
        """Hooks copied from the target start without run records."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/migrate.yaml": make_hook("migrate", "pre-install"),
            }
        )
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart)

        controller.rollback("myapp", 1)

        assert store.get("myapp", 1).hooks[0].last_run is not None
        assert store.get("myapp", 3).hooks[0].last_run is None


@pytest.mark.unit
class TestUninstall:
    """Tests for uninstall."""

    def test_uninstall_deletes_resources_in_reverse_order(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart)

        release = controller.uninstall("myapp")

        assert release.status == DELETED
        assert release.info.deleted is not None
        assert release.info.description == "Uninstallation complete"
        assert fake_cluster.deleted() == ["Deployment/myapp", "ConfigMap/myapp-config"]
        assert fake_cluster.names() == set()
        assert statuses(store, "myapp") == {1: DELETED}

    def test_uninstall_keep_leaves_resources(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """keep marks the release deleted without issuing delete calls."""
        release = controller.install("myapp", chart)

        controller.uninstall("myapp", ActionOptions(keep=True))

        assert statuses(store, "myapp") == {1: DELETED}
        assert fake_cluster.deleted() == []
        assert fake_cluster.names() == {"myapp", "myapp-config"}
        assert release.manifest == store.get("myapp", 1).manifest

    def test_uninstall_honours_resource_policy_keep(
        self,
        controller: ReleaseController,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
    ) -> None:
        """Objects annotated helm.sh/resource-policy: keep survive uninstall."""
        kept = (
            "apiVersion: v1\nkind: Secret\nmetadata:\n  name: {{ Release.Name }}-creds\n"
            "  annotations:\n    helm.sh/resource-policy: keep\n"
        )
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/secret.yaml": kept,
            }
        )
        controller.install("myapp", chart)

        controller.uninstall("myapp")

        assert fake_cluster.names() == {"myapp-creds"}

    def test_uninstall_twice_rejected(self, controller: ReleaseController, chart: Chart) -> None:
        controller.install("myapp", chart)
        controller.uninstall("myapp")

        with pytest.raises(InvalidStateError, match="already deleted"):
            controller.uninstall("myapp")

    def test_uninstall_unknown_release(self, controller: ReleaseController) -> None:
        with pytest.raises(ReleaseNotFoundError):
            controller.uninstall("ghost")

    def test_uninstall_failed_release(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        """A release whose install failed can still be uninstalled."""
        fake_cluster.fail_apply["myapp"] = KubernetesError("denied")
        with pytest.raises(ApplyFailureError):
            controller.install("myapp", chart)
        fake_cluster.fail_apply.clear()

        controller.uninstall("myapp")

        assert statuses(store, "myapp") == {1: DELETED}
        assert fake_cluster.names() == set()

    def test_uninstall_pre_delete_hook_failure(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        make_hook: Callable[..., str],
    ) -> None:
        """A failing pre-delete hook leaves resources in place and marks the release failed."""
        chart = make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/backup.yaml": make_hook("backup", "pre-delete"),
            }
        )
        controller.install("myapp", chart)
        fake_cluster.fail_ready.add("myapp-backup")

        with pytest.raises(HookFailureError) as exc_info:
            controller.uninstall("myapp")

        assert exc_info.value.release is not None
        assert statuses(store, "myapp") == {1: FAILED}
        assert "myapp-config" in fake_cluster.names()

    def test_uninstall_dry_run(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        controller.install("myapp", chart)

        controller.uninstall("myapp", ActionOptions(dry_run=True))

        assert statuses(store, "myapp") == {1: DEPLOYED}
        assert fake_cluster.deleted() == []


@pytest.mark.unit
class TestDisableHooks:
    """Hooks are skipped entirely when disabled."""

    def test_no_hook_runs_for_any_transition(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        hooked_chart: Chart,
    ) -> None:
        options = ActionOptions(disable_hooks=True)

        controller.install("myapp", hooked_chart, options=options)
        controller.upgrade("myapp", hooked_chart, {"greeting": "v2"}, options)
        controller.rollback("myapp", 1, options)
        controller.uninstall("myapp", options)

        assert not any("Job/" in target for _, target in fake_cluster.calls)
        for release in store.history("myapp"):
            assert all(hook.last_run is None for hook in release.hooks)

    def test_hooks_run_when_enabled(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        hooked_chart: Chart,
    ) -> None:
        controller.install("myapp", hooked_chart)

        hook = store.get("myapp", 1).hooks[0]
        assert hook.last_run is not None
        assert hook.last_run.phase == HookPhase.SUCCEEDED


@pytest.mark.unit
class TestLifecycleInvariants:
    """Properties that hold across sequences of transitions."""

    def test_versions_contiguous_and_single_deployed(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        chart: Chart,
    ) -> None:
        steps: list[Callable[[], object]] = [
            lambda: controller.install("myapp", chart),
            lambda: controller.upgrade("myapp", chart, {"greeting": "2"}),
            lambda: controller.upgrade("myapp", chart, {"greeting": "3"}),
            lambda: controller.rollback("myapp"),
            lambda: controller.uninstall("myapp"),
            lambda: controller.install("myapp", chart),
        ]
        for step in steps:
            step()
            versions = [r.version for r in store.history("myapp")]
            assert versions == list(range(1, len(versions) + 1))
            assert deployed_count(store, "myapp") <= 1

        assert [r.version for r in store.history("myapp")] == [1, 2, 3, 4, 5]

    def test_two_deployed_versions_detected(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        chart: Chart,
    ) -> None:
        """A history with two deployed versions is reported, not silently used."""
        controller.install("myapp", chart)
        duplicate = store.get("myapp", 1).model_copy(deep=True, update={"version": 2})
        store.create(duplicate)

        with pytest.raises(InvariantViolationError):
            controller.upgrade("myapp", chart)

    def test_concurrent_upgrades_are_serialised(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        chart: Chart,
    ) -> None:
        """Parallel upgrades of one name each get their own version."""
        controller.install("myapp", chart)
        errors: list[Exception] = []

        def upgrade(n: int) -> None:
            try:
                controller.upgrade("myapp", chart, {"greeting": str(n)})
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=upgrade, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert [r.version for r in store.history("myapp")] == [1, 2, 3, 4, 5]
        assert deployed_count(store, "myapp") == 1
        assert store.deployed("myapp").version == 5


@pytest.mark.unit
class TestTestHooks:
    """Tests for running test hooks."""

    @pytest.fixture
    def tested_chart(
        self,
        make_chart: Callable[..., Chart],
        templates: dict[str, str],
        make_hook: Callable[..., str],
    ) -> Chart:
        return make_chart(
            templates={
                "templates/configmap.yaml": templates["configmap"],
                "templates/tests/smoke.yaml": make_hook("smoke", "test"),
            }
        )

    def test_test_records_success(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        tested_chart: Chart,
    ) -> None:
        controller.install("myapp", tested_chart)
        assert store.get("myapp", 1).hooks[0].last_run is None

        controller.test("myapp")

        run = store.get("myapp", 1).hooks[0].last_run
        assert run is not None
        assert run.phase == HookPhase.SUCCEEDED

    def test_test_failure_keeps_release_deployed(
        self,
        controller: ReleaseController,
        store: ReleaseStore,
        fake_cluster: FakeCluster,
        tested_chart: Chart,
    ) -> None:
        controller.install("myapp", tested_chart)
        fake_cluster.fail_ready.add("myapp-smoke")

        with pytest.raises(HookFailureError):
            controller.test("myapp")

        stored = store.get("myapp", 1)
        assert stored.status == DEPLOYED
        assert stored.hooks[0].last_run is not None
        assert stored.hooks[0].last_run.phase == HookPhase.FAILED

    def test_test_requires_deployed_release(self, controller: ReleaseController) -> None:
        with pytest.raises(ReleaseNotFoundError):
            controller.test("ghost")


@pytest.mark.unit
class TestQueries:
    """Tests for read-only queries."""

    def test_status_latest_and_specific(self, controller: ReleaseController, chart: Chart) -> None:
        controller.install("myapp", chart)
        controller.upgrade("myapp", chart)

        assert controller.status("myapp").version == 2
        assert controller.status("myapp", 1).status == SUPERSEDED

    def test_get_manifest_and_values(self, controller: ReleaseController, chart: Chart) -> None:
        controller.install("myapp", chart, {"greeting": "hi"})

        assert "name: myapp-config" in controller.get_manifest("myapp")
        values = controller.get_values("myapp")
        values["greeting"] = "mutated"
        assert controller.get_values("myapp") == {"greeting": "hi"}

    def test_list_releases_filters(
        self,
        controller: ReleaseController,
        chart: Chart,
    ) -> None:
        controller.install("alpha", chart)
        controller.install("beta", chart, options=ActionOptions(namespace="prod"))
        controller.uninstall("alpha")

        assert [r.name for r in controller.list_releases()] == ["alpha", "beta"]
        assert [r.name for r in controller.list_releases(namespace="prod")] == ["beta"]
        assert [r.name for r in controller.list_releases(statuses=[DELETED])] == ["alpha"]

    def test_history_unknown(self, controller: ReleaseController) -> None:
        with pytest.raises(ReleaseNotFoundError):
            controller.history("ghost")

@pytest.mark.unit
def test_cluster_error_during_planning_is_wrapped(
    controller: ReleaseController,
    store: ReleaseStore,
    fake_cluster: FakeCluster,
    chart: Chart,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Unexpected cluster errors fail the release and carry the record."""
    controller.install("myapp", chart)

    def forbidden(ref: object) -> bool:
        raise KubernetesError("forbidden", status_code=403)

    monkeypatch.setattr(fake_cluster, "exists", forbidden)

    with pytest.raises(ReleaseError, match="cluster error") as exc_info:
        controller.upgrade("myapp", chart)

    assert isinstance(exc_info.value.__cause__, KubernetesError)
    assert exc_info.value.release is not None
    assert exc_info.value.release.version == 2
    assert statuses(store, "myapp") == {1: DEPLOYED, 2: FAILED}
