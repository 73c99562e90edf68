"""Shared pytest fixtures for releasectl tests."""

from __future__ import annotations

import copy
import os
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from releasectl.integrations.kubernetes.cluster import ClusterClient
from releasectl.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
    ResourceFailedError,
)
from releasectl.integrations.kubernetes.models.release import (
    Chart,
    ChartReference,
    ResourceRef,
)
from releasectl.services.release.controller import ReleaseController
from releasectl.services.release.drivers import MemoryDriver
from releasectl.services.release.store import ReleaseStore

CONFIGMAP_TEMPLATE = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: {{ Release.Name }}-config
data:
  greeting: {{ Values.greeting | quote }}
"""

DEPLOYMENT_TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {{ Release.Name }}
spec:
  replicas: {{ Values.replicas }}
  template:
    spec:
      containers:
        - name: app
          image: "nginx:{{ Values.tag }}"
"""

SERVICE_TEMPLATE = """\
apiVersion: v1
kind: Service
metadata:
  name: {{ Release.Name }}-svc
spec:
  ports:
    - port: 80
"""

HOOK_TEMPLATE = """\
apiVersion: batch/v1
kind: Job
metadata:
  name: {{ Release.Name }}-{{ hook_name }}
  annotations:
    helm.sh/hook: {{ events }}
    helm.sh/hook-weight: "{{ weight }}"
    helm.sh/hook-delete-policy: {{ policy }}
spec:
  template:
    spec:
      restartPolicy: Never
"""

NOTES_TEMPLATE = "Thank you for installing {{ Release.Name }} (revision {{ Release.Revision }}).\n"

DEFAULT_VALUES: dict[str, Any] = {"greeting": "hello", "replicas": 1, "tag": "1.25"}


class FakeCluster(ClusterClient):
    """In-memory ClusterClient that records every call.

    Failures are injected by object name: ``fail_apply``/``fail_delete`` map a
    name to the exception to raise, ``fail_ready`` lists names whose readiness
    wait fails.
    """

    def __init__(self) -> None:
        self.objects: dict[ResourceRef, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_apply: dict[str, KubernetesError] = {}
        self.fail_delete: dict[str, KubernetesError] = {}
        self.fail_ready: set[str] = set()

    def apply(self, manifest: dict[str, Any], namespace: str | None = None) -> ResourceRef:
        ref = ResourceRef.from_manifest(manifest, namespace)
        self.calls.append(("apply", str(ref)))
        if ref.name in self.fail_apply:
            raise self.fail_apply[ref.name]
        self.objects[ref] = copy.deepcopy(manifest)
        return ref

    def get(self, ref: ResourceRef) -> dict[str, Any]:
        if ref not in self.objects:
            raise KubernetesNotFoundError(kind=ref.kind, name=ref.name)
        return copy.deepcopy(self.objects[ref])

    def delete(self, ref: ResourceRef) -> None:
        self.calls.append(("delete", str(ref)))
        if ref.name in self.fail_delete:
            raise self.fail_delete[ref.name]
        if ref not in self.objects:
            raise KubernetesNotFoundError(kind=ref.kind, name=ref.name)
        del self.objects[ref]

    def wait_ready(self, ref: ResourceRef, timeout: float) -> None:
        self.calls.append(("wait", str(ref)))
        if ref.name in self.fail_ready:
            raise ResourceFailedError(
                message=f"{ref.kind} failed",
                kind=ref.kind,
                name=ref.name,
            )
        self.get(ref)

    def names(self) -> set[str]:
        """Names of every live object."""
        return {ref.name for ref in self.objects}

    def applied(self) -> list[str]:
        return [target for op, target in self.calls if op == "apply"]

    def deleted(self) -> list[str]:
        return [target for op, target in self.calls if op == "delete"]


def hook_template(
    hook_name: str,
    events: str,
    weight: int = 0,
    policy: str = "before-hook-creation",
) -> str:
    """A Job hook template bound to ``events``."""
    return (
        HOOK_TEMPLATE.replace("{{ hook_name }}", hook_name)
        .replace("{{ events }}", events)
        .replace("{{ weight }}", str(weight))
        .replace("{{ policy }}", policy)
    )


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables for each test."""
    for key in list(os.environ.keys()):
        if key.startswith("RELEASECTL_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def store() -> ReleaseStore:
    return ReleaseStore(MemoryDriver())


@pytest.fixture
def controller(store: ReleaseStore, fake_cluster: FakeCluster) -> ReleaseController:
    """Controller wired to an in-memory store and fake cluster."""
    return ReleaseController(store, fake_cluster, default_namespace="default")


@pytest.fixture
def make_chart() -> Callable[..., Chart]:
    """Factory for charts; defaults to a ConfigMap + Deployment chart."""

    def _make(
        templates: dict[str, str] | None = None,
        values: dict[str, Any] | None = None,
        name: str = "app",
        version: str = "1.0.0",
    ) -> Chart:
        if templates is None:
            templates = {
                "templates/configmap.yaml": CONFIGMAP_TEMPLATE,
                "templates/deployment.yaml": DEPLOYMENT_TEMPLATE,
            }
        return Chart(
            metadata=ChartReference(name=name, version=version, app_version="1.25"),
            templates=templates,
            values=copy.deepcopy(DEFAULT_VALUES if values is None else values),
        )

    return _make


@pytest.fixture
def chart(make_chart: Callable[..., Chart]) -> Chart:
    return make_chart()


@pytest.fixture
def chart_dir(temp_dir: Path) -> Path:
    """An unpacked chart directory on disk."""
    root = temp_dir / "app"
    (root / "templates").mkdir(parents=True)
    (root / "Chart.yaml").write_text(
        "apiVersion: v2\nname: app\nversion: 1.0.0\nappVersion: '1.25'\n"
    )
    (root / "values.yaml").write_text("greeting: hello\nreplicas: 1\ntag: '1.25'\n")
    (root / "templates" / "configmap.yaml").write_text(CONFIGMAP_TEMPLATE)
    (root / "templates" / "deployment.yaml").write_text(DEPLOYMENT_TEMPLATE)
    (root / "templates" / "NOTES.txt").write_text(NOTES_TEMPLATE)
    return root


@pytest.fixture
def make_hook() -> Callable[..., str]:
    """Factory for Job hook templates (see :func:`hook_template`)."""
    return hook_template


@pytest.fixture
def templates() -> dict[str, str]:
    """Template sources by short name, for building custom charts."""
    return {
        "configmap": CONFIGMAP_TEMPLATE,
        "deployment": DEPLOYMENT_TEMPLATE,
        "service": SERVICE_TEMPLATE,
        "notes": NOTES_TEMPLATE,
    }
