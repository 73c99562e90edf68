"""Rendering boundary: chart + values -> manifest files.

The lifecycle only depends on :class:`Renderer`. :class:`JinjaRenderer` is a
small adapter that renders chart templates with Jinja2 so the CLI has a
working default; template language features are whatever Jinja2 provides.
"""

from __future__ import annotations

import base64
import copy
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jinja2
import structlog
import yaml

from releasectl.integrations.kubernetes.models.release import Chart, ChartReference
from releasectl.services.release.exceptions import RenderError

logger = structlog.get_logger()

CHART_FILE = "Chart.yaml"
VALUES_FILE = "values.yaml"
TEMPLATES_DIR = "templates"


@dataclass(frozen=True)
class ReleaseOptions:
    """Release facts exposed to templates."""

    name: str
    namespace: str
    revision: int
    is_install: bool = False
    is_upgrade: bool = False


class Renderer(ABC):
    """Turns a chart and values into rendered manifest text per template."""

    @abstractmethod
    def render(
        self,
        chart: Chart,
        values: Mapping[str, Any],
        options: ReleaseOptions,
    ) -> dict[str, str]:
        """Render every template of ``chart``.

        Returns:
            Rendered text keyed by template path.

        Raises:
            RenderError: If rendering fails.
        """


def merge_values(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``override`` onto ``base`` without mutating either.

    Nested mappings merge key by key; any other override value replaces the
    base value, and an explicit ``None`` removes the key.
    """
    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in override.items():
        if value is None:
            merged.pop(key, None)
        elif isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_values(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _to_yaml(value: Any) -> str:
    return yaml.safe_dump(value, default_flow_style=False, sort_keys=False).rstrip("\n")


def _nindent(text: str, width: int) -> str:
    pad = " " * width
    return "\n" + "\n".join(pad + line if line else line for line in str(text).splitlines())


def _quote(value: Any) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def _b64enc(value: Any) -> str:
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


class JinjaRenderer(Renderer):
    """Renders chart templates with Jinja2.

    Templates see ``Values``, ``Release`` and ``Chart`` the way chart authors
    expect. Files whose name starts with ``_`` are available to ``include``
    and ``import`` but produce no output themselves.
    """

    def __init__(self, *, strict: bool = True) -> None:
        self._strict = strict

    def _environment(self, chart: Chart) -> jinja2.Environment:
        env = jinja2.Environment(
            loader=jinja2.DictLoader(chart.templates),
            undefined=jinja2.StrictUndefined if self._strict else jinja2.Undefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        env.filters["toyaml"] = _to_yaml
        env.filters["nindent"] = _nindent
        env.filters["quote"] = _quote
        env.filters["b64enc"] = _b64enc
        return env

    def render(
        self,
        chart: Chart,
        values: Mapping[str, Any],
        options: ReleaseOptions,
    ) -> dict[str, str]:
        env = self._environment(chart)
        context = {
            "Values": dict(values),
            "Release": {
                "Name": options.name,
                "Namespace": options.namespace,
                "Revision": options.revision,
                "IsInstall": options.is_install,
                "IsUpgrade": options.is_upgrade,
                "Service": "releasectl",
            },
            "Chart": {
                "Name": chart.metadata.name,
                "Version": chart.metadata.version,
                "AppVersion": chart.metadata.app_version,
            },
        }

        rendered: dict[str, str] = {}
        for path in sorted(chart.templates):
            if path.rsplit("/", 1)[-1].startswith("_"):
                continue
            try:
                output = env.get_template(path).render(context)
            except jinja2.TemplateError as e:
                raise RenderError(f"{chart.metadata.name}/{path}: {e}") from e
            if output.strip():
                rendered[path] = output

        logger.debug(
            "chart_rendered",
            chart=str(chart.metadata),
            release=options.name,
            templates=len(rendered),
        )
        return rendered


def load_chart(path: Path) -> Chart:
    """Load an unpacked chart directory.

    The directory must contain ``Chart.yaml`` with at least ``name``;
    ``values.yaml`` and ``templates/`` are optional.

    Raises:
        RenderError: If the directory or its metadata is unusable.
    """
    chart_file = path / CHART_FILE
    if not chart_file.is_file():
        raise RenderError(f"{path} is not a chart directory (missing {CHART_FILE})")

    try:
        metadata = yaml.safe_load(chart_file.read_text(encoding="utf-8")) or {}
        values_file = path / VALUES_FILE
        values = (
            yaml.safe_load(values_file.read_text(encoding="utf-8")) or {}
            if values_file.is_file()
            else {}
        )
    except yaml.YAMLError as e:
        raise RenderError(f"{path}: invalid YAML: {e}") from e

    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise RenderError(f"{chart_file}: 'name' is required")
    if not isinstance(values, dict):
        raise RenderError(f"{path / VALUES_FILE}: expected a mapping")

    templates: dict[str, str] = {}
    templates_dir = path / TEMPLATES_DIR
    if templates_dir.is_dir():
        for template in sorted(p for p in templates_dir.rglob("*") if p.is_file()):
            key = template.relative_to(path).as_posix()
            templates[key] = template.read_text(encoding="utf-8")

    return Chart(
        metadata=ChartReference(
            name=str(metadata["name"]),
            version=str(metadata.get("version", "")),
            app_version=str(metadata.get("appVersion", "")),
            description=str(metadata.get("description", "")),
        ),
        templates=templates,
        values=values,
    )
