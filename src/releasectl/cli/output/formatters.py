"""Output formatters for release commands.

Implements the Strategy pattern for output formatting, allowing commands to
print releases as a table, JSON or YAML.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import StrEnum
from typing import Any

import yaml
from rich.console import Console

from releasectl.cli.output.table import Table
from releasectl.integrations.kubernetes.models.release import Release, ReleaseStatus

STATUS_STYLES = {
    ReleaseStatus.DEPLOYED: "green",
    ReleaseStatus.SUPERSEDED: "dim",
    ReleaseStatus.FAILED: "red",
    ReleaseStatus.DELETED: "yellow",
}


class OutputFormat(StrEnum):
    """Supported output formats for CLI commands."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"


def release_summary(release: Release) -> dict[str, Any]:
    """Flat, display-oriented view of a release."""
    updated = release.info.last_deployed
    return {
        "name": release.name,
        "namespace": release.namespace,
        "revision": release.version,
        "status": release.status.value,
        "chart": str(release.chart),
        "app_version": release.chart.app_version,
        "updated": updated.isoformat(timespec="seconds") if updated else None,
        "description": release.info.description,
    }


class ReleaseFormatter(ABC):
    """Abstract base class for release output formatters."""

    def __init__(self, console: Console) -> None:
        self.console = console

    @abstractmethod
    def format_release(self, release: Release, title: str = "") -> None:
        """Format and display a single release."""

    @abstractmethod
    def format_list(
        self,
        releases: Sequence[Release],
        columns: list[tuple[str, str]],
        title: str = "",
    ) -> None:
        """Format and display several releases."""

    def format_success(self, message: str) -> None:
        """Display a success message."""
        self.console.print(f"[green]{message}[/green]")


class TableFormatter(ReleaseFormatter):
    """Rich table output formatter."""

    def format_release(self, release: Release, title: str = "") -> None:
        """Format a release as a two-column field/value table, followed by its notes."""
        table = Table(title=title or f"Release {release.name}", show_header=True)
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value")

        for field, value in release_summary(release).items():
            if field == "status":
                value = self._styled_status(release.status)
            table.add_row(field, "-" if value in (None, "") else str(value))
        if release.info.first_deployed:
            first = release.info.first_deployed.isoformat(timespec="seconds")
            table.add_row("first_deployed", first)
        if release.hooks:
            table.add_row("hooks", self._format_hooks(release))

        self.console.print(table)
        if release.info.notes:
            self.console.print("\n[bold]NOTES:[/bold]")
            self.console.print(release.info.notes, markup=False)

    def format_list(
        self,
        releases: Sequence[Release],
        columns: list[tuple[str, str]],
        title: str = "",
    ) -> None:
        """Format releases as a multi-column table."""
        table = Table(title=title, show_header=True)
        for _field, header in columns:
            style = "cyan" if header.lower() in ("name", "namespace") else None
            table.add_column(header, style=style)

        for release in releases:
            data = release_summary(release)
            row = []
            for field, _header in columns:
                if field == "status":
                    row.append(self._styled_status(release.status))
                else:
                    value = data.get(field)
                    row.append("-" if value in (None, "") else str(value))
            table.add_row(*row)

        self.console.print(table)
        self.console.print(f"\n[dim]Total: {len(releases)}[/dim]")

    @staticmethod
    def _styled_status(status: ReleaseStatus) -> str:
        style = STATUS_STYLES.get(status)
        return f"[{style}]{status.value}[/{style}]" if style else status.value

    @staticmethod
    def _format_hooks(release: Release) -> str:
        lines = []
        for hook in release.hooks:
            phase = hook.last_run.phase.value if hook.last_run else "not run"
            events = ",".join(e.value for e in hook.events)
            lines.append(f"{hook.kind}/{hook.name} ({events}): {phase}")
        return "\n".join(lines)


class JsonFormatter(ReleaseFormatter):
    """JSON output formatter."""

    def format_release(self, release: Release, title: str = "") -> None:
        self.console.print_json(json.dumps(release.model_dump(mode="json")))

    def format_list(
        self,
        releases: Sequence[Release],
        columns: list[tuple[str, str]],
        title: str = "",
    ) -> None:
        data = [release_summary(r) for r in releases]
        self.console.print_json(json.dumps({"data": data, "total": len(data)}))


class YamlFormatter(ReleaseFormatter):
    """YAML output formatter."""

    def format_release(self, release: Release, title: str = "") -> None:
        self.console.print(
            yaml.safe_dump(release.model_dump(mode="json"), sort_keys=False),
            markup=False,
        )

    def format_list(
        self,
        releases: Sequence[Release],
        columns: list[tuple[str, str]],
        title: str = "",
    ) -> None:
        data = [release_summary(r) for r in releases]
        self.console.print(
            yaml.safe_dump({"data": data, "total": len(data)}, sort_keys=False),
            markup=False,
        )


def get_formatter(output_format: OutputFormat, console: Console) -> ReleaseFormatter:
    """Get the formatter for an output format.

    Raises:
        ValueError: If output format is not supported.
    """
    formatters: dict[OutputFormat, type[ReleaseFormatter]] = {
        OutputFormat.TABLE: TableFormatter,
        OutputFormat.JSON: JsonFormatter,
        OutputFormat.YAML: YamlFormatter,
    }
    formatter_class = formatters.get(output_format)
    if formatter_class is None:
        raise ValueError(f"Unsupported output format: {output_format}")
    return formatter_class(console)
