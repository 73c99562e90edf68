"""Centralized CLI output utilities.

All release commands render through these helpers so table, JSON and YAML
output stay consistent.

Usage:
    from releasectl.cli.output import OutputFormat, get_formatter

    formatter = get_formatter(OutputFormat.JSON, console)
    formatter.format_list(releases, RELEASE_COLUMNS)
"""

from releasectl.cli.output.formatters import (
    JsonFormatter,
    OutputFormat,
    ReleaseFormatter,
    TableFormatter,
    YamlFormatter,
    get_formatter,
)
from releasectl.cli.output.table import Table

__all__ = [
    "JsonFormatter",
    "OutputFormat",
    "ReleaseFormatter",
    "Table",
    "TableFormatter",
    "YamlFormatter",
    "get_formatter",
]
