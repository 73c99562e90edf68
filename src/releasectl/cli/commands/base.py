"""Base utilities for release CLI commands.

Provides common Typer options, values parsing and error handling shared by
the release commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console

from releasectl.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesTimeoutError,
)
from releasectl.services.release.exceptions import (
    ApplyFailureError,
    HookFailureError,
    InvalidStateError,
    ReleaseError,
    ReleaseNotFoundError,
)
from releasectl.services.release.renderer import merge_values

# Shared console instance
console = Console()
err_console = Console(stderr=True)


# =============================================================================
# Common Typer Option Annotations
# =============================================================================

NamespaceOption = Annotated[
    str | None,
    typer.Option(
        "--namespace",
        "-n",
        help="Namespace for the release (defaults to config or 'default')",
    ),
]

DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Render and show what would be done, don't execute",
    ),
]

WaitOption = Annotated[
    bool,
    typer.Option(
        "--wait",
        help="Wait for created and updated resources to become ready",
    ),
]

TimeoutOption = Annotated[
    float | None,
    typer.Option(
        "--timeout",
        help="Seconds to wait for each hook and for --wait (defaults to config)",
    ),
]

DisableHooksOption = Annotated[
    bool,
    typer.Option(
        "--no-hooks",
        help="Skip running hooks",
    ),
]

DescriptionOption = Annotated[
    str | None,
    typer.Option(
        "--description",
        help="Custom description for the new release version",
    ),
]

ValuesFilesOption = Annotated[
    list[Path] | None,
    typer.Option(
        "--values",
        "-f",
        help="Values YAML file (can specify multiple)",
        exists=True,
        dir_okay=False,
    ),
]

SetValuesOption = Annotated[
    list[str] | None,
    typer.Option(
        "--set",
        help="Set individual values (key.path=value, can specify multiple)",
    ),
]


# =============================================================================
# Values
# =============================================================================


def parse_set_value(expression: str) -> dict[str, Any]:
    """Turn ``a.b.c=value`` into ``{"a": {"b": {"c": value}}}``.

    The value is parsed as YAML, so ``replicas=3`` yields an int.

    Raises:
        typer.BadParameter: If the expression has no ``=`` or an empty key.
    """
    key, sep, raw = expression.partition("=")
    if not sep or not key.strip():
        raise typer.BadParameter(f"expected key=value, got '{expression}'", param_hint="--set")
    try:
        value = yaml.safe_load(raw) if raw else ""
    except yaml.YAMLError:
        value = raw

    result: dict[str, Any] = {}
    node = result
    parts = key.strip().split(".")
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value
    return result


def load_values(
    values_files: list[Path] | None,
    set_values: list[str] | None,
) -> dict[str, Any]:
    """Merge values files (in order) and then ``--set`` expressions.

    Raises:
        typer.BadParameter: If a values file is not a YAML mapping.
    """
    values: dict[str, Any] = {}
    for path in values_files or []:
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise typer.BadParameter(f"{path}: {e}", param_hint="--values") from e
        if loaded is None:
            continue
        if not isinstance(loaded, dict):
            raise typer.BadParameter(f"{path} must contain a mapping", param_hint="--values")
        values = merge_values(values, loaded)
    for expression in set_values or []:
        values = merge_values(values, parse_set_value(expression))
    return values


# =============================================================================
# Error Handling
# =============================================================================


def handle_k8s_error(error: KubernetesError) -> None:
    """Handle Kubernetes errors with user-friendly output.

    Raises:
        typer.Exit: Always exits with code 1.
    """
    if isinstance(error, KubernetesConnectionError):
        err_console.print("[red]Error:[/red] Cannot connect to Kubernetes cluster")
        err_console.print(f"  {error.message}")
        if error.original_error:
            err_console.print(f"  Cause: {error.original_error}")
        err_console.print(
            "\n[dim]Hint: Check that your kubeconfig is valid and the cluster is reachable.[/dim]"
        )

    elif isinstance(error, KubernetesAuthError):
        err_console.print("[red]Error:[/red] Authentication/authorization failed")
        err_console.print(f"  {error.message}")
        err_console.print("\n[dim]Hint: Check your credentials, token, or RBAC permissions.[/dim]")

    elif isinstance(error, KubernetesTimeoutError):
        err_console.print("[red]Error:[/red] Operation timed out")
        err_console.print(f"  {error.message}")
        err_console.print(
            "\n[dim]Hint: Try increasing the timeout with --timeout or RELEASECTL_TIMEOUT.[/dim]"
        )

    else:
        err_console.print(f"[red]Error:[/red] {error.message}")
        if error.status_code:
            err_console.print(f"  HTTP Status: {error.status_code}")

    raise typer.Exit(1)


def handle_release_error(error: ReleaseError) -> None:
    """Handle release lifecycle errors with user-friendly output.

    Raises:
        typer.Exit: Always exits with code 1.
    """
    if isinstance(error, ReleaseNotFoundError):
        err_console.print(f"[red]Error:[/red] {error.message}")

    elif isinstance(error, InvalidStateError):
        err_console.print(f"[red]Error:[/red] Operation not allowed: {error.message}")

    elif isinstance(error, HookFailureError):
        err_console.print("[red]Error:[/red] Hook failed")
        err_console.print(f"  {error.message}")

    elif isinstance(error, ApplyFailureError):
        err_console.print("[red]Error:[/red] Failed to apply release resources")
        for ref, cause in error.failures:
            err_console.print(f"  - {ref}: {cause}")

    else:
        err_console.print(f"[red]Error:[/red] {error.message}")

    if error.release is not None:
        err_console.print(
            f"\n[dim]Release {error.release.name} version {error.release.version} "
            f"is {error.release.status.value}.[/dim]"
        )

    raise typer.Exit(1)
