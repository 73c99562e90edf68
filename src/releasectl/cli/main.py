"""Main CLI entry point using Typer."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from releasectl import __version__
from releasectl.cli.commands.release import register_release_commands
from releasectl.cli.completion import build_completion_registry
from releasectl.cli.factory import AppContext
from releasectl.logging.config import configure_logging

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"releasectl version {__version__}")
        raise typer.Exit()


def create_app(context: AppContext | None = None) -> typer.Typer:
    """Build the CLI application around ``context``."""
    ctx = context or AppContext(console)
    app = typer.Typer(
        name="releasectl",
        help="Install, upgrade, roll back and uninstall chart releases on Kubernetes.",
        add_completion=True,
        no_args_is_help=True,
    )

    @app.callback()
    def main(
        version: bool | None = typer.Option(
            None,
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
        verbose: bool = typer.Option(
            False,
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
        debug: bool = typer.Option(
            False,
            "--debug",
            help="Enable debug mode.",
        ),
        json_logs: bool = typer.Option(
            False,
            "--json-logs",
            help="Render log output as JSON.",
        ),
        config: Path | None = typer.Option(
            None,
            "--config",
            "-c",
            help="Config file (defaults to ~/.releasectl.yaml).",
            dir_okay=False,
        ),
        post_renderer: str | None = typer.Option(
            None,
            "--post-renderer",
            help="Executable that rewrites rendered manifests before they are applied.",
        ),
        post_renderer_args: list[str] | None = typer.Option(
            None,
            "--post-renderer-args",
            help="Argument for the post-renderer (can specify multiple).",
        ),
    ) -> None:
        """releasectl - Manage chart releases with ease."""
        configure_logging(verbose=verbose, debug=debug, json_output=json_logs)
        ctx.config_path = config
        ctx.post_renderer = post_renderer
        ctx.post_renderer_args = list(post_renderer_args or [])

    completions = build_completion_registry(ctx.controller)
    register_release_commands(app, ctx.controller, ctx.config, completions)
    return app


app = create_app()


if __name__ == "__main__":
    app()
