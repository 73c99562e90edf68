"""CLI commands for release lifecycle management.

Provides install, upgrade, rollback, uninstall, status, history, list, test
and get (manifest, values) commands.
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
import yaml

from releasectl.cli.commands.base import (
    DescriptionOption,
    DisableHooksOption,
    DryRunOption,
    NamespaceOption,
    SetValuesOption,
    TimeoutOption,
    ValuesFilesOption,
    WaitOption,
    console,
    handle_k8s_error,
    handle_release_error,
    load_values,
)
from releasectl.cli.output import OutputFormat, get_formatter
from releasectl.integrations.kubernetes.exceptions import KubernetesError
from releasectl.integrations.kubernetes.models.release import Release, ReleaseStatus
from releasectl.services.release.controller import ActionOptions
from releasectl.services.release.exceptions import ReleaseError, ReleaseNotFoundError
from releasectl.services.release.renderer import load_chart

if TYPE_CHECKING:
    from releasectl.cli.completion import CompletionRegistry
    from releasectl.core.config import ReleasectlConfig
    from releasectl.services.release.controller import ReleaseController

# ---------------------------------------------------------------------------
# Column definitions for table output
# ---------------------------------------------------------------------------

RELEASE_COLUMNS = [
    ("name", "Name"),
    ("namespace", "Namespace"),
    ("revision", "Revision"),
    ("updated", "Updated"),
    ("status", "Status"),
    ("chart", "Chart"),
    ("app_version", "App Version"),
]

HISTORY_COLUMNS = [
    ("revision", "Revision"),
    ("updated", "Updated"),
    ("status", "Status"),
    ("chart", "Chart"),
    ("app_version", "App Version"),
    ("description", "Description"),
]

ChartArgument = Annotated[
    Path,
    typer.Argument(help="Path to an unpacked chart directory", file_okay=False, exists=True),
]


def _print_result(release: Release, output: OutputFormat, dry_run: bool, action: str) -> None:
    if dry_run:
        console.print("[yellow]Dry run:[/yellow] nothing was changed")
        if output == OutputFormat.TABLE:
            console.print(release.manifest or "# no resources", markup=False)
            return
    formatter = get_formatter(output, console)
    if output == OutputFormat.TABLE and not dry_run:
        formatter.format_success(f"Release {release.name} {action} (version {release.version})")
    formatter.format_release(release)


def register_release_commands(
    app: typer.Typer,
    get_controller: Callable[[], "ReleaseController"],
    get_config: Callable[[], "ReleasectlConfig"],
    completions: "CompletionRegistry",
) -> None:
    """Register release lifecycle commands with the CLI app."""

    ReleaseArgument = Annotated[
        str,
        typer.Argument(help="Release name", autocompletion=completions.provider("release")),
    ]

    OutputOption = Annotated[
        OutputFormat | None,
        typer.Option(
            "--output",
            "-o",
            help="Output format: table, json, or yaml (defaults to config)",
            case_sensitive=False,
            autocompletion=completions.provider("output"),
        ),
    ]

    RevisionOption = Annotated[
        int,
        typer.Option("--revision", help="Specific revision (default: latest)", min=0),
    ]

    def _options(
        *,
        namespace: str | None = None,
        timeout: float | None = None,
        wait: bool = False,
        **flags: bool | str | None,
    ) -> ActionOptions:
        config = get_config()
        return ActionOptions(
            namespace=namespace or config.namespace,
            timeout=timeout or config.timeout,
            wait=wait or config.wait,
            **flags,
        )

    def _output(output: OutputFormat | None) -> OutputFormat:
        return output or OutputFormat(get_config().output_format)

    # -----------------------------------------------------------------
    # install
    # -----------------------------------------------------------------

    @app.command("install")
    def install(
        release: ReleaseArgument,
        chart: ChartArgument,
        namespace: NamespaceOption = None,
        values_files: ValuesFilesOption = None,
        set_values: SetValuesOption = None,
        wait: WaitOption = False,
        timeout: TimeoutOption = None,
        no_hooks: DisableHooksOption = False,
        description: DescriptionOption = None,
        dry_run: DryRunOption = False,
        output: OutputOption = None,
    ) -> None:
        """Install a chart as a new release.

        Examples:
            releasectl install my-app ./charts/app
            releasectl install my-app ./charts/app -n production -f prod.yaml
            releasectl install my-app ./charts/app --set image.tag=1.25 --wait
        """
        try:
            values = load_values(values_files, set_values)
            result = get_controller().install(
                release,
                load_chart(chart),
                values,
                _options(
                    namespace=namespace,
                    timeout=timeout,
                    wait=wait,
                    disable_hooks=no_hooks,
                    description=description,
                    dry_run=dry_run,
                ),
            )
            _print_result(result, _output(output), dry_run, "installed")

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # upgrade
    # -----------------------------------------------------------------

    @app.command("upgrade")
    def upgrade(
        release: ReleaseArgument,
        chart: ChartArgument,
        namespace: NamespaceOption = None,
        values_files: ValuesFilesOption = None,
        set_values: SetValuesOption = None,
        install: Annotated[
            bool,
            typer.Option("--install", "-i", help="Install if the release doesn't exist"),
        ] = False,
        wait: WaitOption = False,
        timeout: TimeoutOption = None,
        no_hooks: DisableHooksOption = False,
        description: DescriptionOption = None,
        dry_run: DryRunOption = False,
        reuse_values: Annotated[
            bool,
            typer.Option("--reuse-values", help="Merge new values over the last release's"),
        ] = False,
        reset_values: Annotated[
            bool,
            typer.Option("--reset-values", help="Ignore the last release's values"),
        ] = False,
        output: OutputOption = None,
    ) -> None:
        """Upgrade a deployed release to a new chart or values.

        Examples:
            releasectl upgrade my-app ./charts/app
            releasectl upgrade my-app ./charts/app --reuse-values --set image.tag=1.26
            releasectl upgrade my-app ./charts/app --install -n staging
        """
        try:
            values = load_values(values_files, set_values)
            loaded = load_chart(chart)
            options = _options(
                namespace=namespace,
                timeout=timeout,
                wait=wait,
                disable_hooks=no_hooks,
                description=description,
                dry_run=dry_run,
                reuse_values=reuse_values,
                reset_values=reset_values,
            )
            controller = get_controller()
            try:
                result = controller.upgrade(release, loaded, values, options)
                action = "upgraded"
            except ReleaseNotFoundError as e:
                if not install or e.version is not None:
                    raise
                result = controller.install(release, loaded, values, options)
                action = "installed"
            _print_result(result, _output(output), dry_run, action)

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # rollback
    # -----------------------------------------------------------------

    @app.command("rollback")
    def rollback(
        release: ReleaseArgument,
        revision: Annotated[
            int,
            typer.Argument(help="Revision to roll back to (default: previous)", min=0),
        ] = 0,
        wait: WaitOption = False,
        timeout: TimeoutOption = None,
        no_hooks: DisableHooksOption = False,
        description: DescriptionOption = None,
        dry_run: DryRunOption = False,
        output: OutputOption = None,
    ) -> None:
        """Roll a release back to a previous revision.

        Examples:
            releasectl rollback my-app
            releasectl rollback my-app 3 --wait
        """
        try:
            result = get_controller().rollback(
                release,
                revision,
                _options(
                    timeout=timeout,
                    wait=wait,
                    disable_hooks=no_hooks,
                    description=description,
                    dry_run=dry_run,
                ),
            )
            _print_result(result, _output(output), dry_run, "rolled back")

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # uninstall
    # -----------------------------------------------------------------

    @app.command("uninstall")
    def uninstall(
        release: ReleaseArgument,
        keep_resources: Annotated[
            bool,
            typer.Option("--keep-resources", help="Leave the release's objects on the cluster"),
        ] = False,
        timeout: TimeoutOption = None,
        no_hooks: DisableHooksOption = False,
        description: DescriptionOption = None,
        dry_run: DryRunOption = False,
    ) -> None:
        """Uninstall a release, keeping its history.

        Examples:
            releasectl uninstall my-app
            releasectl uninstall my-app --keep-resources
        """
        try:
            result = get_controller().uninstall(
                release,
                _options(
                    timeout=timeout,
                    keep=keep_resources,
                    disable_hooks=no_hooks,
                    description=description,
                    dry_run=dry_run,
                ),
            )
            if dry_run:
                console.print(f"[yellow]Dry run:[/yellow] would uninstall {result}")
                return
            console.print(f"[green]Release {result.name} uninstalled[/green]")

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # status
    # -----------------------------------------------------------------

    @app.command("status")
    def status(
        release: ReleaseArgument,
        revision: RevisionOption = 0,
        output: OutputOption = None,
    ) -> None:
        """Show the status of a release.

        Examples:
            releasectl status my-app
            releasectl status my-app --revision 2 -o json
        """
        try:
            result = get_controller().status(release, revision)
            get_formatter(_output(output), console).format_release(result)

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # history
    # -----------------------------------------------------------------

    @app.command("history")
    def history(
        release: ReleaseArgument,
        max_revisions: Annotated[
            int | None,
            typer.Option("--max", help="Maximum number of revisions to show", min=1),
        ] = None,
        output: OutputOption = None,
    ) -> None:
        """Show the revision history of a release.

        Examples:
            releasectl history my-app
            releasectl history my-app --max 5 -o yaml
        """
        try:
            entries = get_controller().history(release)
            if max_revisions:
                entries = entries[-max_revisions:]
            get_formatter(_output(output), console).format_list(
                entries, HISTORY_COLUMNS, title=f"Release History: {release}"
            )

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # list
    # -----------------------------------------------------------------

    @app.command("list")
    def list_releases(
        namespace: NamespaceOption = None,
        all_namespaces: Annotated[
            bool,
            typer.Option("--all-namespaces", "-A", help="List releases across all namespaces"),
        ] = False,
        statuses: Annotated[
            list[ReleaseStatus] | None,
            typer.Option(
                "--status",
                help="Only releases in this status (can specify multiple)",
                autocompletion=completions.provider("status"),
            ),
        ] = None,
        output: OutputOption = None,
    ) -> None:
        """List releases (latest revision of each).

        Examples:
            releasectl list
            releasectl list -A --status failed
        """
        try:
            scope = None if all_namespaces else (namespace or get_config().namespace)
            releases = get_controller().list_releases(namespace=scope, statuses=statuses)
            fmt = _output(output)
            if not releases and fmt == OutputFormat.TABLE:
                console.print("[yellow]No releases found[/yellow]")
                return
            get_formatter(fmt, console).format_list(releases, RELEASE_COLUMNS, title="Releases")

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # test
    # -----------------------------------------------------------------

    @app.command("test")
    def test(
        release: ReleaseArgument,
        timeout: TimeoutOption = None,
    ) -> None:
        """Run the test hooks of a deployed release.

        Examples:
            releasectl test my-app
        """
        try:
            result = get_controller().test(release, _options(timeout=timeout))
            ran = [h for h in result.hooks if h.last_run is not None]
            for hook in ran:
                console.print(f"  {hook.kind}/{hook.name}: {hook.last_run.phase.value}")
            console.print(f"[green]Release {result.name}: {len(ran)} test(s) passed[/green]")

        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    # -----------------------------------------------------------------
    # get manifest / values
    # -----------------------------------------------------------------

    get_app = typer.Typer(
        name="get",
        help="Show stored details of a release",
        no_args_is_help=True,
    )
    app.add_typer(get_app, name="get")

    @get_app.command("manifest")
    def get_manifest(
        release: ReleaseArgument,
        revision: RevisionOption = 0,
    ) -> None:
        """Print the rendered manifest of a release revision."""
        try:
            console.print(get_controller().get_manifest(release, revision), markup=False)
        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)

    @get_app.command("values")
    def get_values(
        release: ReleaseArgument,
        revision: RevisionOption = 0,
        output: OutputOption = None,
    ) -> None:
        """Print the user-supplied values of a release revision."""
        try:
            values = get_controller().get_values(release, revision)
            if _output(output) == OutputFormat.JSON:
                console.print_json(json.dumps(values))
            else:
                console.print(yaml.safe_dump(values, sort_keys=False) or "{}", markup=False)
        except ReleaseError as e:
            handle_release_error(e)
        except KubernetesError as e:
            handle_k8s_error(e)
