"""Builds the release controller and its collaborators from configuration."""

from __future__ import annotations

from pathlib import Path

import structlog
import typer
from rich.console import Console

from releasectl.core.config import ReleasectlConfig, load_config
from releasectl.integrations.kubernetes.client import KubernetesClient
from releasectl.integrations.kubernetes.cluster import KubernetesClusterClient
from releasectl.services.release.controller import ReleaseController
from releasectl.services.release.drivers import MemoryDriver, SecretDriver, StorageDriver
from releasectl.services.release.postrender import ExecPostRenderer, PostRenderer
from releasectl.services.release.renderer import JinjaRenderer
from releasectl.services.release.store import ReleaseStore

logger = structlog.get_logger()


def build_controller(
    config: ReleasectlConfig,
    post_renderer: PostRenderer | None = None,
) -> ReleaseController:
    """Wire a controller against the cluster selected by ``config``.

    Raises:
        KubernetesConnectionError: If no cluster configuration can be loaded.
    """
    client = KubernetesClient(config.kubernetes)
    cluster = KubernetesClusterClient(
        client,
        field_manager=config.kubernetes.field_manager,
        poll_interval=config.kubernetes.poll_interval,
    )
    driver: StorageDriver
    if config.storage.driver == "memory":
        driver = MemoryDriver()
    else:
        driver = SecretDriver(client, config.storage_namespace())
    logger.debug(
        "controller_built",
        storage=config.storage.driver,
        storage_namespace=config.storage_namespace(),
        context=client.current_context,
    )
    return ReleaseController(
        ReleaseStore(driver),
        cluster,
        JinjaRenderer(),
        post_renderer=post_renderer,
        default_namespace=config.namespace,
    )


class AppContext:
    """Lazily loaded configuration and controller for one CLI invocation."""

    def __init__(
        self,
        console: Console,
        *,
        config: ReleasectlConfig | None = None,
        controller: ReleaseController | None = None,
    ) -> None:
        self.console = console
        self.config_path: Path | None = None
        self.post_renderer: str | None = None
        self.post_renderer_args: list[str] = []
        self._config = config
        self._controller = controller

    def config(self) -> ReleasectlConfig:
        """Loaded configuration; exits with code 1 if it is invalid."""
        if self._config is None:
            try:
                self._config = load_config(self.config_path)
            except ValueError as e:
                self.console.print(f"[red]Error:[/red] Invalid configuration: {e}")
                raise typer.Exit(1) from e
        return self._config

    def controller(self) -> ReleaseController:
        if self._controller is None:
            post_renderer = (
                ExecPostRenderer(self.post_renderer, self.post_renderer_args)
                if self.post_renderer
                else None
            )
            self._controller = build_controller(self.config(), post_renderer)
        return self._controller
