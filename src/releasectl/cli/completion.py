"""Shell completion providers for CLI parameters.

Providers live in a :class:`CompletionRegistry` that is built once at startup
and handed to the command builder, so each application instance owns its own
set of providers.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from releasectl.cli.output import OutputFormat
from releasectl.integrations.kubernetes.exceptions import KubernetesError
from releasectl.integrations.kubernetes.models.release import ReleaseStatus
from releasectl.services.release.exceptions import ReleaseError

if TYPE_CHECKING:
    from releasectl.services.release.controller import ReleaseController

logger = structlog.get_logger()

CompletionProvider = Callable[[str], list[str]]


class CompletionRegistry:
    """Completion providers keyed by parameter name (``release``, ``status``...)."""

    def __init__(self) -> None:
        self._providers: dict[str, CompletionProvider] = {}

    def register(self, key: str, provider: CompletionProvider) -> None:
        """Register ``provider`` for ``key``.

        Raises:
            ValueError: If a provider is already registered for ``key``.
        """
        if key in self._providers:
            raise ValueError(f"completion provider already registered for '{key}'")
        self._providers[key] = provider

    def provider(self, key: str) -> CompletionProvider:
        """The provider for ``key``, suitable for typer's ``autocompletion``.

        Raises:
            KeyError: If nothing is registered for ``key``.
        """
        return self._providers[key]

    def complete(self, key: str, incomplete: str) -> list[str]:
        return self._providers[key](incomplete)

    def __contains__(self, key: object) -> bool:
        return key in self._providers

    def keys(self) -> list[str]:
        return sorted(self._providers)


def _choices(values: list[str]) -> CompletionProvider:
    def complete(incomplete: str) -> list[str]:
        return [v for v in values if v.startswith(incomplete)]

    return complete


def build_completion_registry(
    get_controller: Callable[[], ReleaseController],
) -> CompletionRegistry:
    """Build the registry used by the release commands."""
    registry = CompletionRegistry()

    def release_names(incomplete: str) -> list[str]:
        try:
            releases = get_controller().list_releases()
        except (ReleaseError, KubernetesError) as e:
            logger.debug("release_completion_unavailable", error=str(e))
            return []
        return [r.name for r in releases if r.name.startswith(incomplete)]

    registry.register("release", release_names)
    registry.register("status", _choices([s.value for s in ReleaseStatus]))
    registry.register("output", _choices([f.value for f in OutputFormat]))
    return registry
