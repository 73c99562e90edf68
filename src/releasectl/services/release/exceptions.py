"""Errors raised by the release lifecycle.

Errors raised part-way through a transition carry the release record as it
was persisted, so callers can inspect what was attempted.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from releasectl.integrations.kubernetes.models.release import (
        Hook,
        HookEvent,
        Release,
        ResourceRef,
    )
    from releasectl.services.release.apply import ApplyResult


class ReleaseError(Exception):
    """Base exception for release operations."""

    def __init__(self, message: str, release: Release | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.release = release

    def __str__(self) -> str:
        return self.message


class ReleaseNotFoundError(ReleaseError):
    """A release name, or a specific version of it, does not exist."""

    def __init__(self, name: str, version: int | None = None) -> None:
        if version is None:
            message = f"release '{name}' not found"
        else:
            message = f"release '{name}' version {version} not found"
        super().__init__(message)
        self.name = name
        self.version = version


class InvalidStateError(ReleaseError):
    """The requested transition is not allowed from the current state."""


class InvariantViolationError(InvalidStateError):
    """Stored history breaks a lifecycle invariant (e.g. two deployed versions)."""


class StoreConflictError(ReleaseError):
    """Create on an existing key, or update on a missing one."""

    def __init__(self, name: str, version: int, *, exists: bool) -> None:
        if exists:
            message = f"release '{name}' version {version} already exists"
        else:
            message = f"release '{name}' version {version} does not exist"
        super().__init__(message)
        self.name = name
        self.version = version
        self.exists = exists


class HookFailureError(ReleaseError):
    """A hook failed or did not become ready in time."""

    def __init__(self, hook: Hook, event: HookEvent, cause: Exception) -> None:
        super().__init__(f"{event.value} hook {hook.name} failed: {cause}")
        self.hook = hook
        self.event = event
        self.cause = cause


class ApplyFailureError(ReleaseError):
    """One or more resource operations failed during apply.

    Attributes:
        failures: ``(resource, error)`` pairs, in the order they happened.
        result: The full apply result, including what succeeded.
    """

    def __init__(
        self,
        failures: Sequence[tuple[ResourceRef, Exception]],
        result: ApplyResult | None = None,
    ) -> None:
        details = "; ".join(f"{ref}: {err}" for ref, err in failures)
        super().__init__(f"{len(failures)} resource operation(s) failed: {details}")
        self.failures = list(failures)
        self.result = result


class ManifestError(ReleaseError):
    """A rendered manifest could not be parsed or classified."""


class RenderError(ReleaseError):
    """A chart could not be loaded or rendered."""
