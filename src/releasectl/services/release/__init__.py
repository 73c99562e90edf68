"""Release lifecycle service module.

Provides the release store and its storage drivers, hook execution, the
diff/apply engine and the controller that drives install, upgrade, rollback
and uninstall transitions.
"""

from releasectl.services.release.apply import ApplyPlan, ApplyResult, DiffApplyEngine
from releasectl.services.release.controller import ActionOptions, ReleaseController
from releasectl.services.release.drivers import MemoryDriver, SecretDriver, StorageDriver
from releasectl.services.release.exceptions import (
    ApplyFailureError,
    HookFailureError,
    InvalidStateError,
    InvariantViolationError,
    ManifestError,
    ReleaseError,
    ReleaseNotFoundError,
    RenderError,
    StoreConflictError,
)
from releasectl.services.release.hooks import HookExecutor
from releasectl.services.release.postrender import ExecPostRenderer, PostRenderer
from releasectl.services.release.renderer import JinjaRenderer, Renderer, load_chart
from releasectl.services.release.store import ReleaseStore

__all__ = [
    "ActionOptions",
    "ApplyFailureError",
    "ApplyPlan",
    "ApplyResult",
    "DiffApplyEngine",
    "ExecPostRenderer",
    "HookExecutor",
    "HookFailureError",
    "InvalidStateError",
    "InvariantViolationError",
    "JinjaRenderer",
    "ManifestError",
    "MemoryDriver",
    "PostRenderer",
    "ReleaseController",
    "ReleaseError",
    "ReleaseNotFoundError",
    "ReleaseStore",
    "RenderError",
    "SecretDriver",
    "StorageDriver",
    "StoreConflictError",
]
