"""Data models for releases and the resources they own."""

from releasectl.integrations.kubernetes.models.release import (
    Chart,
    ChartReference,
    Hook,
    HookDeletePolicy,
    HookEvent,
    HookExecution,
    HookPhase,
    Release,
    ReleaseInfo,
    ReleaseStatus,
    ResourceRef,
)

__all__ = [
    "Chart",
    "ChartReference",
    "Hook",
    "HookDeletePolicy",
    "HookEvent",
    "HookExecution",
    "HookPhase",
    "Release",
    "ReleaseInfo",
    "ReleaseStatus",
    "ResourceRef",
]
