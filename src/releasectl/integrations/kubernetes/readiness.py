"""Readiness checks for live objects.

Each check takes the object as a plain dict (as returned by the dynamic
client's ``to_dict()``) and returns True once it is ready. Terminal failures
raise :class:`ResourceFailedError` so that callers stop waiting early.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from releasectl.integrations.kubernetes.exceptions import ResourceFailedError

ReadinessCheck = Callable[[dict[str, Any]], bool]


def _status(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("status") or {}


def _spec(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("spec") or {}


def _name(obj: dict[str, Any]) -> str:
    return str((obj.get("metadata") or {}).get("name", ""))


def _generation_observed(obj: dict[str, Any]) -> bool:
    generation = (obj.get("metadata") or {}).get("generation")
    observed = _status(obj).get("observedGeneration")
    if generation is None or observed is None:
        return True
    return int(observed) >= int(generation)


def _condition(obj: dict[str, Any], condition_type: str) -> str | None:
    for condition in _status(obj).get("conditions") or []:
        if condition.get("type") == condition_type:
            return str(condition.get("status"))
    return None


def job_ready(obj: dict[str, Any]) -> bool:
    """A Job is ready once it has completed; a Failed condition is terminal."""
    if _condition(obj, "Failed") == "True":
        raise ResourceFailedError(
            message="Job failed",
            kind="Job",
            name=_name(obj),
        )
    if _condition(obj, "Complete") == "True":
        return True
    completions = _spec(obj).get("completions") or 1
    return int(_status(obj).get("succeeded") or 0) >= int(completions)


def pod_ready(obj: dict[str, Any]) -> bool:
    """Succeeded pods are done; running pods must report the Ready condition."""
    phase = _status(obj).get("phase")
    if phase == "Failed":
        raise ResourceFailedError(
            message="Pod failed",
            kind="Pod",
            name=_name(obj),
        )
    if phase == "Succeeded":
        return True
    return phase == "Running" and _condition(obj, "Ready") == "True"


def deployment_ready(obj: dict[str, Any]) -> bool:
    if not _generation_observed(obj):
        return False
    replicas = int(_spec(obj).get("replicas", 1) or 0)
    status = _status(obj)
    return (
        int(status.get("updatedReplicas") or 0) >= replicas
        and int(status.get("availableReplicas") or 0) >= replicas
    )


def statefulset_ready(obj: dict[str, Any]) -> bool:
    if not _generation_observed(obj):
        return False
    replicas = int(_spec(obj).get("replicas", 1) or 0)
    status = _status(obj)
    return (
        int(status.get("readyReplicas") or 0) >= replicas
        and int(status.get("updatedReplicas") or 0) >= replicas
    )


def daemonset_ready(obj: dict[str, Any]) -> bool:
    if not _generation_observed(obj):
        return False
    status = _status(obj)
    desired = int(status.get("desiredNumberScheduled") or 0)
    return (
        int(status.get("numberReady") or 0) >= desired
        and int(status.get("updatedNumberScheduled") or 0) >= desired
    )


def pvc_ready(obj: dict[str, Any]) -> bool:
    return _status(obj).get("phase") == "Bound"


READINESS_CHECKS: dict[str, ReadinessCheck] = {
    "DaemonSet": daemonset_ready,
    "Deployment": deployment_ready,
    "Job": job_ready,
    "PersistentVolumeClaim": pvc_ready,
    "Pod": pod_ready,
    "StatefulSet": statefulset_ready,
}


def is_ready(obj: dict[str, Any]) -> bool:
    """Dispatch to the kind-specific check; kinds without one are ready on sight."""
    check = READINESS_CHECKS.get(str(obj.get("kind", "")))
    if check is None:
        return True
    return check(obj)
