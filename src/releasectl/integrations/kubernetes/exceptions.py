"""Exceptions raised by the Kubernetes integration.

Every error may point at the object it concerns (``kind``/``name`` and, for
namespaced objects, ``namespace``). Subclasses only differ in their default
message and HTTP status.
"""

from __future__ import annotations


class KubernetesError(Exception):
    """Base exception for cluster operations.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code from the API server, if any.
        kind: Kind of the object involved.
        name: Name of the object involved.
        namespace: Namespace of the object, if namespaced.
    """

    default_message = "Kubernetes operation failed"
    default_status: int | None = None

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        *,
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.status_code = status_code if status_code is not None else self.default_status
        self.kind = kind
        self.name = name
        self.namespace = namespace

    @property
    def location(self) -> str | None:
        """``Kind/name in namespace``, or None when no object is attached."""
        if not (self.kind and self.name):
            return None
        where = f"{self.kind}/{self.name}"
        return f"{where} in {self.namespace}" if self.namespace else where

    def __str__(self) -> str:
        text = self.message
        if self.status_code:
            text += f" (status: {self.status_code})"
        if self.location:
            text += f" [{self.location}]"
        return text


def _object_message(kind: str | None, name: str | None, namespace: str | None, state: str) -> str:
    if not (kind and name):
        return ""
    message = f"{kind} '{name}' {state}"
    return f"{message} in namespace '{namespace}'" if namespace else message


class KubernetesConnectionError(KubernetesError):
    """The API server could not be reached or the kubeconfig is unusable."""

    default_message = "Failed to connect to Kubernetes cluster"

    def __init__(
        self, message: str | None = None, original_error: Exception | None = None
    ) -> None:
        super().__init__(message)
        self.original_error = original_error


class KubernetesAuthError(KubernetesError):
    """Authentication or RBAC authorization failed (401/403)."""

    default_message = "Kubernetes authentication/authorization failed"
    default_status = 401

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, status_code)
        self.reason = reason


class KubernetesNotFoundError(KubernetesError):
    """The requested object does not exist (404)."""

    default_message = "Kubernetes resource not found"
    default_status = 404

    def __init__(
        self,
        message: str | None = None,
        *,
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(
            _object_message(kind, name, namespace, "not found") or message,
            kind=kind,
            name=name,
            namespace=namespace,
        )


class KubernetesConflictError(KubernetesError):
    """The object already exists or was modified concurrently (409)."""

    default_message = "Resource conflict"
    default_status = 409

    def __init__(
        self,
        message: str | None = None,
        *,
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(
            _object_message(kind, name, namespace, "already exists") or message,
            kind=kind,
            name=name,
            namespace=namespace,
        )


class KubernetesValidationError(KubernetesError):
    """The API server rejected a manifest (400/422)."""

    default_message = "Invalid resource specification"
    default_status = 422


class KubernetesTimeoutError(KubernetesError):
    """A readiness wait or API call exceeded its deadline."""

    default_message = "Kubernetes operation timed out"

    def __init__(
        self,
        message: str | None = None,
        timeout_seconds: float | None = None,
        *,
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        text = message or self.default_message
        if timeout_seconds:
            text = f"{text} (after {timeout_seconds:g}s)"
        super().__init__(text, kind=kind, name=name, namespace=namespace)
        self.timeout_seconds = timeout_seconds


class ResourceFailedError(KubernetesError):
    """An object reached a terminal failed state (a failed Job or Pod)."""

    default_message = "Resource failed"
