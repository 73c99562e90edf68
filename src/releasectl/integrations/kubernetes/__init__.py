"""Kubernetes integration - cluster client, configuration and models."""

from releasectl.integrations.kubernetes.client import KubernetesClient
from releasectl.integrations.kubernetes.cluster import ClusterClient, KubernetesClusterClient
from releasectl.integrations.kubernetes.config import KubernetesConfig
from releasectl.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
    ResourceFailedError,
)

__all__ = [
    "ClusterClient",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesClusterClient",
    "KubernetesConfig",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesTimeoutError",
    "KubernetesValidationError",
    "ResourceFailedError",
]
