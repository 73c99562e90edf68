"""Kubernetes API access for releasectl.

:class:`KubernetesClient` resolves cluster credentials once (kubeconfig first,
then the in-cluster service account) and hands out the two API surfaces the
release lifecycle needs: ``core_v1`` for release Secrets and a dynamic client
for applying arbitrary chart objects. SDK errors are mapped onto the
:class:`KubernetesError` family by :func:`translate_api_exception`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from releasectl.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Api
    from kubernetes.dynamic import DynamicClient

    from releasectl.integrations.kubernetes.config import KubernetesConfig

logger = structlog.get_logger()

IN_CLUSTER_CONTEXT = "in-cluster"

# HTTP status -> error factory, called with (reason, status, kind, name, namespace).
_STATUS_ERRORS: dict[int, Callable[..., KubernetesError]] = {
    400: lambda reason, status, **_: KubernetesValidationError(reason, status),
    401: lambda reason, status, **_: KubernetesAuthError(reason, status, reason=reason),
    403: lambda reason, status, **_: KubernetesAuthError(reason, status, reason=reason),
    404: lambda reason, status, **where: KubernetesNotFoundError(**where),
    409: lambda reason, status, **where: KubernetesConflictError(**where),
    422: lambda reason, status, **_: KubernetesValidationError(reason, status),
}


def translate_api_exception(
    e: Exception,
    *,
    kind: str | None = None,
    name: str | None = None,
    namespace: str | None = None,
) -> KubernetesError:
    """Map an SDK exception onto the KubernetesError family.

    ``ApiException`` and the dynamic client's ``DynamicApiError`` both carry
    the HTTP ``status`` and ``reason``; urllib3 transport errors become
    :class:`KubernetesConnectionError`. Errors that are already translated
    are returned unchanged.
    """
    from kubernetes.client import ApiException
    from kubernetes.dynamic.exceptions import DynamicApiError
    from urllib3.exceptions import HTTPError

    if isinstance(e, KubernetesError):
        return e
    if isinstance(e, HTTPError):
        return KubernetesConnectionError(original_error=e)

    where = {"kind": kind, "name": name, "namespace": namespace}
    if not isinstance(e, ApiException | DynamicApiError):
        return KubernetesError(str(e), **where)

    status = getattr(e, "status", None)
    reason = getattr(e, "reason", None)
    factory = _STATUS_ERRORS.get(status) if status is not None else None
    if factory is not None:
        return factory(reason, status, **where)
    return KubernetesError(reason or f"Kubernetes API error: {status}", status, **where)


class KubernetesClient:
    """Credentials and lazily created API objects for one cluster.

    Example:
        ```python
        with KubernetesClient(KubernetesConfig(context="kind-dev")) as client:
            secrets = client.core_v1.list_namespaced_secret("releases")
        ```
    """

    translate_api_exception = staticmethod(translate_api_exception)

    def __init__(self, config: KubernetesConfig) -> None:
        self._config = config
        self._core_v1: CoreV1Api | None = None
        self._dynamic: DynamicClient | None = None
        self._current_context = self._load_credentials()
        logger.info("kubernetes_client_initialized", context=self._current_context)

    def _load_credentials(self) -> str:
        """Load kubeconfig, falling back to in-cluster config.

        Returns:
            The name of the context in use.

        Raises:
            KubernetesConnectionError: If neither source is usable.
        """
        from kubernetes import config
        from kubernetes.config import ConfigException

        try:
            config.load_kube_config(
                config_file=self._config.kubeconfig,
                context=self._config.context,
            )
        except ConfigException as kube_error:
            logger.debug("kubeconfig_unavailable", error=str(kube_error))
        else:
            return self._config.context or "current"

        try:
            config.load_incluster_config()
        except ConfigException as e:
            raise KubernetesConnectionError(
                "Cannot load Kubernetes configuration. "
                "Ensure kubeconfig exists or running inside a cluster.",
                original_error=e,
            ) from e
        return IN_CLUSTER_CONTEXT

    @property
    def core_v1(self) -> CoreV1Api:
        """CoreV1Api, used for release Secrets."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api()
        return self._core_v1

    @property
    def dynamic(self) -> DynamicClient:
        """Dynamic client for kind-agnostic apply/get/delete.

        Creating it runs API discovery, so failures surface as translated
        errors here rather than at construction.
        """
        if self._dynamic is None:
            from kubernetes.client import ApiClient
            from kubernetes.dynamic import DynamicClient

            try:
                self._dynamic = DynamicClient(ApiClient())
            except Exception as e:
                raise translate_api_exception(e) from e
        return self._dynamic

    @property
    def current_context(self) -> str:
        return self._current_context

    @property
    def retry_attempts(self) -> int:
        return self._config.retry_attempts

    def make_retry_decorator(self) -> Any:
        """Tenacity decorator retrying :class:`KubernetesConnectionError` with backoff."""
        return retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_after_attempt(self._config.retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    def close(self) -> None:
        """Drop cached API instances."""
        self._core_v1 = None
        self._dynamic = None
        logger.debug("kubernetes_client_closed", context=self._current_context)

    def __enter__(self) -> KubernetesClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
