"""Cluster access contract used by the release lifecycle.

The lifecycle only needs four operations from a cluster: apply a manifest,
fetch live state, delete an object and wait for it to become ready.
:class:`ClusterClient` captures that contract; :class:`KubernetesClusterClient`
implements it over the kubernetes dynamic client with server-side apply.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from releasectl.integrations.kubernetes.config import DEFAULT_FIELD_MANAGER
from releasectl.integrations.kubernetes.exceptions import (
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)
from releasectl.integrations.kubernetes.models.release import ResourceRef
from releasectl.integrations.kubernetes.readiness import is_ready

if TYPE_CHECKING:
    from releasectl.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()


class ClusterClient(ABC):
    """Operations the release lifecycle performs against a cluster."""

    @abstractmethod
    def apply(self, manifest: dict[str, Any], namespace: str | None = None) -> ResourceRef:
        """Create or patch an object so that it matches ``manifest``.

        Raises:
            KubernetesError: If the API server rejects the object.
        """

    @abstractmethod
    def get(self, ref: ResourceRef) -> dict[str, Any]:
        """Return the live state of ``ref``.

        Raises:
            KubernetesNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def delete(self, ref: ResourceRef) -> None:
        """Delete ``ref``.

        Raises:
            KubernetesNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def wait_ready(self, ref: ResourceRef, timeout: float) -> None:
        """Block until ``ref`` is ready, or until ``timeout`` seconds pass.

        Raises:
            KubernetesTimeoutError: If the deadline passes first.
            ResourceFailedError: If the object reaches a failed state.
        """

    def exists(self, ref: ResourceRef) -> bool:
        try:
            self.get(ref)
        except KubernetesNotFoundError:
            return False
        return True


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by a live Kubernetes API server."""

    def __init__(
        self,
        client: KubernetesClient,
        *,
        field_manager: str = DEFAULT_FIELD_MANAGER,
        poll_interval: float = 2.0,
    ) -> None:
        self._client = client
        self._field_manager = field_manager
        self._poll_interval = poll_interval
        self._with_retry = client.make_retry_decorator()

    @property
    def _log(self) -> Any:
        return logger.bind(context=self._client.current_context)

    def _resource_api(self, api_version: str, kind: str) -> Any:
        from kubernetes.dynamic.exceptions import ResourceNotFoundError

        try:
            return self._client.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise KubernetesValidationError(f"Unknown resource kind {api_version}/{kind}") from e

    def _translate(self, e: Exception, ref: ResourceRef) -> Exception:
        return self._client.translate_api_exception(
            e,
            kind=ref.kind,
            name=ref.name,
            namespace=ref.namespace,
        )

    def apply(self, manifest: dict[str, Any], namespace: str | None = None) -> ResourceRef:
        ref = ResourceRef.from_manifest(manifest, namespace)
        body = dict(manifest)
        if ref.namespace:
            body["metadata"] = {**(manifest.get("metadata") or {}), "namespace": ref.namespace}

        @self._with_retry
        def _apply() -> None:
            resource_api = self._resource_api(ref.api_version, ref.kind)
            try:
                resource_api.server_side_apply(
                    body=body,
                    name=ref.name,
                    namespace=ref.namespace,
                    field_manager=self._field_manager,
                    force_conflicts=True,
                )
            except Exception as e:
                raise self._translate(e, ref) from e

        _apply()
        self._log.debug("resource_applied", resource=str(ref), namespace=ref.namespace)
        return ref

    def get(self, ref: ResourceRef) -> dict[str, Any]:
        @self._with_retry
        def _get() -> dict[str, Any]:
            resource_api = self._resource_api(ref.api_version, ref.kind)
            try:
                live = resource_api.get(name=ref.name, namespace=ref.namespace)
            except Exception as e:
                raise self._translate(e, ref) from e
            return live.to_dict() if hasattr(live, "to_dict") else dict(live)

        return _get()

    def delete(self, ref: ResourceRef) -> None:
        @self._with_retry
        def _delete() -> None:
            resource_api = self._resource_api(ref.api_version, ref.kind)
            try:
                resource_api.delete(
                    name=ref.name,
                    namespace=ref.namespace,
                    body={"propagationPolicy": "Background"},
                )
            except Exception as e:
                raise self._translate(e, ref) from e

        _delete()
        self._log.debug("resource_deleted", resource=str(ref), namespace=ref.namespace)

    def wait_ready(self, ref: ResourceRef, timeout: float) -> None:
        retryer = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self._poll_interval),
            retry=(
                retry_if_result(lambda ready: ready is False)
                | retry_if_exception_type(KubernetesNotFoundError)
            ),
        )
        self._log.debug("waiting_for_resource", resource=str(ref), timeout=timeout)
        try:
            retryer(lambda: is_ready(self.get(ref)))
        except RetryError as e:
            raise KubernetesTimeoutError(
                message=f"Timed out waiting for {ref} to become ready",
                timeout_seconds=timeout,
                kind=ref.kind,
                name=ref.name,
                namespace=ref.namespace,
            ) from e

