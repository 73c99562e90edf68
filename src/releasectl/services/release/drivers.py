"""Storage drivers for release records.

A driver persists records keyed by ``(name, version)`` and must make
``create`` and ``update`` atomic per key: ``create`` fails when the key
exists, ``update`` fails when it does not.
"""

from __future__ import annotations

import base64
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import structlog

from releasectl.services.release.codec import decode_release, encode_release
from releasectl.services.release.exceptions import ReleaseNotFoundError, StoreConflictError

if TYPE_CHECKING:
    from releasectl.integrations.kubernetes.client import KubernetesClient
    from releasectl.integrations.kubernetes.models.release import Release

logger = structlog.get_logger()

OWNER_LABEL_VALUE = "releasectl"
SECRET_TYPE = "releasectl.io/release.v1"
SECRET_DATA_KEY = "release"


class StorageDriver(ABC):
    """Persistence backend for release records."""

    name: str = ""

    @abstractmethod
    def create(self, release: Release) -> None:
        """Store a new record. Raises StoreConflictError if the key exists."""

    @abstractmethod
    def update(self, release: Release) -> None:
        """Replace a record. Raises StoreConflictError if the key is missing."""

    @abstractmethod
    def get(self, name: str, version: int) -> Release:
        """Fetch a record. Raises ReleaseNotFoundError if absent."""

    @abstractmethod
    def query(self, name: str) -> list[Release]:
        """All records for ``name``, in no particular order."""

    @abstractmethod
    def list_all(self) -> list[Release]:
        """Every record known to the driver."""

    @abstractmethod
    def delete(self, name: str, version: int) -> Release:
        """Remove and return a record. Raises ReleaseNotFoundError if absent."""


class MemoryDriver(StorageDriver):
    """In-process driver. Records are copied in and out so callers never share state."""

    name = "memory"

    def __init__(self) -> None:
        self._records: dict[tuple[str, int], Release] = {}
        self._lock = threading.Lock()

    def create(self, release: Release) -> None:
        with self._lock:
            if release.key in self._records:
                raise StoreConflictError(release.name, release.version, exists=True)
            self._records[release.key] = release.model_copy(deep=True)

    def update(self, release: Release) -> None:
        with self._lock:
            if release.key not in self._records:
                raise StoreConflictError(release.name, release.version, exists=False)
            self._records[release.key] = release.model_copy(deep=True)

    def get(self, name: str, version: int) -> Release:
        with self._lock:
            record = self._records.get((name, version))
            if record is None:
                raise ReleaseNotFoundError(name, version)
            return record.model_copy(deep=True)

    def query(self, name: str) -> list[Release]:
        with self._lock:
            return [r.model_copy(deep=True) for (n, _), r in self._records.items() if n == name]

    def list_all(self) -> list[Release]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._records.values()]

    def delete(self, name: str, version: int) -> Release:
        with self._lock:
            record = self._records.pop((name, version), None)
            if record is None:
                raise ReleaseNotFoundError(name, version)
            return record


class SecretDriver(StorageDriver):
    """Stores each record as a Kubernetes Secret in a single namespace.

    Secrets are named ``releasectl.release.v1.<name>.v<version>`` and labelled
    with ``name``, ``owner``, ``status`` and ``version`` so that history can be
    listed with a label selector.
    """

    name = "secret"

    def __init__(self, client: KubernetesClient, namespace: str) -> None:
        self._client = client
        self._namespace = namespace

    @property
    def _log(self) -> Any:
        return logger.bind(driver=self.name, namespace=self._namespace)

    @staticmethod
    def secret_name(name: str, version: int) -> str:
        return f"releasectl.release.v1.{name}.v{version}"

    def _body(self, release: Release) -> dict[str, Any]:
        encoded = encode_release(release)
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": SECRET_TYPE,
            "metadata": {
                "name": self.secret_name(release.name, release.version),
                "namespace": self._namespace,
                "labels": {
                    "name": release.name,
                    "owner": OWNER_LABEL_VALUE,
                    "status": release.status.value,
                    "version": str(release.version),
                },
            },
            "data": {SECRET_DATA_KEY: base64.b64encode(encoded.encode("ascii")).decode("ascii")},
        }

    @staticmethod
    def _decode(secret: Any) -> Release:
        data = secret.data or {}
        return decode_release(base64.b64decode(data[SECRET_DATA_KEY]))

    def _translate(self, e: Exception, name: str, version: int | None = None) -> Exception:
        return self._client.translate_api_exception(
            e,
            kind="Secret",
            name=self.secret_name(name, version) if version else name,
            namespace=self._namespace,
        )

    def create(self, release: Release) -> None:
        from kubernetes.client import ApiException

        try:
            self._client.core_v1.create_namespaced_secret(self._namespace, self._body(release))
        except ApiException as e:
            if e.status == 409:
                raise StoreConflictError(release.name, release.version, exists=True) from e
            raise self._translate(e, release.name, release.version) from e
        self._log.debug("release_record_created", release=release.name, version=release.version)

    def update(self, release: Release) -> None:
        from kubernetes.client import ApiException

        try:
            self._client.core_v1.replace_namespaced_secret(
                self.secret_name(release.name, release.version),
                self._namespace,
                self._body(release),
            )
        except ApiException as e:
            if e.status == 404:
                raise StoreConflictError(release.name, release.version, exists=False) from e
            raise self._translate(e, release.name, release.version) from e
        self._log.debug("release_record_updated", release=release.name, version=release.version)

    def get(self, name: str, version: int) -> Release:
        from kubernetes.client import ApiException

        try:
            secret = self._client.core_v1.read_namespaced_secret(
                self.secret_name(name, version), self._namespace
            )
        except ApiException as e:
            if e.status == 404:
                raise ReleaseNotFoundError(name, version) from e
            raise self._translate(e, name, version) from e
        return self._decode(secret)

    def _list(self, selector: str) -> list[Release]:
        from kubernetes.client import ApiException

        try:
            secrets = self._client.core_v1.list_namespaced_secret(
                self._namespace, label_selector=selector
            )
        except ApiException as e:
            raise self._translate(e, selector) from e
        return [self._decode(secret) for secret in secrets.items]

    def query(self, name: str) -> list[Release]:
        return self._list(f"owner={OWNER_LABEL_VALUE},name={name}")

    def list_all(self) -> list[Release]:
        return self._list(f"owner={OWNER_LABEL_VALUE}")

    def delete(self, name: str, version: int) -> Release:
        from kubernetes.client import ApiException

        release = self.get(name, version)
        try:
            self._client.core_v1.delete_namespaced_secret(
                self.secret_name(name, version), self._namespace
            )
        except ApiException as e:
            if e.status == 404:
                raise ReleaseNotFoundError(name, version) from e
            raise self._translate(e, name, version) from e
        return release
