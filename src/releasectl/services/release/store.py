"""Release store: versioned history of release records.

The store layers lifecycle queries (history, deployed, last) over a
:class:`StorageDriver`. It owns release records exclusively; callers get
copies and write changes back with :meth:`ReleaseStore.update`.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from releasectl.integrations.kubernetes.models.release import Release, ReleaseStatus
from releasectl.services.release.drivers import MemoryDriver, StorageDriver
from releasectl.services.release.exceptions import (
    InvariantViolationError,
    ReleaseNotFoundError,
)

logger = structlog.get_logger()


class ReleaseStore:
    """Versioned release records keyed by ``(name, version)``."""

    def __init__(self, driver: StorageDriver | None = None) -> None:
        self._driver = driver or MemoryDriver()

    @property
    def driver(self) -> StorageDriver:
        return self._driver

    @property
    def _log(self) -> Any:
        return logger.bind(driver=self._driver.name)

    def create(self, release: Release) -> None:
        """Persist a new record.

        Raises:
            StoreConflictError: If ``(name, version)`` already exists.
        """
        self._log.debug(
            "creating_release_record",
            release=release.name,
            version=release.version,
            status=release.status.value,
        )
        self._driver.create(release)

    def update(self, release: Release) -> None:
        """Overwrite an existing record.

        Raises:
            StoreConflictError: If ``(name, version)`` does not exist.
        """
        self._log.debug(
            "updating_release_record",
            release=release.name,
            version=release.version,
            status=release.status.value,
        )
        self._driver.update(release)

    def get(self, name: str, version: int) -> Release:
        return self._driver.get(name, version)

    def history(self, name: str) -> list[Release]:
        """All versions of ``name``, oldest first.

        Raises:
            ReleaseNotFoundError: If the name has never been used.
        """
        records = sorted(self._driver.query(name), key=lambda r: r.version)
        if not records:
            raise ReleaseNotFoundError(name)
        return records

    def deployed(self, name: str) -> Release:
        """The single version of ``name`` currently in ``deployed`` status.

        Raises:
            ReleaseNotFoundError: If no version is deployed.
            InvariantViolationError: If more than one version is deployed.
        """
        deployed = [r for r in self.history(name) if r.status == ReleaseStatus.DEPLOYED]
        if not deployed:
            raise ReleaseNotFoundError(name)
        if len(deployed) > 1:
            versions = ", ".join(str(r.version) for r in deployed)
            self._log.error("multiple_deployed_releases", release=name, versions=versions)
            raise InvariantViolationError(
                f"release '{name}' has {len(deployed)} deployed versions ({versions})"
            )
        return deployed[0]

    def last(self, name: str) -> Release:
        """Highest version of ``name`` regardless of status."""
        return self.history(name)[-1]

    def next_version(self, name: str) -> int:
        """Version number the next record for ``name`` must use."""
        try:
            return self.last(name).version + 1
        except ReleaseNotFoundError:
            return 1

    def list_releases(
        self,
        namespace: str | None = None,
        statuses: Iterable[ReleaseStatus] | None = None,
    ) -> list[Release]:
        """Latest record of every release name, optionally filtered.

        Args:
            namespace: Only releases deployed into this namespace.
            statuses: Only releases whose latest record has one of these statuses.

        Returns:
            Releases sorted by name.
        """
        latest: dict[str, Release] = {}
        for record in self._driver.list_all():
            current = latest.get(record.name)
            if current is None or record.version > current.version:
                latest[record.name] = record

        wanted = set(statuses) if statuses is not None else None
        result = [
            r
            for r in latest.values()
            if (namespace is None or r.namespace == namespace)
            and (wanted is None or r.status in wanted)
        ]
        return sorted(result, key=lambda r: r.name)

    def delete(self, name: str, version: int) -> Release:
        """Remove a record outright. Lifecycle operations never call this."""
        self._log.info("deleting_release_record", release=name, version=version)
        return self._driver.delete(name, version)
