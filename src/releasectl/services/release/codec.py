"""Encoding of release records for storage.

Records are serialised as JSON, gzipped, then base64 encoded, the same
layering Helm uses for its release Secrets. Decoding also accepts payloads
that were stored without compression.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import zlib

from pydantic import ValidationError

from releasectl.integrations.kubernetes.models.release import Release
from releasectl.services.release.exceptions import ReleaseError

GZIP_MAGIC = b"\x1f\x8b"


def encode_release(release: Release) -> str:
    """Encode a release as base64(gzip(json))."""
    payload = gzip.compress(release.model_dump_json().encode("utf-8"))
    return base64.b64encode(payload).decode("ascii")


def decode_release(data: str | bytes) -> Release:
    """Decode a record produced by :func:`encode_release`.

    Raises:
        ReleaseError: If the payload is not a valid encoded release.
    """
    try:
        raw = base64.b64decode(data, validate=True)
        if raw[:2] == GZIP_MAGIC:
            raw = gzip.decompress(raw)
        return Release.model_validate_json(raw)
    except (binascii.Error, EOFError, OSError, ValidationError, zlib.error) as e:
        raise ReleaseError(f"corrupt release record: {e}") from e
