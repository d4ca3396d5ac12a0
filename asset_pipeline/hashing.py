"""Content fingerprints for file selections."""

from __future__ import annotations

import hashlib
from typing import Sequence

from .exceptions import FilesystemError

_CHUNK_SIZE = 64 * 1024


def hash_files(files: Sequence[str], trailer: bytes | None = None) -> str | None:
    """Return the MD5 hex digest of the files' bytes, read in list order.

    ``trailer`` is fed into the digest after the last file.  Returns ``None``
    for an empty list: no files means nothing to publish.
    """
    if not files:
        return None

    hasher = hashlib.md5()
    for path in files:
        try:
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                    hasher.update(chunk)
        except OSError as exc:
            raise FilesystemError(f"Unable to read {path}: {exc}") from exc
    if trailer:
        hasher.update(trailer)
    return hasher.hexdigest()


def fingerprint_path(folder: str, digest: str, extension: str) -> str:
    """Storage key for a fingerprint, e.g. ``js/<digest>.js``."""
    return f"{folder.strip('/')}/{digest}{extension}"


__all__ = ["hash_files", "fingerprint_path"]
