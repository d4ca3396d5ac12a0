"""File selection for asset classes.

Turns a :class:`~asset_pipeline.config.TargetConfig` into an ordered,
de-duplicated list of files.  Ordering is deterministic for a given
filesystem state: files matching a ``preference`` (or explicit ``files``)
entry come first in entry order, everything else follows, and ties are broken
by a case-insensitive comparison of the root-relative path.
"""

from __future__ import annotations

import logging
import os
import posixpath
from typing import Iterable, Sequence

from .config import TargetConfig
from .exceptions import FilesystemError

logger = logging.getLogger(__name__)


def _posix(path: str) -> str:
    return path.replace("\\", "/")


def _clean_entry(entry: str) -> str:
    """Normalize a configured relative path to forward slashes without ``./``."""
    entry = posixpath.normpath(_posix(entry))
    return "" if entry == "." else entry


def _exclusion_prefix(entry: str) -> str:
    """Exclusions match as written; only slashes and a leading ``./`` are normalized."""
    entry = _posix(entry)
    while entry.startswith("./"):
        entry = entry[2:]
    return entry.lower()


def _extension_match(path: str, extensions: Sequence[str]) -> bool:
    """Case-insensitive extension check; no extensions means anything goes."""
    if not extensions:
        return True
    ext = posixpath.splitext(path.lower())[1]
    return any(ext == e.lower() for e in extensions)


def _preference_rank(preferences: Sequence[str], path: str) -> int:
    """Index of the first preference entry matching ``path``.

    Entries with an extension must match the file exactly; entries without
    one match every file contained in that directory.  Unmatched files rank
    after all entries.
    """
    path = path.lower()
    for index, preference in enumerate(preferences):
        preference = preference.lower()
        if posixpath.splitext(preference)[1]:
            if preference == path:
                return index
        elif not preference or path == preference or path.startswith(preference.rstrip("/") + "/"):
            return index
    return len(preferences)


def _walk(directory: str) -> Iterable[str]:
    if not os.path.isdir(directory):
        raise FilesystemError(f"Directory not found: {directory}")

    def _raise(err: OSError) -> None:
        raise FilesystemError(f"Unable to read {err.filename}: {err.strerror}") from err

    for dirpath, dirnames, filenames in os.walk(directory, onerror=_raise):
        dirnames.sort()
        for name in sorted(filenames):
            yield os.path.join(dirpath, name)


class PathMatcher:
    """Resolve target configurations into file selections.

    ``main_root`` is the project root; relative output paths are expressed
    against it so selections from different classes share one base.
    ``explicit_files_bypass_exclusions`` decides whether names listed in
    ``files`` or as exact ``preference`` entries survive an ``exclude``
    prefix.
    """

    def __init__(self, main_root: str, explicit_files_bypass_exclusions: bool = True) -> None:
        self.main_root = os.path.normpath(main_root)
        self.explicit_files_bypass_exclusions = explicit_files_bypass_exclusions

    def select(self, target: TargetConfig, active_root: str, absolute: bool = False) -> list[str]:
        """Return the ordered selection for ``target`` under ``active_root``.

        With ``absolute`` the paths are absolute filesystem paths, otherwise
        forward-slash paths relative to the project root.
        """
        if not target.enabled:
            return []
        active_root = os.path.normpath(active_root)
        files = self._relevant_files(target, active_root)

        if absolute:
            return [os.path.normpath(os.path.join(active_root, f)) for f in files]

        relative_root = _posix(os.path.relpath(active_root, self.main_root))
        if relative_root == ".":
            return files
        return [posixpath.normpath(posixpath.join(relative_root, f)) for f in files]

    # -- internals ------------------------------------------------------
    def _relevant_files(self, target: TargetConfig, active_root: str) -> list[str]:
        def relative(path: str) -> str:
            return _posix(os.path.relpath(path, active_root))

        directories = target.directories
        if directories is None and not target.files:
            directories = ("",)
        search_dirs = [os.path.join(active_root, d) for d in directories or ()]
        explicit_files = [
            relative(os.path.normpath(os.path.join(active_root, f))) for f in target.files
        ]

        # dict preserves discovery order while dropping repeats
        found: dict[str, None] = {}
        for name in explicit_files:
            if os.path.isfile(os.path.join(active_root, name)):
                found.setdefault(name, None)
        for directory in search_dirs:
            for path in _walk(directory):
                found.setdefault(relative(path), None)

        preference = [_clean_entry(p) for p in target.preference]
        exclusions = [p for p in (_exclusion_prefix(e) for e in target.exclude) if p]
        explicit = {p.lower() for p in preference} | {f.lower() for f in explicit_files}

        selected = [f for f in found if self._keep(f, target.extensions, exclusions, explicit)]

        ranking = preference + explicit_files
        selected.sort(key=lambda f: (_preference_rank(ranking, f), f.lower(), f))

        for entry in ranking:
            full_path = os.path.join(active_root, entry)
            # extensions we filter out anyway are not worth a warning
            has_ext = bool(posixpath.splitext(entry)[1])
            if not os.path.exists(full_path) and (not has_ext or _extension_match(entry, target.extensions)):
                logger.warning("%s was in configuration but cannot be found", entry)

        return selected

    def _keep(self, path: str, extensions: Sequence[str], exclusions: Sequence[str], explicit: set[str]) -> bool:
        lowered = path.lower()
        excluded = any(lowered.startswith(prefix) for prefix in exclusions)
        if lowered in explicit:
            return self.explicit_files_bypass_exclusions or not excluded
        return _extension_match(path, extensions) and not excluded


def select_files(
    target: TargetConfig,
    main_root: str,
    active_root: str | None = None,
    absolute: bool = False,
    explicit_files_bypass_exclusions: bool = True,
) -> list[str]:
    """Convenience wrapper around :class:`PathMatcher`."""
    matcher = PathMatcher(main_root, explicit_files_bypass_exclusions)
    return matcher.select(target, active_root or main_root, absolute)


__all__ = ["PathMatcher", "select_files"]
