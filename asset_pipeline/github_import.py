"""Import stylesheets from GitHub into the local tree.

Sources may be given as browser "blob" URLs, which are translated to the
contents API before fetching::

    https://github.com/<org>/<repo>/blob/<branch>/<path>
        -> https://api.github.com/repos/<org>/<repo>/contents/<path>

After a file is written, literal search/replace ``mappings`` are applied so
imported stylesheets can point at this project's asset locations.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Iterable, Sequence

import requests

from .exceptions import HttpError, ImportFailedError, ImportSourceError, TransportError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "asset-pipeline"

_BLOB_URL_RE = re.compile(r"^https?://github\.com/([^/]+)/([^/]+)/blob/[^/]+/(.*)$")
_API_URL_RE = re.compile(r"^https?://api\.github\.com/repos/")


def to_api_url(source_url: str) -> str:
    """Translate a blob URL to the contents API; validate API URLs.

    Raises :class:`ImportSourceError` for any other shape, before any
    request is made.
    """
    match = _BLOB_URL_RE.match(source_url)
    if match:
        org, repo, path = match.groups()
        source_url = f"{GITHUB_API_URL}/repos/{org}/{repo}/contents/{path}"
    if not _API_URL_RE.match(source_url):
        raise ImportSourceError(f"Invalid github import source URL: {source_url}")
    return source_url


def apply_mappings(path: str, mappings: Iterable[tuple[str, str]]) -> None:
    """Apply literal ``(search, replacement)`` pairs to the file in order."""
    with open(path, encoding="utf-8") as f:
        text = f.read()
    for search, replacement in mappings:
        text = text.replace(search, replacement)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


class GitImporter:
    """Fetch raw file contents from the GitHub contents API."""

    def __init__(
        self,
        token: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {
            # raw file body instead of the JSON envelope
            "Accept": "application/vnd.github.v3.raw",
            # the API rejects requests without one
            "User-Agent": USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def import_file(self, source_url: str, dest_path: str) -> str:
        """Download ``source_url`` to ``dest_path``; return the API URL used."""
        api_url = to_api_url(source_url)
        try:
            response = self.session.get(api_url, headers=self._headers(), stream=True, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(api_url, str(exc)) from exc
        try:
            if response.status_code != 200:
                raise HttpError(api_url, response.status_code)
            with open(dest_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    f.write(chunk)
        finally:
            response.close()
        return api_url

    def import_all(
        self,
        sources: Sequence[str],
        dest_dir: str,
        mappings: Sequence[tuple[str, str]] = (),
    ) -> int:
        """Import ``sources`` one after another into ``dest_dir``.

        The first failure aborts the remaining queue and is raised as
        :class:`ImportFailedError` carrying the number already imported.
        """
        if not os.path.isdir(dest_dir):
            logger.info("Creating import directory %s", dest_dir)
            os.makedirs(dest_dir, exist_ok=True)

        logger.info("Importing %d css files to %s", len(sources), dest_dir)
        if mappings:
            logger.info("Will be applying the following remappings: %s", dict(mappings))

        imported = 0
        for source in sources:
            dest_path = os.path.join(dest_dir, os.path.basename(source))
            logger.info("Importing %s to %s", source, dest_path)
            try:
                self.import_file(source, dest_path)
                apply_mappings(dest_path, mappings)
            except (HttpError, ImportSourceError, TransportError, OSError, UnicodeDecodeError) as exc:
                logger.error("Import of %s failed: %s", source, exc)
                raise ImportFailedError(imported, len(sources), exc) from exc
            imported += 1

        logger.info("Imported %d of %d stylesheets", imported, len(sources))
        return imported


__all__ = ["GitImporter", "to_api_url", "apply_mappings"]
