"""Rebasing of ``url()`` references in stylesheets.

Bundled CSS no longer lives next to the files it references, so relative
references are rewritten to site-absolute paths::

    CSS file:          /app/public/stylesheets/styles.css
    reference:         ../images/logo.png
    resolved locally:  /app/public/images/logo.png
    rebased (root /app/public):  /images/logo.png

External references (``http://``, ``https://``, ``//host``), data URIs and
already absolute paths are left untouched.
"""

from __future__ import annotations

import logging
import os
import re

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"""url\((['"]?)([^'")]+)['"]?\)""", re.IGNORECASE)
EXTERNAL_RE = re.compile(r"^(https?:)?//", re.IGNORECASE)
BASE64_RE = re.compile(r"^data:.+;base64", re.IGNORECASE)
SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*:", re.IGNORECASE)
ABSOLUTE_RE = re.compile(r"^[/\\][^/]")
SUFFIX_RE = re.compile(r"[?#]")


class CssUrlRebaser:
    """Rewrite relative ``url()`` references to site-absolute paths under ``css_root``."""

    def __init__(self, css_root: str) -> None:
        self.css_root = os.path.normpath(css_root)

    def rebase(self, css_file: str, css: str) -> str:
        """Return ``css`` with its relative references rebased.

        ``css_file`` is the stylesheet's own path, used to resolve relative
        references.  Replacements are spliced in place and scanning resumes
        after each replacement, so repeated URLs are each handled once.
        """
        css_file = os.path.normpath(css_file)
        pos = 0
        while True:
            match = URL_RE.search(css, pos)
            if match is None:
                break
            url = match.group(2).strip()
            rebased = self.rebase_url(css_file, url)
            if rebased == url:
                pos = match.end()
                continue
            start, end = match.span(2)
            css = css[:start] + rebased + css[end:]
            pos = start + len(rebased)
        return css

    def rebase_url(self, css_file: str, url: str) -> str:
        if EXTERNAL_RE.match(url) or BASE64_RE.match(url) or SCHEME_RE.match(url):
            return url
        if ABSOLUTE_RE.match(url):
            return url

        suffix_match = SUFFIX_RE.search(url)
        path, suffix = (url[: suffix_match.start()], url[suffix_match.start():]) if suffix_match else (url, "")
        if not path:
            # fragment-only references such as url(#gradient)
            return url

        resolved = os.path.normpath(os.path.join(os.path.dirname(css_file), path))
        relative = os.path.relpath(resolved, self.css_root)
        if relative == ".." or relative.startswith(".." + os.sep):
            logger.warning("%s in %s resolves outside %s; left unchanged", url, css_file, self.css_root)
            return url
        return f"/{relative.replace(os.sep, '/')}{suffix}"


__all__ = ["CssUrlRebaser"]
