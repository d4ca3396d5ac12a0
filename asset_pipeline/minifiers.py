"""Minifier adapters.

The pipeline only needs two narrow contracts:

* JavaScript: ``minify(files, source_map_url=None) -> JsBundle``
* CSS: ``minify(css) -> str``

``rjsmin``/``rcssmin`` are used by default.  ``terser`` can be used instead
for JavaScript when it is installed; it is the only adapter that produces a
source map.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Protocol, Sequence

import rcssmin
import rjsmin

from .exceptions import ConfigurationError, FilesystemError, MinificationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JsBundle:
    code: str = ""
    source_map: str | None = None


class JsMinifier(Protocol):
    def minify(self, files: Sequence[str], source_map_url: str | None = None) -> JsBundle:
        ...


class CssMinifier(Protocol):
    def minify(self, css: str) -> str:
        ...


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise FilesystemError(f"Unable to read {path}: {exc}") from exc


class RjsminMinifier:
    """Concatenate files in order and strip comments/whitespace with rjsmin."""

    def minify(self, files: Sequence[str], source_map_url: str | None = None) -> JsBundle:
        # each file ends with a statement boundary so ASI can't glue them together
        source = "\n;".join(_read_text(f) for f in files)
        return JsBundle(code=rjsmin.jsmin(source) + "\n")


class TerserMinifier:
    """Compress and mangle with the ``terser`` CLI, emitting a source map."""

    def __init__(self, executable: str | None = None, timeout: float | None = None) -> None:
        self.executable = executable or os.getenv("TERSER_PATH") or shutil.which("terser")
        self.timeout = timeout

    def minify(self, files: Sequence[str], source_map_url: str | None = None) -> JsBundle:
        if not self.executable:
            raise ConfigurationError("terser executable not found; set TERSER_PATH")

        with tempfile.TemporaryDirectory() as tmpdir:
            out_path = os.path.join(tmpdir, "bundle.js")
            args = [self.executable, *files, "--compress", "--mangle", "--output", out_path]
            if source_map_url:
                args += ["--source-map", f"url='{source_map_url}'"]
            try:
                subprocess.run(args, check=True, capture_output=True, text=True, timeout=self.timeout)
            except subprocess.CalledProcessError as exc:
                raise MinificationError(exc.stderr.strip() or str(exc)) from exc
            except (subprocess.TimeoutExpired, OSError) as exc:
                raise MinificationError(str(exc)) from exc

            code = _read_text(out_path)
            map_path = out_path + ".map"
            source_map = _read_text(map_path) if os.path.exists(map_path) else None
        return JsBundle(code=code, source_map=source_map)


class RcssminMinifier:
    def minify(self, css: str) -> str:
        return rcssmin.cssmin(css)


def get_js_minifier(name: str | None = None) -> JsMinifier:
    """Return the JavaScript minifier selected by name or ``JS_MINIFIER``."""
    name = (name or os.getenv("JS_MINIFIER") or "rjsmin").lower()
    if name == "terser":
        return TerserMinifier()
    if name == "rjsmin":
        return RjsminMinifier()
    raise ConfigurationError(f"Unknown JavaScript minifier '{name}'")


__all__ = [
    "JsBundle",
    "JsMinifier",
    "CssMinifier",
    "RjsminMinifier",
    "TerserMinifier",
    "RcssminMinifier",
    "get_js_minifier",
]
