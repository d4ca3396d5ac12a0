"""LESS compilation.

``.less`` files found under the stylesheet target are rendered to sibling
``.css`` files, which the normal stylesheet selection then picks up.
Rendering is delegated to the ``lessc`` command line compiler.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from typing import Protocol

from .config import TargetConfig
from .exceptions import CompileError, ConfigurationError
from .selection import PathMatcher

logger = logging.getLogger(__name__)

LESS_EXTENSION = ".less"


class LessRenderer(Protocol):
    def render(self, source: str, filename: str) -> str:
        ...


class LesscRenderer:
    """Render LESS source through the ``lessc`` executable."""

    def __init__(self, executable: str | None = None, timeout: float | None = None) -> None:
        self.executable = executable or os.getenv("LESSC_PATH") or shutil.which("lessc")
        self.timeout = timeout

    def render(self, source: str, filename: str) -> str:
        if not self.executable:
            raise ConfigurationError("lessc executable not found; set LESSC_PATH")
        directory = os.path.dirname(os.path.abspath(filename))
        try:
            result = subprocess.run(
                [self.executable, f"--include-path={directory}", "-"],
                input=source,
                capture_output=True,
                text=True,
                check=True,
                cwd=directory,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as exc:
            raise CompileError(filename, exc.stderr.strip() or str(exc)) from exc
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise CompileError(filename, str(exc)) from exc
        return result.stdout


def compile_less_files(
    matcher: PathMatcher,
    target: TargetConfig,
    stylesheets_root: str,
    renderer: LessRenderer | None = None,
) -> list[str]:
    """Compile every ``.less`` file of the stylesheet target.

    Files are processed in selection order and the first failure aborts the
    run.  Returns the paths of the written ``.css`` files.
    """
    less_target = target.with_extensions(LESS_EXTENSION)
    files = [
        f
        for f in matcher.select(less_target, stylesheets_root, absolute=True)
        if f.lower().endswith(LESS_EXTENSION)
    ]
    if not files:
        return []

    renderer = renderer or LesscRenderer()
    css_files = []
    for path in files:
        try:
            with open(path, encoding="utf-8") as f:
                source = f.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise CompileError(path, str(exc)) from exc
        css = renderer.render(source, path)
        css_path = path[: -len(LESS_EXTENSION)] + ".css"
        with open(css_path, "w", encoding="utf-8") as f:
            f.write(css)
        logger.debug("Compiled %s -> %s", path, css_path)
        css_files.append(css_path)
    return css_files


__all__ = ["LessRenderer", "LesscRenderer", "compile_less_files"]
