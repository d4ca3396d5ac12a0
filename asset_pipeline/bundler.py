"""Build the JavaScript and CSS bundles from a file selection.

Both bundles preserve the selection order, since it decides execution and
cascade order as well as the published fingerprint.
"""

from __future__ import annotations

from typing import Sequence

from .events import MINIFY_ENDED, MINIFY_STARTED, EventDispatcher
from .exceptions import FilesystemError
from .minifiers import CssMinifier, JsBundle, JsMinifier, RcssminMinifier, get_js_minifier
from .rebase import CssUrlRebaser


class Bundler:
    def __init__(
        self,
        rebaser: CssUrlRebaser,
        dispatcher: EventDispatcher | None = None,
        js_minifier: JsMinifier | None = None,
        css_minifier: CssMinifier | None = None,
    ) -> None:
        self.rebaser = rebaser
        self.dispatcher = dispatcher or EventDispatcher()
        self.js_minifier = js_minifier or get_js_minifier()
        self.css_minifier = css_minifier or RcssminMinifier()

    def bundle_javascript(self, files: Sequence[str], source_map_url: str | None = None) -> JsBundle:
        """Minify ``files`` into one script.

        An empty selection yields an empty bundle without calling the
        minifier.  Minifier errors propagate unchanged.
        """
        self.dispatcher.emit(MINIFY_STARTED, "js", files=files)
        bundle = self.js_minifier.minify(files, source_map_url) if files else JsBundle()
        self.dispatcher.emit(MINIFY_ENDED, "js", files=files)
        return bundle

    def bundle_css(self, files: Sequence[str]) -> str:
        """Minify and rebase each stylesheet, then join them in order."""
        self.dispatcher.emit(MINIFY_STARTED, "css", files=files)
        parts = []
        for path in files:
            try:
                with open(path, encoding="utf-8") as f:
                    css = f.read()
            except (OSError, UnicodeDecodeError) as exc:
                raise FilesystemError(f"Unable to read {path}: {exc}") from exc
            css = self.css_minifier.minify(css)
            parts.append(self.rebaser.rebase(path, css))
        self.dispatcher.emit(MINIFY_ENDED, "css", files=files)
        return "\n".join(parts)


__all__ = ["Bundler"]
