"""Asset processing and publishing.

:class:`AssetProcessor` ties file selection, bundling, fingerprinting and
storage together.  The main verbs are:

``ensure_assets``
    Publish every asset class whose fingerprint is not in storage yet.  The
    classes run one after another (JavaScript, CSS, images, extras) so at
    most one upload is in flight at any time.
``process_assets``
    Build the JavaScript and CSS bundles into the local tree for previews.
``compile_less_files``
    Render ``.less`` stylesheets to sibling ``.css`` files.
``import_latest_stylesheets``
    Pull configured stylesheets from GitHub.

Storage layout::

    js/<md5>.js, js/<md5>.map      JavaScript bundle and source map
    css/<md5>.css                  CSS bundle
    <folder>/<md5>.txt             marker listing an image/extra file set
    <folder>/<relative path>       individual images/extras
"""

from __future__ import annotations

import gzip
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable

from .bundler import Bundler
from .config import AssetConfig
from .events import (
    FILES_CHECKED,
    MEMORY_SOURCE,
    UPLOAD_ENDED,
    UPLOAD_STARTED,
    AssetListener,
    EventDispatcher,
)
from .exceptions import ConfigurationError
from .github_import import GitImporter
from .hashing import fingerprint_path, hash_files
from .less import LessRenderer, compile_less_files
from .minifiers import CssMinifier, JsBundle, JsMinifier
from .rebase import CssUrlRebaser
from .selection import PathMatcher
from .storage import StorageBackend, load_backend

logger = logging.getLogger(__name__)

ONE_YEAR_IN_SECONDS = 31536000
SEVEN_DAYS_IN_SECONDS = 604800

JS_CONTENT_TYPE = "application/javascript"
CSS_CONTENT_TYPE = "text/css"

IMAGES_FOLDER = "img"
EXTRAS_FOLDER = "extra"

_UNSET: Any = object()


@dataclass(frozen=True)
class PublishResult:
    """Outcome of publishing one asset class.

    ``changed`` is true when the target was missing from storage or the run
    was forced.
    """

    url: str | None
    changed: bool


@dataclass(frozen=True)
class AssetResults:
    js: PublishResult
    css: PublishResult
    images: PublishResult
    extras: PublishResult

    def as_dict(self, include_changed: bool = True) -> dict[str, Any]:
        """Flatten to ``{jsUrl, jsChanged, cssUrl, ...}``."""
        data: dict[str, Any] = {}
        for prefix in ("js", "css", "images", "extras"):
            result: PublishResult = getattr(self, prefix)
            data[f"{prefix}Url"] = result.url
            if include_changed:
                data[f"{prefix}Changed"] = result.changed
        return data


class AssetProcessor:
    """Select, bundle and publish the assets of one project.

    The configuration is immutable; forcing a republish is a per-call option
    of :meth:`ensure_assets` (defaulting to ``config.force_update``).
    """

    def __init__(
        self,
        config: AssetConfig,
        storage: StorageBackend | None = _UNSET,
        listeners: Iterable[AssetListener] = (),
        js_minifier: JsMinifier | None = None,
        css_minifier: CssMinifier | None = None,
        less_renderer: LessRenderer | None = None,
        git_importer: GitImporter | None = None,
    ) -> None:
        self.config = config
        self.storage = load_backend(config) if storage is _UNSET else storage
        self.dispatcher = EventDispatcher(listeners)
        self.matcher = PathMatcher(config.root, config.explicit_files_bypass_exclusions)
        self.rebaser = CssUrlRebaser(config.css_rebase_root)
        self.bundler = Bundler(self.rebaser, self.dispatcher, js_minifier, css_minifier)
        self.less_renderer = less_renderer
        self.git_importer = git_importer

        self.javascripts_root = config.target_root("javascripts")
        self.stylesheets_root = config.target_root("stylesheets")
        self.images_root = config.target_root("images")
        self.extras_root = config.target_root("extras")

    def subscribe(self, listener: AssetListener) -> None:
        self.dispatcher.subscribe(listener)

    # -- file listings --------------------------------------------------
    def get_files(self, name: str, absolute: bool = False) -> list[str]:
        return self.matcher.select(self.config.target(name), self.config.target_root(name), absolute)

    def get_javascript_files(self, absolute: bool = False) -> list[str]:
        return self.get_files("javascripts", absolute)

    def get_css_files(self, absolute: bool = False) -> list[str]:
        return self.get_files("stylesheets", absolute)

    def get_image_files(self, absolute: bool = False) -> list[str]:
        return self.get_files("images", absolute)

    def get_extra_files(self, absolute: bool = False) -> list[str]:
        return self.get_files("extras", absolute)

    # -- LESS -----------------------------------------------------------
    def compile_less_files(self) -> list[str]:
        """Compile ``.less`` files of the stylesheet target; return css paths."""
        return compile_less_files(self.matcher, self.config.stylesheets, self.stylesheets_root, self.less_renderer)

    # -- JavaScript -----------------------------------------------------
    def process_javascript(self, source_map_url: str | None = None) -> tuple[list[str], str | None, JsBundle]:
        """Return ``(files, target_path, bundle)`` for the JavaScript class."""
        files = self.get_javascript_files(absolute=True)
        target = self._bundle_path(files, "js", ".js")
        return files, target, self.bundler.bundle_javascript(files, source_map_url)

    def save_javascript_to_file(self) -> str:
        """Write the JavaScript bundle under the JavaScript root; return its URL path."""
        _, target, bundle = self.process_javascript()
        if not target or not bundle.code:
            return ""
        _write_text(os.path.join(self.javascripts_root, target), bundle.code)
        return "/" + target

    def upload_javascript(self, exclude_source_map: bool = False) -> str | None:
        files = self.get_javascript_files(absolute=True)
        target = self._bundle_path(files, "js", ".js")
        if target is None:
            return None
        return self._upload_javascript(files, target, exclude_source_map)

    def _upload_javascript(self, files: list[str], target: str, exclude_source_map: bool) -> str:
        storage = self._require_storage()
        map_path = _source_map_path(target)
        map_url = None if exclude_source_map else storage.url_with_bucket(map_path)
        bundle = self.bundler.bundle_javascript(files, map_url)
        url = self._upload_bundle("js", target, bundle.code, JS_CONTENT_TYPE)
        if bundle.source_map and not exclude_source_map:
            self._upload_memory("js", map_path, bundle.source_map, {"x-amz-acl": "public-read", "Content-Type": "application/json"})
        return url

    # -- CSS ------------------------------------------------------------
    def process_css(self) -> tuple[list[str], str | None, str]:
        """Return ``(files, target_path, css)`` for the stylesheet class."""
        files = self.get_css_files(absolute=True)
        return files, self._bundle_path(files, "css", ".css"), self.bundler.bundle_css(files)

    def save_css_to_file(self) -> str:
        """Write the CSS bundle under the stylesheet root; return its URL path."""
        _, target, css = self.process_css()
        if not target or not css:
            return ""
        _write_text(os.path.join(self.stylesheets_root, target), css)
        return "/" + target

    def upload_css(self) -> str | None:
        files = self.get_css_files(absolute=True)
        target = self._bundle_path(files, "css", ".css")
        if target is None:
            return None
        return self._upload_css(files, target)

    def _upload_css(self, files: list[str], target: str) -> str:
        css = self.bundler.bundle_css(files)
        return self._upload_bundle("css", target, css, CSS_CONTENT_TYPE)

    # -- images and extras ----------------------------------------------
    def upload_images(self) -> str:
        """Upload every image, keeping its path below the image root."""
        files = self.get_image_files(absolute=True)
        folder = self.config.folder_for("images", IMAGES_FOLDER)
        return self._upload_relative_to_root(files, self.images_root, folder, "image")

    def upload_extras(self) -> str:
        files = self.get_extra_files(absolute=True)
        folder = self.config.folder_for("extras", EXTRAS_FOLDER)
        return self._upload_relative_to_root(files, self.extras_root, folder, "extra")

    def _upload_relative_to_root(self, files: list[str], active_root: str, folder: str, type_: str) -> str:
        storage = self._require_storage()
        headers = {
            "x-amz-acl": "public-read",
            "Cache-Control": f"public, max-age={SEVEN_DAYS_IN_SECONDS}",
        }
        for path in files:
            target = f"{folder}/{_relative(path, active_root)}"
            self.dispatcher.emit(UPLOAD_STARTED, type_, target=target, source=path)
            url = storage.put_file(path, target, headers)
            self.dispatcher.emit(UPLOAD_ENDED, type_, target=target, source=path, url=url)
        return storage.url_with_bucket(folder)

    # -- publishing -----------------------------------------------------
    def ensure_assets(self, force: bool | None = None, exclude_source_map: bool = False) -> AssetResults:
        """Publish whatever changed since the last run.

        For each class the fingerprint's storage key is checked; missing keys
        (or ``force``) trigger bundling and upload.  Classes run strictly in
        sequence.  Any error aborts the remaining classes; uploads already
        made stay in storage.
        """
        if force is None:
            force = self.config.force_update
        self._require_storage()

        js = self._ensure_bundle(
            "js", self.get_javascript_files(absolute=True), ".js", force,
            lambda files, target: self._upload_javascript(files, target, exclude_source_map),
        )
        css = self._ensure_bundle("css", self.get_css_files(absolute=True), ".css", force, self._upload_css)
        images = self._ensure_marked("images", IMAGES_FOLDER, "image", force)
        extras = self._ensure_marked("extras", EXTRAS_FOLDER, "extra", force)
        return AssetResults(js=js, css=css, images=images, extras=extras)

    def _ensure_bundle(self, type_: str, files: list[str], extension: str, force: bool, upload) -> PublishResult:
        storage = self._require_storage()
        target = self._bundle_path(files, type_, extension)
        if target is None:
            self.dispatcher.emit(FILES_CHECKED, type_, changed=False)
            return PublishResult(url=None, changed=False)

        changed = not storage.file_exists(target)
        logger.debug("%s bundle %s %s", type_, target, "missing" if changed else "found")
        self.dispatcher.emit(FILES_CHECKED, type_, changed=changed)
        if changed or force:
            return PublishResult(url=upload(files, target), changed=True)
        return PublishResult(url=storage.url_with_bucket(target), changed=False)

    def _ensure_marked(self, name: str, default_folder: str, type_: str, force: bool) -> PublishResult:
        """Publish an image/extra set, tracked by a marker object.

        The marker is written after every file went up, so an interrupted
        run is retried next time.
        """
        storage = self._require_storage()
        active_root = self.config.target_root(name)
        files = self.get_files(name, absolute=True)
        folder = self.config.folder_for(name, default_folder)
        listing = "\n".join(_relative(path, self.config.root) for path in files)

        digest = hash_files(files, trailer=listing.encode("utf-8"))
        if digest is None:
            self.dispatcher.emit(FILES_CHECKED, type_, changed=False)
            return PublishResult(url=None, changed=False)

        marker = fingerprint_path(folder, digest, ".txt")
        changed = not storage.file_exists(marker)
        logger.debug("%s marker %s %s", type_, marker, "missing" if changed else "found")
        self.dispatcher.emit(FILES_CHECKED, type_, changed=changed)
        if not (changed or force):
            return PublishResult(url=storage.url_with_bucket(folder), changed=False)

        url = self._upload_relative_to_root(files, active_root, folder, type_)
        self._upload_memory(type_, marker, listing, None)
        return PublishResult(url=url, changed=True)

    def process_assets(self) -> dict[str, str]:
        """Build JS and CSS locally, ignoring what is in storage."""
        return {
            "jsUrl": self.save_javascript_to_file(),
            "cssUrl": self.save_css_to_file(),
            "imagesUrl": "",
            "extrasUrl": "",
        }

    # -- imports --------------------------------------------------------
    def import_latest_stylesheets(self) -> int:
        """Fetch configured stylesheet imports; return how many were imported."""
        imports = self.config.imports
        dest_dir = os.path.normpath(os.path.join(self.stylesheets_root, imports.destination))
        importer = self.git_importer or GitImporter(self.config.git.token)
        return importer.import_all(imports.sources, dest_dir, imports.mappings)

    # -- helpers --------------------------------------------------------
    def _require_storage(self) -> StorageBackend:
        if self.storage is None:
            raise ConfigurationError("No storage backend configured; set s3.bucket or STORAGE__TYPE=fs")
        return self.storage

    def _bundle_path(self, files: list[str], folder: str, extension: str) -> str | None:
        trailer = self._rebase_trailer() if extension == ".css" else None
        digest = hash_files(files, trailer=trailer)
        return fingerprint_path(folder, digest, extension) if digest else None

    def _rebase_trailer(self) -> bytes | None:
        # rebased urls depend on the rebase root, not only on the source bytes
        relative = _relative(self.config.css_rebase_root, self.config.root)
        return None if relative == "." else relative.encode("utf-8")

    def _upload_bundle(self, type_: str, target: str, text: str, content_type: str) -> str:
        # mtime pinned so identical bundles compress to identical bytes
        body = gzip.compress(text.encode("utf-8"), mtime=0)
        headers = {
            "x-amz-acl": "public-read",
            "Content-Type": content_type,
            "Content-Encoding": "gzip",
            "Content-Length": len(body),
            "Cache-Control": f"public, max-age={ONE_YEAR_IN_SECONDS}",
        }
        return self._upload_memory(type_, target, body, headers)

    def _upload_memory(self, type_: str, target: str, body: bytes | str, headers: dict[str, Any] | None) -> str:
        storage = self._require_storage()
        self.dispatcher.emit(UPLOAD_STARTED, type_, target=target, source=MEMORY_SOURCE)
        url = storage.put_buffer(body, target, headers)
        self.dispatcher.emit(UPLOAD_ENDED, type_, target=target, source=MEMORY_SOURCE, url=url)
        return url


def _source_map_path(target: str) -> str:
    return os.path.splitext(target)[0] + ".map"


def _relative(path: str, root: str) -> str:
    return os.path.relpath(path, root).replace(os.sep, "/")


def _write_text(path: str, text: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


__all__ = ["AssetProcessor", "AssetResults", "PublishResult"]
