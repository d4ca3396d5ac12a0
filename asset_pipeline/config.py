"""Configuration loading.

A project is described by a JSON document::

    {
        "root": "..",
        "targets": {
            "javascripts": {"directories": ["js"], "preference": ["js/vendor"]},
            "stylesheets": {"root": "public", "exclude": ["css/old"]},
            "images": {"root": "public/img"},
            "extras": {"root": "public/extra"}
        },
        "s3": {"bucket": "my-bucket", "cloudfrontMapping": "d111111abcdef8"}
    }

The loaded value is an immutable :class:`AssetConfig`.  Storage credentials
and a few switches may also come from environment variables, named the same
way as the rest of our deployment settings (``STORAGE__TYPE`` for
``storage.type`` and so on).
"""

from __future__ import annotations

import json
import os
import posixpath
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from .exceptions import ConfigurationError

TARGET_NAMES = ("javascripts", "stylesheets", "images", "extras")

DEFAULT_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "javascripts": (".js",),
    "stylesheets": (".css",),
    "images": (".ico", ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".svg"),
    "extras": (),
}


def _env(name: str, default: str | None = None) -> str | None:
    """Fetch configuration values using ``storage.foo`` style names.

    Environment variables use ``STORAGE__FOO`` to mirror nested configuration.
    """

    return os.getenv(name.replace(".", "__").upper(), default)


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


@dataclass(frozen=True)
class TargetConfig:
    """Selection rules for one asset class."""

    enabled: bool = True
    root: str | None = None
    # ``None`` means "search the class root"; an empty tuple means "only
    # the explicit files".
    directories: tuple[str, ...] | None = None
    files: tuple[str, ...] = ()
    extensions: tuple[str, ...] = ()
    preference: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any] | None) -> "TargetConfig":
        if data is None:
            return cls(enabled=False, extensions=DEFAULT_EXTENSIONS[name])
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Target '{name}' must be an object")
        extensions = data.get("extensions")
        directories = data.get("directories")
        return cls(
            root=data.get("root") or None,
            directories=_as_tuple(directories) if directories is not None else None,
            files=_as_tuple(data.get("files")),
            extensions=_as_tuple(extensions) if extensions else DEFAULT_EXTENSIONS[name],
            preference=_as_tuple(data.get("preference")),
            exclude=_as_tuple(data.get("exclude")),
        )

    def with_extensions(self, *extensions: str) -> "TargetConfig":
        """Return a copy of this target matching only ``extensions``."""
        return replace(self, extensions=tuple(extensions))


@dataclass(frozen=True)
class ImportConfig:
    sources: tuple[str, ...] = ()
    destination: str = ""
    # Applied in order, as literal search -> replacement pairs.
    mappings: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ImportConfig":
        if not data:
            return cls()
        mappings = data.get("mappings") or {}
        return cls(
            sources=_as_tuple(data.get("sources")),
            destination=data.get("destination") or "",
            mappings=tuple((str(k), str(v)) for k, v in mappings.items()),
        )


@dataclass(frozen=True)
class S3Settings:
    bucket: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    cdn_mapping: str | None = None
    endpoint: str | None = None
    public_endpoint: str | None = None
    region: str | None = None
    timeout: float | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "S3Settings":
        """Build settings from the ``s3`` block, falling back to the environment."""
        data = data or {}
        timeout = data.get("timeout") or _env("storage.timeout")
        return cls(
            bucket=data.get("bucket") or os.getenv("S3_BUCKET_MAIN") or os.getenv("S3_BUCKET"),
            access_key=data.get("key") or os.getenv("S3_ACCESS_KEY") or os.getenv("S3_ACCESS_KEY_ID"),
            secret_key=data.get("secret")
            or os.getenv("S3_SECRET_KEY")
            or os.getenv("S3_SECRET_ACCESS_KEY"),
            cdn_mapping=data.get("cloudfrontMapping") or os.getenv("CDN_MAPPING"),
            endpoint=data.get("endpoint") or os.getenv("S3_ENDPOINT"),
            public_endpoint=data.get("publicEndpoint") or os.getenv("S3_PUBLIC_ENDPOINT"),
            region=data.get("region") or os.getenv("S3_REGION"),
            timeout=float(timeout) if timeout else None,
        )


@dataclass(frozen=True)
class GitSettings:
    token: str | None = None


@dataclass(frozen=True)
class AssetConfig:
    """Immutable project configuration.

    ``root`` is an absolute, normalized directory.  Class roots are resolved
    against it, never against the process working directory.
    """

    root: str
    javascripts: TargetConfig = field(default_factory=lambda: TargetConfig(extensions=(".js",)))
    stylesheets: TargetConfig = field(default_factory=lambda: TargetConfig(extensions=(".css",)))
    images: TargetConfig = field(default_factory=lambda: TargetConfig(enabled=False))
    extras: TargetConfig = field(default_factory=lambda: TargetConfig(enabled=False))
    imports: ImportConfig = field(default_factory=ImportConfig)
    rebase_root: str | None = None
    s3: S3Settings = field(default_factory=S3Settings)
    git: GitSettings = field(default_factory=GitSettings)
    storage_type: str = "s3"
    explicit_files_bypass_exclusions: bool = True
    force_update: bool = False

    def __post_init__(self) -> None:
        if not self.root:
            raise ConfigurationError("Configuration root is required")
        if not os.path.isdir(self.root):
            raise ConfigurationError(f"Invalid configuration root: {self.root}")
        object.__setattr__(self, "root", os.path.normpath(os.path.abspath(self.root)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base_dir: str | os.PathLike | None = None) -> "AssetConfig":
        """Validate and build a configuration from parsed JSON.

        A relative ``root`` is resolved against ``base_dir`` (normally the
        directory holding the configuration file).
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError("Configuration must be an object")
        targets = data.get("targets")
        if not isinstance(targets, Mapping):
            raise ConfigurationError("Configuration 'targets' are required")

        root = os.path.join(str(base_dir or os.getcwd()), data.get("root") or ".")
        stylesheets = targets.get("stylesheets")
        stylesheets_extra = stylesheets if isinstance(stylesheets, Mapping) else {}

        return cls(
            root=root,
            javascripts=TargetConfig.from_mapping("javascripts", targets.get("javascripts")),
            stylesheets=TargetConfig.from_mapping("stylesheets", stylesheets),
            images=TargetConfig.from_mapping("images", targets.get("images")),
            extras=TargetConfig.from_mapping("extras", targets.get("extras")),
            imports=ImportConfig.from_mapping(stylesheets_extra.get("imports")),
            rebase_root=stylesheets_extra.get("rebaseRoot"),
            s3=S3Settings.from_mapping(data.get("s3")),
            git=GitSettings(token=(data.get("git") or {}).get("token") or os.getenv("GITHUB_TOKEN")),
            storage_type=(data.get("storage") or _env("storage.type", "s3") or "s3").lower(),
            explicit_files_bypass_exclusions=_as_bool(data.get("explicitFilesBypassExclusions", True)),
            force_update=_as_bool(data.get("forceUpdate") or data.get("forceCdnUpdate") or False),
        )

    # -- derived roots ---------------------------------------------------
    def target(self, name: str) -> TargetConfig:
        if name not in TARGET_NAMES:
            raise ConfigurationError(f"Unknown target '{name}'")
        return getattr(self, name)

    def target_root(self, name: str) -> str:
        """Absolute local root for an asset class."""
        sub_root = self.target(name).root
        if not sub_root:
            return self.root
        return os.path.normpath(os.path.join(self.root, sub_root))

    def relative_root(self, name: str) -> str:
        """Class root relative to the project root, with forward slashes."""
        relative = os.path.relpath(self.target_root(name), self.root).replace(os.sep, "/")
        return "" if relative == "." else relative

    @property
    def css_rebase_root(self) -> str:
        """Directory that maps to ``/`` when rebasing stylesheet URLs."""
        if not self.rebase_root:
            return self.root
        return os.path.normpath(os.path.join(self.root, self.rebase_root))

    def folder_for(self, name: str, default: str) -> str:
        """First path segment of the class root, used as the upload folder."""
        first = posixpath.normpath(self.relative_root(name) or ".").lstrip("/").split("/")[0]
        if first in ("", ".", ".."):
            return default
        return first


def load_config(path: str | os.PathLike, force_update: bool | None = None) -> AssetConfig:
    """Read a JSON configuration file and return an :class:`AssetConfig`."""

    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigurationError(f"No configuration found at {config_path}")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Unable to parse configuration file {config_path}: {exc}") from exc

    config = AssetConfig.from_dict(data, base_dir=config_path.resolve().parent)
    if force_update is not None:
        config = replace(config, force_update=force_update)
    return config


__all__ = [
    "TARGET_NAMES",
    "DEFAULT_EXTENSIONS",
    "TargetConfig",
    "ImportConfig",
    "S3Settings",
    "GitSettings",
    "AssetConfig",
    "load_config",
]
