"""Error types raised by the asset pipeline.

Everything derives from :class:`AssetPipelineError` so callers (mainly the
CLI) can report any pipeline failure in one place.  Library errors from
``botocore``, ``requests`` and ``subprocess`` are translated into these types
where they cross into the pipeline.
"""

from __future__ import annotations


class AssetPipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(AssetPipelineError):
    """Invalid or missing configuration (bad root, missing targets)."""


class FilesystemError(AssetPipelineError):
    """A directory or file could not be read."""


class CompileError(AssetPipelineError):
    """A LESS file failed to compile."""

    def __init__(self, filename: str, message: str) -> None:
        super().__init__(f"{filename}: {message}")
        self.filename = filename


class MinificationError(AssetPipelineError):
    """The JavaScript or CSS minifier rejected its input."""


class TransportError(AssetPipelineError):
    """A storage existence check or upload failed."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key


class HttpError(AssetPipelineError):
    """The hosting API answered with a non-200 status."""

    def __init__(self, url: str, status_code: int | None) -> None:
        super().__init__(f"Error requesting {url}; status code {status_code}")
        self.url = url
        self.status_code = status_code


class ImportSourceError(AssetPipelineError, ValueError):
    """An import source URL is neither a blob URL nor an API content URL."""


class ImportFailedError(AssetPipelineError):
    """A stylesheet import aborted the queue.

    ``imported`` is the number of sources imported before the failure.
    """

    def __init__(self, imported: int, total: int, cause: Exception) -> None:
        super().__init__(f"Imported {imported} of {total} stylesheets before failing: {cause}")
        self.imported = imported
        self.total = total
        self.cause = cause


__all__ = [
    "AssetPipelineError",
    "ConfigurationError",
    "FilesystemError",
    "CompileError",
    "MinificationError",
    "TransportError",
    "HttpError",
    "ImportSourceError",
    "ImportFailedError",
]
