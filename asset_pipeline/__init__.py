"""Bundle, fingerprint and publish static web assets."""

from .config import AssetConfig, TargetConfig, load_config
from .events import AssetEvent, AssetListener, CallbackListener, LoggingListener
from .exceptions import (
    AssetPipelineError,
    CompileError,
    ConfigurationError,
    FilesystemError,
    HttpError,
    ImportFailedError,
    ImportSourceError,
    MinificationError,
    TransportError,
)
from .processor import AssetProcessor, AssetResults, PublishResult
from .storage import FSBackend, S3Backend, StorageBackend, load_backend

__all__ = [
    "AssetConfig",
    "TargetConfig",
    "load_config",
    "AssetEvent",
    "AssetListener",
    "CallbackListener",
    "LoggingListener",
    "AssetPipelineError",
    "CompileError",
    "ConfigurationError",
    "FilesystemError",
    "HttpError",
    "ImportFailedError",
    "ImportSourceError",
    "MinificationError",
    "TransportError",
    "AssetProcessor",
    "AssetResults",
    "PublishResult",
    "FSBackend",
    "S3Backend",
    "StorageBackend",
    "load_backend",
]
