"""Pluggable storage backends for published assets.

This module provides a small abstraction layer so the pipeline can publish to
different storage providers (S3 or any S3 compatible service, and the local
filesystem).  Callers interact with a :class:`StorageBackend` which offers the
same operations regardless of the underlying backend:

* :meth:`StorageBackend.file_exists` - metadata-only existence check
* :meth:`StorageBackend.put_buffer` / :meth:`StorageBackend.put_file` -
  uploads with bounded retries and exponential backoff
* :meth:`StorageBackend.url_with_bucket` - public (or CDN mapped) URL of a key
"""

from __future__ import annotations

import logging
import mimetypes
import os
import shutil
import time
from pathlib import Path
from typing import IO, Any, Callable, Mapping

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import AssetConfig, S3Settings, _env
from .exceptions import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

# Retries after the first attempt.
MAX_RETRIES = 3
# Delay before retry n is RETRY_BASE_DELAY * 2**n seconds (2^(10+n) ms).
RETRY_BASE_DELAY = 1.024

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

# The stock tables miss or disagree on font types, so pin them.
_MIME = mimetypes.MimeTypes()
for _ext in (".otf", ".eot", ".ttf"):
    _MIME.add_type("application/x-font-opentype", _ext)
_MIME.add_type("image/svg+xml", ".svg")
_MIME.add_type("application/font-woff", ".woff")


def guess_content_type(key: str) -> str | None:
    return _MIME.guess_type(key, strict=False)[0]


def clean_key(key: str) -> str:
    """Forward slashes, no leading slash."""
    return (key or "").replace("\\", "/").lstrip("/")


Headers = Mapping[str, Any]


class StorageBackend:
    """Interface and shared behaviour of all storage backends.

    Sub-classes implement :meth:`_put`, :meth:`_exists` and :meth:`base_url`.
    Both primitives raise :class:`TransportError` on failure.
    """

    bucket: str | None = None
    max_retries: int = MAX_RETRIES
    retry_base_delay: float = RETRY_BASE_DELAY

    def __init__(self, sleep: Callable[[float], None] | None = None) -> None:
        self._sleep = sleep or time.sleep

    # -- primitives -----------------------------------------------------
    def _put(self, key: str, body: bytes | IO[bytes], headers: dict[str, Any]) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def _exists(self, key: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def base_url(self) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    # -- public API -----------------------------------------------------
    def file_exists(self, key: str) -> bool:
        """Return whether ``key`` exists, without downloading it."""
        return self._exists(clean_key(key))

    def put_buffer(self, contents: bytes | str, key: str, headers: Headers | bool | None = None) -> str:
        """Upload in-memory ``contents`` to ``key`` and return its public URL.

        ``headers`` is either a full header mapping or a flag marking the
        object private; by default objects are public-read.
        """
        key = clean_key(key)
        body = contents.encode("utf-8") if isinstance(contents, str) else bytes(contents)
        final_headers = self.create_headers(headers, key)

        def attempt() -> None:
            self._put(key, body, final_headers)

        return self._with_retries(key, attempt)

    def put_file(self, source_path: str, key: str, headers: Headers | bool | None = None) -> str:
        """Stream the local file ``source_path`` to ``key``; return its URL."""
        key = clean_key(key)
        final_headers = self.create_headers(headers, key)
        try:
            final_headers["Content-Length"] = os.path.getsize(source_path)
        except OSError as exc:
            raise TransportError(key, f"Unable to read {source_path}: {exc}") from exc

        def attempt() -> None:
            # reopened per attempt, a failed upload may have consumed the stream
            with open(source_path, "rb") as f:
                self._put(key, f, final_headers)

        return self._with_retries(key, attempt)

    def url_with_bucket(self, key: str | None = None) -> str:
        """Full public URL for ``key`` (or the CDN URL when mapped)."""
        return f"{self.base_url().rstrip('/')}/{clean_key(key or '')}"

    @staticmethod
    def create_headers(headers: Headers | bool | None, key: str | None = None) -> dict[str, Any]:
        """Default upload headers: public-read and a content type from ``key``."""
        if isinstance(headers, Mapping):
            result = dict(headers)
        else:
            result = {} if headers else {"x-amz-acl": "public-read"}
        content_type = guess_content_type(key) if key else None
        if content_type and not any(k.lower() == "content-type" for k in result):
            result["Content-Type"] = content_type
        return result

    # -- helpers --------------------------------------------------------
    def _with_retries(self, key: str, attempt: Callable[[], None]) -> str:
        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Upload error for %s, will retry (attempt %d, delay %.3fs): %s",
                key,
                retry_state.attempt_number,
                retry_state.next_action.sleep,
                retry_state.outcome.exception(),
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            # first retry waits base * 2, then doubles
            wait=wait_exponential(multiplier=self.retry_base_delay * 2),
            retry=retry_if_exception_type(TransportError),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        retrying(attempt)
        return self.url_with_bucket(key)


class S3Backend(StorageBackend):
    """Storage backend backed by Amazon S3 or any S3 compatible service."""

    _HEADER_ARGS = {
        "x-amz-acl": "ACL",
        "content-type": "ContentType",
        "content-encoding": "ContentEncoding",
        "cache-control": "CacheControl",
        "content-length": "ContentLength",
    }

    def __init__(self, settings: S3Settings, client: Any | None = None, sleep: Callable[[float], None] | None = None) -> None:
        super().__init__(sleep)
        if not settings.bucket:
            raise ConfigurationError("S3 bucket is not configured. Set s3.bucket or S3_BUCKET.")
        self.settings = settings
        self.bucket = settings.bucket
        self.cdn_mapping = settings.cdn_mapping

        if client is None:
            config_kwargs: dict[str, Any] = {"signature_version": "s3v4"}
            if settings.timeout:
                config_kwargs.update(connect_timeout=settings.timeout, read_timeout=settings.timeout)
            client = boto3.client(
                "s3",
                endpoint_url=settings.endpoint,
                aws_access_key_id=settings.access_key,
                aws_secret_access_key=settings.secret_key,
                region_name=settings.region,
                config=Config(**config_kwargs),
            )
        self.client = client

    def base_url(self) -> str:
        if self.cdn_mapping:
            host = self.cdn_mapping if "." in self.cdn_mapping else f"{self.cdn_mapping}.cloudfront.net"
            return f"https://{host}"
        endpoint = self.settings.public_endpoint or self.settings.endpoint
        if endpoint:
            return f"{endpoint.rstrip('/')}/{self.bucket}"
        return f"https://s3.amazonaws.com/{self.bucket.lower()}"

    def _put(self, key: str, body: bytes | IO[bytes], headers: dict[str, Any]) -> None:
        kwargs: dict[str, Any] = {}
        metadata: dict[str, str] = {}
        for name, value in headers.items():
            lowered = name.lower()
            if lowered.startswith("x-amz-meta-"):
                metadata[lowered[len("x-amz-meta-"):]] = str(value)
            elif lowered in self._HEADER_ARGS:
                kwargs[self._HEADER_ARGS[lowered]] = value
            else:
                logger.debug("Ignoring unsupported header %s for %s", name, key)
        if metadata:
            kwargs["Metadata"] = metadata
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=body, **kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise TransportError(key, str(exc)) from exc

    def _exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code"))
            if code in _NOT_FOUND_CODES:
                return False
            raise TransportError(key, str(exc)) from exc
        except BotoCoreError as exc:
            raise TransportError(key, str(exc)) from exc
        return True


class FSBackend(StorageBackend):
    """Filesystem storage, e.g. a directory served by a local web server."""

    def __init__(
        self,
        base_path: str | None = None,
        public_url: str | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        super().__init__(sleep)
        self.base_path = Path(base_path or _env("storage.fs_path", "/tmp/assets")).resolve()
        self.public_url = (public_url or _env("storage.fs_public_url") or self.base_path.as_uri()).rstrip("/")
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _full_path(self, key: str) -> Path:
        return self.base_path / key

    def base_url(self) -> str:
        return self.public_url

    def _put(self, key: str, body: bytes | IO[bytes], headers: dict[str, Any]) -> None:
        path = self._full_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                if isinstance(body, bytes):
                    f.write(body)
                else:
                    shutil.copyfileobj(body, f)
        except OSError as exc:
            raise TransportError(key, str(exc)) from exc

    def _exists(self, key: str) -> bool:
        return self._full_path(key).is_file()


# -- backend loader --------------------------------------------------------
def load_backend(config: AssetConfig, sleep: Callable[[float], None] | None = None) -> StorageBackend | None:
    """Build the backend selected by ``config.storage_type``.

    Returns ``None`` when S3 is selected but no bucket is configured; the
    processor then only supports local builds.
    """
    if config.storage_type == "fs":
        base_path = _env("storage.fs_path") or os.path.join(config.root, ".assets")
        return FSBackend(base_path, sleep=sleep)
    if config.storage_type not in ("s3", "minio"):
        raise ConfigurationError(f"Unknown storage type '{config.storage_type}'")
    if not config.s3.bucket:
        return None
    return S3Backend(config.s3, sleep=sleep)


__all__ = [
    "MAX_RETRIES",
    "RETRY_BASE_DELAY",
    "StorageBackend",
    "S3Backend",
    "FSBackend",
    "load_backend",
    "guess_content_type",
    "clean_key",
]
