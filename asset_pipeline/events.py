"""Lifecycle events emitted while processing assets.

Listeners are injected into the :class:`~asset_pipeline.processor.AssetProcessor`
and receive :class:`AssetEvent` values.  Event names and payload keys are
stable because CLI reporting depends on them:

``files-checked``   ``{type, changed}``
``minify-started``  ``{type, files}``
``minify-ended``    ``{type, files}``
``upload-started``  ``{type, target, source}``
``upload-ended``    ``{type, target, source, url}``

Events are informational only; a failing listener is logged and ignored.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

FILES_CHECKED = "files-checked"
MINIFY_STARTED = "minify-started"
MINIFY_ENDED = "minify-ended"
UPLOAD_STARTED = "upload-started"
UPLOAD_ENDED = "upload-ended"

EVENT_NAMES = (FILES_CHECKED, MINIFY_STARTED, MINIFY_ENDED, UPLOAD_STARTED, UPLOAD_ENDED)

# source value used for bundles uploaded straight from memory
MEMORY_SOURCE = "memory"


@dataclass(frozen=True)
class AssetEvent:
    name: str
    type: str
    changed: bool | None = None
    files: tuple[str, ...] | None = None
    target: str | None = None
    source: str | None = None
    url: str | None = None

    def payload(self) -> dict[str, Any]:
        """Return the event payload without unset keys."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "name" or value is None:
                continue
            data[f.name] = list(value) if f.name == "files" else value
        return data


class AssetListener(ABC):
    """Base class for event consumers."""

    @abstractmethod
    def notify(self, event: AssetEvent) -> None:
        """Handle a single event."""


class CallbackListener(AssetListener):
    """Adapt a ``callback(name, payload)`` function to the listener interface."""

    def __init__(self, callback: Callable[[str, dict[str, Any]], None], names: Iterable[str] | None = None) -> None:
        self.callback = callback
        self.names = set(names) if names is not None else None

    def notify(self, event: AssetEvent) -> None:
        if self.names is None or event.name in self.names:
            self.callback(event.name, event.payload())


class RecordingListener(AssetListener):
    """Keep every event in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[AssetEvent] = []

    def notify(self, event: AssetEvent) -> None:
        self.events.append(event)

    def names(self, type_: str | None = None) -> list[str]:
        return [e.name for e in self.events if type_ is None or e.type == type_]


class LoggingListener(AssetListener):
    """Report progress through :mod:`logging`.

    Change checks are always reported; the remaining events only when
    ``verbose`` is set.
    """

    def __init__(self, verbose: bool = False, log: logging.Logger | None = None) -> None:
        self.verbose = verbose
        self.log = log or logger

    def notify(self, event: AssetEvent) -> None:
        if event.name == FILES_CHECKED:
            self.log.info("%s files have %schanged", event.type, "" if event.changed else "not ")
        elif not self.verbose:
            return
        elif event.name == MINIFY_STARTED:
            self.log.info("%s minification started", event.type)
        elif event.name == MINIFY_ENDED:
            self.log.info("%s minification ended", event.type)
        elif event.name == UPLOAD_STARTED:
            self.log.info("%s upload to %s started", event.type, event.target)
        elif event.name == UPLOAD_ENDED:
            self.log.info("%s upload finished; now at %s", event.type, event.url)


class EventDispatcher:
    """Fan events out to the registered listeners."""

    def __init__(self, listeners: Iterable[AssetListener] = ()) -> None:
        self.listeners: list[AssetListener] = list(listeners)

    def subscribe(self, listener: AssetListener) -> None:
        self.listeners.append(listener)

    def emit(self, name: str, type_: str, **payload: Any) -> AssetEvent:
        if "files" in payload and payload["files"] is not None:
            payload["files"] = tuple(payload["files"])
        event = AssetEvent(name=name, type=type_, **payload)
        for listener in self.listeners:
            try:
                listener.notify(event)
            except Exception:
                logger.exception("Listener %r failed handling %s", listener, name)
        return event


__all__ = [
    "FILES_CHECKED",
    "MINIFY_STARTED",
    "MINIFY_ENDED",
    "UPLOAD_STARTED",
    "UPLOAD_ENDED",
    "EVENT_NAMES",
    "MEMORY_SOURCE",
    "AssetEvent",
    "AssetListener",
    "CallbackListener",
    "RecordingListener",
    "LoggingListener",
    "EventDispatcher",
]
