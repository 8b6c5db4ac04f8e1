"""Exception types raised by flockbot."""

from __future__ import annotations

from typing import Any


class FlockbotError(Exception):
    """Base class for all flockbot errors."""


class ValidationError(FlockbotError):
    """Malformed registration or configuration input."""


class TransportError(FlockbotError):
    """A remote fetch failed or returned an unusable response."""


class StorageError(FlockbotError):
    """Persisted state could not be opened, read or written."""


class CallbackError(FlockbotError):
    """A user callback raised during dispatch.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, key: Any, callback_name: str, item: Any) -> None:
        super().__init__(f"callback {callback_name} failed for {key}")
        self.key = key
        self.callback_name = callback_name
        self.item = item


class CycleError(FlockbotError):
    """One or more watchers failed during a dispatch cycle.

    Raised after every other due watcher has been checked. ``errors`` maps
    each failed watcher key to the exception it raised.
    """

    def __init__(self, errors: dict[Any, FlockbotError]) -> None:
        details = "; ".join(f"{key}: {exc}" for key, exc in errors.items())
        super().__init__(f"{len(errors)} watcher(s) failed: {details}")
        self.errors = errors
