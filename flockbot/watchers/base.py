"""Base watcher: interval gating and check bookkeeping."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, MutableMapping
from contextlib import AbstractContextManager, nullcontext
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, NamedTuple

from flockbot.errors import StorageError, TransportError, ValidationError

Clock = Callable[[], datetime]
Transaction = Callable[[], AbstractContextManager]

FAILURE_REPORT_EVERY = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class WatcherKey(NamedTuple):
    """Identifies one monitored resource within a bot."""

    user: str
    resource: str

    def __str__(self) -> str:
        return f"{self.user}_{self.resource}"


class BaseWatcher(ABC):
    """Abstract base class for timeline and link-set watchers.

    ``state`` is a persisted mapping holding ``last_checked`` (ISO timestamp)
    and ``consecutive_failures``. A watcher is due when it has never been
    checked, or when at least ``interval`` has elapsed since the last
    successful check.
    """

    def __init__(
        self,
        state: MutableMapping[str, Any],
        interval: timedelta,
        clock: Clock | None = None,
        transaction: Transaction | None = None,
    ) -> None:
        if state is None:
            raise ValidationError(f"no state provided to {self.__class__.__name__}")
        if not isinstance(interval, timedelta):
            raise ValidationError(
                f"interval must be a timedelta, not {type(interval).__name__}"
            )
        self.state = state
        self.interval = interval
        self.clock = clock or utc_now
        self.transaction = transaction or nullcontext
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def key(self) -> WatcherKey:
        """Registry key for this watcher."""
        ...

    @property
    def last_checked(self) -> datetime | None:
        raw = self.state.get("last_checked")
        if raw is None:
            return None
        try:
            return as_utc(datetime.fromisoformat(raw))
        except (TypeError, ValueError) as e:
            raise StorageError(f"{self.key} has corrupt last_checked {raw!r}") from e

    @property
    def consecutive_failures(self) -> int:
        return self.state.get("consecutive_failures", 0)

    def is_due(self, now: datetime) -> bool:
        last = self.last_checked
        if last is None:
            return True
        return as_utc(now) - last >= self.interval

    def _fetch(self, fetch: Callable[[], Any]) -> list[Mapping[str, Any]]:
        """Run a remote fetch, recording the failure if it raises."""
        try:
            return _validate_payloads(fetch())
        except TransportError as e:
            self._record_failure(e)
            raise

    def _mark_checked(self, now: datetime) -> None:
        now = as_utc(now)
        last = self.last_checked
        if last is None or now > last:
            self.state["last_checked"] = now.isoformat()
        if self.consecutive_failures:
            self.state["consecutive_failures"] = 0

    def _record_failure(self, error: Exception) -> None:
        failures = self.consecutive_failures + 1
        self.state["consecutive_failures"] = failures
        if failures % FAILURE_REPORT_EVERY == 0:
            last = self.state.get("last_checked", "never")
            self.logger.error(
                "%s has failed %d times in a row (last success: %s): %s",
                self.key, failures, last, error,
            )

    @abstractmethod
    def check(self, client: Any, now: datetime | None = None) -> Any:
        """Fetch the remote resource if due and return what changed."""
        ...


def item_id(item: Mapping[str, Any]) -> str:
    """Return the normalized string ID of a remote item."""
    return str(item["id"])


def _validate_payloads(results: Any) -> list[Mapping[str, Any]]:
    if results is None:
        raise TransportError("remote fetch returned nothing")
    items = list(results)
    for index, item in enumerate(items):
        if not isinstance(item, Mapping) or item.get("id") is None:
            raise TransportError(f"remote item {index} has no id: {item!r}")
    return items
