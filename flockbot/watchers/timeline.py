"""Timeline watcher: reports statuses not seen on earlier checks."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from flockbot.errors import ValidationError
from flockbot.watchers.base import (
    BaseWatcher,
    Clock,
    Transaction,
    WatcherKey,
    item_id,
)

DEFAULT_PAGE_SIZE = 200

# Key user for the public timeline, which belongs to nobody.
PUBLIC_USER = "*"


class TimelineKind(str, Enum):
    USER = "user_timeline"
    FRIENDS = "friends_timeline"
    PUBLIC = "public_timeline"

    @classmethod
    def parse(cls, value: Any) -> TimelineKind:
        if value is None:
            raise ValidationError("no timeline specified")
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"timeline {value!r} unrecognized") from None


class TimelineWatcher(BaseWatcher):
    """Watches one timeline and returns statuses whose IDs are new.

    ``seen_ids`` maps status ID to the payload first observed for it. Entries
    are only ever added. Only the most recent ``page_size`` statuses are read
    per check; if more than that arrive between checks the older ones are
    never reported.
    """

    def __init__(
        self,
        state: MutableMapping[str, Any],
        seen_ids: MutableMapping[str, Any],
        timeline: TimelineKind | str,
        user: str | None,
        interval: timedelta,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Clock | None = None,
        transaction: Transaction | None = None,
    ) -> None:
        super().__init__(state, interval, clock, transaction)
        if seen_ids is None:
            raise ValidationError("no seen_ids map provided to TimelineWatcher")
        self.timeline = TimelineKind.parse(timeline)
        if self.timeline is TimelineKind.PUBLIC:
            user = None
        elif not user:
            raise ValidationError(f"no user provided for {self.timeline.value}")
        if page_size < 1:
            raise ValidationError(f"page_size must be positive, got {page_size}")
        self.seen_ids = seen_ids
        self.user = user
        self.page_size = page_size

    @property
    def key(self) -> WatcherKey:
        return WatcherKey(self.user or PUBLIC_USER, self.timeline.value)

    def seen_status(self, status_id: Any) -> bool:
        """Whether a status with this ID has been reported before."""
        return str(status_id) in self.seen_ids

    def check(self, client: Any, now: datetime | None = None) -> list[Mapping[str, Any]]:
        now = now or self.clock()
        if not self.is_due(now):
            self.logger.debug("%s not due yet, skipping", self.key)
            return []

        statuses = self._fetch(
            lambda: client.fetch_timeline(self.timeline, self.user, self.page_size)
        )

        new_items: list[Mapping[str, Any]] = []
        new_ids: dict[str, Mapping[str, Any]] = {}
        for status in statuses:
            status_id = item_id(status)
            if status_id in new_ids or status_id in self.seen_ids:
                continue
            new_ids[status_id] = status
            new_items.append(status)

        with self.transaction():
            self._mark_checked(now)
            self.seen_ids.update(new_ids)

        self.logger.info(
            "%s: %d fetched, %d new", self.key, len(statuses), len(new_items)
        )
        return new_items
