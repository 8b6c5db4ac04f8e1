"""Link-set watcher: reports friends or followers gained and lost."""

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


class LinkDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"

    @classmethod
    def parse(cls, value: Any) -> LinkDirection:
        if value is None:
            raise ValidationError("no links direction specified")
        if isinstance(value, LinkDirection):
            return value
        direction = _DIRECTION_SYNONYMS.get(str(value).strip().lower())
        if direction is None:
            raise ValidationError(
                f"links {value!r} unrecognized "
                "(expected outbound/friends/following or inbound/followers)"
            )
        return direction


_DIRECTION_SYNONYMS = {
    "outbound": LinkDirection.OUTBOUND,
    "friends": LinkDirection.OUTBOUND,
    "following": LinkDirection.OUTBOUND,
    "inbound": LinkDirection.INBOUND,
    "followers": LinkDirection.INBOUND,
}


class LinkSetWatcher(BaseWatcher):
    """Watches a user's friends or followers set.

    ``members`` maps member ID to the last payload seen for it and mirrors the
    most recent snapshot after every successful check. Only one page of
    members is fetched, so for users whose set is larger than a page the
    members beyond it are reported as removed.
    """

    def __init__(
        self,
        state: MutableMapping[str, Any],
        members: MutableMapping[str, Any],
        links: LinkDirection | str,
        user: str,
        interval: timedelta,
        clock: Clock | None = None,
        transaction: Transaction | None = None,
    ) -> None:
        super().__init__(state, interval, clock, transaction)
        if members is None:
            raise ValidationError("no members map provided to LinkSetWatcher")
        if not user or any(ch.isspace() for ch in user):
            raise ValidationError(f"user {user!r} must be non-empty with no whitespace")
        self.members = members
        self.links = LinkDirection.parse(links)
        self.user = user

    @property
    def key(self) -> WatcherKey:
        return WatcherKey(self.user, self.links.value)

    def check(
        self, client: Any, now: datetime | None = None
    ) -> tuple[list[Mapping[str, Any]], list[Mapping[str, Any]]]:
        now = now or self.clock()
        if not self.is_due(now):
            self.logger.debug("%s not due yet, skipping", self.key)
            return [], []

        snapshot = self._fetch(lambda: client.fetch_links(self.links, self.user))

        current: dict[str, Mapping[str, Any]] = {}
        for member in snapshot:
            current.setdefault(item_id(member), member)

        added: list[Mapping[str, Any]] = []
        removed: list[Mapping[str, Any]] = []
        with self.transaction():
            self._mark_checked(now)
            known = set(self.members)

            fresh = {mid: m for mid, m in current.items() if mid not in known}
            added.extend(fresh.values())
            self.members.update(fresh)

            for old_id in sorted(known - current.keys()):
                removed.append(self.members.pop(old_id))

        self.logger.info(
            "%s: %d members, %d added, %d removed",
            self.key, len(current), len(added), len(removed),
        )
        return added, removed
