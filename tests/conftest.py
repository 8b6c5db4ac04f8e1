from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from flockbot.errors import TransportError
from flockbot.storage import Database
from flockbot.watchers.links import LinkDirection
from flockbot.watchers.timeline import TimelineKind


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeClient:
    """In-memory stand-in for the remote API, recording every fetch."""

    def __init__(self) -> None:
        self.timelines: dict[tuple[str, str | None], list[dict]] = {}
        self.links: dict[tuple[str, str], list[dict]] = {}
        self.failing: set[tuple[str, str | None]] = set()
        self.calls: list[tuple] = []

    def fetch_timeline(self, kind, user, max_items):
        key = (TimelineKind(kind).value, user)
        self.calls.append(("timeline", *key, max_items))
        if key in self.failing:
            raise TransportError(f"{key} unavailable")
        return list(self.timelines.get(key, []))[:max_items]

    def fetch_links(self, direction, user):
        key = (LinkDirection.parse(direction).value, user)
        self.calls.append(("links", *key))
        if key in self.failing:
            raise TransportError(f"{key} unavailable")
        return list(self.links.get(key, []))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def db(tmp_path: Path):
    database = Database.in_directory(tmp_path)
    yield database
    database.close()
