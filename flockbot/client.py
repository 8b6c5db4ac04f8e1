"""Remote API client for a Twitter-v1.1-compatible REST service."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

from flockbot.config import ApiConfig, BotConfig
from flockbot.errors import TransportError
from flockbot.watchers.links import LinkDirection
from flockbot.watchers.timeline import TimelineKind

logger = logging.getLogger(__name__)

TIMELINE_ENDPOINTS = {
    TimelineKind.USER: "statuses/user_timeline.json",
    TimelineKind.FRIENDS: "statuses/friends_timeline.json",
    TimelineKind.PUBLIC: "statuses/public_timeline.json",
}

LINK_ENDPOINTS = {
    LinkDirection.OUTBOUND: "friends/list.json",
    LinkDirection.INBOUND: "followers/list.json",
}


class SocialClient(Protocol):
    """What the watchers need from a remote API.

    Both calls return items in the order the service lists them and raise
    :class:`~flockbot.errors.TransportError` when the fetch fails.
    """

    def fetch_timeline(
        self, kind: TimelineKind, user: str | None, max_items: int
    ) -> list[dict[str, Any]]: ...

    def fetch_links(self, direction: LinkDirection, user: str) -> list[dict[str, Any]]: ...


class HttpClient:
    """Fetches timelines and friend/follower lists over HTTP.

    A single page is requested per call and nothing is retried; a failed
    request surfaces as TransportError so the next cycle tries again.
    """

    def __init__(
        self,
        config: ApiConfig,
        username: str,
        password: str = "",
        token: str = "",
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.username = username
        self._base_url = config.base_url.rstrip("/") + "/"
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": "flockbot/0.1",
            "Accept": "application/json",
        })
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"
        elif password:
            self._session.auth = (username, password)

    @classmethod
    def from_config(cls, config: BotConfig) -> HttpClient:
        return cls(
            config.api,
            username=config.username,
            password=config.password,
            token=config.token,
        )

    def fetch_timeline(
        self, kind: TimelineKind | str, user: str | None, max_items: int
    ) -> list[dict[str, Any]]:
        kind = TimelineKind(kind)
        params: dict[str, Any] = {"count": max_items}
        if kind is not TimelineKind.PUBLIC:
            params["screen_name"] = user
        data = self._get(TIMELINE_ENDPOINTS[kind], params)
        if not isinstance(data, list):
            raise TransportError(
                f"{kind.value} returned {type(data).__name__}, expected a list"
            )
        return data

    def fetch_links(
        self, direction: LinkDirection | str, user: str
    ) -> list[dict[str, Any]]:
        direction = LinkDirection.parse(direction)
        data = self._get(
            LINK_ENDPOINTS[direction],
            {"screen_name": user, "count": self.config.page_size},
        )
        # Cursored endpoints wrap the page in {"users": [...], "next_cursor": ...}
        if isinstance(data, dict):
            if data.get("next_cursor"):
                logger.warning(
                    "%s of %s spans more than one page; only the first is read",
                    direction.value, user,
                )
            data = data.get("users")
        if not isinstance(data, list):
            raise TransportError(
                f"{direction.value} links of {user} returned no member list"
            )
        return data

    def _get(self, endpoint: str, params: dict[str, Any]) -> Any:
        url = self._base_url + endpoint
        try:
            resp = self._session.get(
                url, params=params, timeout=self.config.timeout_seconds
            )
        except requests.RequestException as e:
            raise TransportError(f"GET {endpoint} failed: {e}") from e

        if not resp.ok:
            raise TransportError(
                f"GET {endpoint} returned {resp.status_code}: {resp.text[:500]}"
            )
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"GET {endpoint} returned invalid JSON: {e}") from e

    def close(self) -> None:
        self._session.close()
