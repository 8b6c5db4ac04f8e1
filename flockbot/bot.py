"""Bot base class: watcher registry and callback dispatch.

Subclass :class:`Bot`, register callbacks in ``__init__`` and call
:meth:`Bot.dispatch_cycle` (or its alias ``check``) on every scheduler tick::

    class EchoBot(Bot):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.register_timeline(
                "friends_timeline",
                interval={"minutes": 5},
                callback="handle_friends_update",
            )
            self.register_links(
                "followers",
                interval={"hours": 1},
                add_callback="handle_new_follower",
            )

        def handle_friends_update(self, status):
            ...

        def handle_new_follower(self, link):
            ...

Only new information reaches the callbacks: each status is delivered once,
and each follower once per appearance or disappearance.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable

from flockbot.client import HttpClient
from flockbot.config import BotConfig, check_directory
from flockbot.errors import (
    CallbackError,
    CycleError,
    StorageError,
    TransportError,
    ValidationError,
)
from flockbot.storage import Database
from flockbot.utils.duration import to_duration
from flockbot.watchers.base import BaseWatcher, Clock, WatcherKey, utc_now
from flockbot.watchers.links import LinkDirection, LinkSetWatcher
from flockbot.watchers.timeline import (
    DEFAULT_PAGE_SIZE,
    PUBLIC_USER,
    TimelineKind,
    TimelineWatcher,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallbackBinding:
    """A resolved callback plus the extra keyword arguments it receives."""

    func: Callable[..., Any]
    args: Mapping[str, Any]
    name: str

    def invoke(self, item_kw: str, item: Any) -> None:
        self.func(**{item_kw: item}, **self.args)


@dataclass
class Registration:
    watcher: BaseWatcher
    callbacks: dict[str, CallbackBinding]


@dataclass
class CycleReport:
    """Outcome of one dispatch cycle."""

    checked: list[WatcherKey] = field(default_factory=list)
    skipped: list[WatcherKey] = field(default_factory=list)
    delivered: int = 0


class Bot:
    """Base class for polling bots.

    ``directory`` holds the persisted watcher state and must already exist.
    ``client`` is anything implementing :class:`~flockbot.client.SocialClient`;
    it may also be passed per cycle to :meth:`dispatch_cycle`.
    """

    def __init__(
        self,
        username: str,
        directory: str | Path,
        client: Any = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Clock | None = None,
        database: Database | None = None,
    ) -> None:
        if not username:
            raise ValidationError("no username provided")
        self._username = username
        self._directory = check_directory(directory)
        self._client = client
        self.page_size = page_size
        self.clock = clock or utc_now
        self.db = database or Database.in_directory(self._directory)
        self._registry: dict[WatcherKey, Registration] = {}

    @classmethod
    def from_config(cls, config: BotConfig, client: Any = None) -> Bot:
        """Build a bot from loaded configuration, with an HTTP client by default."""
        if client is None:
            client = HttpClient.from_config(config)
        return cls(
            config.username,
            config.directory,
            client,
            page_size=config.api.page_size,
        )

    @property
    def username(self) -> str:
        return self._username

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def client(self) -> Any:
        return self._client

    @property
    def registrations(self) -> Mapping[WatcherKey, Registration]:
        return MappingProxyType(self._registry)

    # -- registration --

    def register_timeline(
        self,
        timeline: TimelineKind | str,
        user: str | None = None,
        interval: Any = None,
        callback: Callable[..., Any] | str | None = None,
        callback_args: Mapping[str, Any] | None = None,
    ) -> WatcherKey:
        """Call ``callback(status=..., **callback_args)`` for each new status.

        ``timeline`` is ``user_timeline``, ``friends_timeline`` or
        ``public_timeline``. ``user`` defaults to the bot's own username and
        is ignored for the public timeline. ``interval`` is the minimum time
        between fetches (see :func:`~flockbot.utils.duration.to_duration`).
        ``callback`` is a callable or the name of a method on this bot.
        """
        kind = TimelineKind.parse(timeline)
        if kind is TimelineKind.PUBLIC:
            user = None
        elif user is None:
            user = self.username
        duration = to_duration(interval)
        if callback is None:
            raise ValidationError("no callback provided")
        binding = self._bind_callback(callback, callback_args, "status")

        key = WatcherKey(user or PUBLIC_USER, kind.value)
        watcher = TimelineWatcher(
            state=self.db.open_map(f"state:{key}"),
            seen_ids=self.db.open_map(f"statuses:{key}"),
            timeline=kind,
            user=user,
            interval=duration,
            page_size=self.page_size,
            clock=self.clock,
            transaction=self.db.transaction,
        )
        self._warn_if_overwriting(key)
        self._registry[key] = Registration(watcher, {"status": binding})
        logger.debug("Registered %s every %s -> %s", key, duration, binding.name)
        return key

    def register_links(
        self,
        links: LinkDirection | str,
        user: str | None = None,
        interval: Any = None,
        add_callback: Callable[..., Any] | str | None = None,
        add_args: Mapping[str, Any] | None = None,
        remove_callback: Callable[..., Any] | str | None = None,
        remove_args: Mapping[str, Any] | None = None,
    ) -> WatcherKey:
        """Watch ``user``'s friends (``outbound``) or followers (``inbound``).

        ``add_callback(link=..., **add_args)`` runs for each member gained
        and ``remove_callback(link=..., **remove_args)`` for each member lost.
        At least one of the two callbacks is required.
        """
        direction = LinkDirection.parse(links)
        if user is None:
            user = self.username
        duration = to_duration(interval)

        if add_callback is None and remove_callback is None:
            raise ValidationError("neither add_callback nor remove_callback provided")
        if add_args is not None and add_callback is None:
            raise ValidationError("add_args given without add_callback")
        if remove_args is not None and remove_callback is None:
            raise ValidationError("remove_args given without remove_callback")

        callbacks: dict[str, CallbackBinding] = {}
        if add_callback is not None:
            callbacks["add"] = self._bind_callback(add_callback, add_args, "link")
        if remove_callback is not None:
            callbacks["remove"] = self._bind_callback(remove_callback, remove_args, "link")

        key = WatcherKey(user, direction.value)
        watcher = LinkSetWatcher(
            state=self.db.open_map(f"state:{key}"),
            members=self.db.open_map(f"links:{key}"),
            links=direction,
            user=user,
            interval=duration,
            clock=self.clock,
            transaction=self.db.transaction,
        )
        self._warn_if_overwriting(key)
        self._registry[key] = Registration(watcher, callbacks)
        logger.debug("Registered %s every %s", key, duration)
        return key

    def _bind_callback(
        self,
        callback: Callable[..., Any] | str,
        args: Mapping[str, Any] | None,
        item_kw: str,
    ) -> CallbackBinding:
        if isinstance(callback, str):
            func = getattr(self, callback, None)
            if func is None:
                raise ValidationError(f"{self.__class__.__name__} doesn't know how to {callback}")
            name = callback
        else:
            func = callback
            name = getattr(callback, "__qualname__", repr(callback))
        if not callable(func):
            raise ValidationError(f"callback {name} is not callable")

        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise ValidationError(f"args for {name} defined but not a mapping")
        if item_kw in args:
            raise ValidationError(f"args for {name} may not contain {item_kw!r}")

        try:
            signature = inspect.signature(func)
        except (TypeError, ValueError):
            signature = None  # builtins without introspectable signatures
        if signature is not None:
            try:
                signature.bind(**{item_kw: None}, **args)
            except TypeError as e:
                raise ValidationError(
                    f"callback {name} cannot be called with {item_kw}= "
                    f"and args {sorted(args)}: {e}"
                ) from e

        return CallbackBinding(func=func, args=dict(args), name=name)

    def _warn_if_overwriting(self, key: WatcherKey) -> None:
        if key in self._registry:
            logger.warning("Overwriting callback on %s", key)

    # -- dispatch --

    def dispatch_cycle(self, client: Any = None) -> CycleReport:
        """Check every due watcher and deliver what changed.

        Watchers are visited in key order. For each watcher the callback runs
        once per delta item, in the order the watcher returned them (for link
        sets, all additions before all removals).

        A watcher whose fetch or storage fails is logged and skipped, the
        remaining watchers still run, and :class:`CycleError` is raised at
        the end. A callback that raises aborts the whole cycle with
        :class:`CallbackError`; persisted state already reflects that
        watcher's delta, so the undelivered items are not offered again.
        """
        client = client if client is not None else self._client
        if client is None:
            raise ValidationError("no client available for dispatch")

        report = CycleReport()
        if not self._registry:
            logger.warning("No callbacks registered on %s; nothing to check", self)
            return report

        errors: dict[WatcherKey, Exception] = {}
        for key in sorted(self._registry):
            registration = self._registry[key]
            watcher = registration.watcher
            now = self.clock()
            try:
                if not watcher.is_due(now):
                    report.skipped.append(key)
                    continue
                result = watcher.check(client, now)
            except (TransportError, StorageError) as e:
                logger.error("%s check failed: %s", key, e, exc_info=True)
                errors[key] = e
                continue
            report.checked.append(key)

            try:
                report.delivered += self._deliver(key, registration, result)
            except CallbackError:
                if errors:
                    logger.error(
                        "Cycle aborted by callback; %d watcher(s) had already failed",
                        len(errors),
                    )
                raise

        if errors:
            raise CycleError(errors)
        logger.info(
            "Cycle done: %d checked, %d not due, %d callback(s)",
            len(report.checked), len(report.skipped), report.delivered,
        )
        return report

    def check(self, client: Any = None) -> CycleReport:
        """Alias of :meth:`dispatch_cycle`."""
        return self.dispatch_cycle(client)

    def _deliver(self, key: WatcherKey, registration: Registration, result: Any) -> int:
        callbacks = registration.callbacks
        if isinstance(registration.watcher, TimelineWatcher):
            batches = [("status", callbacks["status"], result)]
        else:
            added, removed = result
            batches = [
                ("link", callbacks.get("add"), added),
                ("link", callbacks.get("remove"), removed),
            ]

        delivered = 0
        for item_kw, binding, items in batches:
            if binding is None:
                continue
            for item in items:
                try:
                    binding.invoke(item_kw, item)
                except Exception as e:
                    raise CallbackError(key, binding.name, item) from e
                delivered += 1
        return delivered

    def close(self) -> None:
        """Close the state database and the client, if it can be closed."""
        self.db.close()
        close = getattr(self._client, "close", None)
        if callable(close):
            close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.username!r}, {str(self.directory)!r})"
