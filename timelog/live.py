"""Live view of who is currently tracking time.

Two interchangeable backends deliver the same snapshots: ``PollingFeed``
re-queries the store on an interval, ``PushFeed`` refreshes whenever the
store publishes a change.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .entities import TimeSession, as_utc
from .errors import TimeLogError
from .store import ChangeNotifier, SessionChange, SessionStore

logger = logging.getLogger(__name__)

Listener = Callable[[List[TimeSession]], Any]


@dataclass(frozen=True, slots=True)
class ActiveUser:
    user_name: str
    full_name: str
    client_name: str
    project_name: str
    start_time: dt.datetime
    elapsed_seconds: int


def active_users(
    sessions: Sequence[TimeSession],
    now: dt.datetime,
    full_names: Optional[Mapping[str, str]] = None,
) -> List[ActiveUser]:
    names = full_names or {}
    rows: List[ActiveUser] = []
    for session in sessions:
        if not session.is_open:
            continue
        elapsed = (as_utc(now) - session.start_time).total_seconds()
        rows.append(
            ActiveUser(
                user_name=session.user_name,
                full_name=names.get(session.user_name) or session.user_name,
                client_name=session.client_name,
                project_name=session.project_name,
                start_time=session.start_time,
                elapsed_seconds=max(0, math.floor(elapsed)),
            )
        )
    return rows


class OpenSessionFeed(ABC):
    """Subscribe to changes of the set of open sessions."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store
        self.latest: Optional[List[TimeSession]] = None
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def refresh(self) -> List[TimeSession]:
        sessions = await self.store.list_open()
        self.latest = sessions
        for listener in list(self._listeners):
            try:
                listener(sessions)
            except Exception:
                logger.exception("Open-session listener failed")
        return sessions

    @abstractmethod
    async def start(self) -> None:
        """Begin delivering snapshots."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop delivering snapshots and release background tasks."""


class PollingFeed(OpenSessionFeed):
    def __init__(self, store: SessionStore, interval_seconds: float = 30.0) -> None:
        super().__init__(store)
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except TimeLogError as exc:
                logger.warning("Polling open sessions failed: %s", exc)
            await asyncio.sleep(self.interval_seconds)


class PushFeed(OpenSessionFeed):
    def __init__(self, store: SessionStore, notifier: ChangeNotifier) -> None:
        super().__init__(store)
        self.notifier = notifier
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._pending: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self.notifier.subscribe(self._on_change)
        await self.refresh()

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        task, self._pending = self._pending, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _on_change(self, change: SessionChange) -> None:
        if self._loop is None:
            return
        logger.debug("Store change %s for session %s", change.kind, change.session_id)
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = self._loop.create_task(self._refresh_quietly())

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except TimeLogError as exc:
            logger.warning("Refreshing open sessions failed: %s", exc)


def build_feed(
    backend: str,
    store: SessionStore,
    notifier: Optional[ChangeNotifier] = None,
    poll_seconds: float = 30.0,
) -> OpenSessionFeed:
    if backend == "push":
        if notifier is None:
            raise ValueError("push feed needs a change notifier")
        return PushFeed(store, notifier)
    if backend == "poll":
        return PollingFeed(store, poll_seconds)
    raise ValueError(f"Unknown feed backend: {backend}")


__all__ = [
    "ActiveUser",
    "active_users",
    "OpenSessionFeed",
    "PollingFeed",
    "PushFeed",
    "build_feed",
]
