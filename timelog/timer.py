"""Lifecycle of one user's active session.

The engine never counts seconds itself: elapsed time is always derived from
the start instant returned by the store, so suspended tabs, restarts and
sleeping laptops cannot make it drift. Every transition bumps a generation
counter; store responses that come back after the engine has moved on are
dropped without touching local state.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import math
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Optional, Set, Tuple

from .entities import SessionForm, StopResult, TimeSession, as_utc, minutes_between, utcnow
from .errors import ConflictError, NotFoundError, TimeLogError, ValidationError
from .store import PreferenceStore, SessionStore

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]
TickCallback = Callable[[int], Any]

# Strong references for fire-and-forget closes until they settle.
_BACKGROUND_CLOSES: Set["asyncio.Task[None]"] = set()


class TimerState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def _require_fields(**fields: Optional[str]) -> Dict[str, str]:
    cleaned = {name: (value or "").strip() for name, value in fields.items()}
    missing = [name for name, value in cleaned.items() if not value]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return cleaned


def _log_best_effort(session_id: int, task: "asyncio.Task[None]") -> None:
    _BACKGROUND_CLOSES.discard(task)
    if task.cancelled():
        logger.warning("Best-effort close of session %s was cancelled", session_id)
        return
    exc = task.exception()
    if exc is None:
        logger.info("Best-effort close of session %s succeeded", session_id)
    elif isinstance(exc, NotFoundError):
        logger.debug("Session %s was already closed", session_id)
    else:
        logger.error("Best-effort close of session %s failed: %s", session_id, exc)


class TimerEngine:
    def __init__(
        self,
        store: SessionStore,
        *,
        clock: Clock = utcnow,
        tick_interval: Optional[float] = 1.0,
        preferences: Optional[PreferenceStore] = None,
        on_tick: Optional[TickCallback] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.tick_interval = tick_interval if tick_interval and tick_interval > 0 else None
        self.preferences = preferences
        self.on_tick = on_tick

        self.state = TimerState.IDLE
        self.active_session: Optional[TimeSession] = None
        self.form = SessionForm()
        self.elapsed_seconds = 0

        self._generation = 0
        self._tick_task: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> Optional[int]:
        return self.active_session.id if self.active_session else None

    @property
    def is_ticking(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def start_session(
        self,
        user_name: str,
        client_name: str,
        project_type: str,
        project_name: str,
    ) -> TimeSession:
        fields = _require_fields(
            user_name=user_name,
            client_name=client_name,
            project_type=project_type,
            project_name=project_name,
        )
        if self.state is not TimerState.IDLE:
            raise ConflictError(
                f"Timer is {self.state.value}; stop the current session first",
                session_id=self.session_id,
            )

        generation = self._advance(TimerState.STARTING)
        try:
            session = await self.store.insert(
                fields["user_name"],
                fields["client_name"],
                fields["project_type"],
                fields["project_name"].upper(),
                self.clock(),
            )
        except BaseException:
            if self._generation == generation:
                self._reset_idle()
            raise

        if self._generation != generation:
            logger.debug("Ignoring start confirmation for session %s; timer moved on", session.id)
            return session

        self._enter_running(session)
        self.elapsed_seconds = 0
        logger.info("Session %s started for %s", session.id, session.user_name)
        await self._remember_user(session.user_name)
        return session

    async def stop_session(self) -> Optional[StopResult]:
        session = self.active_session
        if self.state is not TimerState.RUNNING or session is None:
            logger.debug("Stop ignored while %s", self.state.value)
            return None

        end_time, duration = self._closing_values(session)
        generation = self._advance(TimerState.STOPPING)
        self._cancel_tick()
        try:
            await self.store.close(session.id, end_time, duration)
        except NotFoundError:
            logger.info("Session %s was already closed; treating as stopped", session.id)
            if self._generation == generation:
                self._reset_idle()
            return StopResult(session.id, end_time, duration, already_closed=True)
        except BaseException:
            if self._generation == generation:
                self._enter_running(session)
            raise

        if self._generation == generation:
            self._reset_idle()
            logger.info("Session %s stopped after %.2f minutes", session.id, duration)
        else:
            logger.debug("Late stop confirmation for session %s ignored", session.id)
        return StopResult(session.id, end_time, duration)

    def get_elapsed_seconds(self) -> int:
        if self.state is not TimerState.RUNNING or self.active_session is None:
            return 0
        delta = as_utc(self.clock()) - self.active_session.start_time
        return max(0, math.floor(delta.total_seconds()))

    def terminate(self) -> Optional["asyncio.Task[None]"]:
        """Best-effort close when the surrounding process goes away.

        The close is scheduled and never awaited or retried; if it fails the
        session stays open in the store until the next reconciliation.
        """
        session = self.active_session
        if self.state is not TimerState.RUNNING or session is None:
            return None

        end_time, duration = self._closing_values(session)
        self._advance(TimerState.STOPPING)
        self._cancel_tick()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; session %s stays open", session.id)
            self._reset_idle()
            return None

        task = loop.create_task(self.store.close(session.id, end_time, duration))
        _BACKGROUND_CLOSES.add(task)
        task.add_done_callback(partial(_log_best_effort, session.id))
        self._reset_idle()
        return task

    # ------------------------------------------------------------------
    # Reconciliation hooks
    # ------------------------------------------------------------------
    def adopt(self, session: TimeSession) -> None:
        """Make ``session`` (open in the store) the one being timed."""
        if not session.is_open:
            raise ValueError("only open sessions can be adopted")
        current = self.active_session
        if current is not None and current.id == session.id:
            if self.state is TimerState.STOPPING:
                logger.debug("Session %s is being stopped; adoption skipped", session.id)
                return
            if self.state is TimerState.RUNNING:
                self.active_session = session
                self.elapsed_seconds = self.get_elapsed_seconds()
                if not self.is_ticking:
                    self._start_tick()
                return
        self._enter_running(session)
        logger.info("Adopted open session %s for %s", session.id, session.user_name)

    def discard(self) -> None:
        """Forget any locally cached session without touching the store."""
        if self.state is TimerState.STARTING:
            logger.debug("Discard skipped while a start is in flight")
            return
        if self.state is not TimerState.IDLE:
            logger.info("Dropping local session %s", self.session_id)
        self._reset_idle()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _advance(self, state: TimerState) -> int:
        self._generation += 1
        self.state = state
        return self._generation

    def _enter_running(self, session: TimeSession) -> None:
        self._advance(TimerState.RUNNING)
        self.active_session = session
        self.form = SessionForm.from_session(session)
        self.elapsed_seconds = self.get_elapsed_seconds()
        self._start_tick()

    def _reset_idle(self) -> None:
        self._cancel_tick()
        self._advance(TimerState.IDLE)
        self.active_session = None
        self.form = SessionForm()
        self.elapsed_seconds = 0

    def _closing_values(self, session: TimeSession) -> Tuple[dt.datetime, float]:
        # A client clock behind the store would otherwise yield a negative span.
        end_time = max(as_utc(self.clock()), session.start_time)
        return end_time, minutes_between(session.start_time, end_time)

    async def _remember_user(self, user_name: str) -> None:
        if self.preferences is None:
            return
        try:
            await self.preferences.remember_user(user_name)
        except TimeLogError as exc:
            logger.warning("Could not remember last user %s: %s", user_name, exc)

    def _start_tick(self) -> None:
        self._cancel_tick()
        if self.tick_interval is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; elapsed time will not tick")
            return
        self._tick_task = loop.create_task(self._tick(self._generation))

    def _cancel_tick(self) -> None:
        if self._tick_task is not None:
            self._tick_task.cancel()
            self._tick_task = None

    async def _tick(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            if self._generation != generation or self.state is not TimerState.RUNNING:
                return
            self.elapsed_seconds = self.get_elapsed_seconds()
            if self.on_tick is not None:
                self.on_tick(self.elapsed_seconds)


__all__ = ["TimerEngine", "TimerState", "Clock"]
