from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from .entities import utcnow
from .errors import ValidationError
from .reconcile import SessionReconciler
from .store import PreferenceStore, SessionStore
from .timer import Clock, TimerEngine, TimerState

logger = logging.getLogger(__name__)


class TrackerRegistry:
    """One timer engine per user, created on first use."""

    def __init__(
        self,
        store: SessionStore,
        *,
        preferences: Optional[PreferenceStore] = None,
        clock: Clock = utcnow,
        tick_interval: Optional[float] = None,
    ) -> None:
        self.store = store
        self.preferences = preferences
        self.clock = clock
        self.tick_interval = tick_interval
        self._engines: Dict[str, TimerEngine] = {}

    @staticmethod
    def _key(user_name: str) -> str:
        key = (user_name or "").strip()
        if not key:
            raise ValidationError("Missing required fields: user_name")
        return key

    def engine_for(self, user_name: str) -> TimerEngine:
        key = self._key(user_name)
        engine = self._engines.get(key)
        if engine is None:
            engine = TimerEngine(
                self.store,
                clock=self.clock,
                tick_interval=self.tick_interval,
                preferences=self.preferences,
            )
            self._engines[key] = engine
        return engine

    def reconciler_for(self, user_name: str) -> SessionReconciler:
        return SessionReconciler(self.store, self.engine_for(user_name))

    def release(self, user_name: str) -> None:
        """Forget the user's engine once it holds nothing but idle state."""
        key = (user_name or "").strip()
        engine = self._engines.get(key)
        if engine is not None and engine.state is TimerState.IDLE:
            del self._engines[key]

    def tracked_users(self) -> List[str]:
        return list(self._engines)

    def running(self) -> List[TimerEngine]:
        return [engine for engine in self._engines.values() if engine.state is TimerState.RUNNING]

    def shutdown(self, close_sessions: bool) -> List["asyncio.Task[None]"]:
        tasks: List["asyncio.Task[None]"] = []
        for engine in self._engines.values():
            if close_sessions:
                task = engine.terminate()
                if task is not None:
                    tasks.append(task)
            else:
                engine.discard()
        if tasks:
            logger.info("Scheduled best-effort close for %d running sessions", len(tasks))
        return tasks


__all__ = ["TrackerRegistry"]
