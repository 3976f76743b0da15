from __future__ import annotations

import logging
from typing import Optional

from .entities import TimeSession
from .errors import ValidationError
from .store import SessionStore
from .timer import TimerEngine

logger = logging.getLogger(__name__)


class SessionReconciler:
    """Aligns a timer engine with the store's open session for a user.

    Only observes and adopts: it never creates or closes sessions, so calling
    it repeatedly without store changes always gives the same verdict.
    """

    def __init__(self, store: SessionStore, engine: TimerEngine) -> None:
        self.store = store
        self.engine = engine

    async def reconcile(self, user_name: str) -> Optional[TimeSession]:
        user = (user_name or "").strip()
        if not user:
            raise ValidationError("A user is required to reconcile")

        found = await self.store.find_open(user)
        if found is None:
            if self.engine.active_session is not None:
                logger.info("No open session for %s in store; timer reset", user)
            self.engine.discard()
            return None

        cached = self.engine.active_session
        if cached is not None and cached.id != found.id:
            logger.info("Store session %s replaces cached session %s", found.id, cached.id)
        self.engine.adopt(found)
        return found


__all__ = ["SessionReconciler"]
