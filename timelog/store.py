"""Session store contracts and the SQLAlchemy-backed reference adapter."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from .database import SessionLocal, session_scope
from .entities import TimeSession, TimeWindow, as_utc
from .errors import ConflictError, NotFoundError, PersistenceError, TimeLogError
from .models import Preference, TimeLogRecord

logger = logging.getLogger(__name__)

LAST_USER_KEY = "last_user"


class SessionStore(Protocol):
    async def insert(
        self,
        user_name: str,
        client_name: str,
        project_type: str,
        project_name: str,
        start_time: dt.datetime,
    ) -> TimeSession: ...

    async def close(self, session_id: int, end_time: dt.datetime, duration_minutes: float) -> None: ...

    async def find_open(self, user_name: str) -> Optional[TimeSession]: ...

    async def list_open(self) -> List[TimeSession]: ...


class LogReader(Protocol):
    async def query(
        self,
        start: dt.datetime,
        end: dt.datetime,
        *,
        limit: int,
        offset: int = 0,
        user_name: Optional[str] = None,
    ) -> List[TimeSession]: ...


class PreferenceStore(Protocol):
    async def remember_user(self, user_name: str) -> None: ...

    async def last_user(self) -> Optional[str]: ...


@dataclass(frozen=True, slots=True)
class SessionChange:
    kind: str  # "insert" or "close"
    session_id: int
    user_name: str


class ChangeNotifier:
    """Fan-out of store change events to in-process listeners."""

    def __init__(self) -> None:
        self._listeners: List[Callable[[SessionChange], Any]] = []

    def subscribe(self, listener: Callable[[SessionChange], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, change: SessionChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Change listener failed for %s", change)


async def collect_closed_sessions(
    reader: LogReader,
    window: TimeWindow,
    page_size: int,
    *,
    user_name: Optional[str] = None,
    max_rows: Optional[int] = None,
) -> List[TimeSession]:
    """Read every closed session in ``window`` page by page."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    collected: List[TimeSession] = []
    offset = 0
    while True:
        limit = page_size
        if max_rows is not None:
            limit = min(page_size, max_rows - len(collected))
            if limit <= 0:
                break
        page = await reader.query(window.start, window.end, limit=limit, offset=offset, user_name=user_name)
        collected.extend(page)
        if len(page) < limit:
            break
        offset += len(page)
    return collected


class _SqlAdapter:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._factory = session_factory

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await run_in_threadpool(func, *args)
        except TimeLogError:
            raise
        except IntegrityError as exc:
            raise ConflictError("An open session already exists for this user") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Session store failure: {exc.__class__.__name__}") from exc


class SqlSessionStore(_SqlAdapter):
    """``SessionStore`` and ``LogReader`` on top of the ``time_tracker_logs`` table."""

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        notifier: Optional[ChangeNotifier] = None,
    ) -> None:
        super().__init__(session_factory)
        self.notifier = notifier or ChangeNotifier()

    async def insert(
        self,
        user_name: str,
        client_name: str,
        project_type: str,
        project_name: str,
        start_time: dt.datetime,
    ) -> TimeSession:
        session = await self._run(
            self._insert, user_name, client_name, project_type, project_name, start_time
        )
        self.notifier.publish(SessionChange("insert", session.id, session.user_name))
        return session

    async def close(self, session_id: int, end_time: dt.datetime, duration_minutes: float) -> None:
        user_name = await self._run(self._close, session_id, end_time, duration_minutes)
        self.notifier.publish(SessionChange("close", session_id, user_name))

    async def find_open(self, user_name: str) -> Optional[TimeSession]:
        return await self._run(self._find_open, user_name)

    async def list_open(self) -> List[TimeSession]:
        return await self._run(self._list_open)

    async def query(
        self,
        start: dt.datetime,
        end: dt.datetime,
        *,
        limit: int,
        offset: int = 0,
        user_name: Optional[str] = None,
    ) -> List[TimeSession]:
        return await self._run(self._query, start, end, limit, offset, user_name)

    def _insert(
        self,
        user_name: str,
        client_name: str,
        project_type: str,
        project_name: str,
        start_time: dt.datetime,
    ) -> TimeSession:
        with session_scope(self._factory) as db:
            existing = (
                db.query(TimeLogRecord)
                .filter(TimeLogRecord.user_name == user_name, TimeLogRecord.end_time.is_(None))
                .first()
            )
            if existing is not None:
                raise ConflictError(
                    f"User {user_name} already has an open session", session_id=existing.id
                )
            record = TimeLogRecord(
                user_name=user_name,
                client_name=client_name,
                project_type=project_type,
                project_name=project_name,
                start_time=as_utc(start_time),
            )
            db.add(record)
            db.flush()
            db.refresh(record)
            return record.to_entity()

    def _close(self, session_id: int, end_time: dt.datetime, duration_minutes: float) -> str:
        with session_scope(self._factory) as db:
            user_name = (
                db.query(TimeLogRecord.user_name)
                .filter(TimeLogRecord.id == session_id, TimeLogRecord.end_time.is_(None))
                .scalar()
            )
            updated = (
                db.query(TimeLogRecord)
                .filter(TimeLogRecord.id == session_id, TimeLogRecord.end_time.is_(None))
                .update(
                    {
                        TimeLogRecord.end_time: as_utc(end_time),
                        TimeLogRecord.duration_minutes: duration_minutes,
                    },
                    synchronize_session=False,
                )
            )
            if not updated:
                raise NotFoundError(f"Session {session_id} is unknown or already closed", session_id=session_id)
            return user_name

    def _find_open(self, user_name: str) -> Optional[TimeSession]:
        with session_scope(self._factory) as db:
            record = (
                db.query(TimeLogRecord)
                .filter(TimeLogRecord.user_name == user_name, TimeLogRecord.end_time.is_(None))
                .order_by(TimeLogRecord.start_time.desc())
                .first()
            )
            return record.to_entity() if record else None

    def _list_open(self) -> List[TimeSession]:
        with session_scope(self._factory) as db:
            records = (
                db.query(TimeLogRecord)
                .filter(TimeLogRecord.end_time.is_(None))
                .order_by(TimeLogRecord.start_time.asc(), TimeLogRecord.id.asc())
                .all()
            )
            return [record.to_entity() for record in records]

    def _query(
        self,
        start: dt.datetime,
        end: dt.datetime,
        limit: int,
        offset: int,
        user_name: Optional[str],
    ) -> List[TimeSession]:
        with session_scope(self._factory) as db:
            query = db.query(TimeLogRecord).filter(
                TimeLogRecord.end_time.is_not(None),
                TimeLogRecord.end_time >= as_utc(start),
                TimeLogRecord.end_time <= as_utc(end),
            )
            if user_name:
                query = query.filter(TimeLogRecord.user_name == user_name)
            records = (
                query.order_by(TimeLogRecord.end_time.desc(), TimeLogRecord.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [record.to_entity() for record in records]


class SqlPreferenceStore(_SqlAdapter):
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        super().__init__(session_factory)

    async def remember_user(self, user_name: str) -> None:
        await self._run(self._set, LAST_USER_KEY, user_name)

    async def last_user(self) -> Optional[str]:
        return await self._run(self._get, LAST_USER_KEY)

    def _set(self, key: str, value: str) -> None:
        with session_scope(self._factory) as db:
            record = db.query(Preference).filter(Preference.key == key).one_or_none()
            if record:
                record.value = value
            else:
                db.add(Preference(key=key, value=value))

    def _get(self, key: str) -> Optional[str]:
        with session_scope(self._factory) as db:
            record = db.query(Preference).filter(Preference.key == key).one_or_none()
            return record.value if record else None


__all__ = [
    "SessionStore",
    "LogReader",
    "PreferenceStore",
    "SessionChange",
    "ChangeNotifier",
    "collect_closed_sessions",
    "SqlSessionStore",
    "SqlPreferenceStore",
]
