from __future__ import annotations

import asyncio
import datetime as dt
import itertools
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from timelog import models
from timelog.config import Settings
from timelog.database import build_engine, build_session_factory
from timelog.entities import TimeSession, as_utc
from timelog.errors import ConflictError, NotFoundError
from timelog.main import create_app
from timelog.store import ChangeNotifier, SqlPreferenceStore, SqlSessionStore

T0 = dt.datetime(2024, 5, 6, 9, 0, tzinfo=dt.timezone.utc)


class FakeClock:
    def __init__(self, now: dt.datetime = T0) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


class MemoryStore:
    """In-process session store whose responses can be held back or failed."""

    def __init__(self) -> None:
        self.rows: Dict[int, TimeSession] = {}
        self._ids = itertools.count(1)
        self.insert_gate: Optional[asyncio.Event] = None
        self.close_gate: Optional[asyncio.Event] = None
        self.insert_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None
        self.close_calls: List[tuple] = []

    def open_directly(
        self,
        user_name: str,
        start_time: dt.datetime = T0,
        client_name: str = "ACME",
        project_type: str = "Dev",
        project_name: str = "WEB",
    ) -> TimeSession:
        session = TimeSession(
            id=next(self._ids),
            user_name=user_name,
            client_name=client_name,
            project_type=project_type,
            project_name=project_name,
            start_time=as_utc(start_time),
        )
        self.rows[session.id] = session
        return session

    def close_directly(self, session_id: int, end_time: dt.datetime) -> None:
        row = self.rows[session_id]
        minutes = (as_utc(end_time) - row.start_time).total_seconds() / 60
        self.rows[session_id] = replace(row, end_time=as_utc(end_time), duration_minutes=minutes)

    async def insert(self, user_name, client_name, project_type, project_name, start_time) -> TimeSession:
        if self.insert_gate is not None:
            await self.insert_gate.wait()
        if self.insert_error is not None:
            raise self.insert_error
        existing = await self.find_open(user_name)
        if existing is not None:
            raise ConflictError("open session exists", session_id=existing.id)
        return self.open_directly(user_name, start_time, client_name, project_type, project_name)

    async def close(self, session_id: int, end_time: dt.datetime, duration_minutes: float) -> None:
        self.close_calls.append((session_id, end_time, duration_minutes))
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.close_error is not None:
            raise self.close_error
        row = self.rows.get(session_id)
        if row is None or not row.is_open:
            raise NotFoundError("not open", session_id=session_id)
        self.rows[session_id] = replace(row, end_time=as_utc(end_time), duration_minutes=duration_minutes)

    async def find_open(self, user_name: str) -> Optional[TimeSession]:
        open_rows = [s for s in self.rows.values() if s.user_name == user_name and s.is_open]
        return max(open_rows, key=lambda s: s.start_time, default=None)

    async def list_open(self) -> List[TimeSession]:
        return sorted((s for s in self.rows.values() if s.is_open), key=lambda s: (s.start_time, s.id))

    async def query(self, start, end, *, limit, offset=0, user_name=None) -> List[TimeSession]:
        rows = [
            s
            for s in self.rows.values()
            if s.end_time is not None
            and as_utc(start) <= s.end_time <= as_utc(end)
            and (not user_name or s.user_name == user_name)
        ]
        rows.sort(key=lambda s: (s.end_time, s.id), reverse=True)
        return rows[offset : offset + limit]


class MemoryPreferences:
    def __init__(self) -> None:
        self.value: Optional[str] = None

    async def remember_user(self, user_name: str) -> None:
        self.value = user_name

    async def last_user(self) -> Optional[str]:
        return self.value


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def memory_preferences() -> MemoryPreferences:
    return MemoryPreferences()


@pytest.fixture
def make_session() -> Callable[..., TimeSession]:
    ids = itertools.count(100)

    def _make(
        minutes: Optional[float],
        client_name: str = "ACME",
        user_name: str = "alice",
        project_type: str = "Dev",
        project_name: str = "WEB",
        end_time: Optional[dt.datetime] = T0,
    ) -> TimeSession:
        if minutes is None:
            return TimeSession(next(ids), user_name, client_name, project_type, project_name, T0)
        start = end_time - dt.timedelta(minutes=minutes)
        return TimeSession(
            next(ids), user_name, client_name, project_type, project_name, start, end_time, minutes
        )

    return _make


@pytest.fixture
def db_engine(tmp_path: Path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture
def sql_store(session_factory, notifier) -> SqlSessionStore:
    return SqlSessionStore(session_factory, notifier)


@pytest.fixture
def sql_preferences(session_factory) -> SqlPreferenceStore:
    return SqlPreferenceStore(session_factory)


@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        timezone="UTC",
        tick_interval_seconds=0,
        active_users_backend="push",
        close_sessions_on_shutdown=False,
        log_page_size=2,
    )


@pytest.fixture
def client(db_engine, app_settings: Settings, clock: FakeClock) -> Generator[TestClient, None, None]:
    app = create_app(db_engine, app_settings=app_settings, clock=clock)
    with TestClient(app) as c:
        yield c
