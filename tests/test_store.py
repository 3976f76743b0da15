from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy.exc import IntegrityError

from timelog.entities import TimeWindow
from timelog.errors import ConflictError, NotFoundError
from timelog.models import TimeLogRecord
from timelog.store import collect_closed_sessions

pytestmark = pytest.mark.anyio

UTC = dt.timezone.utc
T0 = dt.datetime(2024, 1, 1, 8, 0, tzinfo=UTC)


async def _closed(store, user: str, start: dt.datetime, minutes: float):
    session = await store.insert(user, "ACME", "Dev", "WEB", start)
    await store.close(session.id, start + dt.timedelta(minutes=minutes), minutes)
    return session


async def test_insert_returns_open_session(sql_store):
    session = await sql_store.insert("alice", "ACME", "Dev", "WEB", T0)
    assert session.id > 0
    assert session.is_open
    assert session.start_time == T0
    assert session.start_time.tzinfo is not None


async def test_second_open_session_conflicts(sql_store):
    first = await sql_store.insert("alice", "ACME", "Dev", "WEB", T0)
    with pytest.raises(ConflictError) as excinfo:
        await sql_store.insert("alice", "Globex", "Ops", "X", T0)
    assert excinfo.value.session_id == first.id

    other = await sql_store.insert("bob", "ACME", "Dev", "WEB", T0)
    assert other.id != first.id


def test_partial_index_allows_one_open_row_per_user(session_factory):
    with session_factory() as db:
        db.add(TimeLogRecord(user_name="alice", client_name="A", project_type="P", project_name="N", start_time=T0))
        db.add(
            TimeLogRecord(
                user_name="alice",
                client_name="A",
                project_type="P",
                project_name="N",
                start_time=T0,
                end_time=T0 + dt.timedelta(minutes=5),
                duration_minutes=5,
            )
        )
        db.commit()
        db.add(TimeLogRecord(user_name="alice", client_name="B", project_type="P", project_name="N", start_time=T0))
        with pytest.raises(IntegrityError):
            db.commit()


async def test_close_is_conditional(sql_store):
    session = await sql_store.insert("alice", "ACME", "Dev", "WEB", T0)
    await sql_store.close(session.id, T0 + dt.timedelta(seconds=90), 1.5)

    assert await sql_store.find_open("alice") is None
    with pytest.raises(NotFoundError):
        await sql_store.close(session.id, T0 + dt.timedelta(minutes=5), 5)
    with pytest.raises(NotFoundError):
        await sql_store.close(9999, T0, 0)

    rows = await sql_store.query(T0, T0 + dt.timedelta(days=1), limit=10)
    assert rows[0].duration_minutes == 1.5
    assert rows[0].end_time == T0 + dt.timedelta(seconds=90)


async def test_find_and_list_open(sql_store):
    alice = await sql_store.insert("alice", "ACME", "Dev", "WEB", T0)
    bob = await sql_store.insert("bob", "ACME", "Dev", "WEB", T0 + dt.timedelta(minutes=1))

    assert (await sql_store.find_open("alice")).id == alice.id
    assert await sql_store.find_open("carol") is None
    assert [s.id for s in await sql_store.list_open()] == [alice.id, bob.id]


async def test_query_filters_on_end_time_window(sql_store):
    inside = await _closed(sql_store, "alice", T0, 30)
    await _closed(sql_store, "alice", T0 - dt.timedelta(days=2), 30)
    await sql_store.insert("bob", "ACME", "Dev", "WEB", T0)

    rows = await sql_store.query(T0, T0 + dt.timedelta(hours=1), limit=10)

    assert [r.id for r in rows] == [inside.id]


async def test_query_filters_by_user(sql_store):
    await _closed(sql_store, "alice", T0, 10)
    bob = await _closed(sql_store, "bob", T0, 20)
    rows = await sql_store.query(T0, T0 + dt.timedelta(hours=1), limit=10, user_name="bob")
    assert [r.id for r in rows] == [bob.id]


async def test_collect_closed_sessions_reads_every_page(sql_store):
    created = [await _closed(sql_store, "alice", T0 + dt.timedelta(hours=i), 15) for i in range(5)]
    window = TimeWindow(T0, T0 + dt.timedelta(days=1))

    rows = await collect_closed_sessions(sql_store, window, page_size=2)

    assert sorted(r.id for r in rows) == sorted(s.id for s in created)
    assert [r.id for r in rows] == [s.id for s in reversed(created)]

    capped = await collect_closed_sessions(sql_store, window, page_size=2, max_rows=3)
    assert len(capped) == 3


async def test_changes_are_published(sql_store, notifier):
    seen = []
    unsubscribe = notifier.subscribe(seen.append)
    session = await sql_store.insert("alice", "ACME", "Dev", "WEB", T0)
    await sql_store.close(session.id, T0 + dt.timedelta(minutes=1), 1)
    unsubscribe()
    await sql_store.insert("alice", "ACME", "Dev", "WEB", T0)

    assert [(c.kind, c.session_id, c.user_name) for c in seen] == [
        ("insert", session.id, "alice"),
        ("close", session.id, "alice"),
    ]


async def test_failing_listener_does_not_break_the_store(sql_store, notifier):
    def broken(change):
        raise RuntimeError("listener down")

    notifier.subscribe(broken)
    session = await sql_store.insert("alice", "ACME", "Dev", "WEB", T0)
    assert session.is_open


async def test_last_user_preference(sql_preferences):
    assert await sql_preferences.last_user() is None
    await sql_preferences.remember_user("alice")
    await sql_preferences.remember_user("bob")
    assert await sql_preferences.last_user() == "bob"
