from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import List, Literal, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from . import models
from .config import Settings, settings
from .dashboard import (
    client_timeline,
    daily_calendar,
    daily_summary,
    format_daily_summary,
    load_calendar_sessions,
    load_dashboard,
    monthly_calendar,
)
from .database import SessionLocal, build_session_factory, engine as default_engine
from .entities import utcnow
from .errors import ConflictError, NotFoundError, PersistenceError, TimeLogError, ValidationError
from .live import active_users, build_feed
from .registry import TrackerRegistry
from .schemas import (
    ActiveUserResponse,
    BucketResponse,
    ClientTimelineResponse,
    DailySummaryResponse,
    DashboardResponse,
    DayBreakdownResponse,
    LastUserResponse,
    StartSessionRequest,
    StopSessionRequest,
    StopSessionResponse,
    TimeSessionResponse,
    TrackingStatusResponse,
)
from .store import ChangeNotifier, SqlPreferenceStore, SqlSessionStore, collect_closed_sessions
from .timer import Clock, TimerEngine, TimerState
from .windows import FILTER_LABELS, TimeFilter, day_bounds

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _status_for(exc: TimeLogError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _tracking_status(user_name: str, engine: TimerEngine) -> TrackingStatusResponse:
    session = engine.active_session if engine.state is TimerState.RUNNING else None
    return TrackingStatusResponse(
        user_name=user_name,
        state=engine.state.value,
        is_tracking=session is not None,
        session=TimeSessionResponse.model_validate(session) if session else None,
        client_name=engine.form.client_name,
        project_type=engine.form.project_type,
        project_name=engine.form.project_name,
        elapsed_seconds=engine.get_elapsed_seconds(),
    )


def create_app(
    bind: Optional[Engine] = None,
    *,
    app_settings: Settings = settings,
    clock: Clock = utcnow,
) -> FastAPI:
    db_engine = bind or default_engine
    factory = SessionLocal if bind is None else build_session_factory(bind)
    tz = app_settings.tzinfo

    notifier = ChangeNotifier()
    store = SqlSessionStore(factory, notifier)
    preferences = SqlPreferenceStore(factory)
    registry = TrackerRegistry(
        store,
        preferences=preferences,
        clock=clock,
        tick_interval=app_settings.tick_interval_seconds,
    )
    feed = build_feed(
        app_settings.active_users_backend,
        store,
        notifier,
        app_settings.active_users_poll_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        models.Base.metadata.create_all(bind=db_engine)
        await feed.start()
        logger.info("%s ready (%s feed, tz=%s)", app_settings.app_name, app_settings.active_users_backend, tz)
        try:
            yield
        finally:
            await feed.stop()
            registry.shutdown(app_settings.close_sessions_on_shutdown)

    app = FastAPI(title=app_settings.app_name, lifespan=lifespan)
    app.state.store = store
    app.state.registry = registry
    app.state.feed = feed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TimeLogError)
    async def handle_tracking_error(request: Request, exc: TimeLogError) -> JSONResponse:
        code = _status_for(exc)
        if code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"detail": str(exc)}, status_code=code)

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/tracker/start", response_model=TimeSessionResponse, status_code=status.HTTP_201_CREATED)
    async def tracker_start(payload: StartSessionRequest):
        engine = registry.engine_for(payload.user_name)
        try:
            session = await engine.start_session(
                payload.user_name,
                payload.client_name,
                payload.project_type,
                payload.project_name,
            )
        except ConflictError as exc:
            open_session = await registry.reconciler_for(payload.user_name).reconcile(payload.user_name)
            body = {"detail": str(exc), "session": None}
            if open_session is not None:
                body["session"] = TimeSessionResponse.model_validate(open_session).model_dump(mode="json")
            return JSONResponse(body, status_code=status.HTTP_409_CONFLICT)
        finally:
            registry.release(payload.user_name)
        return TimeSessionResponse.model_validate(session)

    @app.post("/tracker/stop", response_model=StopSessionResponse)
    async def tracker_stop(payload: StopSessionRequest) -> StopSessionResponse:
        try:
            await registry.reconciler_for(payload.user_name).reconcile(payload.user_name)
            result = await registry.engine_for(payload.user_name).stop_session()
        finally:
            registry.release(payload.user_name)
        if result is None:
            return StopSessionResponse(stopped=False)
        return StopSessionResponse(
            stopped=True,
            session_id=result.session_id,
            end_time=result.end_time,
            duration_minutes=result.duration_minutes,
            already_closed=result.already_closed,
        )

    @app.get("/tracker/last-user", response_model=LastUserResponse)
    async def tracker_last_user() -> LastUserResponse:
        return LastUserResponse(user_name=await preferences.last_user())

    @app.get("/tracker/{user_name}/status", response_model=TrackingStatusResponse)
    async def tracker_status(user_name: str) -> TrackingStatusResponse:
        try:
            await registry.reconciler_for(user_name).reconcile(user_name)
            return _tracking_status(user_name, registry.engine_for(user_name))
        finally:
            registry.release(user_name)

    @app.get("/tracker/{user_name}/today", response_model=DailySummaryResponse)
    async def tracker_today(user_name: str) -> DailySummaryResponse:
        today = clock().astimezone(tz).date()
        sessions = await collect_closed_sessions(
            store, day_bounds(today, tz), app_settings.log_page_size, user_name=user_name
        )
        entries = daily_summary(sessions, user_name, today, tz)
        return DailySummaryResponse(
            user_name=user_name,
            day=today,
            total_minutes=sum(s.duration_minutes or 0 for s in entries),
            sessions=[TimeSessionResponse.model_validate(s) for s in entries],
            summary_text=format_daily_summary(user_name, today, entries, tz),
        )

    @app.get("/dashboard", response_model=DashboardResponse)
    async def dashboard(
        filter: TimeFilter = TimeFilter.LAST_7_DAYS,
        unit: Literal["hours", "minutes"] = "hours",
        user: Optional[str] = None,
        client: Optional[str] = None,
    ) -> DashboardResponse:
        report = await load_dashboard(
            store,
            filter,
            clock(),
            tz,
            unit=unit,
            page_size=app_settings.log_page_size,
            user_filter=user,
            client_filter=client,
        )
        return DashboardResponse(
            filter=filter.value,
            label=FILTER_LABELS[filter],
            unit=report.unit,
            start=report.window.start,
            end=report.window.end,
            per_client=[BucketResponse.model_validate(b) for b in report.per_client],
            per_user=[BucketResponse.model_validate(b) for b in report.per_user],
            project_types_by_user=[BucketResponse.model_validate(b) for b in report.project_types_by_user],
            project_types_by_client=[BucketResponse.model_validate(b) for b in report.project_types_by_client],
            users=report.users,
            clients=report.clients,
            session_count=report.session_count,
        )

    @app.get("/dashboard/calendar/daily", response_model=List[DayBreakdownResponse])
    async def dashboard_daily_calendar(
        from_date: Optional[dt.date] = None,
        to_date: Optional[dt.date] = None,
    ) -> List[DayBreakdownResponse]:
        now = clock()
        today = now.astimezone(tz).date()
        end_day = today if to_date is None else to_date
        start_day = from_date
        if start_day is None:
            try:
                start_day = end_day - dt.timedelta(days=6)
            except OverflowError as exc:
                raise ValidationError(f"Invalid range ending {end_day}") from exc
        sessions = await load_calendar_sessions(store, now, tz, page_size=app_settings.calendar_page_size)
        return [DayBreakdownResponse.model_validate(d) for d in daily_calendar(sessions, start_day, end_day, tz)]

    @app.get("/dashboard/calendar/monthly", response_model=List[DayBreakdownResponse])
    async def dashboard_monthly_calendar(
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> List[DayBreakdownResponse]:
        now = clock()
        today = now.astimezone(tz).date()
        sessions = await load_calendar_sessions(store, now, tz, page_size=app_settings.calendar_page_size)
        days = monthly_calendar(
            sessions,
            today.year if year is None else year,
            today.month if month is None else month,
            tz,
        )
        return [DayBreakdownResponse.model_validate(d) for d in days]

    @app.get("/dashboard/timeline", response_model=ClientTimelineResponse)
    async def dashboard_timeline(day: dt.date, client: str) -> ClientTimelineResponse:
        sessions = await load_calendar_sessions(store, clock(), tz, page_size=app_settings.calendar_page_size)
        return ClientTimelineResponse.model_validate(client_timeline(sessions, day, client, tz))

    @app.get("/active-users", response_model=List[ActiveUserResponse])
    async def get_active_users() -> List[ActiveUserResponse]:
        sessions = feed.latest
        if sessions is None:
            sessions = await feed.refresh()
        return [ActiveUserResponse.model_validate(row) for row in active_users(sessions, clock())]

    return app


app = create_app()
