from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import declarative_base

from .entities import TimeSession, as_utc, utcnow

Base = declarative_base()


class TimeLogRecord(Base):
    __tablename__ = "time_tracker_logs"
    __table_args__ = (
        # At most one open row per user; the store relies on this for conflicts.
        Index(
            "uq_time_tracker_logs_open_user",
            "user_name",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_name = Column(String(100), nullable=False, index=True)
    client_name = Column(String(200), nullable=False)
    project_type = Column(String(100), nullable=False)
    project_name = Column(String(200), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True, index=True)
    duration_minutes = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def to_entity(self) -> TimeSession:
        return TimeSession(
            id=self.id,
            user_name=self.user_name,
            client_name=self.client_name,
            project_type=self.project_type,
            project_name=self.project_name,
            start_time=as_utc(self.start_time),
            end_time=as_utc(self.end_time) if self.end_time is not None else None,
            duration_minutes=self.duration_minutes,
        )


class Preference(Base):
    __tablename__ = "preferences"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
