from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_serializer

from .formatting import format_clock, format_duration


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class TimeSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_name: str
    client_name: str
    project_type: str
    project_name: str
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    duration_minutes: Optional[float] = None

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_name": self.user_name,
            "client_name": self.client_name,
            "project_type": self.project_type,
            "project_name": self.project_name,
            "start_time": _serialize_datetime(self.start_time),
            "end_time": _serialize_datetime(self.end_time) if self.end_time else None,
            "duration_minutes": self.duration_minutes,
            "duration_display": format_duration(self.duration_minutes)
            if self.duration_minutes is not None
            else None,
        }


class StartSessionRequest(BaseModel):
    user_name: str = ""
    client_name: str = ""
    project_type: str = ""
    project_name: str = ""


class StopSessionRequest(BaseModel):
    user_name: str


class StopSessionResponse(BaseModel):
    stopped: bool
    session_id: Optional[int] = None
    end_time: Optional[dt.datetime] = None
    duration_minutes: Optional[float] = None
    already_closed: bool = False

    @field_serializer("end_time", when_used="json")
    def _serialize_end(self, value: Optional[dt.datetime]) -> Optional[str]:
        return _serialize_datetime(value) if value else None


class TrackingStatusResponse(BaseModel):
    user_name: str
    state: str
    is_tracking: bool
    session: Optional[TimeSessionResponse] = None
    client_name: str = ""
    project_type: str = ""
    project_name: str = ""
    elapsed_seconds: int = 0

    @model_serializer(mode="wrap", when_used="json")
    def _serialize(self, handler) -> dict[str, Any]:
        data = handler(self)
        data["elapsed_display"] = format_clock(self.elapsed_seconds)
        return data


class LastUserResponse(BaseModel):
    user_name: Optional[str] = None


class BucketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    key: str
    total_minutes: float
    value: float
    percentage: float


class DashboardResponse(BaseModel):
    filter: str
    label: str
    unit: str
    start: dt.datetime
    end: dt.datetime
    per_client: List[BucketResponse] = Field(default_factory=list)
    per_user: List[BucketResponse] = Field(default_factory=list)
    project_types_by_user: List[BucketResponse] = Field(default_factory=list)
    project_types_by_client: List[BucketResponse] = Field(default_factory=list)
    users: List[str] = Field(default_factory=list)
    clients: List[str] = Field(default_factory=list)
    session_count: int = 0

    @field_serializer("start", "end", when_used="json")
    def _serialize_bounds(self, value: dt.datetime) -> str:
        return value.isoformat()


class DayBreakdownResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    day: dt.date
    total_minutes: float
    top_entry: str
    entries: List[BucketResponse] = Field(default_factory=list)

    @model_serializer(mode="wrap", when_used="json")
    def _serialize(self, handler) -> dict[str, Any]:
        data = handler(self)
        data["total_display"] = format_duration(self.total_minutes)
        return data


class ClientTimelineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    day: dt.date
    client_name: str
    entries: List[TimeSessionResponse] = Field(default_factory=list)
    users: List[str] = Field(default_factory=list)


class ActiveUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    user_name: str
    full_name: str
    client_name: str
    project_name: str
    start_time: dt.datetime
    elapsed_seconds: int

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "user_name": self.user_name,
            "full_name": self.full_name,
            "client_name": self.client_name,
            "project_name": self.project_name,
            "start_time": _serialize_datetime(self.start_time),
            "elapsed_seconds": self.elapsed_seconds,
            "elapsed_display": format_clock(self.elapsed_seconds),
        }


class DailySummaryResponse(BaseModel):
    user_name: str
    day: dt.date
    total_minutes: float
    sessions: List[TimeSessionResponse] = Field(default_factory=list)
    summary_text: str = ""
