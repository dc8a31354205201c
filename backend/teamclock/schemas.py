from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def _serialize_optional(value: Optional[dt.datetime]) -> Optional[str]:
    return _serialize_datetime(value) if value else None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    email: str
    name: str
    role: str
    created_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "created_at": _serialize_datetime(self.created_at),
        }


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: UserResponse


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class UserCreateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Literal["member", "admin"] = "member"


class UserUpdateRequest(BaseModel):
    name: Optional[str] = None
    role: Optional[Literal["member", "admin"]] = None


class PasswordResetRequest(BaseModel):
    password: str


class CategoryRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    color: str


class TagRequest(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class TagResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    color: str


class ConfirmationRequest(BaseModel):
    confirmation: str = ""


class ActiveTimerStartRequest(BaseModel):
    category_id: int
    tag_id: Optional[int] = None
    description: str = ""
    start_time: Optional[dt.datetime] = None


class ActiveTimerUpdateRequest(BaseModel):
    category_id: int
    tag_id: Optional[int] = None
    description: str = ""


class ActiveTimerStopRequest(BaseModel):
    """Values the client may override when it paused locally before stopping."""

    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    duration: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None


class ActiveTimerResponse(BaseModel):
    id: int
    user_id: int
    user_name: str
    user_email: str
    category_id: int
    category_name: str
    category_color: str
    tag_id: Optional[int] = None
    tag_name: Optional[str] = None
    tag_color: Optional[str] = None
    description: str
    start_time: dt.datetime
    elapsed_seconds: int
    elapsed_display: str

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "tag_id": self.tag_id,
            "tag_name": self.tag_name,
            "tag_color": self.tag_color,
            "description": self.description,
            "start_time": _serialize_datetime(self.start_time),
            "elapsed_seconds": self.elapsed_seconds,
            "elapsed_display": self.elapsed_display,
        }


class TimeEntryCreateRequest(BaseModel):
    category_id: int
    tag_id: Optional[int] = None
    description: Optional[str] = None
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    duration: int = Field(ge=0)


class TimeEntryUpdateRequest(BaseModel):
    category_id: Optional[int] = None
    tag_id: Optional[int] = None
    description: Optional[str] = None
    start_time: Optional[dt.datetime] = None
    end_time: Optional[dt.datetime] = None
    duration: Optional[int] = Field(default=None, ge=0)


class TimeEntryResponse(BaseModel):
    id: int
    user_id: int
    user_name: str
    user_email: str
    category_id: int
    category_name: str
    category_color: str
    tag_id: Optional[int] = None
    tag_name: Optional[str] = None
    tag_color: Optional[str] = None
    description: Optional[str] = None
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    duration: int
    duration_display: str

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_color": self.category_color,
            "tag_id": self.tag_id,
            "tag_name": self.tag_name,
            "tag_color": self.tag_color,
            "description": self.description,
            "start_time": _serialize_datetime(self.start_time),
            "end_time": _serialize_optional(self.end_time),
            "duration": self.duration,
            "duration_display": self.duration_display,
        }


class StopTimerResponse(BaseModel):
    entry: Optional[TimeEntryResponse] = None


class DayGroupResponse(BaseModel):
    day: dt.date
    total_seconds: int
    total_display: str
    entries: List[TimeEntryResponse]


class CategorySummaryResponse(BaseModel):
    category_id: int
    category_name: str
    category_color: str
    total_seconds: int
    total_display: str
    entry_count: int
    percentage: float


class RoomRequest(BaseModel):
    name: Optional[str] = None
    meet_link: Optional[str] = None


class RoomParticipantResponse(BaseModel):
    user_id: int
    user_name: str
    joined_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "joined_at": _serialize_datetime(self.joined_at),
        }


class RoomResponse(BaseModel):
    id: int
    name: str
    meet_link: Optional[str] = None
    participants: List[RoomParticipantResponse] = Field(default_factory=list)


class RoomJoinResponse(BaseModel):
    success: bool
    meet_link: Optional[str] = None


class CategoryStatResponse(BaseModel):
    category_id: int
    category_name: str
    category_color: str
    total_seconds: int
    entry_count: int


class UserStatsResponse(BaseModel):
    user_id: int
    user_name: str
    user_email: str
    user_role: str
    total_seconds: int
    total_hours_display: str
    entry_count: int
    categories: List[CategoryStatResponse]


class SeriesResponse(BaseModel):
    key: str
    label: str
    color: str


class TimeseriesDayResponse(BaseModel):
    date: dt.date
    values: Dict[str, int]


class TimeseriesResponse(BaseModel):
    mode: Literal["user", "category"]
    days: List[TimeseriesDayResponse]
    series: List[SeriesResponse]
