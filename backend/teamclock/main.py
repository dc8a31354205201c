from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from . import auth, models, services, stats
from .auth import bearer_scheme, get_current_user, require_admin
from .config import settings
from .database import db_session, engine, get_db
from .filters import EntryFilter, day_start, filter_entries
from .logging_config import configure_logging
from .models import User
from .schemas import (
    ActiveTimerResponse,
    ActiveTimerStartRequest,
    ActiveTimerStopRequest,
    ActiveTimerUpdateRequest,
    CategoryRequest,
    CategoryResponse,
    CategorySummaryResponse,
    ChangePasswordRequest,
    ConfirmationRequest,
    DayGroupResponse,
    LoginRequest,
    LoginResponse,
    PasswordResetRequest,
    RoomJoinResponse,
    RoomRequest,
    RoomResponse,
    StopTimerResponse,
    TagRequest,
    TagResponse,
    TimeEntryCreateRequest,
    TimeEntryResponse,
    TimeEntryUpdateRequest,
    TimeseriesResponse,
    UserCreateRequest,
    UserResponse,
    UserStatsResponse,
    UserUpdateRequest,
)
from .utils import format_duration, group_by_day

configure_logging()
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)
with db_session() as session:
    services.seed_defaults(session)
logger.info("Database ready at %s", settings.sqlite_path)

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _entry_filter(
    search: Optional[str] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    category_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> EntryFilter:
    return EntryFilter(
        search=search,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        user_id=user_id,
    )


def _team_entries(db: Session, filters: EntryFilter):
    if filters.start_date or filters.end_date:
        lower = day_start(filters.start_date, services.LOCAL_TZ) if filters.start_date else stats.EPOCH
        upper = day_start(filters.end_date + dt.timedelta(days=1), services.LOCAL_TZ) if filters.end_date else None
        candidates = services.list_entries_between(db, lower, upper)
    else:
        candidates = services.list_recent_entries(db, settings.team_entries_limit)
    return filter_entries(candidates, filters, services.LOCAL_TZ)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# Auth


@app.post("/auth/login", response_model=LoginResponse)
def auth_login(payload: LoginRequest, db: Session = Depends(get_db)) -> LoginResponse:
    user, token = auth.login(db, payload.email, payload.password)
    return LoginResponse(token=token, user=UserResponse.model_validate(user))


@app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def auth_logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Response:
    if credentials is not None and credentials.credentials:
        auth.logout(db, credentials.credentials)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/auth/me", response_model=UserResponse)
def auth_me(user: User = Depends(get_current_user)) -> User:
    return user


@app.post("/auth/change-password", status_code=status.HTTP_204_NO_CONTENT)
def auth_change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    auth.change_password(db, user, payload.current_password, payload.new_password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Users


@app.get("/users", response_model=List[UserResponse])
def get_users(_: User = Depends(require_admin), db: Session = Depends(get_db)) -> List[User]:
    return services.list_users(db)


@app.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreateRequest,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> User:
    return services.create_user(db, payload.name, payload.email, payload.password, payload.role)


@app.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> User:
    return services.update_user(db, user_id, payload.model_dump(exclude_unset=True))


@app.put("/users/{user_id}/password", status_code=status.HTTP_204_NO_CONTENT)
def reset_user_password(
    user_id: int,
    payload: PasswordResetRequest,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    services.reset_user_password(db, user_id, payload.password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)) -> Response:
    services.delete_user(db, admin, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Categories


@app.get("/categories", response_model=List[CategoryResponse])
def get_categories(_: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.list_categories(db)


@app.post("/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category(payload: CategoryRequest, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return services.create_category(db, payload.name, payload.color)


@app.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    payload: CategoryRequest,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return services.update_category(db, category_id, payload.name, payload.color)


@app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: int, _: User = Depends(require_admin), db: Session = Depends(get_db)) -> Response:
    services.delete_category(db, category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Tags


@app.get("/tags", response_model=List[TagResponse])
def get_tags(_: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return services.list_tags(db)


@app.post("/tags", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
def create_tag(payload: TagRequest, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return services.create_tag(db, payload.name, payload.color)


@app.put("/tags/{tag_id}", response_model=TagResponse)
def update_tag(tag_id: int, payload: TagRequest, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return services.update_tag(db, tag_id, payload.name, payload.color)


@app.delete("/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tag(
    tag_id: int,
    payload: ConfirmationRequest,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    services.delete_tag(db, tag_id, payload.confirmation)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Active timers


@app.get("/team/active", response_model=List[ActiveTimerResponse])
def team_active(_: User = Depends(get_current_user), db: Session = Depends(get_db)) -> List[ActiveTimerResponse]:
    now = dt.datetime.now(dt.timezone.utc)
    return [ActiveTimerResponse(**services.active_timer_payload(timer, now)) for timer in services.list_active_timers(db)]


@app.get("/team/active/me", response_model=Optional[ActiveTimerResponse])
def team_active_me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    timer = services.get_active_timer(db, user.id)
    if timer is None:
        return None
    return ActiveTimerResponse(**services.active_timer_payload(timer))


@app.post("/team/active", response_model=ActiveTimerResponse, status_code=status.HTTP_201_CREATED)
def team_active_start(
    payload: ActiveTimerStartRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActiveTimerResponse:
    timer = services.start_active_timer(
        db, user, payload.category_id, payload.tag_id, payload.description, payload.start_time
    )
    return ActiveTimerResponse(**services.active_timer_payload(timer))


@app.patch("/team/active", response_model=ActiveTimerResponse)
def team_active_update(
    payload: ActiveTimerUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActiveTimerResponse:
    timer = services.update_active_timer(db, user, payload.category_id, payload.tag_id, payload.description)
    return ActiveTimerResponse(**services.active_timer_payload(timer))


@app.delete("/team/active", status_code=status.HTTP_204_NO_CONTENT)
def team_active_discard(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Response:
    services.discard_active_timer(db, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/team/active/stop", response_model=StopTimerResponse)
def team_active_stop(
    payload: Optional[ActiveTimerStopRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StopTimerResponse:
    payload = payload or ActiveTimerStopRequest()
    entry = services.stop_active_timer(
        db,
        user,
        start_time=payload.start_time,
        end_time=payload.end_time,
        duration=payload.duration,
        description=payload.description,
    )
    if entry is None:
        return StopTimerResponse(entry=None)
    return StopTimerResponse(entry=TimeEntryResponse(**services.entry_payload(entry)))


# Time entries


@app.get("/time-entries", response_model=List[TimeEntryResponse])
def get_time_entries(
    filters: EntryFilter = Depends(_entry_filter),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[TimeEntryResponse]:
    entries = filter_entries(services.list_entries_for_user(db, user.id), filters, services.LOCAL_TZ)
    return [TimeEntryResponse(**services.entry_payload(entry)) for entry in entries]


@app.get("/time-entries/summary", response_model=List[CategorySummaryResponse])
def get_time_entry_summary(
    filters: EntryFilter = Depends(_entry_filter),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entries = filter_entries(services.list_entries_for_user(db, user.id), filters, services.LOCAL_TZ)
    return stats.summarize_by_category(entries, services.list_categories(db))


@app.post("/time-entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def create_time_entry(
    payload: TimeEntryCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TimeEntryResponse:
    entry = services.create_time_entry(
        db,
        user,
        payload.category_id,
        payload.tag_id,
        payload.description,
        payload.start_time,
        payload.end_time,
        payload.duration,
    )
    return TimeEntryResponse(**services.entry_payload(entry))


@app.patch("/time-entries/{entry_id}", response_model=TimeEntryResponse)
def update_time_entry(
    entry_id: int,
    payload: TimeEntryUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TimeEntryResponse:
    entry = services.update_time_entry(db, user, entry_id, payload.model_dump(exclude_unset=True))
    return TimeEntryResponse(**services.entry_payload(entry))


@app.delete("/time-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_time_entry(entry_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Response:
    services.delete_time_entry(db, user, entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/team/entries", response_model=List[TimeEntryResponse])
def get_team_entries(
    filters: EntryFilter = Depends(_entry_filter),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[TimeEntryResponse]:
    return [TimeEntryResponse(**services.entry_payload(entry)) for entry in _team_entries(db, filters)]


@app.get("/team/entries/by-day", response_model=List[DayGroupResponse])
def get_team_entries_by_day(
    filters: EntryFilter = Depends(_entry_filter),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[DayGroupResponse]:
    groups = group_by_day(_team_entries(db, filters), services.LOCAL_TZ)
    result: List[DayGroupResponse] = []
    for day, entries in groups.items():
        total = sum(entry.duration for entry in entries)
        result.append(
            DayGroupResponse(
                day=day,
                total_seconds=total,
                total_display=format_duration(total),
                entries=[TimeEntryResponse(**services.entry_payload(entry)) for entry in entries],
            )
        )
    return result


# Rooms


@app.get("/rooms", response_model=List[RoomResponse])
def get_rooms(_: User = Depends(get_current_user), db: Session = Depends(get_db)) -> List[RoomResponse]:
    return [RoomResponse(**services.room_payload(room)) for room in services.list_rooms(db)]


@app.post("/rooms", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
def create_room(payload: RoomRequest, _: User = Depends(require_admin), db: Session = Depends(get_db)) -> RoomResponse:
    room = services.create_room(db, payload.name, payload.meet_link)
    return RoomResponse(**services.room_payload(room))


@app.put("/rooms/{room_id}", response_model=RoomResponse)
def update_room(
    room_id: int,
    payload: RoomRequest,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RoomResponse:
    room = services.update_room(db, room_id, payload.name, payload.meet_link)
    return RoomResponse(**services.room_payload(room))


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_room(
    room_id: int,
    payload: ConfirmationRequest,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    services.delete_room(db, room_id, payload.confirmation)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/rooms/{room_id}/join", response_model=RoomJoinResponse)
def join_room(room_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> RoomJoinResponse:
    room = services.join_room(db, user, room_id)
    return RoomJoinResponse(success=True, meet_link=room.meet_link)


@app.post("/rooms/{room_id}/leave", response_model=RoomJoinResponse)
def leave_room(room_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> RoomJoinResponse:
    services.leave_room(db, user, room_id)
    return RoomJoinResponse(success=True)


# Statistics


@app.get("/admin/stats", response_model=List[UserStatsResponse])
def admin_stats(
    period: str = "week",
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return stats.user_rollup(db, period)


@app.get("/admin/stats/timeseries", response_model=TimeseriesResponse)
def admin_stats_timeseries(
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    user_id: Optional[str] = None,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    scoped_user: Optional[int] = None
    if user_id and user_id != "all":
        try:
            scoped_user = int(user_id)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user_id") from exc
    return stats.build_timeseries(db, start_date, end_date, scoped_user)
