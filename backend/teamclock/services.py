from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, joinedload

from .auth import hash_password, validate_password
from .config import settings
from .models import (
    ROLE_ADMIN,
    ROLES,
    ActiveTimer,
    Category,
    Room,
    RoomParticipant,
    Tag,
    TimeEntry,
    User,
)
from .utils import elapsed_seconds, format_clock, format_duration

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

DEFAULT_CATEGORIES = (
    ("Development", "#ffffff"),
    ("Meetings", "#a0a0a0"),
    ("Research", "#737373"),
    ("Admin", "#525252"),
)

DEFAULT_ROOMS = ("Open Office", "Focus Room")

DEFAULT_DESCRIPTION = "No description"

TAG_DELETE_CONFIRMATION = "delete this tag"
ROOM_DELETE_CONFIRMATION = "delete this room"


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


def _ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(UTC)


def _from_db_datetime(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


# Users


def list_users(db: Session) -> List[User]:
    return db.query(User).order_by(User.created_at.asc(), User.id.asc()).all()


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def create_user(
    db: Session,
    name: Optional[str],
    email: Optional[str],
    password: Optional[str],
    role: str = "member",
) -> User:
    name = _clean(name)
    email = _clean(email).lower()
    if not name or not email or not password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name, email and password are required")
    if role not in ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role")
    validate_password(password)
    if db.query(User).filter(User.email == email).one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A user with this email already exists")
    user = User(name=name, email=email, password_hash=hash_password(password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Created %s user %s", role, user.id)
    return user


def update_user(db: Session, user_id: int, changes: Dict[str, Any]) -> User:
    user = _get_user(db, user_id)
    if "name" in changes and changes["name"] is not None:
        name = _clean(changes["name"])
        if not name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
        user.name = name
    if "role" in changes and changes["role"] is not None:
        if changes["role"] not in ROLES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role")
        user.role = changes["role"]
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def reset_user_password(db: Session, user_id: int, password: str) -> None:
    user = _get_user(db, user_id)
    validate_password(password)
    user.password_hash = hash_password(password)
    db.add(user)
    db.commit()
    logger.info("Password reset for user %s", user.id)


def delete_user(db: Session, actor: User, user_id: int) -> None:
    if actor.id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete your own account")
    user = _get_user(db, user_id)
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s", user_id)


# Categories


def list_categories(db: Session) -> List[Category]:
    return db.query(Category).order_by(Category.created_at.asc(), Category.id.asc()).all()


def _get_category(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return category


def create_category(db: Session, name: Optional[str], color: Optional[str]) -> Category:
    name, color = _clean(name), _clean(color)
    if not name or not color:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and color are required")
    category = Category(name=name, color=color)
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info("Created category %s", category.id)
    return category


def update_category(db: Session, category_id: int, name: Optional[str], color: Optional[str]) -> Category:
    category = _get_category(db, category_id)
    name, color = _clean(name), _clean(color)
    if not name or not color:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and color are required")
    category.name = name
    category.color = color
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def delete_category(db: Session, category_id: int) -> None:
    category = _get_category(db, category_id)
    if db.query(Category).count() <= 1:
        logger.warning("Refused to delete the last category %s", category_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete the last category")
    in_use = (
        db.query(TimeEntry.id).filter(TimeEntry.category_id == category_id).first() is not None
        or db.query(ActiveTimer.id).filter(ActiveTimer.category_id == category_id).first() is not None
    )
    if in_use:
        logger.warning("Refused to delete category %s while it is referenced", category_id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete a category that has time entries",
        )
    db.delete(category)
    db.commit()
    logger.info("Deleted category %s", category_id)


# Tags


def list_tags(db: Session) -> List[Tag]:
    return db.query(Tag).order_by(Tag.created_at.asc(), Tag.id.asc()).all()


def _get_tag(db: Session, tag_id: int) -> Tag:
    tag = db.get(Tag, tag_id)
    if not tag:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return tag


def create_tag(db: Session, name: Optional[str], color: Optional[str]) -> Tag:
    name, color = _clean(name), _clean(color)
    if not name or not color:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and color are required")
    tag = Tag(name=name, color=color)
    db.add(tag)
    db.commit()
    db.refresh(tag)
    logger.info("Created tag %s", tag.id)
    return tag


def update_tag(db: Session, tag_id: int, name: Optional[str], color: Optional[str]) -> Tag:
    tag = _get_tag(db, tag_id)
    name, color = _clean(name), _clean(color)
    if not name or not color:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name and color are required")
    tag.name = name
    tag.color = color
    db.add(tag)
    db.commit()
    db.refresh(tag)
    return tag


def delete_tag(db: Session, tag_id: int, confirmation: str) -> None:
    tag = _get_tag(db, tag_id)
    if confirmation != TAG_DELETE_CONFIRMATION:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Please type "{TAG_DELETE_CONFIRMATION}" to confirm deletion',
        )
    # Entries keep existing with no tag rather than pointing at a deleted one.
    db.query(TimeEntry).filter(TimeEntry.tag_id == tag_id).update({TimeEntry.tag_id: None}, synchronize_session=False)
    db.query(ActiveTimer).filter(ActiveTimer.tag_id == tag_id).update(
        {ActiveTimer.tag_id: None}, synchronize_session=False
    )
    db.delete(tag)
    db.commit()
    logger.info("Deleted tag %s", tag_id)


def _require_references(db: Session, category_id: int, tag_id: Optional[int]) -> None:
    _get_category(db, category_id)
    if tag_id is not None:
        _get_tag(db, tag_id)


# Active timers


def active_timer_payload(timer: ActiveTimer, now: Optional[dt.datetime] = None) -> Dict[str, Any]:
    start_time = _from_db_datetime(timer.start_time)
    elapsed = elapsed_seconds(start_time, now or _now())
    return {
        "id": timer.id,
        "user_id": timer.user_id,
        "user_name": timer.user.name,
        "user_email": timer.user.email,
        "category_id": timer.category_id,
        "category_name": timer.category.name,
        "category_color": timer.category.color,
        "tag_id": timer.tag_id,
        "tag_name": timer.tag.name if timer.tag else None,
        "tag_color": timer.tag.color if timer.tag else None,
        "description": timer.description or "",
        "start_time": start_time,
        "elapsed_seconds": elapsed,
        "elapsed_display": format_clock(elapsed),
    }


def get_active_timer(db: Session, user_id: int) -> Optional[ActiveTimer]:
    return db.query(ActiveTimer).filter(ActiveTimer.user_id == user_id).one_or_none()


def start_active_timer(
    db: Session,
    user: User,
    category_id: int,
    tag_id: Optional[int],
    description: Optional[str],
    start_time: Optional[dt.datetime] = None,
) -> ActiveTimer:
    _require_references(db, category_id, tag_id)
    values = {
        "category_id": category_id,
        "tag_id": tag_id,
        "description": description or "",
        "start_time": _ensure_utc(start_time) if start_time else _now(),
        "created_at": _now(),
    }
    # The unique index on user_id turns a second start into a full replacement.
    statement = sqlite_insert(ActiveTimer).values(user_id=user.id, **values)
    statement = statement.on_conflict_do_update(index_elements=[ActiveTimer.user_id], set_=values)
    db.execute(statement)
    db.commit()
    timer = get_active_timer(db, user.id)
    logger.info("User %s started a timer on category %s", user.id, category_id)
    return timer


def update_active_timer(
    db: Session,
    user: User,
    category_id: int,
    tag_id: Optional[int],
    description: Optional[str],
) -> ActiveTimer:
    timer = get_active_timer(db, user.id)
    if timer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active timer")
    _require_references(db, category_id, tag_id)
    timer.category_id = category_id
    timer.tag_id = tag_id
    timer.description = description or ""
    db.add(timer)
    db.commit()
    db.refresh(timer)
    return timer


def discard_active_timer(db: Session, user: User) -> None:
    deleted = db.query(ActiveTimer).filter(ActiveTimer.user_id == user.id).delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info("User %s discarded their timer", user.id)


def stop_active_timer(
    db: Session,
    user: User,
    start_time: Optional[dt.datetime] = None,
    end_time: Optional[dt.datetime] = None,
    duration: Optional[int] = None,
    description: Optional[str] = None,
) -> Optional[TimeEntry]:
    """Turn the running timer into a ledger entry and clear it in one transaction.

    ``start_time`` and ``duration`` let a client that paused locally report
    the adjusted start and the elapsed time it displayed. Without a running
    timer nothing happens and ``None`` is returned.
    """
    timer = get_active_timer(db, user.id)
    if timer is None:
        return None
    started = _ensure_utc(start_time) if start_time else _from_db_datetime(timer.start_time)
    ended = _ensure_utc(end_time) if end_time else _now()
    if ended < started:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End time must not be before start time")
    seconds = duration if duration is not None else elapsed_seconds(started, ended)
    entry: Optional[TimeEntry] = None
    try:
        if seconds > 0:
            text = description if description is not None else timer.description
            entry = TimeEntry(
                user_id=user.id,
                category_id=timer.category_id,
                tag_id=timer.tag_id,
                description=_clean(text) or DEFAULT_DESCRIPTION,
                start_time=started,
                end_time=ended,
                duration=seconds,
            )
            db.add(entry)
        db.delete(timer)
        db.commit()
    except Exception:
        db.rollback()
        raise
    if entry is None:
        logger.info("User %s stopped a timer with no elapsed time", user.id)
        return None
    db.refresh(entry)
    logger.info("User %s stopped their timer after %s seconds", user.id, seconds)
    return entry


def list_active_timers(db: Session) -> List[ActiveTimer]:
    return (
        db.query(ActiveTimer)
        .options(joinedload(ActiveTimer.user), joinedload(ActiveTimer.category), joinedload(ActiveTimer.tag))
        .order_by(ActiveTimer.start_time.asc(), ActiveTimer.id.asc())
        .all()
    )


# Time entries


def entry_payload(entry: TimeEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "user_name": entry.user.name,
        "user_email": entry.user.email,
        "category_id": entry.category_id,
        "category_name": entry.category.name,
        "category_color": entry.category.color,
        "tag_id": entry.tag_id,
        "tag_name": entry.tag.name if entry.tag else None,
        "tag_color": entry.tag.color if entry.tag else None,
        "description": entry.description,
        "start_time": _from_db_datetime(entry.start_time),
        "end_time": _from_db_datetime(entry.end_time),
        "duration": entry.duration,
        "duration_display": format_duration(entry.duration),
    }


def _entries_query(db: Session):
    return db.query(TimeEntry).options(
        joinedload(TimeEntry.user), joinedload(TimeEntry.category), joinedload(TimeEntry.tag)
    )


def _validate_span(start_time: dt.datetime, end_time: Optional[dt.datetime]) -> None:
    if end_time is not None and end_time < start_time:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="End time must not be before start time")


def create_time_entry(
    db: Session,
    user: User,
    category_id: int,
    tag_id: Optional[int],
    description: Optional[str],
    start_time: dt.datetime,
    end_time: Optional[dt.datetime],
    duration: int,
) -> TimeEntry:
    _require_references(db, category_id, tag_id)
    start_utc = _ensure_utc(start_time)
    end_utc = _ensure_utc(end_time) if end_time else None
    _validate_span(start_utc, end_utc)
    entry = TimeEntry(
        user_id=user.id,
        category_id=category_id,
        tag_id=tag_id,
        description=_clean(description) or DEFAULT_DESCRIPTION,
        start_time=start_utc,
        end_time=end_utc,
        duration=duration,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info("User %s recorded entry %s (%s seconds)", user.id, entry.id, duration)
    return entry


def _get_owned_entry(db: Session, actor: User, entry_id: int) -> TimeEntry:
    entry = db.get(TimeEntry, entry_id)
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Time entry not found")
    if entry.user_id != actor.id and actor.role != ROLE_ADMIN:
        logger.warning("User %s denied access to entry %s", actor.id, entry_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to modify this entry")
    return entry


def update_time_entry(db: Session, actor: User, entry_id: int, changes: Dict[str, Any]) -> TimeEntry:
    entry = _get_owned_entry(db, actor, entry_id)
    category_id = changes.get("category_id") or entry.category_id
    tag_id = changes["tag_id"] if "tag_id" in changes else entry.tag_id
    _require_references(db, category_id, tag_id)
    entry.category_id = category_id
    entry.tag_id = tag_id
    if "description" in changes:
        entry.description = _clean(changes["description"]) or DEFAULT_DESCRIPTION
    if changes.get("start_time") is not None:
        entry.start_time = _ensure_utc(changes["start_time"])
    if "end_time" in changes:
        entry.end_time = _ensure_utc(changes["end_time"]) if changes["end_time"] else None
    if changes.get("duration") is not None:
        entry.duration = changes["duration"]
    _validate_span(_from_db_datetime(entry.start_time), _from_db_datetime(entry.end_time))
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def delete_time_entry(db: Session, actor: User, entry_id: int) -> None:
    entry = _get_owned_entry(db, actor, entry_id)
    db.delete(entry)
    db.commit()
    logger.info("User %s deleted entry %s", actor.id, entry_id)


def list_entries_for_user(db: Session, user_id: int) -> List[TimeEntry]:
    return (
        _entries_query(db)
        .filter(TimeEntry.user_id == user_id)
        .order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc())
        .all()
    )


def list_recent_entries(db: Session, limit: int) -> List[TimeEntry]:
    return _entries_query(db).order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc()).limit(limit).all()


def list_entries_between(db: Session, start: dt.datetime, end: Optional[dt.datetime] = None) -> List[TimeEntry]:
    """Entries with ``start <= start_time < end``, newest first. No ``end`` means open-ended."""
    query = _entries_query(db).filter(TimeEntry.start_time >= _ensure_utc(start))
    if end is not None:
        query = query.filter(TimeEntry.start_time < _ensure_utc(end))
    return query.order_by(TimeEntry.start_time.desc(), TimeEntry.id.desc()).all()


# Rooms


def room_payload(room: Room) -> Dict[str, Any]:
    return {
        "id": room.id,
        "name": room.name,
        "meet_link": room.meet_link,
        "participants": [
            {
                "user_id": participant.user_id,
                "user_name": participant.user.name,
                "joined_at": _from_db_datetime(participant.joined_at),
            }
            for participant in room.participants
        ],
    }


def list_rooms(db: Session) -> List[Room]:
    return (
        db.query(Room)
        .options(joinedload(Room.participants).joinedload(RoomParticipant.user))
        .order_by(Room.created_at.asc(), Room.id.asc())
        .all()
    )


def _get_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def create_room(db: Session, name: Optional[str], meet_link: Optional[str]) -> Room:
    name = _clean(name)
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
    room = Room(name=name, meet_link=_clean(meet_link) or None)
    db.add(room)
    db.commit()
    db.refresh(room)
    logger.info("Created room %s", room.id)
    return room


def update_room(db: Session, room_id: int, name: Optional[str], meet_link: Optional[str]) -> Room:
    room = _get_room(db, room_id)
    name = _clean(name)
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Name is required")
    room.name = name
    room.meet_link = _clean(meet_link) or None
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


def delete_room(db: Session, room_id: int, confirmation: str) -> None:
    room = _get_room(db, room_id)
    if confirmation != ROOM_DELETE_CONFIRMATION:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Please type "{ROOM_DELETE_CONFIRMATION}" to confirm deletion',
        )
    db.delete(room)
    db.commit()
    logger.info("Deleted room %s", room_id)


def join_room(db: Session, user: User, room_id: int) -> Room:
    room = _get_room(db, room_id)
    db.query(RoomParticipant).filter(RoomParticipant.user_id == user.id).delete(synchronize_session=False)
    db.add(RoomParticipant(room_id=room.id, user_id=user.id, joined_at=_now()))
    db.commit()
    db.refresh(room)
    logger.info("User %s joined room %s", user.id, room.id)
    return room


def leave_room(db: Session, user: User, room_id: int) -> None:
    room = _get_room(db, room_id)
    db.query(RoomParticipant).filter(
        RoomParticipant.room_id == room.id,
        RoomParticipant.user_id == user.id,
    ).delete(synchronize_session=False)
    db.commit()


# Bootstrap


def seed_defaults(db: Session) -> None:
    if db.query(Category).count() == 0:
        for name, color in DEFAULT_CATEGORIES:
            db.add(Category(name=name, color=color))
        logger.info("Seeded default categories")
    if db.query(Room).count() == 0:
        for name in DEFAULT_ROOMS:
            db.add(Room(name=name))
        logger.info("Seeded default rooms")
    if settings.admin_email and settings.admin_password:
        email = settings.admin_email.strip().lower()
        if db.query(User).filter(User.email == email).one_or_none() is None:
            db.add(
                User(
                    email=email,
                    name=settings.admin_name,
                    password_hash=hash_password(settings.admin_password),
                    role=ROLE_ADMIN,
                )
            )
            logger.info("Created bootstrap admin %s", email)
    db.commit()
