from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from .filters import day_start
from .models import Category, TimeEntry, User
from .services import LOCAL_TZ, list_users
from .utils import ensure_aware, format_duration, format_hours, local_day

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
EPOCH = dt.datetime(1970, 1, 1, tzinfo=UTC)

PERIODS = ("week", "month", "all")
DEFAULT_PERIOD = "week"

# Assigned to users in first-seen order when charting the whole team.
USER_COLORS = (
    "#3B82F6",
    "#EF4444",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EC4899",
    "#06B6D4",
    "#F97316",
    "#6366F1",
    "#14B8A6",
)

MODE_USER = "user"
MODE_CATEGORY = "category"


def normalize_period(period: Optional[str]) -> str:
    if period in PERIODS:
        return period
    return DEFAULT_PERIOD


def period_start(period: Optional[str], now: dt.datetime, tz: dt.tzinfo = LOCAL_TZ) -> dt.datetime:
    """Lower bound of a named reporting period, at local midnight."""
    period = normalize_period(period)
    if period == "all":
        return EPOCH
    today = ensure_aware(now).astimezone(tz).date()
    if period == "month":
        first = today.replace(day=1)
    else:
        first = today - dt.timedelta(days=today.weekday())
    return day_start(first, tz)


def user_rollup(db: Session, period: Optional[str], now: Optional[dt.datetime] = None) -> List[Dict[str, Any]]:
    lower = period_start(period, now or dt.datetime.now(UTC)).astimezone(UTC)
    total = func.sum(TimeEntry.duration)
    rows = (
        db.query(
            TimeEntry.user_id,
            TimeEntry.category_id,
            Category.name,
            Category.color,
            func.count(TimeEntry.id),
            total,
        )
        .join(Category, TimeEntry.category_id == Category.id)
        .filter(TimeEntry.start_time >= lower)
        .group_by(TimeEntry.user_id, TimeEntry.category_id, Category.name, Category.color)
        .order_by(total.desc(), TimeEntry.category_id.asc())
        .all()
    )

    stats: Dict[int, Dict[str, Any]] = {}
    for user in list_users(db):
        stats[user.id] = {
            "user_id": user.id,
            "user_name": user.name,
            "user_email": user.email,
            "user_role": user.role,
            "total_seconds": 0,
            "entry_count": 0,
            "categories": [],
        }
    for user_id, category_id, category_name, category_color, entry_count, seconds in rows:
        record = stats.get(user_id)
        if record is None:
            continue
        seconds = int(seconds or 0)
        record["total_seconds"] += seconds
        record["entry_count"] += entry_count
        record["categories"].append(
            {
                "category_id": category_id,
                "category_name": category_name,
                "category_color": category_color,
                "total_seconds": seconds,
                "entry_count": entry_count,
            }
        )
    for record in stats.values():
        record["total_hours_display"] = format_hours(record["total_seconds"])
    return sorted(stats.values(), key=lambda item: item["total_seconds"], reverse=True)


class TimeseriesRow(NamedTuple):
    day: dt.date
    user_id: int
    user_name: str
    category_id: int
    category_name: str
    category_color: str
    seconds: int


@dataclass
class SeriesPlan:
    """How rows map onto chart series: one per user, or one per category of a single user.

    Keys are the stringified user or category ids; names are only labels.
    """

    mode: str
    keys: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    colors: Dict[str, str] = field(default_factory=dict)

    def key_for(self, row: TimeseriesRow) -> str:
        return str(row.user_id if self.mode == MODE_USER else row.category_id)

    def label_for(self, key: str) -> str:
        return self.labels[key]

    def color_for(self, key: str) -> str:
        return self.colors[key]


def resolve_series_plan(rows: Sequence[TimeseriesRow], user_id: Optional[int]) -> SeriesPlan:
    plan = SeriesPlan(mode=MODE_USER if user_id is None else MODE_CATEGORY)
    for row in rows:
        key = plan.key_for(row)
        if key in plan.colors:
            continue
        if plan.mode == MODE_USER:
            plan.labels[key] = row.user_name
            plan.colors[key] = USER_COLORS[len(plan.keys) % len(USER_COLORS)]
        else:
            plan.labels[key] = row.category_name
            plan.colors[key] = row.category_color
        plan.keys.append(key)
    return plan


def _timeseries_rows(
    db: Session,
    start_date: dt.date,
    end_date: dt.date,
    user_id: Optional[int],
) -> List[TimeseriesRow]:
    lower = day_start(start_date, LOCAL_TZ).astimezone(UTC)
    upper = day_start(end_date, LOCAL_TZ).astimezone(UTC)
    query = (
        db.query(
            TimeEntry.start_time,
            TimeEntry.user_id,
            User.name,
            TimeEntry.category_id,
            Category.name,
            Category.color,
            TimeEntry.duration,
        )
        .join(User, TimeEntry.user_id == User.id)
        .join(Category, TimeEntry.category_id == Category.id)
        .filter(TimeEntry.start_time >= lower, TimeEntry.start_time < upper)
    )
    if user_id is not None:
        query = query.filter(TimeEntry.user_id == user_id)
    query = query.order_by(TimeEntry.start_time.asc(), TimeEntry.id.asc())

    # Grouped in Python so days follow the local calendar rather than UTC.
    grouped: Dict[tuple, TimeseriesRow] = {}
    for start_time, uid, user_name, category_id, category_name, category_color, seconds in query.all():
        day = local_day(start_time, LOCAL_TZ)
        key = (day, uid, category_id)
        existing = grouped.get(key)
        if existing is None:
            grouped[key] = TimeseriesRow(day, uid, user_name, category_id, category_name, category_color, seconds)
        else:
            grouped[key] = existing._replace(seconds=existing.seconds + seconds)
    return list(grouped.values())


def build_timeseries(
    db: Session,
    start_date: Optional[dt.date],
    end_date: Optional[dt.date],
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Per-day totals for ``[start_date, end_date)`` with every day and series key filled."""
    if start_date is None or end_date is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_date and end_date are required")
    if end_date < start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid range")

    rows = _timeseries_rows(db, start_date, end_date, user_id)
    logger.debug("Timeseries %s..%s for user %s: %d grouped rows", start_date, end_date, user_id, len(rows))
    plan = resolve_series_plan(rows, user_id)

    totals: Dict[dt.date, Dict[str, int]] = {}
    for row in rows:
        day_totals = totals.setdefault(row.day, {})
        key = plan.key_for(row)
        day_totals[key] = day_totals.get(key, 0) + row.seconds

    days: List[Dict[str, Any]] = []
    current = start_date
    while current < end_date:
        existing = totals.get(current, {})
        days.append(
            {
                "date": current.isoformat(),
                "values": {key: existing.get(key, 0) for key in plan.keys},
            }
        )
        current += dt.timedelta(days=1)

    return {
        "mode": plan.mode,
        "days": days,
        "series": [
            {"key": key, "label": plan.label_for(key), "color": plan.color_for(key)} for key in plan.keys
        ],
    }


def summarize_by_category(entries: Iterable[TimeEntry], categories: Iterable[Category]) -> List[Dict[str, Any]]:
    """Per-category totals for a set of entries, every category included."""
    totals: Dict[int, List[int]] = {}
    for entry in entries:
        bucket = totals.setdefault(entry.category_id, [0, 0])
        bucket[0] += entry.duration
        bucket[1] += 1
    grand_total = sum(seconds for seconds, _ in totals.values())

    summary: List[Dict[str, Any]] = []
    for category in categories:
        seconds, count = totals.get(category.id, [0, 0])
        summary.append(
            {
                "category_id": category.id,
                "category_name": category.name,
                "category_color": category.color,
                "total_seconds": seconds,
                "total_display": format_duration(seconds),
                "entry_count": count,
                "percentage": round(seconds / grand_total * 100, 1) if grand_total else 0.0,
            }
        )
    summary.sort(key=lambda item: item["total_seconds"], reverse=True)
    return summary
