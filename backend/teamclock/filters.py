from __future__ import annotations

import datetime as dt
from typing import Iterable, List, Optional, TypeVar

from pydantic import BaseModel

from .utils import ensure_aware

T = TypeVar("T")


class EntryFilter(BaseModel):
    """Optional constraints over an entry collection. Unset means unconstrained."""

    search: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    category_id: Optional[int] = None
    user_id: Optional[int] = None

    def is_empty(self) -> bool:
        return not (
            self.search
            or self.start_date
            or self.end_date
            or self.category_id is not None
            or self.user_id is not None
        )


def day_start(day: dt.date, tz: dt.tzinfo) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=tz)


def day_end(day: dt.date, tz: dt.tzinfo) -> dt.datetime:
    return dt.datetime.combine(day, dt.time(23, 59, 59, 999000), tzinfo=tz)


def _matches_search(description: Optional[str], term: str) -> bool:
    if not description:
        return False
    return term.casefold() in description.casefold()


def filter_entries(entries: Iterable[T], filters: EntryFilter, tz: dt.tzinfo) -> List[T]:
    if filters.is_empty():
        return list(entries)
    term = filters.search or ""
    lower = day_start(filters.start_date, tz) if filters.start_date else None
    upper = day_end(filters.end_date, tz) if filters.end_date else None

    matched: List[T] = []
    for entry in entries:
        if term and not _matches_search(getattr(entry, "description", None), term):
            continue
        if lower is not None or upper is not None:
            started = ensure_aware(getattr(entry, "start_time"))
            if lower is not None and started < lower:
                continue
            if upper is not None and started > upper:
                continue
        if filters.category_id is not None and getattr(entry, "category_id") != filters.category_id:
            continue
        if filters.user_id is not None and getattr(entry, "user_id") != filters.user_id:
            continue
        matched.append(entry)
    return matched
