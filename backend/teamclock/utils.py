from __future__ import annotations

import datetime as dt
import math
from typing import Any, Dict, Iterable, List, TypeVar

T = TypeVar("T")

UTC = dt.timezone.utc


def _whole_seconds(seconds: float) -> int:
    return max(int(seconds), 0)


def format_clock(seconds: float) -> str:
    """Stopwatch display, ``HH:MM:SS``. Hours keep counting past 24."""
    total = _whole_seconds(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_duration(seconds: float) -> str:
    """Compact display for lists and summaries: ``2h 5m``, ``5m`` or ``42s``."""
    total = _whole_seconds(seconds)
    hours, remainder = divmod(total, 3600)
    minutes = remainder // 60
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m"
    return f"{total}s"


def format_hours(seconds: float) -> str:
    return f"{_whole_seconds(seconds) / 3600:.1f}h"


def ensure_aware(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def local_day(value: dt.datetime, tz: dt.tzinfo) -> dt.date:
    return ensure_aware(value).astimezone(tz).date()


def group_by_day(items: Iterable[T], tz: dt.tzinfo, attr: str = "start_time") -> Dict[dt.date, List[T]]:
    """Bucket items by the local calendar day of ``attr``, keeping input order."""
    groups: Dict[dt.date, List[T]] = {}
    for item in items:
        value: Any = getattr(item, attr)
        groups.setdefault(local_day(value, tz), []).append(item)
    return groups


def elapsed_seconds(start: dt.datetime, now: dt.datetime) -> int:
    delta = ensure_aware(now) - ensure_aware(start)
    return max(math.floor(delta.total_seconds()), 0)


def resumed_start(now: dt.datetime, elapsed_at_pause: int) -> dt.datetime:
    """Start time that makes ``now - start`` equal the elapsed time frozen at pause."""
    return ensure_aware(now) - dt.timedelta(seconds=max(elapsed_at_pause, 0))
