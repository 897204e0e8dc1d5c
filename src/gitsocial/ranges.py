"""Fetch range bookkeeping.

A mirror remembers which calendar days of history it has fetched as a list of
inclusive ``FetchRange`` values. The list is kept sorted by start, disjoint,
and coalesced: two ranges whose gap is one day or less are merged.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Union

from .observability import log_debug

DateLike = Union[date, datetime, str]

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True, order=True)
class FetchRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Range start {self.start} is after end {self.end}")

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def to_date(value: DateLike) -> date:
    """Coerce a date, datetime or ISO string to a calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def current_week_monday(today: date) -> date:
    return today - timedelta(days=today.weekday())


def coalesce(ranges: Iterable[FetchRange]) -> List[FetchRange]:
    """Sort by start and merge neighbours whose gap is at most one day."""
    merged: List[FetchRange] = []
    for current in sorted(ranges):
        if merged and current.start - merged[-1].end <= _ONE_DAY:
            last = merged[-1]
            merged[-1] = FetchRange(last.start, max(last.end, current.end))
        else:
            merged.append(current)
    return merged


def add_range(ranges: Sequence[FetchRange], new: FetchRange) -> List[FetchRange]:
    return coalesce([*ranges, new])


def is_covered(ranges: Sequence[FetchRange], requested: FetchRange) -> bool:
    """True when every day of ``requested`` lies inside the stored ranges."""
    position = requested.start
    for existing in sorted(ranges):
        if existing.end < position:
            continue
        if existing.start > position:
            return False
        position = existing.end + _ONE_DAY
        if position > requested.end:
            return True
    return False


def coverage_end(ranges: Sequence[FetchRange]) -> Optional[date]:
    return max((r.end for r in ranges), default=None)


def parse_ranges(raw: Optional[str]) -> List[FetchRange]:
    """Read the persisted JSON list. Anything malformed reads as empty."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError("fetched ranges must be a list")
        ranges = [FetchRange(to_date(item["start"]), to_date(item["end"])) for item in data]
    except (ValueError, TypeError, KeyError) as exc:
        log_debug("Ignoring malformed fetched ranges", raw=raw[:200], error=str(exc))
        return []
    return coalesce(ranges)


def dump_ranges(ranges: Sequence[FetchRange]) -> str:
    return json.dumps([r.to_dict() for r in ranges], separators=(",", ":"))
