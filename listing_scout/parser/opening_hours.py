# File: listing_scout/parser/opening_hours.py
"""Best-effort parser for OpenStreetMap ``opening_hours`` values.

Only the common subset is understood::

    Mo-Fr 09:00-17:00; Sa 10:00-14:00; Su off

Anything else is dropped segment by segment; the parser never raises. Days
missing from the result are unknown, not closed.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional

DAY_ORDER: tuple[str, ...] = ("Mo", "Tu", "We", "Th", "Fr", "Sa", "Su")

DAY_NAMES: Dict[str, str] = {
    "Mo": "monday",
    "Tu": "tuesday",
    "We": "wednesday",
    "Th": "thursday",
    "Fr": "friday",
    "Sa": "saturday",
    "Su": "sunday",
}

CLOSED = "closed"
ALWAYS_OPEN = "24/7"
ALL_DAY = "00:00-24:00"

_SEGMENT_RE = re.compile(r"^([A-Za-z,-]+)\s+(.+)$")
_CLOSED_WORDS = frozenset({"off", "closed"})

OpeningHours = Dict[str, str]


def parse_opening_hours(raw: Optional[str]) -> Optional[OpeningHours]:
    """Map full weekday names to a time-range string or :data:`CLOSED`.

    ``24/7`` yields every day as ``00:00-24:00``. ``None``, empty input or
    input without a single usable segment yields ``None``. Later segments
    override earlier ones for the same day.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    if text == ALWAYS_OPEN:
        return {DAY_NAMES[code]: ALL_DAY for code in DAY_ORDER}

    result: OpeningHours = {}
    for segment in text.split(";"):
        result.update(_parse_segment(segment.strip()))
    return result or None


def _parse_segment(segment: str) -> OpeningHours:
    match = _SEGMENT_RE.match(segment)
    if not match:
        return {}
    days_str, hours = match.group(1), match.group(2).strip()
    if hours.lower() in _CLOSED_WORDS:
        hours = CLOSED
    return {day: hours for day in _expand_days(days_str)}


def _expand_days(days_str: str) -> List[str]:
    days: List[str] = []
    for part in days_str.split(","):
        days.extend(_expand_day_range(part.strip()))
    return days


def _expand_day_range(token: str) -> List[str]:
    bounds = token.split("-")
    if len(bounds) == 1:
        name = DAY_NAMES.get(bounds[0])
        return [name] if name else []
    if len(bounds) != 2 or bounds[0] not in DAY_NAMES or bounds[1] not in DAY_NAMES:
        return []
    start, end = DAY_ORDER.index(bounds[0]), DAY_ORDER.index(bounds[1])
    # no wraparound across Sunday
    if end < start:
        return []
    return [DAY_NAMES[code] for code in DAY_ORDER[start : end + 1]]


__all__ = ["parse_opening_hours", "OpeningHours", "DAY_ORDER", "DAY_NAMES", "CLOSED", "ALL_DAY"]
