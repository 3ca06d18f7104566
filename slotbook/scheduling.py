"""
Time grid generation: weekly working hours -> time-of-day slots
"""
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

DAY_KEYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

MINUTES_PER_DAY = 24 * 60

_TIME_24H = re.compile(r"^(\d{1,2}):(\d{2})$")
_TIME_12H = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")


@dataclass(frozen=True)
class GridSlot:
    """Slot start as minutes since midnight plus its display label"""
    offset: int
    label: str


def parse_time_of_day(value: str) -> int:
    """Convert "HH:MM", "24:00" or "9:30 AM" into minutes since midnight"""
    text = value.strip()

    match = _TIME_12H.match(text)
    if match:
        hours, minutes, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if not 1 <= hours <= 12 or minutes > 59:
            raise ValueError(f"Invalid time: {value!r}")
        hours = hours % 12 + (12 if period == "PM" else 0)
        return hours * 60 + minutes

    match = _TIME_24H.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if (hours, minutes) == (24, 0):
            return MINUTES_PER_DAY
        if hours > 23 or minutes > 59:
            raise ValueError(f"Invalid time: {value!r}")
        return hours * 60 + minutes

    raise ValueError(f"Invalid time: {value!r}")


def format_time_label(offset: int) -> str:
    """9:00 AM style label for a minutes-since-midnight offset"""
    hours, minutes = divmod(offset % MINUTES_PER_DAY, 60)
    period = "AM" if hours < 12 else "PM"
    return f"{hours % 12 or 12}:{minutes:02d} {period}"


def format_time_24h(offset: int) -> str:
    hours, minutes = divmod(offset, 60)
    return f"{hours:02d}:{minutes:02d}"


def generate_slots(day_schedule: dict, duration_minutes: int) -> List[GridSlot]:
    """
    Emit one slot every duration_minutes from start while the whole slot fits
    before end. No partial slots: a window shorter than the duration is empty.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    start = parse_time_of_day(day_schedule["start"])
    end = parse_time_of_day(day_schedule["end"])

    slots = []
    current = start
    while current + duration_minutes <= end:
        slots.append(GridSlot(offset=current, label=format_time_label(current)))
        current += duration_minutes
    return slots


def day_schedule_for(schedule: dict, target_date: date) -> Optional[dict]:
    """Weekday entry of a weekly schedule, None when the day is missing"""
    return (schedule or {}).get(DAY_KEYS[target_date.weekday()])


def slots_for_day(schedule: dict, target_date: date, duration_minutes: int) -> List[GridSlot]:
    """Grid for a calendar date; disabled days never reach the generator"""
    day = day_schedule_for(schedule, target_date)
    if not day or not day.get("enabled"):
        return []
    return generate_slots(day, duration_minutes)


def validate_schedule(schedule: dict, granularity: int = 1) -> None:
    """Raise ValueError unless every enabled day has start < end on the granularity grid"""
    for key, day in schedule.items():
        if key not in DAY_KEYS:
            raise ValueError(f"Unknown weekday: {key!r}")
        start = parse_time_of_day(day["start"])
        end = parse_time_of_day(day["end"])
        if start % granularity or end % granularity:
            raise ValueError(f"{key}: times must be multiples of {granularity} minutes")
        if day.get("enabled") and start >= end:
            raise ValueError(f"{key}: start must be before end")
