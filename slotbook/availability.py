"""
Availability calculation: time grid minus booked intervals and past slots.

All instants are compared as timezone-aware UTC datetimes. The calendar date a
customer picks is interpreted in the business timezone, so "Monday 9:00 AM"
means 9:00 on the business's wall clock.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from . import models
from .config import BOOKING_HORIZON_DAYS, DEFAULT_AVAILABLE_HOURS
from .scheduling import format_time_24h, slots_for_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    """Offerable slot on a concrete date"""
    start: datetime
    end: datetime
    label: str
    time: str


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name!r}") from None


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC already"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> datetime:
    """Naive UTC datetime as stored in the bookings table"""
    return as_utc(value).replace(tzinfo=None)


def slot_start_at(target_date: date, offset: int, tz: ZoneInfo) -> datetime:
    """Absolute UTC instant of a local time-of-day offset on target_date"""
    local = datetime.combine(target_date, time(offset // 60, offset % 60), tzinfo=tz)
    return local.astimezone(timezone.utc)


def wall_time_exists(target_date: date, offset: int, tz: ZoneInfo) -> bool:
    """False for local times skipped by a DST transition (e.g. 2:30 AM on spring-forward day)"""
    local = datetime.combine(target_date, time(offset // 60, offset % 60))
    round_trip = slot_start_at(target_date, offset, tz).astimezone(tz).replace(tzinfo=None)
    return round_trip == local


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intersection: touching endpoints do not overlap"""
    return a_start < b_end and a_end > b_start


def booking_interval(booking) -> tuple:
    start = as_utc(booking.appointment_start)
    return start, start + timedelta(minutes=booking.duration_minutes)


def available_slots(
    target_date: date,
    schedule: dict,
    duration_minutes: int,
    existing_bookings: Iterable,
    now: datetime,
    tz: ZoneInfo = ZoneInfo("UTC"),
) -> List[Slot]:
    """
    Slots of target_date a customer may book for a service of duration_minutes.

    existing_bookings are live bookings (anything with appointment_start and
    duration_minutes); each blocks its own interval. Slots starting before now
    are dropped, as are local times skipped by a DST change. The result keeps
    chronological order and may be empty.
    """
    grid = slots_for_day(schedule, target_date, duration_minutes)
    if not grid:
        return []

    now = as_utc(now)
    booked = [booking_interval(b) for b in existing_bookings]

    result = []
    for grid_slot in grid:
        if not wall_time_exists(target_date, grid_slot.offset, tz):
            continue
        start = slot_start_at(target_date, grid_slot.offset, tz)
        end = start + timedelta(minutes=duration_minutes)

        if start < now:
            continue
        if any(intervals_overlap(start, end, b_start, b_end) for b_start, b_end in booked):
            continue

        result.append(Slot(start=start, end=end, label=grid_slot.label, time=format_time_24h(grid_slot.offset)))
    return result


def live_bookings_near(
    db: Session,
    business_id: int,
    target_date: date,
    tz: ZoneInfo,
    exclude_booking_id: Optional[int] = None,
) -> List[models.Booking]:
    """Non-cancelled bookings that could touch the local day of target_date"""
    day_start = slot_start_at(target_date, 0, tz)
    window_start = to_storage(day_start - timedelta(days=1))
    window_end = to_storage(day_start + timedelta(days=2))

    query = db.query(models.Booking).filter(
        models.Booking.business_id == business_id,
        models.Booking.status != models.BOOKING_CANCELLED,
        models.Booking.appointment_start >= window_start,
        models.Booking.appointment_start < window_end,
    )
    if exclude_booking_id is not None:
        query = query.filter(models.Booking.id != exclude_booking_id)
    return query.order_by(models.Booking.appointment_start).all()


def effective_duration(business: models.BusinessProfile, service: Optional[models.Service]) -> int:
    """Selected service duration, or the business default for free-form bookings"""
    if service is not None:
        return service.duration_minutes
    return business.slot_duration


def load_available_slots(
    db: Session,
    business: models.BusinessProfile,
    service: Optional[models.Service],
    target_date: date,
    now: Optional[datetime] = None,
    exclude_booking_id: Optional[int] = None,
    duration_minutes: Optional[int] = None,
) -> List[Slot]:
    """Read-only availability query against stored bookings"""
    tz = get_zone(business.timezone)
    if now is None:
        now = datetime.now(timezone.utc)
    if duration_minutes is None:
        duration_minutes = effective_duration(business, service)

    today = as_utc(now).astimezone(tz).date()
    if target_date < today or (target_date - today).days > BOOKING_HORIZON_DAYS:
        # Outside the bookable window
        return []

    existing = live_bookings_near(db, business.id, target_date, tz, exclude_booking_id)
    schedule = business.available_hours or DEFAULT_AVAILABLE_HOURS

    slots = available_slots(target_date, schedule, duration_minutes, existing, now, tz)
    logger.debug(
        f"Availability for business {business.id} on {target_date}: "
        f"{len(slots)} slots ({duration_minutes} min)"
    )
    return slots
