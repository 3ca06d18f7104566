"""
Booking transitions: create, reschedule, cancel and payment settlement.

Every write re-validates availability against the stored bookings, then
commits the booking together with its slot claims. The unique constraint on
(business_id, slot_start) in booking_slot_claims is what guarantees that two
overlapping bookings never both commit; the availability check before the
insert only turns the common case into a friendly error earlier.
"""
import logging
import secrets
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .availability import (
    as_utc,
    effective_duration,
    get_zone,
    load_available_slots,
    slot_start_at,
    to_storage,
)
from .config import BOOKING_HORIZON_DAYS, SLOT_GRANULARITY_MINUTES
from .exceptions import BookingCancelled, NotFound, SlotUnavailable, ValidationError
from .payments import PaymentIntent, StripeGateway, plan_for_booking, to_cents
from .scheduling import MINUTES_PER_DAY, format_time_24h, parse_time_of_day

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)

# 32 random bytes -> 43 url-safe characters (256 bits)
TOKEN_BYTES = 32


def generate_reschedule_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def claim_buckets(start: datetime, duration_minutes: int,
                  granularity: int = SLOT_GRANULARITY_MINUTES) -> List[datetime]:
    """Naive UTC bucket starts covering [start, start + duration)"""
    start = to_storage(start)
    end = start + timedelta(minutes=duration_minutes)
    epoch_minutes = int((start - EPOCH).total_seconds() // 60)
    current = EPOCH + timedelta(minutes=epoch_minutes - epoch_minutes % granularity)

    buckets = []
    while current < end:
        buckets.append(current)
        current += timedelta(minutes=granularity)
    return buckets


def _add_claims(db: Session, business_id: int, booking_id: int, start: datetime, duration_minutes: int) -> None:
    for bucket in claim_buckets(start, duration_minutes):
        db.add(models.BookingSlotClaim(
            business_id=business_id,
            booking_id=booking_id,
            slot_start=bucket,
        ))


def _release_claims(db: Session, booking_id: int) -> None:
    db.query(models.BookingSlotClaim).filter(
        models.BookingSlotClaim.booking_id == booking_id
    ).delete(synchronize_session=False)


def _slot_offset(slot_start: Union[int, str]) -> int:
    if isinstance(slot_start, int):
        offset = slot_start
    else:
        try:
            offset = parse_time_of_day(slot_start)
        except ValueError as e:
            raise ValidationError(str(e)) from None
    # "24:00" is only valid as the end of a working day
    if not 0 <= offset < MINUTES_PER_DAY:
        raise ValidationError(f"Slot start must be before 24:00: {slot_start!r}")
    return offset


def _check_customer(customer) -> None:
    missing = [
        name for name, value in (("name", customer.name), ("phone", customer.phone))
        if not value or not value.strip()
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _check_date(target_date: date, now: datetime, business: models.BusinessProfile) -> None:
    today = as_utc(now).astimezone(get_zone(business.timezone)).date()
    if target_date < today:
        raise ValidationError("Cannot book a date in the past")
    if (target_date - today).days > BOOKING_HORIZON_DAYS:
        raise ValidationError(f"Bookings open at most {BOOKING_HORIZON_DAYS} days ahead")


def _requested_slot(
    db: Session,
    business: models.BusinessProfile,
    service: Optional[models.Service],
    target_date: date,
    slot_start: Union[int, str],
    now: datetime,
    duration_minutes: int,
    exclude_booking_id: Optional[int] = None,
):
    """The offerable slot matching the request, or SlotUnavailable"""
    offset = _slot_offset(slot_start)
    requested = slot_start_at(target_date, offset, get_zone(business.timezone))
    slots = load_available_slots(
        db, business, service, target_date,
        now=now, exclude_booking_id=exclude_booking_id, duration_minutes=duration_minutes,
    )
    # A wall time skipped by a DST change maps onto the next real slot; it must not match it
    for slot in slots:
        if slot.start == requested and slot.time == format_time_24h(offset):
            return slot
    raise SlotUnavailable()


def get_business(db: Session, business_id: int) -> models.BusinessProfile:
    business = db.get(models.BusinessProfile, business_id)
    if business is None:
        raise NotFound("Business not found")
    return business


def get_active_service(db: Session, business_id: int, service_id: int) -> models.Service:
    service = db.query(models.Service).filter(
        models.Service.id == service_id,
        models.Service.business_id == business_id,
        models.Service.is_active.is_(True),
    ).first()
    if service is None:
        raise NotFound("Service not found")
    return service


def get_booking_by_token(db: Session, token: str) -> models.Booking:
    booking = db.query(models.Booking).filter(models.Booking.reschedule_token == token).first()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def create_booking(
    db: Session,
    business_id: int,
    service_id: Optional[int],
    customer,
    target_date: date,
    slot_start: Union[int, str],
    now: Optional[datetime] = None,
    gateway: Optional[StripeGateway] = None,
) -> models.Booking:
    """Book slot_start on target_date; customer needs name, phone and optional email"""
    now = as_utc(now or datetime.now(timezone.utc))
    _check_customer(customer)

    business = get_business(db, business_id)
    service = get_active_service(db, business.id, service_id) if service_id is not None else None
    _check_date(target_date, now, business)

    # Payment gate runs before any write so a misconfigured business books nothing
    plan = plan_for_booking(business, service, gateway)

    duration = effective_duration(business, service)
    slot = _requested_slot(db, business, service, target_date, slot_start, now, duration)

    booking = models.Booking(
        business_id=business.id,
        service_id=service.id if service else None,
        customer_name=customer.name.strip(),
        customer_phone=customer.phone.strip(),
        customer_email=customer.email or None,
        appointment_start=to_storage(slot.start),
        duration_minutes=duration,
        status=models.BOOKING_CONFIRMED,
        payment_status=plan.payment_status,
        payment_amount=plan.amount_due,
        reschedule_token=generate_reschedule_token(),
    )
    try:
        db.add(booking)
        db.flush()
        _add_claims(db, business.id, booking.id, slot.start, duration)
        db.commit()
    except IntegrityError:
        # Another request claimed an overlapping bucket first
        db.rollback()
        logger.warning(f"⚠️ Slot conflict for business {business.id} at {slot.start.isoformat()}")
        raise SlotUnavailable() from None

    db.refresh(booking)
    logger.info(
        f"✅ Booking #{booking.id} created for business {business.id} at {slot.start.isoformat()} "
        f"(payment: {booking.payment_status})"
    )
    return booking


def reschedule_booking(
    db: Session,
    token: str,
    new_date: date,
    new_slot_start: Union[int, str],
    now: Optional[datetime] = None,
) -> models.Booking:
    """Move a booking in place; identity, token and payment state are kept"""
    now = as_utc(now or datetime.now(timezone.utc))
    booking = get_booking_by_token(db, token)
    if booking.status == models.BOOKING_CANCELLED:
        raise BookingCancelled()

    business = booking.business
    _check_date(new_date, now, business)

    # The booking's own interval does not block it
    slot = _requested_slot(
        db, business, booking.service, new_date, new_slot_start, now,
        booking.duration_minutes, exclude_booking_id=booking.id,
    )

    try:
        updated = db.query(models.Booking).filter(
            models.Booking.id == booking.id,
            models.Booking.status == models.BOOKING_CONFIRMED,
        ).update(
            {models.Booking.appointment_start: to_storage(slot.start)},
            synchronize_session=False,
        )
        if not updated:
            # Cancelled after we read it
            db.rollback()
            raise BookingCancelled()
        _release_claims(db, booking.id)
        db.flush()
        _add_claims(db, business.id, booking.id, slot.start, booking.duration_minutes)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"⚠️ Reschedule conflict for booking #{booking.id} at {slot.start.isoformat()}")
        raise SlotUnavailable() from None

    db.refresh(booking)
    logger.info(f"🔁 Booking #{booking.id} rescheduled to {slot.start.isoformat()}")
    return booking


def cancel_booking(
    db: Session,
    booking_id: Optional[int] = None,
    token: Optional[str] = None,
) -> models.Booking:
    """Cancel by id or reschedule token; cancelling twice is a no-op"""
    if token is not None:
        booking = get_booking_by_token(db, token)
    else:
        booking = db.get(models.Booking, booking_id) if booking_id is not None else None
        if booking is None:
            raise NotFound("Booking not found")

    if booking.status == models.BOOKING_CANCELLED:
        return booking

    # Status change and claim release commit together, so the freed slot can be claimed once
    db.query(models.Booking).filter(
        models.Booking.id == booking.id,
        models.Booking.status == models.BOOKING_CONFIRMED,
    ).update({models.Booking.status: models.BOOKING_CANCELLED}, synchronize_session=False)
    _release_claims(db, booking.id)
    db.commit()

    db.refresh(booking)
    logger.info(f"❌ Booking #{booking.id} cancelled")
    return booking


def mark_booking_paid(db: Session, booking: models.Booking) -> models.Booking:
    """pending -> paid; already paid bookings are returned unchanged"""
    if booking.payment_status == models.PAYMENT_PAID:
        return booking
    if booking.status == models.BOOKING_CANCELLED:
        raise BookingCancelled("This booking has been cancelled.")
    if booking.payment_status != models.PAYMENT_PENDING:
        raise ValidationError("This booking does not take online payment")

    booking.payment_status = models.PAYMENT_PAID
    db.commit()
    db.refresh(booking)
    logger.info(f"💰 Booking #{booking.id} paid")
    return booking


def abandon_payment(db: Session, token: str) -> models.Booking:
    """Customer left the payment step: release the slot"""
    booking = get_booking_by_token(db, token)
    if booking.status == models.BOOKING_CANCELLED:
        return booking
    if booking.payment_status != models.PAYMENT_PENDING:
        raise ValidationError("Only bookings awaiting payment can be abandoned")
    return cancel_booking(db, booking_id=booking.id)


def start_online_payment(db: Session, token: str, gateway: StripeGateway) -> PaymentIntent:
    """Payment intent for a pending booking, created once and reused"""
    booking = get_booking_by_token(db, token)
    if booking.status == models.BOOKING_CANCELLED:
        raise BookingCancelled("This booking has been cancelled.")
    if booking.payment_status != models.PAYMENT_PENDING:
        raise ValidationError("This booking does not need online payment")

    if booking.payment_intent_id:
        return gateway.retrieve_payment_intent(booking.payment_intent_id)

    business = booking.business
    service_name = booking.service.name if booking.service else "Appointment"
    intent = gateway.create_payment_intent(
        amount_cents=to_cents(booking.payment_amount),
        destination_account=business.stripe_account_id,
        description=f"Booking: {service_name} at {business.business_name}",
        receipt_email=booking.customer_email,
        metadata={"booking_id": booking.id, "business_profile_id": business.id},
    )
    booking.payment_intent_id = intent.id
    db.commit()
    return intent


def confirm_online_payment(db: Session, token: str, gateway: StripeGateway) -> models.Booking:
    """Check the intent with Stripe and settle the booking if it succeeded"""
    booking = get_booking_by_token(db, token)
    if booking.payment_status == models.PAYMENT_PAID:
        return booking
    if not booking.payment_intent_id:
        raise ValidationError("No payment has been started for this booking")

    intent = gateway.retrieve_payment_intent(booking.payment_intent_id)
    if intent.status != "succeeded":
        logger.info(f"Payment for booking #{booking.id} not settled yet ({intent.status})")
        return booking
    return mark_booking_paid(db, booking)
