from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from .. import booking_engine, models, schemas
from ..availability import effective_duration, load_available_slots
from ..database import get_db
from ..exceptions import NotFound
from ..notifications import schedule_booking_notifications
from ..payments import StripeGateway, stripe_gateway

router = APIRouter(prefix="/api", tags=["Public booking"])


def get_payment_gateway() -> StripeGateway:
    """Stripe client (overridden in tests)"""
    return stripe_gateway


@router.get("/businesses/{slug}", response_model=schemas.PublicBusinessResponse)
def get_public_business(slug: str, db: Session = Depends(get_db)):
    """Public booking page data: profile and active services"""
    business = db.query(models.BusinessProfile).filter(
        models.BusinessProfile.booking_slug == slug
    ).first()
    if not business:
        raise NotFound("Business not found")

    services = db.query(models.Service).filter(
        models.Service.business_id == business.id,
        models.Service.is_active.is_(True),
    ).order_by(models.Service.sort_order, models.Service.id).all()

    return schemas.PublicBusinessResponse(
        id=business.id,
        business_name=business.business_name,
        booking_slug=business.booking_slug,
        timezone=business.timezone,
        slot_duration=business.slot_duration,
        services=[schemas.ServiceSummary.from_orm(s) for s in services],
    )


@router.get("/availability", response_model=schemas.AvailabilityResponse)
def get_availability(
    business_id: int = Query(...),
    service_id: int = Query(None),
    date: date = Query(...),
    db: Session = Depends(get_db)
):
    """Bookable slots for a business, service and date (empty list when none)"""
    business = booking_engine.get_business(db, business_id)
    service = booking_engine.get_active_service(db, business.id, service_id) if service_id is not None else None

    slots = load_available_slots(db, business, service, date)
    return schemas.AvailabilityResponse(
        business_id=business.id,
        service_id=service_id,
        date=date,
        duration_minutes=effective_duration(business, service),
        slots=[
            schemas.SlotResponse(start=s.start, end=s.end, label=s.label, time=s.time)
            for s in slots
        ],
    )


@router.post("/bookings", response_model=schemas.BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    booking: schemas.BookingCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway)
):
    """Book a slot; 409 means the slot was taken and availability must be re-fetched"""
    db_booking = booking_engine.create_booking(
        db,
        business_id=booking.business_id,
        service_id=booking.service_id,
        customer=booking.customer,
        target_date=booking.date,
        slot_start=booking.slot_start,
        gateway=gateway,
    )
    schedule_booking_notifications(background_tasks, "created", db_booking)
    return db_booking


@router.get("/bookings/{token}", response_model=schemas.BookingResponse)
def get_booking(token: str, db: Session = Depends(get_db)):
    """Booking behind a reschedule link"""
    return booking_engine.get_booking_by_token(db, token)


@router.post("/bookings/{token}/reschedule", response_model=schemas.BookingResponse)
def reschedule_booking(
    token: str,
    request: schemas.RescheduleRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """Move a booking to a new slot"""
    db_booking = booking_engine.reschedule_booking(db, token, request.date, request.slot_start)
    schedule_booking_notifications(background_tasks, "rescheduled", db_booking)
    return db_booking


@router.post("/bookings/{token}/cancel", response_model=schemas.BookingResponse)
def cancel_booking(
    token: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """Cancel a booking; repeating the call is harmless"""
    already_cancelled = booking_engine.get_booking_by_token(db, token).status == models.BOOKING_CANCELLED
    db_booking = booking_engine.cancel_booking(db, token=token)
    if not already_cancelled:
        schedule_booking_notifications(background_tasks, "cancelled", db_booking)
    return db_booking


@router.post("/bookings/{token}/payment-intent", response_model=schemas.PaymentIntentResponse)
def create_payment_intent(
    token: str,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway)
):
    """Client secret for Stripe Payment Elements"""
    intent = booking_engine.start_online_payment(db, token, gateway)
    return schemas.PaymentIntentResponse(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        status=intent.status,
    )


@router.post("/bookings/{token}/payment/confirm", response_model=schemas.BookingResponse)
def confirm_payment(
    token: str,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway)
):
    """Settle a pending booking once Stripe reports the intent succeeded"""
    return booking_engine.confirm_online_payment(db, token, gateway)


@router.post("/bookings/{token}/payment/abandon", response_model=schemas.BookingResponse)
def abandon_payment(
    token: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    """Customer gave up on paying: the booking is cancelled and its slot freed"""
    already_cancelled = booking_engine.get_booking_by_token(db, token).status == models.BOOKING_CANCELLED
    db_booking = booking_engine.abandon_payment(db, token)
    if not already_cancelled:
        schedule_booking_notifications(background_tasks, "cancelled", db_booking)
    return db_booking
