from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import booking_engine, models, schemas
from ..availability import get_zone, slot_start_at, to_storage
from ..config import DEFAULT_AVAILABLE_HOURS, DEFAULT_SLOT_DURATION
from ..database import get_db
from ..notifications import schedule_booking_notifications
from ..security import get_current_owner

router = APIRouter(prefix="/api/owner", tags=["Business owner"])


def _owned_business(db: Session, business_id: int, owner_id: str) -> models.BusinessProfile:
    business = db.query(models.BusinessProfile).filter(
        models.BusinessProfile.id == business_id,
        models.BusinessProfile.owner_id == owner_id,
    ).first()
    if not business:
        raise HTTPException(status_code=404, detail="Business not found")
    return business


def _owned_service(db: Session, service_id: int, owner_id: str) -> models.Service:
    service = db.query(models.Service).join(models.BusinessProfile).filter(
        models.Service.id == service_id,
        models.BusinessProfile.owner_id == owner_id,
    ).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


def _check_online_mode(business: models.BusinessProfile, service_data: schemas.ServiceBase) -> None:
    """Online payment needs a connected Stripe account"""
    if service_data.payment_mode == models.MODE_ONLINE and not business.stripe_account_id:
        raise HTTPException(
            status_code=400,
            detail="Connect a Stripe account before enabling online payment"
        )


# Business profiles
@router.post("/businesses", response_model=schemas.BusinessResponse, status_code=status.HTTP_201_CREATED)
def create_business(
    data: schemas.BusinessCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Create a booking page"""
    try:
        get_zone(data.timezone)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if db.query(models.BusinessProfile).filter(models.BusinessProfile.booking_slug == data.booking_slug).first():
        raise HTTPException(status_code=400, detail="This booking link is already taken")

    business = models.BusinessProfile(
        owner_id=owner_id,
        business_name=data.business_name,
        booking_slug=data.booking_slug,
        email=data.email,
        timezone=data.timezone,
        telegram_chat_id=data.telegram_chat_id or None,
        available_hours=(
            {k: d.dict() for k, d in data.schedule.available_hours.items()}
            if data.schedule else DEFAULT_AVAILABLE_HOURS
        ),
        slot_duration=data.schedule.slot_duration if data.schedule else DEFAULT_SLOT_DURATION,
    )
    db.add(business)
    db.commit()
    db.refresh(business)
    return business


@router.get("/businesses", response_model=List[schemas.BusinessResponse])
def list_businesses(db: Session = Depends(get_db), owner_id: str = Depends(get_current_owner)):
    """Booking pages of the current owner"""
    return db.query(models.BusinessProfile).filter(
        models.BusinessProfile.owner_id == owner_id
    ).order_by(models.BusinessProfile.id).all()


@router.delete("/businesses/{business_id}", status_code=204)
def delete_business(
    business_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Delete a booking page with its services and bookings"""
    business = _owned_business(db, business_id, owner_id)
    db.delete(business)
    db.commit()
    return None


@router.put("/businesses/{business_id}/schedule", response_model=schemas.BusinessResponse)
def update_schedule(
    business_id: int,
    data: schemas.ScheduleUpdate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Replace weekly working hours and default slot length"""
    business = _owned_business(db, business_id, owner_id)
    business.available_hours = {k: d.dict() for k, d in data.available_hours.items()}
    business.slot_duration = data.slot_duration
    db.commit()
    db.refresh(business)
    return business


@router.put("/businesses/{business_id}/payment-account", response_model=schemas.BusinessResponse)
def update_payment_account(
    business_id: int,
    data: schemas.PaymentAccountUpdate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Attach or detach the Stripe connected account"""
    business = _owned_business(db, business_id, owner_id)
    business.stripe_account_id = data.stripe_account_id or None
    db.commit()
    db.refresh(business)
    return business


@router.put("/businesses/{business_id}/notifications", response_model=schemas.BusinessResponse)
def update_notification_settings(
    business_id: int,
    data: schemas.NotificationSettingsUpdate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Set or clear the Telegram chat that receives this business's booking alerts"""
    business = _owned_business(db, business_id, owner_id)
    business.telegram_chat_id = data.telegram_chat_id or None
    db.commit()
    db.refresh(business)
    return business


# Services
@router.get("/businesses/{business_id}/services", response_model=List[schemas.ServiceResponse])
def list_services(
    business_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """All services including inactive ones"""
    business = _owned_business(db, business_id, owner_id)
    return db.query(models.Service).filter(
        models.Service.business_id == business.id
    ).order_by(models.Service.sort_order, models.Service.id).all()


@router.post("/businesses/{business_id}/services", response_model=schemas.ServiceResponse, status_code=201)
def create_service(
    business_id: int,
    data: schemas.ServiceCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Add a service"""
    business = _owned_business(db, business_id, owner_id)
    _check_online_mode(business, data)

    service = models.Service(business_id=business.id, **data.dict())
    db.add(service)
    db.commit()
    db.refresh(service)
    return service


@router.put("/services/{service_id}", response_model=schemas.ServiceResponse)
def update_service(
    service_id: int,
    data: schemas.ServiceCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Edit a service; existing bookings keep their duration"""
    service = _owned_service(db, service_id, owner_id)
    _check_online_mode(service.business, data)

    for field, value in data.dict().items():
        setattr(service, field, value)
    db.commit()
    db.refresh(service)
    return service


@router.delete("/services/{service_id}", status_code=204)
def delete_service(
    service_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Delete a service; its bookings become free-form bookings"""
    service = _owned_service(db, service_id, owner_id)
    db.delete(service)
    db.commit()
    return None


# Bookings
@router.get("/businesses/{business_id}/bookings", response_model=List[schemas.BookingResponse])
def list_bookings(
    business_id: int,
    start_date: date = Query(None),
    end_date: date = Query(None),
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Bookings (cancelled included) filtered by local dates"""
    business = _owned_business(db, business_id, owner_id)
    tz = get_zone(business.timezone)
    query = db.query(models.Booking).filter(models.Booking.business_id == business.id)

    if start_date:
        query = query.filter(models.Booking.appointment_start >= to_storage(slot_start_at(start_date, 0, tz)))
    if end_date:
        day_after = end_date + timedelta(days=1)
        query = query.filter(models.Booking.appointment_start < to_storage(slot_start_at(day_after, 0, tz)))

    return query.order_by(models.Booking.appointment_start).all()


@router.post("/bookings/{booking_id}/cancel", response_model=schemas.OwnerCancelResponse)
def owner_cancel_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Cancel a customer's booking from the dashboard"""
    booking = db.get(models.Booking, booking_id)
    if not booking or booking.business.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="Booking not found")

    was_confirmed = booking.status == models.BOOKING_CONFIRMED
    booking = booking_engine.cancel_booking(db, booking_id=booking.id)
    if was_confirmed:
        schedule_booking_notifications(background_tasks, "cancelled", booking)
    return schemas.OwnerCancelResponse(id=booking.id, status=booking.status)


@router.get("/businesses/{business_id}/stats", response_model=schemas.StatsResponse)
def get_stats(
    business_id: int,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_current_owner)
):
    """Today's figures; "today" is the business's local date"""
    business = _owned_business(db, business_id, owner_id)
    tz = get_zone(business.timezone)
    now = datetime.now(timezone.utc)
    today = now.astimezone(tz).date()
    day_start = to_storage(slot_start_at(today, 0, tz))
    day_end = to_storage(slot_start_at(today + timedelta(days=1), 0, tz))

    todays = db.query(models.Booking).filter(
        models.Booking.business_id == business.id,
        models.Booking.appointment_start >= day_start,
        models.Booking.appointment_start < day_end,
    )
    bookings_today = todays.filter(models.Booking.status == models.BOOKING_CONFIRMED).count()
    cancelled_today = todays.filter(models.Booking.status == models.BOOKING_CANCELLED).count()
    revenue = todays.filter(
        models.Booking.status == models.BOOKING_CONFIRMED,
        models.Booking.payment_status == models.PAYMENT_PAID,
    ).with_entities(func.coalesce(func.sum(models.Booking.payment_amount), 0)).scalar()

    upcoming = db.query(models.Booking).filter(
        models.Booking.business_id == business.id,
        models.Booking.status == models.BOOKING_CONFIRMED,
        models.Booking.appointment_start >= to_storage(now),
    ).count()

    return schemas.StatsResponse(
        date=today,
        bookings_today=bookings_today,
        cancelled_today=cancelled_today,
        upcoming=upcoming,
        revenue_captured=Decimal(str(revenue)).quantize(Decimal("0.01")),
    )
