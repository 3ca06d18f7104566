import re
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, validator

from .config import SLOT_GRANULARITY_MINUTES
from .scheduling import DAY_KEYS, validate_schedule


def normalize_phone(value: str) -> str:
    """Keep digits and a leading +"""
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


# Customer / public booking schemas
class CustomerDetails(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=7, max_length=30)
    email: Optional[EmailStr] = None

    @validator('name')
    def name_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Name is required')
        return v.strip()

    @validator('phone')
    def phone_has_digits(cls, v):
        cleaned = normalize_phone(v)
        if len(cleaned.lstrip("+")) < 7:
            raise ValueError('Phone number is too short')
        return cleaned


class BookingCreate(BaseModel):
    business_id: int
    service_id: Optional[int] = None
    customer: CustomerDetails
    date: date
    slot_start: str = Field(..., description='"14:30" or "2:30 PM"')


class RescheduleRequest(BaseModel):
    date: date
    slot_start: str


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    label: str
    time: str


class AvailabilityResponse(BaseModel):
    business_id: int
    service_id: Optional[int] = None
    date: date
    duration_minutes: int
    slots: List[SlotResponse]


class ServiceSummary(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    duration_minutes: int
    price: Decimal
    is_paid: bool
    payment_mode: str
    sort_order: int

    class Config:
        from_attributes = True


class PublicBusinessResponse(BaseModel):
    id: int
    business_name: str
    booking_slug: str
    timezone: str
    slot_duration: int
    services: List[ServiceSummary]


class BookingResponse(BaseModel):
    id: int
    business_id: int
    service_id: Optional[int] = None
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    appointment_start: datetime
    duration_minutes: int
    status: str
    payment_status: str
    payment_amount: Decimal
    reschedule_token: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: str


# Owner schemas
class DayHours(BaseModel):
    enabled: bool = False
    start: str = "09:00"
    end: str = "17:00"


class ScheduleUpdate(BaseModel):
    available_hours: Dict[str, DayHours]
    slot_duration: int = Field(..., gt=0, le=24 * 60)

    @validator('available_hours')
    def hours_are_valid(cls, v):
        validate_schedule({k: d.dict() for k, d in v.items()}, SLOT_GRANULARITY_MINUTES)
        missing = [k for k in DAY_KEYS if k not in v]
        if missing:
            raise ValueError(f"Missing weekdays: {', '.join(missing)}")
        return v

    @validator('slot_duration')
    def duration_on_grid(cls, v):
        if v % SLOT_GRANULARITY_MINUTES:
            raise ValueError(f'Slot duration must be a multiple of {SLOT_GRANULARITY_MINUTES} minutes')
        return v


class BusinessCreate(BaseModel):
    business_name: str = Field(..., min_length=1, max_length=120)
    booking_slug: str = Field(..., min_length=2, max_length=80, pattern=r"^[a-z0-9][a-z0-9-]*$")
    email: Optional[EmailStr] = None
    timezone: str = "UTC"
    telegram_chat_id: Optional[str] = Field(None, max_length=64)
    schedule: Optional[ScheduleUpdate] = None


class BusinessResponse(BaseModel):
    id: int
    owner_id: str
    business_name: str
    booking_slug: str
    email: Optional[str] = None
    timezone: str
    available_hours: Optional[dict] = None
    slot_duration: int
    stripe_account_id: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    class Config:
        from_attributes = True


class PaymentAccountUpdate(BaseModel):
    stripe_account_id: Optional[str] = Field(None, max_length=64)


class NotificationSettingsUpdate(BaseModel):
    telegram_chat_id: Optional[str] = Field(None, max_length=64)


class ServiceBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    duration_minutes: int = Field(..., gt=0, le=24 * 60)
    price: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    is_paid: bool = False
    payment_mode: str = "free"
    is_active: bool = True
    sort_order: int = 0

    @validator('duration_minutes')
    def duration_on_grid(cls, v):
        if v % SLOT_GRANULARITY_MINUTES:
            raise ValueError(f'Duration must be a multiple of {SLOT_GRANULARITY_MINUTES} minutes')
        return v

    @validator('payment_mode')
    def payment_mode_matches(cls, v, values):
        if v not in ("online", "in_store", "free"):
            raise ValueError('payment_mode must be online, in_store or free')
        is_paid = values.get('is_paid', False)
        if not is_paid and v != "free":
            raise ValueError('Free services must use payment_mode "free"')
        if is_paid and v == "free":
            raise ValueError('Paid services need payment_mode "online" or "in_store"')
        return v


class ServiceCreate(ServiceBase):
    pass


class ServiceResponse(ServiceBase):
    id: int
    business_id: int

    class Config:
        from_attributes = True


class OwnerCancelResponse(BaseModel):
    id: int
    status: str


class StatsResponse(BaseModel):
    """Same-day figures, day boundaries in the business timezone"""
    date: date
    bookings_today: int
    cancelled_today: int
    upcoming: int
    revenue_captured: Decimal
