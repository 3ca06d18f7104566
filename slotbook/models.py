"""
Database models for the slot booking service
"""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .config import DEFAULT_SLOT_DURATION, DEFAULT_TIMEZONE
from .database import Base

# Booking statuses
BOOKING_CONFIRMED = "confirmed"
BOOKING_CANCELLED = "cancelled"

# Payment statuses
PAYMENT_NOT_REQUIRED = "not_required"
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_IN_STORE = "pay_in_store"

# Service payment modes
MODE_ONLINE = "online"
MODE_IN_STORE = "in_store"
MODE_FREE = "free"


class BusinessProfile(Base):
    """Business with a public booking page"""
    __tablename__ = "business_profiles"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    business_name = Column(String(120), nullable=False)
    booking_slug = Column(String(80), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True)
    timezone = Column(String(64), nullable=False, default=DEFAULT_TIMEZONE)

    # {"monday": {"enabled": true, "start": "09:00", "end": "17:00"}, ...}
    available_hours = Column(JSON, nullable=True)
    slot_duration = Column(Integer, nullable=False, default=DEFAULT_SLOT_DURATION)

    stripe_account_id = Column(String(64), nullable=True)
    # Owner chat for booking alerts; no alerts when unset
    telegram_chat_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    # Relationships
    services = relationship(
        "Service", back_populates="business", cascade="all, delete-orphan", passive_deletes=True
    )
    bookings = relationship(
        "Booking", back_populates="business", cascade="all, delete-orphan", passive_deletes=True
    )


class Service(Base):
    """Bookable service offered by a business"""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(
        Integer, ForeignKey("business_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_mode = Column(String(20), nullable=False, default=MODE_FREE)
    # online - paid upfront through Stripe
    # in_store - paid at the appointment
    # free - nothing to pay
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())

    # Relationships
    business = relationship("BusinessProfile", back_populates="services")


class Booking(Base):
    """Customer reservation; appointment_start is stored as naive UTC"""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(
        Integer, ForeignKey("business_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id = Column(Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True)

    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(30), nullable=False)
    customer_email = Column(String(255), nullable=True)

    appointment_start = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=BOOKING_CONFIRMED)
    # confirmed - holds its slot
    # cancelled - terminal, slot released

    payment_status = Column(String(20), nullable=False, default=PAYMENT_NOT_REQUIRED)
    # not_required - free service
    # pending - waiting for online payment
    # paid - payment confirmed by Stripe
    # pay_in_store - customer pays at the appointment
    payment_amount = Column(Numeric(10, 2), nullable=False, default=0)
    payment_intent_id = Column(String(64), nullable=True)

    reschedule_token = Column(String(64), nullable=False, unique=True, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    business = relationship("BusinessProfile", back_populates="bookings")
    service = relationship("Service")


class BookingSlotClaim(Base):
    """One granularity bucket of a business calendar held by a live booking"""
    __tablename__ = "booking_slot_claims"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(
        Integer, ForeignKey("business_profiles.id", ondelete="CASCADE"), nullable=False
    )
    booking_id = Column(
        Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slot_start = Column(DateTime, nullable=False)

    # Unique constraint: two live bookings can never hold the same bucket
    __table_args__ = (
        UniqueConstraint('business_id', 'slot_start', name='unique_business_slot_claim'),
    )
