"""Shared test fixtures and helpers."""

import os
import tempfile
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Optional

_TEST_DIR = tempfile.mkdtemp(prefix="slotbook-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["MAIL_SUPPRESS_SEND"] = "1"
# API tests book fixed dates in 2030 against the real clock
os.environ["BOOKING_HORIZON_DAYS"] = "3650"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

import pytest  # noqa: E402

from slotbook import models  # noqa: E402
from slotbook.config import DEFAULT_AVAILABLE_HOURS  # noqa: E402
from slotbook.database import SessionLocal, engine  # noqa: E402
from slotbook.payments import AccountStatus, PaymentIntent  # noqa: E402

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
SATURDAY = date(2030, 1, 12)
EARLY_MONDAY = datetime(2030, 1, 7, 7, 0, tzinfo=timezone.utc)


class FakeGateway:
    """In-memory stand-in for the Stripe client"""

    def __init__(self, charges_enabled: bool = True):
        self.charges_enabled = charges_enabled
        self.intents = {}
        self.account_lookups = []

    def get_account_status(self, account_id: str) -> AccountStatus:
        self.account_lookups.append(account_id)
        return AccountStatus(charges_enabled=self.charges_enabled)

    def create_payment_intent(self, amount_cents, destination_account, description="",
                              receipt_email=None, metadata=None) -> PaymentIntent:
        intent = PaymentIntent(
            id=f"pi_{len(self.intents) + 1}",
            client_secret=f"pi_{len(self.intents) + 1}_secret",
            status="requires_payment_method",
        )
        self.intents[intent.id] = {"intent": intent, "amount": amount_cents, "destination": destination_account}
        return intent

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        return self.intents[intent_id]["intent"]

    def succeed(self, intent_id: str) -> None:
        old = self.intents[intent_id]["intent"]
        self.intents[intent_id]["intent"] = PaymentIntent(id=old.id, client_secret=old.client_secret, status="succeeded")


@pytest.fixture
def db():
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        models.Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


def make_customer(name: str = "Jane Doe", phone: str = "5551234567", email: Optional[str] = "jane@example.com"):
    return SimpleNamespace(name=name, phone=phone, email=email)


def make_business(db, owner_id: str = "owner-1", slug: str = "studio", tz: str = "UTC",
                  stripe_account_id: Optional[str] = None, slot_duration: int = 30) -> models.BusinessProfile:
    business = models.BusinessProfile(
        owner_id=owner_id,
        business_name="Test Studio",
        booking_slug=slug,
        email="owner@example.com",
        timezone=tz,
        available_hours=DEFAULT_AVAILABLE_HOURS,
        slot_duration=slot_duration,
        stripe_account_id=stripe_account_id,
    )
    db.add(business)
    db.commit()
    db.refresh(business)
    return business


def make_service(db, business, name: str = "Haircut", duration: int = 30, price: str = "0",
                 is_paid: bool = False, payment_mode: str = "free", is_active: bool = True) -> models.Service:
    service = models.Service(
        business_id=business.id,
        name=name,
        duration_minutes=duration,
        price=Decimal(price),
        is_paid=is_paid,
        payment_mode=payment_mode,
        is_active=is_active,
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    return service
