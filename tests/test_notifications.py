"""Tests for owner alerts, booking emails and owner tokens."""

import asyncio
from datetime import timedelta

import pytest
from fastapi import BackgroundTasks, HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from slotbook.booking_engine import create_booking
from slotbook.email_service import booking_email_context
from slotbook.notifications import schedule_booking_notifications
from slotbook.security import create_access_token, get_current_owner, verify_token
from slotbook.telegram_service import TelegramNotifier, telegram_notifier

from conftest import EARLY_MONDAY, MONDAY, make_business, make_customer, make_service


class RecordingBot:
    def __init__(self):
        self.sent = []

    async def send_message(self, chat_id, text, parse_mode=None):
        self.sent.append((chat_id, text))


class TestTelegramNotifier:
    details = {
        "booking_id": 7,
        "business_name": "Test Studio",
        "service_name": "Haircut",
        "customer_name": "Jane Doe",
        "customer_phone": "5551234567",
        "formatted_date": "Monday, January 07, 2030",
        "formatted_time": "10:00 AM",
    }

    def test_message_mentions_booking(self):
        message = TelegramNotifier.format_message("cancelled", self.details)
        assert "Booking cancelled" in message
        assert "Booking #7" in message
        assert "10:00 AM" in message

    def test_without_token_nothing_is_sent(self):
        notifier = TelegramNotifier(bot_token=None)
        assert asyncio.run(notifier.send_booking_event("123", "created", self.details)) is False

    def test_sends_only_to_given_chat(self):
        notifier = TelegramNotifier(bot_token=None)
        notifier.bot = RecordingBot()

        assert asyncio.run(notifier.send_booking_event("-1001", "created", self.details)) is True
        assert asyncio.run(notifier.send_booking_event(None, "created", self.details)) is False
        assert [chat_id for chat_id, _ in notifier.bot.sent] == ["-1001"]


def test_email_context_uses_business_timezone(db):
    business = make_business(db, tz="America/New_York")
    service = make_service(db, business)
    booking = create_booking(db, business.id, service.id, make_customer(), MONDAY, "10:00", now=EARLY_MONDAY)

    context = booking_email_context(booking)
    assert context["formatted_time"] == "10:00 AM"
    assert context["service_name"] == "Haircut"
    assert context["reschedule_url"].endswith(booking.reschedule_token)


class TestOwnerTokens:
    def _credentials(self, token):
        return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)

    def test_round_trip(self):
        payload = verify_token(self._credentials(create_access_token("owner-42")))
        assert get_current_owner(payload) == "owner-42"

    def test_expired_token(self):
        token = create_access_token("owner-42", expires_delta=timedelta(minutes=-1))
        with pytest.raises(HTTPException) as exc_info:
            verify_token(self._credentials(token))
        assert exc_info.value.status_code == 401


class TestScheduledNotifications:
    def _telegram_tasks(self, tasks):
        return [task for task in tasks.tasks if task.func == telegram_notifier.send_booking_event]

    def test_alert_goes_to_the_booking_business_chat(self, db):
        business = make_business(db)
        business.telegram_chat_id = "555001"
        db.commit()
        make_business(db, owner_id="owner-2", slug="other")
        booking = create_booking(db, business.id, None, make_customer(), MONDAY, "10:00", now=EARLY_MONDAY)

        tasks = BackgroundTasks()
        schedule_booking_notifications(tasks, "created", booking)

        alerts = self._telegram_tasks(tasks)
        assert len(alerts) == 1
        assert alerts[0].args[:2] == ("555001", "created")

    def test_no_alert_without_chat(self, db):
        business = make_business(db)
        booking = create_booking(db, business.id, None, make_customer(), MONDAY, "10:00", now=EARLY_MONDAY)

        tasks = BackgroundTasks()
        schedule_booking_notifications(tasks, "cancelled", booking)

        assert self._telegram_tasks(tasks) == []
        assert len(tasks.tasks) == 1
