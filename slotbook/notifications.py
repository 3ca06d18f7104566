"""
Post-commit notifications, run as FastAPI background tasks
"""
from fastapi import BackgroundTasks

from . import models
from .email_service import booking_email_context, send_booking_email
from .telegram_service import telegram_notifier

CUSTOMER_EMAILS = {
    "created": "confirmation",
    "rescheduled": "reschedule",
    "cancelled": "cancellation",
}


def schedule_booking_notifications(background_tasks: BackgroundTasks, event: str, booking: models.Booking) -> None:
    """Queue customer email and owner alerts for a committed booking change"""
    details = booking_email_context(booking)

    background_tasks.add_task(send_booking_email, CUSTOMER_EMAILS[event], details)
    if event == "created":
        background_tasks.add_task(send_booking_email, "owner_notification", details)

    # Only the business's own chat receives alerts
    chat_id = booking.business.telegram_chat_id
    if chat_id:
        background_tasks.add_task(telegram_notifier.send_booking_event, chat_id, event, details)
