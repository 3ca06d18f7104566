import logging
import os
from pathlib import Path
from zoneinfo import ZoneInfo

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from . import models
from .availability import as_utc
from .config import SITE_URL

logger = logging.getLogger(__name__)

# Email configuration
conf = ConnectionConfig(
    MAIL_USERNAME=os.getenv("MAIL_USERNAME", ""),
    MAIL_PASSWORD=os.getenv("MAIL_PASSWORD", ""),
    MAIL_FROM=os.getenv("MAIL_FROM", "noreply@slotbook.app"),
    MAIL_PORT=int(os.getenv("MAIL_PORT", "587")),
    MAIL_SERVER=os.getenv("MAIL_SERVER", "smtp.gmail.com"),
    MAIL_FROM_NAME=os.getenv("MAIL_FROM_NAME", "Slotbook"),
    MAIL_STARTTLS=True,
    MAIL_SSL_TLS=False,
    USE_CREDENTIALS=bool(os.getenv("MAIL_USERNAME")),
    VALIDATE_CERTS=True,
    SUPPRESS_SEND=int(os.getenv("MAIL_SUPPRESS_SEND", "0")),
    TEMPLATE_FOLDER=Path(__file__).parent / "templates"
)

SUBJECTS = {
    "confirmation": "Booking confirmed - {business_name}",
    "reschedule": "Booking rescheduled - {business_name}",
    "cancellation": "Booking cancelled - {business_name}",
    "owner_notification": "New booking: {customer_name}",
}


def booking_email_context(booking: models.Booking) -> dict:
    """Plain data for templates; built while the DB session is still open"""
    business = booking.business
    local_start = as_utc(booking.appointment_start).astimezone(ZoneInfo(business.timezone))
    return {
        "booking_id": booking.id,
        "business_name": business.business_name,
        "business_email": business.email,
        "service_name": booking.service.name if booking.service else "Appointment",
        "customer_name": booking.customer_name,
        "customer_phone": booking.customer_phone,
        "customer_email": booking.customer_email,
        "formatted_date": local_start.strftime("%A, %B %d, %Y"),
        "formatted_time": local_start.strftime("%I:%M %p").lstrip("0"),
        "payment_status": booking.payment_status,
        "payment_amount": f"{booking.payment_amount:.2f}",
        "reschedule_url": f"{SITE_URL}/reschedule/{booking.reschedule_token}",
    }


async def send_booking_email(kind: str, details: dict) -> bool:
    """
    Send a booking email of the given kind. Best effort: failures are logged
    and never reach the caller, the booking is already committed.
    """
    if kind == "owner_notification":
        recipient = details.get("business_email")
    else:
        recipient = details.get("customer_email")

    if not recipient:
        logger.info(f"No recipient for {kind} email of booking #{details.get('booking_id')}")
        return False

    message = MessageSchema(
        subject=SUBJECTS[kind].format(**details),
        recipients=[recipient],
        template_body=details,
        subtype=MessageType.html
    )

    try:
        fm = FastMail(conf)
        await fm.send_message(message, template_name=f"{kind}.html")
    except Exception as e:
        logger.error(f"❌ Failed to send {kind} email for booking #{details.get('booking_id')}: {e}")
        return False

    logger.info(f"📧 {kind} email sent for booking #{details.get('booking_id')}")
    return True
