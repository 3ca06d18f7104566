"""
Application settings loaded from environment variables (.env supported)
"""
import os
import warnings

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./slotbook.db")

# JWT settings (owner-facing endpoints)
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# Scheduling defaults
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
DEFAULT_SLOT_DURATION = int(os.getenv("DEFAULT_SLOT_DURATION", "30"))
# Size of one claim bucket; slot starts and durations must be multiples of it
SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "5"))
# How far ahead customers may book, in days
BOOKING_HORIZON_DAYS = int(os.getenv("BOOKING_HORIZON_DAYS", "365"))

DEFAULT_AVAILABLE_HOURS = {
    "monday": {"enabled": True, "start": "09:00", "end": "17:00"},
    "tuesday": {"enabled": True, "start": "09:00", "end": "17:00"},
    "wednesday": {"enabled": True, "start": "09:00", "end": "17:00"},
    "thursday": {"enabled": True, "start": "09:00", "end": "17:00"},
    "friday": {"enabled": True, "start": "09:00", "end": "17:00"},
    "saturday": {"enabled": False, "start": "09:00", "end": "17:00"},
    "sunday": {"enabled": False, "start": "09:00", "end": "17:00"},
}

# Stripe (payment processor)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_API_URL = os.getenv("STRIPE_API_URL", "https://api.stripe.com/v1")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
STRIPE_APPLICATION_FEE_PERCENT = float(os.getenv("STRIPE_APPLICATION_FEE_PERCENT", "5"))
STRIPE_TIMEOUT = float(os.getenv("STRIPE_TIMEOUT", "15"))

# Public site (links in emails)
SITE_URL = os.getenv("SITE_URL", "http://localhost:8000")

# Telegram owner alerts (chat ids are stored per business)
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
