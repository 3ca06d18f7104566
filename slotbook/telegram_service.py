"""
Telegram alerts for business owners about new, moved and cancelled bookings
"""
import logging
from typing import Optional, Union

from telegram import Bot
from telegram.error import TelegramError

from .config import TELEGRAM_BOT_TOKEN

logger = logging.getLogger(__name__)

HEADLINES = {
    "created": "🎉 <b>New booking!</b>",
    "rescheduled": "🔁 <b>Booking rescheduled</b>",
    "cancelled": "❌ <b>Booking cancelled</b>",
}


class TelegramNotifier:
    """Sends booking alerts to the chat each business owner connected"""

    def __init__(self, bot_token: Optional[str] = TELEGRAM_BOT_TOKEN):
        self.bot_token = bot_token
        self.bot = None

        if self.bot_token:
            self.bot = Bot(token=self.bot_token)
            logger.info("✅ Telegram Bot initialised")
        else:
            logger.warning("⚠️ TELEGRAM_BOT_TOKEN not set, owner alerts disabled")

    @staticmethod
    def format_message(event: str, details: dict) -> str:
        return f"""
{HEADLINES[event]}

📅 <b>Date:</b> {details['formatted_date']}
🕐 <b>Time:</b> {details['formatted_time']}
💇 <b>Service:</b> {details['service_name']}

👤 <b>Customer:</b> {details['customer_name']}
📞 <b>Phone:</b> <code>{details['customer_phone']}</code>

🆔 Booking #{details['booking_id']}

💼 <b>{details['business_name']}</b>
"""

    async def send_booking_event(self, chat_id: Union[int, str, None], event: str, details: dict) -> bool:
        """Alert the owning business's chat; True if the message went out"""
        if not self.bot or not chat_id:
            return False

        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=self.format_message(event, details),
                parse_mode="HTML"
            )
        except TelegramError as e:
            logger.error(f"❌ Failed to send booking {event} alert to {chat_id}: {e}")
            return False

        logger.info(f"✅ Booking {event} alert sent to {chat_id}")
        return True


# Global instance
telegram_notifier = TelegramNotifier()
