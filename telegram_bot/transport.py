"""
This module delivers notification messages through the Telegram Bot API.
"""
import logging

from telegram import Bot
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TelegramError, TimedOut

from trash_calendar.exceptions import DispatchError

logger = logging.getLogger(__name__)


class TelegramTransport:
    """Sends plain-text messages and translates Telegram errors into DispatchError."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, recipient_id: int, text: str) -> None:
        try:
            await self.bot.send_message(chat_id=recipient_id, text=text)
        except Forbidden as e:
            raise DispatchError(recipient_id, "blocked", str(e)) from e
        except RetryAfter as e:
            raise DispatchError(recipient_id, "rate_limited", f"retry after {e.retry_after}") from e
        # TimedOut is a NetworkError, so it has to be caught first.
        except TimedOut as e:
            raise DispatchError(recipient_id, "timeout", str(e)) from e
        except BadRequest as e:
            raise DispatchError(recipient_id, "rejected", str(e)) from e
        except NetworkError as e:
            raise DispatchError(recipient_id, "unavailable", str(e)) from e
        except TelegramError as e:
            raise DispatchError(recipient_id, "error", str(e)) from e
