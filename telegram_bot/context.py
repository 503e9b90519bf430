"""
This module defines a custom context class for the Telegram bot.
"""
from typing import Optional

from telegram.ext import CallbackContext, ExtBot

from trash_calendar.facade import TrashBotFacade


class CustomContext(CallbackContext[ExtBot, dict, dict, dict]):
    """
    A custom context class that gives every handler access to the TrashBotFacade.

    The facade is shared by all contexts, so it is set once on the class
    (see bot.main) rather than per instance.
    """

    facade: Optional[TrashBotFacade] = None
