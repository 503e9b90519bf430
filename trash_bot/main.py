import asyncio
import logging
import sys
from datetime import datetime

from telegram_bot.bot import main as run_bot
from trash_calendar.config import Settings
from trash_calendar.exceptions import CalendarLoadError, ConfigurationError
from trash_calendar.services.persistence_service import PersistenceService

from .app_factory import create_facade, initialize_app

logger = logging.getLogger(__name__)


def main() -> int:
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        # Logging is not configured yet.
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    initialize_app(settings)
    facade = create_facade(settings)

    with PersistenceService(settings.local_db_path) as persistence_service:
        persistence_service.record_system_info("bot_start_time", datetime.now().isoformat())

    try:
        facade.calendar.load_calendar()
    except CalendarLoadError as e:
        logger.error(f"Initial calendar load failed, retrying on the next refresh: {e}")

    logger.info("Starting bot...")
    try:
        asyncio.run(run_bot(settings, facade))
    except KeyboardInterrupt:
        logger.info("Bot stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
