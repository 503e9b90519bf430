"""
This module sets up console and database logging for the application.
"""
import logging
import sqlite3
import sys
from logging import Handler, LogRecord

from trash_calendar.config import LOCAL_DB_PATH
from trash_calendar.services.persistence_service import PersistenceService

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SQLiteHandler(Handler):
    """
    A logging handler that writes records to the logs table of the local database.
    """

    def __init__(self, db_path: str = LOCAL_DB_PATH):
        super().__init__()
        self.db_path = db_path

    def emit(self, record: LogRecord) -> None:
        """
        Writes the log record to the database.
        """
        try:
            with PersistenceService(self.db_path) as p:
                p.add_log(record.levelname, self.format(record), record.name)
        except sqlite3.Error:
            self.handleError(record)


def setup_logging(level: int = logging.INFO, db_path: str = LOCAL_DB_PATH) -> None:
    """
    Configures the root logger to write to the console and the SQLite database.
    """
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove any existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    db_handler = SQLiteHandler(db_path)
    db_handler.setLevel(level)
    db_handler.setFormatter(formatter)
    logger.addHandler(db_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # httpx logs request URLs, which contain the bot token.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.info("Logging configured to use database and console.")
