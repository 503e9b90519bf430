"""
This module defines the NotificationService, which performs one daily notification run.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Iterable, Protocol

from ..config import NOTIFY_DISPATCH_TIMEOUT, NOTIFY_MAX_WORKERS
from ..exceptions import DispatchError, PersistenceError, ResolutionError
from ..models import CATEGORY_ORDER, LocationKey, NotificationOutcome, RunReport, Subscriber, WasteCategory
from .calendar_service import CalendarService
from .geocoding_service import GeocodingService
from .subscriber_directory import SubscriberDirectory

logger = logging.getLogger(__name__)

WEEKDAYS = ("Montag", "Dienstag", "Mittwoch", "Donnerstag", "Freitag", "Samstag", "Sonntag")


class MessagingTransport(Protocol):
    """Anything that can deliver a plain-text message to a recipient."""

    async def send(self, recipient_id: int, text: str) -> None:
        """Delivers the message or raises DispatchError."""


def build_message(collection_date: date, categories: Iterable[WasteCategory]) -> str:
    """Formats the reminder for the waste categories collected on a date."""
    selected = set(categories)
    lines = [
        f"🗑️ Morgen ({WEEKDAYS[collection_date.weekday()]}, {collection_date.strftime('%d.%m.%Y')}) wird abgeholt:"
    ]
    for category in CATEGORY_ORDER:
        if category in selected:
            lines.append(f"{category.emoji} {category.display_name}")
    return "\n".join(lines)


class NotificationService:
    """
    Fans out the daily reminders.

    Every subscriber is processed independently: a failure is logged and recorded
    as that subscriber's outcome and never stops the others. A subscriber counts
    as notified only once the directory has stored the date, so an interrupted
    run leads to at most one repeated message, never to a missed one.
    """

    def __init__(
        self,
        directory: SubscriberDirectory,
        geocoder: GeocodingService,
        calendar: CalendarService,
        transport: MessagingTransport,
        max_workers: int = NOTIFY_MAX_WORKERS,
        dispatch_timeout: float = NOTIFY_DISPATCH_TIMEOUT,
    ):
        self.directory = directory
        self.geocoder = geocoder
        self.calendar = calendar
        self.transport = transport
        self.max_workers = max_workers
        self.dispatch_timeout = dispatch_timeout

    async def run_once(self, today: date) -> RunReport:
        """
        Notifies every subscriber with a collection on the day after `today`.

        Args:
            today: The date of the run; also the date recorded as last notified.

        Returns:
            A RunReport with one outcome per subscriber.

        Raises:
            PersistenceError: If the subscriber list cannot be fetched at all.
        """
        tomorrow = today + timedelta(days=1)
        report = RunReport(run_date=today, target_date=tomorrow)

        if not self.calendar.covers(tomorrow):
            logger.warning(
                f"The collection calendar has no data for {tomorrow.isoformat()}; "
                "no collections will be announced for that day."
            )

        logger.info(f"Starting notification run for collections on {tomorrow.isoformat()}.")
        subscribers = await asyncio.to_thread(lambda: list(self.directory.list_subscribers()))
        logger.info(f"Found {len(subscribers)} subscribers.")

        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(subscriber: Subscriber) -> None:
            async with semaphore:
                report.outcomes[subscriber.chat_id] = await self.process_subscriber(subscriber, today)

        await asyncio.gather(*(worker(subscriber) for subscriber in subscribers))

        logger.info(report.summary())
        return report

    async def process_subscriber(self, subscriber: Subscriber, today: date) -> NotificationOutcome:
        """Takes one subscriber through resolve, match, decide, dispatch and record."""
        chat_id = subscriber.chat_id
        tomorrow = today + timedelta(days=1)

        if subscriber.last_notified is not None and subscriber.last_notified >= today:
            logger.debug(f"chat_id {chat_id} was already notified on {subscriber.last_notified.isoformat()}.")
            return NotificationOutcome.SKIPPED_ALREADY_NOTIFIED

        try:
            location_key = await self._resolve(subscriber)
        except ResolutionError as e:
            logger.warning(f"Skipping chat_id {chat_id}: {e}")
            return NotificationOutcome.FAILED_RESOLVE
        except Exception as e:
            logger.exception(f"Unexpected error while resolving the address of chat_id {chat_id}: {e}")
            return NotificationOutcome.FAILED_RESOLVE

        categories = self.calendar.entries_for(location_key, tomorrow)
        if not categories:
            return NotificationOutcome.SKIPPED_EMPTY

        message = build_message(tomorrow, categories)
        try:
            await asyncio.wait_for(self.transport.send(chat_id, message), timeout=self.dispatch_timeout)
        except DispatchError as e:
            logger.error(f"Failed to send notification to chat_id {chat_id}: {e}")
            return NotificationOutcome.FAILED_DISPATCH
        except asyncio.TimeoutError:
            logger.error(f"Sending the notification to chat_id {chat_id} timed out after {self.dispatch_timeout}s.")
            return NotificationOutcome.FAILED_DISPATCH
        except Exception as e:
            logger.exception(f"Unexpected error while sending to chat_id {chat_id}: {e}")
            return NotificationOutcome.FAILED_DISPATCH

        try:
            await asyncio.to_thread(self.directory.record_notified, chat_id, today)
        except PersistenceError as e:
            logger.error(f"Notification sent to chat_id {chat_id} but could not be recorded: {e}")
            return NotificationOutcome.FAILED_RECORD
        except Exception as e:
            logger.exception(f"Unexpected error while recording the notification for chat_id {chat_id}: {e}")
            return NotificationOutcome.FAILED_RECORD

        logger.info(f"Successfully sent notification to chat_id {chat_id}.")
        return NotificationOutcome.SENT

    async def _resolve(self, subscriber: Subscriber) -> LocationKey:
        """Returns the cached location key, geocoding (and storing) it if missing."""
        if subscriber.location_key is not None:
            return subscriber.location_key

        location_key = await asyncio.to_thread(self.geocoder.resolve, subscriber.address)
        try:
            await asyncio.to_thread(self.directory.record_location_key, subscriber.chat_id, location_key)
        except PersistenceError as e:
            logger.warning(f"Could not store location key for chat_id {subscriber.chat_id}: {e}")
        subscriber.location_key = location_key
        return location_key
