"""
This module fires the daily notification run at a fixed local time.
"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Optional

from trash_calendar.exceptions import PersistenceError
from trash_calendar.models import RunReport
from trash_calendar.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def next_trigger(trigger_time: time, now: datetime) -> datetime:
    """The next wall-clock occurrence of trigger_time strictly after `now` (timezone-aware)."""
    candidate = datetime.combine(now.date(), trigger_time, tzinfo=now.tzinfo)
    if candidate <= now:
        candidate = datetime.combine(now.date() + timedelta(days=1), trigger_time, tzinfo=now.tzinfo)
    return candidate


def seconds_until(trigger_time: time, now: datetime) -> float:
    """Seconds from `now` until the next trigger, correct across DST changes."""
    target = next_trigger(trigger_time, now)
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


async def check_and_send_notifications(service: NotificationService, today: date) -> Optional[RunReport]:
    """
    Runs one notification pass. Errors are logged; the caller keeps scheduling.
    """
    try:
        return await service.run_once(today)
    except PersistenceError as e:
        logger.error(f"Notification run for {today.isoformat()} aborted, subscribers unavailable: {e}")
    except Exception as e:
        logger.exception(f"An error occurred in the notification run for {today.isoformat()}: {e}")
    return None


async def scheduler(
    service: NotificationService,
    trigger_time: time,
    tz: tzinfo,
    clock: Optional[Callable[[tzinfo], datetime]] = None,
) -> None:
    """
    The main scheduler loop.

    If the process starts after today's trigger time, the run for today happens
    immediately; subscribers already notified today are skipped by the run
    itself, so a restart never sends a second message.
    """
    now_in = clock or (lambda zone: datetime.now(zone))
    last_run: Optional[date] = None

    logger.info(f"Notification scheduler started, daily trigger at {trigger_time.strftime('%H:%M')}.")
    now = now_in(tz)
    if now.time() >= trigger_time:
        logger.info("Trigger time already passed today, running now.")
        last_run = now.date()
        await check_and_send_notifications(service, last_run)

    while True:
        now = now_in(tz)
        delay = seconds_until(trigger_time, now)
        logger.info(f"Next notification run at {next_trigger(trigger_time, now).isoformat()}.")
        await asyncio.sleep(delay)

        today = now_in(tz).date()
        if today == last_run:
            continue
        last_run = today
        await check_and_send_notifications(service, today)
