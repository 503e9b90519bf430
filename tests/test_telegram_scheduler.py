"""
Tests for the daily notification trigger.
"""
import asyncio
from datetime import date, datetime, time
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

from telegram_bot.scheduler import check_and_send_notifications, next_trigger, scheduler, seconds_until
from trash_calendar.exceptions import PersistenceError
from trash_calendar.models import RunReport

BERLIN = ZoneInfo("Europe/Berlin")
TRIGGER = time(16, 0)


def test_next_trigger_later_today():
    now = datetime(2024, 3, 14, 9, 30, tzinfo=BERLIN)
    assert next_trigger(TRIGGER, now) == datetime(2024, 3, 14, 16, 0, tzinfo=BERLIN)


def test_next_trigger_tomorrow_when_passed():
    now = datetime(2024, 3, 14, 16, 0, tzinfo=BERLIN)
    assert next_trigger(TRIGGER, now) == datetime(2024, 3, 15, 16, 0, tzinfo=BERLIN)


def test_seconds_until():
    now = datetime(2024, 3, 14, 15, 0, tzinfo=BERLIN)
    assert seconds_until(TRIGGER, now) == 3600


def test_seconds_until_across_dst_change():
    """Tests that the spring-forward night is one hour shorter."""
    now = datetime(2024, 3, 30, 16, 0, tzinfo=BERLIN)
    assert seconds_until(TRIGGER, now) == 23 * 3600


@pytest.fixture
def service():
    service = MagicMock()
    service.run_once = AsyncMock(return_value=RunReport(date(2024, 3, 14), date(2024, 3, 15)))
    return service


@pytest.mark.asyncio
async def test_check_and_send_notifications_returns_report(service):
    report = await check_and_send_notifications(service, date(2024, 3, 14))
    service.run_once.assert_awaited_once_with(date(2024, 3, 14))
    assert report.target_date == date(2024, 3, 15)


@pytest.mark.asyncio
async def test_check_and_send_notifications_survives_listing_failure(service):
    service.run_once.side_effect = PersistenceError("data API unreachable")
    assert await check_and_send_notifications(service, date(2024, 3, 14)) is None


@pytest.mark.asyncio
async def test_check_and_send_notifications_survives_unexpected_error(service):
    service.run_once.side_effect = RuntimeError("boom")
    assert await check_and_send_notifications(service, date(2024, 3, 14)) is None


class SteppingClock:
    """Returns the given datetimes in order, repeating the last one."""

    def __init__(self, *moments):
        self.moments = list(moments)

    def __call__(self, zone):
        if len(self.moments) > 1:
            return self.moments.pop(0)
        return self.moments[0]


@pytest.mark.asyncio
async def test_scheduler_runs_immediately_when_started_late(service):
    """Tests that a start after the trigger time still notifies for today."""
    clock = SteppingClock(
        datetime(2024, 3, 14, 17, 0, tzinfo=BERLIN),
        datetime(2024, 3, 14, 17, 0, tzinfo=BERLIN),
    )
    with patch("telegram_bot.scheduler.asyncio.sleep", new=AsyncMock(side_effect=asyncio.CancelledError())):
        with pytest.raises(asyncio.CancelledError):
            await scheduler(service, TRIGGER, BERLIN, clock=clock)

    service.run_once.assert_awaited_once_with(date(2024, 3, 14))


@pytest.mark.asyncio
async def test_scheduler_waits_for_trigger(service):
    clock = SteppingClock(
        datetime(2024, 3, 14, 9, 0, tzinfo=BERLIN),
        datetime(2024, 3, 14, 9, 0, tzinfo=BERLIN),
        datetime(2024, 3, 14, 16, 0, tzinfo=BERLIN),
        datetime(2024, 3, 14, 16, 0, 1, tzinfo=BERLIN),
    )
    sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
    with patch("telegram_bot.scheduler.asyncio.sleep", new=sleep):
        with pytest.raises(asyncio.CancelledError):
            await scheduler(service, TRIGGER, BERLIN, clock=clock)

    sleep.assert_any_await(7 * 3600)
    service.run_once.assert_awaited_once_with(date(2024, 3, 14))


@pytest.mark.asyncio
async def test_scheduler_does_not_run_twice_on_the_same_day(service):
    clock = SteppingClock(
        datetime(2024, 3, 14, 17, 0, tzinfo=BERLIN),
        datetime(2024, 3, 14, 17, 0, tzinfo=BERLIN),
        datetime(2024, 3, 14, 23, 0, tzinfo=BERLIN),
    )
    sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
    with patch("telegram_bot.scheduler.asyncio.sleep", new=sleep):
        with pytest.raises(asyncio.CancelledError):
            await scheduler(service, TRIGGER, BERLIN, clock=clock)

    service.run_once.assert_awaited_once()
