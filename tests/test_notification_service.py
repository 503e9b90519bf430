"""
Unit tests for the NotificationService.
"""
import asyncio
import dataclasses
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from trash_calendar.exceptions import DispatchError, PersistenceError, ResolutionError, ResolutionFailure
from trash_calendar.models import Address, LocationKey, NotificationOutcome, Subscriber, WasteCategory
from trash_calendar.services.notification_service import NotificationService, build_message

TODAY = date(2024, 3, 14)
TOMORROW = date(2024, 3, 15)
KAISERSTRASSE_12 = LocationKey("kaiserstraße", "12")
HAUPTSTRASSE_1 = LocationKey("hauptstraße", "1")


class FakeDirectory:
    """An in-memory stand-in for the data API."""

    def __init__(self, subscribers):
        self.subscribers = {s.chat_id: s for s in subscribers}
        self.fail_record_for = set()
        self.fail_listing = False

    def list_subscribers(self):
        if self.fail_listing:
            raise PersistenceError("data API unreachable")
        for subscriber in self.subscribers.values():
            yield dataclasses.replace(subscriber)

    def record_notified(self, chat_id, notified_on):
        if chat_id in self.fail_record_for:
            raise PersistenceError("write failed")
        self.subscribers[chat_id].last_notified = notified_on

    def record_location_key(self, chat_id, location_key):
        self.subscribers[chat_id].location_key = location_key


def subscriber(chat_id, street="Kaiserstraße", house_number="12", **kwargs):
    return Subscriber(chat_id=chat_id, address=Address(street, house_number), **kwargs)


def schedule(location_key, day):
    if location_key == KAISERSTRASSE_12 and day == TOMORROW:
        return frozenset({WasteCategory.PAPER, WasteCategory.RESIDUAL})
    return frozenset()


@pytest.fixture
def geocoder():
    geocoder = MagicMock()
    geocoder.resolve.side_effect = lambda address: (
        KAISERSTRASSE_12 if address.street == "Kaiserstraße" else HAUPTSTRASSE_1
    )
    return geocoder


@pytest.fixture
def calendar():
    calendar = MagicMock()
    calendar.covers.return_value = True
    calendar.entries_for.side_effect = schedule
    return calendar


@pytest.fixture
def transport():
    transport = MagicMock()
    transport.send = AsyncMock()
    return transport


def make_service(directory, geocoder, calendar, transport, **kwargs):
    return NotificationService(directory, geocoder, calendar, transport, **kwargs)


def test_build_message():
    message = build_message(TOMORROW, {WasteCategory.RESIDUAL, WasteCategory.PAPER})
    assert message == "🗑️ Morgen (Freitag, 15.03.2024) wird abgeholt:\n🔵 Papier\n⚫ Restmüll"


@pytest.mark.asyncio
async def test_run_sends_and_records(geocoder, calendar, transport):
    """Tests the evening before a paper and residual waste collection."""
    directory = FakeDirectory([subscriber(1)])
    service = make_service(directory, geocoder, calendar, transport)

    report = await service.run_once(TODAY)

    assert report.outcomes == {1: NotificationOutcome.SENT}
    assert report.target_date == TOMORROW
    transport.send.assert_awaited_once_with(1, build_message(TOMORROW, {WasteCategory.PAPER, WasteCategory.RESIDUAL}))
    assert directory.subscribers[1].last_notified == TODAY
    assert directory.subscribers[1].location_key == KAISERSTRASSE_12


@pytest.mark.asyncio
async def test_rerun_same_day_does_not_send_twice(geocoder, calendar, transport):
    directory = FakeDirectory([subscriber(1)])
    service = make_service(directory, geocoder, calendar, transport)

    await service.run_once(TODAY)
    report = await service.run_once(TODAY)

    assert report.outcomes == {1: NotificationOutcome.SKIPPED_ALREADY_NOTIFIED}
    transport.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_stored_location_key_skips_geocoding(geocoder, calendar, transport):
    directory = FakeDirectory([subscriber(1, location_key=KAISERSTRASSE_12)])
    service = make_service(directory, geocoder, calendar, transport)

    report = await service.run_once(TODAY)

    assert report.outcomes[1] is NotificationOutcome.SENT
    geocoder.resolve.assert_not_called()


@pytest.mark.asyncio
async def test_no_collection_sends_nothing(geocoder, calendar, transport):
    directory = FakeDirectory([subscriber(2, street="Hauptstraße", house_number="1")])
    service = make_service(directory, geocoder, calendar, transport)

    report = await service.run_once(TODAY)

    assert report.outcomes == {2: NotificationOutcome.SKIPPED_EMPTY}
    transport.send.assert_not_awaited()
    assert directory.subscribers[2].last_notified is None


@pytest.mark.asyncio
async def test_resolution_failure_is_isolated(geocoder, calendar, transport):
    """Tests that an unresolvable address does not stop the other subscribers."""
    directory = FakeDirectory([subscriber(1), subscriber(3, street="Nirgendwo", house_number="9")])

    def resolve(address):
        if address.street == "Nirgendwo":
            raise ResolutionError(ResolutionFailure.NOT_FOUND, str(address))
        return KAISERSTRASSE_12

    geocoder.resolve.side_effect = resolve
    service = make_service(directory, geocoder, calendar, transport)

    report = await service.run_once(TODAY)

    assert report.outcomes == {1: NotificationOutcome.SENT, 3: NotificationOutcome.FAILED_RESOLVE}
    assert directory.subscribers[3].last_notified is None
    assert [call.args[0] for call in transport.send.await_args_list] == [1]


@pytest.mark.asyncio
async def test_dispatch_failure_is_isolated(geocoder, calendar, transport):
    directory = FakeDirectory([subscriber(1), subscriber(4)])

    async def send(recipient_id, text):
        if recipient_id == 4:
            raise DispatchError(recipient_id, "blocked")

    transport.send.side_effect = send
    service = make_service(directory, geocoder, calendar, transport)

    report = await service.run_once(TODAY)

    assert report.outcomes == {1: NotificationOutcome.SENT, 4: NotificationOutcome.FAILED_DISPATCH}
    assert directory.subscribers[1].last_notified == TODAY
    assert directory.subscribers[4].last_notified is None


@pytest.mark.asyncio
async def test_dispatch_timeout(geocoder, calendar, transport):
    """Tests that a hanging send is abandoned after the dispatch timeout."""
    directory = FakeDirectory([subscriber(1)])

    async def hang(recipient_id, text):
        await asyncio.sleep(10)

    transport.send.side_effect = hang
    service = make_service(directory, geocoder, calendar, transport, dispatch_timeout=0.01)

    report = await service.run_once(TODAY)

    assert report.outcomes == {1: NotificationOutcome.FAILED_DISPATCH}
    assert directory.subscribers[1].last_notified is None


@pytest.mark.asyncio
async def test_record_failure_is_reported(geocoder, calendar, transport):
    directory = FakeDirectory([subscriber(1)])
    directory.fail_record_for.add(1)
    service = make_service(directory, geocoder, calendar, transport)

    report = await service.run_once(TODAY)

    assert report.outcomes == {1: NotificationOutcome.FAILED_RECORD}
    transport.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_listing_failure_aborts_run(geocoder, calendar, transport):
    directory = FakeDirectory([subscriber(1)])
    directory.fail_listing = True
    service = make_service(directory, geocoder, calendar, transport)

    with pytest.raises(PersistenceError):
        await service.run_once(TODAY)
    transport.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_worker_pool_is_bounded(geocoder, calendar, transport):
    """Tests that no more than max_workers sends are in flight at once."""
    directory = FakeDirectory([subscriber(chat_id, location_key=KAISERSTRASSE_12) for chat_id in range(1, 8)])
    in_flight = 0
    peak = 0

    async def send(recipient_id, text):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1

    transport.send.side_effect = send
    service = make_service(directory, geocoder, calendar, transport, max_workers=2)

    report = await service.run_once(TODAY)

    assert report.count(NotificationOutcome.SENT) == 7
    assert 1 <= peak <= 2


@pytest.mark.asyncio
async def test_uncovered_date_logs_warning(geocoder, calendar, transport, caplog):
    calendar.covers.return_value = False
    directory = FakeDirectory([])
    service = make_service(directory, geocoder, calendar, transport)

    report = await service.run_once(TODAY)

    assert report.outcomes == {}
    assert "no data for 2024-03-15" in caplog.text
