"""
Unit tests for the Telegram bot conversation handlers.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import Message, Update, User
from telegram.ext import ConversationHandler

from telegram_bot.bot import (CONFIRM_ADDRESS, CONFIRM_REMOVE, HELP_MESSAGE,
                              HOUSE_NUMBER, MENU_FIND_AUTOMATICALLY,
                              MENU_NO_STREET_CORRECT,
                              MESSAGE_CONFIRM_ADDRESS_ADDED, MESSAGE_DELETED,
                              MESSAGE_ERROR_ADDRESS_ADDED,
                              MESSAGE_LOCATION_NOT_FOUND,
                              MESSAGE_LOCATION_UNAVAILABLE,
                              MESSAGE_NOTHING_HAPPENS,
                              NO_DELETE_MSG, RESOLUTION_MESSAGES, STREET,
                              STREET_CHOICE, cancel, confirm_address,
                              confirm_remove, handle_house_number,
                              handle_location, handle_street_choice,
                              handle_street_input, register, remove, start)
from telegram_bot.context import CustomContext
from trash_calendar.exceptions import ResolutionError, ResolutionFailure
from trash_calendar.facade import RegistrationResult
from trash_calendar.models import Address, LocationKey, Subscriber

# Mock constants
CHAT_ID = 12345
FIRST_NAME = "Alex"


@pytest.fixture
def update():
    """Creates a mock Update object."""
    update = MagicMock(spec=Update)
    update.message = MagicMock(spec=Message)
    update.message.chat_id = CHAT_ID
    update.message.reply_text = AsyncMock()
    update.effective_user = MagicMock(spec=User)
    update.effective_user.first_name = FIRST_NAME
    return update


@pytest.fixture
def context():
    """Creates a mock Context object with the facade."""
    context = MagicMock(spec=CustomContext)
    context.user_data = {}
    context.facade = MagicMock()
    return context


def last_reply(update):
    return update.message.reply_text.call_args[0][0]


@pytest.mark.asyncio
async def test_start(update, context):
    await start(update, context)
    update.message.reply_text.assert_called_once()
    assert "Hallo Alex!" in last_reply(update)
    assert "/register" in last_reply(update)


@pytest.mark.asyncio
async def test_register_starts_conversation(update, context):
    context.user_data["street"] = "stale"
    state = await register(update, context)
    assert state == STREET
    assert context.user_data == {}
    keyboard = update.message.reply_text.call_args.kwargs["reply_markup"].keyboard
    assert keyboard[0][0].text == MENU_FIND_AUTOMATICALLY
    assert keyboard[0][0].request_location is True


@pytest.mark.asyncio
async def test_handle_street_input_with_suggestions(update, context):
    """Tests that matching streets are offered as a keyboard."""
    update.message.text = "Kaiserstr"
    context.facade.suggest_streets.return_value = ["Kaiserstraße"]

    state = await handle_street_input(update, context)

    assert state == STREET_CHOICE
    context.facade.suggest_streets.assert_called_once_with("Kaiserstr")
    keyboard = update.message.reply_text.call_args.kwargs["reply_markup"].keyboard
    labels = [button.text for row in keyboard for button in row]
    assert labels == ["Kaiserstraße", MENU_NO_STREET_CORRECT]


@pytest.mark.asyncio
async def test_handle_street_input_without_suggestions(update, context):
    update.message.text = "Xylophonweg"
    context.facade.suggest_streets.return_value = []

    state = await handle_street_input(update, context)

    assert state == STREET
    assert last_reply(update) == HELP_MESSAGE


@pytest.mark.asyncio
async def test_handle_location_asks_to_confirm_found_address(update, context):
    """Tests that a shared location leads straight to the address confirmation."""
    update.message.location = MagicMock(latitude=49.0094, longitude=8.4044)
    context.facade.locate_address.return_value = Address("Kaiserstraße", "12")

    state = await handle_location(update, context)

    assert state == CONFIRM_ADDRESS
    context.facade.locate_address.assert_called_once_with(49.0094, 8.4044)
    assert context.user_data == {"street": "Kaiserstraße", "house_number": "12"}
    assert "Kaiserstraße 12" in last_reply(update)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind, expected",
    [
        (ResolutionFailure.NOT_FOUND, MESSAGE_LOCATION_NOT_FOUND),
        (ResolutionFailure.SERVICE_UNAVAILABLE, MESSAGE_LOCATION_UNAVAILABLE),
    ],
)
async def test_handle_location_without_address(update, context, kind, expected):
    update.message.location = MagicMock(latitude=49.0, longitude=8.4)
    context.facade.locate_address.side_effect = ResolutionError(kind, "49.0,8.4")

    state = await handle_location(update, context)

    assert state == STREET
    assert last_reply(update) == expected
    assert context.user_data == {}


@pytest.mark.asyncio
async def test_confirming_located_address_registers_it(update, context):
    update.message.location = MagicMock(latitude=49.0094, longitude=8.4044)
    context.facade.locate_address.return_value = Address("Kaiserstraße", "12")
    context.facade.register_address.return_value = RegistrationResult(
        saved=True, location_key=LocationKey("kaiserstraße", "12")
    )

    await handle_location(update, context)
    update.message.text = "Ja"
    state = await confirm_address(update, context)

    assert state == ConversationHandler.END
    context.facade.register_address.assert_called_once_with(CHAT_ID, "Kaiserstraße", "12", FIRST_NAME)


@pytest.mark.asyncio
async def test_handle_street_choice(update, context):
    context.user_data["street_suggestions"] = ["Kaiserstraße"]
    update.message.text = "Kaiserstraße"

    state = await handle_street_choice(update, context)

    assert state == HOUSE_NUMBER
    assert context.user_data["street"] == "Kaiserstraße"


@pytest.mark.asyncio
async def test_handle_street_choice_none_correct(update, context):
    context.user_data["street_suggestions"] = ["Kaiserstraße"]
    update.message.text = MENU_NO_STREET_CORRECT

    state = await handle_street_choice(update, context)

    assert state == STREET
    assert "street" not in context.user_data


@pytest.mark.asyncio
async def test_handle_street_choice_invalid(update, context):
    context.user_data["street_suggestions"] = ["Kaiserstraße"]
    update.message.text = "Hauptstraße"

    assert await handle_street_choice(update, context) == STREET_CHOICE


@pytest.mark.asyncio
async def test_handle_house_number(update, context):
    context.user_data["street"] = "Kaiserstraße"
    update.message.text = " 12 "

    state = await handle_house_number(update, context)

    assert state == CONFIRM_ADDRESS
    assert context.user_data["house_number"] == "12"
    assert "Kaiserstraße 12" in last_reply(update)


@pytest.mark.asyncio
async def test_confirm_address_yes(update, context):
    """Tests that confirming stores the address through the facade."""
    context.user_data.update(street="Kaiserstraße", house_number="12")
    update.message.text = "Ja"
    context.facade.register_address.return_value = RegistrationResult(
        saved=True, location_key=LocationKey("kaiserstraße", "12")
    )

    state = await confirm_address(update, context)

    assert state == ConversationHandler.END
    context.facade.register_address.assert_called_once_with(CHAT_ID, "Kaiserstraße", "12", FIRST_NAME)
    assert last_reply(update) == MESSAGE_CONFIRM_ADDRESS_ADDED
    assert context.user_data == {}


@pytest.mark.asyncio
async def test_confirm_address_unresolved(update, context):
    context.user_data.update(street="Kaiserstraße", house_number="999")
    update.message.text = "Ja"
    context.facade.register_address.return_value = RegistrationResult(
        saved=True, resolution_failure=ResolutionFailure.NOT_FOUND
    )

    await confirm_address(update, context)

    assert last_reply(update) == RESOLUTION_MESSAGES[ResolutionFailure.NOT_FOUND]


@pytest.mark.asyncio
async def test_confirm_address_not_saved(update, context):
    context.user_data.update(street="Kaiserstraße", house_number="12")
    update.message.text = "Ja"
    context.facade.register_address.return_value = RegistrationResult(saved=False)

    await confirm_address(update, context)

    assert last_reply(update) == MESSAGE_ERROR_ADDRESS_ADDED


@pytest.mark.asyncio
async def test_confirm_address_no_asks_again(update, context):
    context.user_data.update(street="Kaiserstraße", house_number="12")
    update.message.text = "Nein"

    state = await confirm_address(update, context)

    assert state == HOUSE_NUMBER
    context.facade.register_address.assert_not_called()


@pytest.mark.asyncio
async def test_remove_flow(update, context):
    context.facade.get_subscriber.return_value = Subscriber(chat_id=CHAT_ID, address=Address("Kaiserstraße", "12"))
    assert await remove(update, context) == CONFIRM_REMOVE
    context.facade.get_subscriber.assert_called_once_with(CHAT_ID)
    assert "Kaiserstraße 12" in last_reply(update)

    update.message.text = "Ja"
    context.facade.remove_user.return_value = True
    assert await confirm_remove(update, context) == ConversationHandler.END
    context.facade.remove_user.assert_called_once_with(CHAT_ID)
    assert last_reply(update) == MESSAGE_DELETED


@pytest.mark.asyncio
async def test_remove_without_registration_ends_immediately(update, context):
    context.facade.get_subscriber.return_value = None

    state = await remove(update, context)

    assert state == ConversationHandler.END
    assert last_reply(update) == NO_DELETE_MSG
    context.facade.remove_user.assert_not_called()


@pytest.mark.asyncio
async def test_remove_nothing_to_delete(update, context):
    update.message.text = "Ja"
    context.facade.remove_user.return_value = False

    await confirm_remove(update, context)

    assert last_reply(update) == NO_DELETE_MSG


@pytest.mark.asyncio
async def test_remove_declined(update, context):
    update.message.text = "Nein"

    await confirm_remove(update, context)

    context.facade.remove_user.assert_not_called()
    assert last_reply(update) == MESSAGE_NOTHING_HAPPENS


@pytest.mark.asyncio
async def test_cancel(update, context):
    context.user_data["street"] = "Kaiserstraße"
    assert await cancel(update, context) == ConversationHandler.END
    assert context.user_data == {}

