"""
This module contains the Telegram bot: address registration and removal, and process wiring.
"""

import asyncio
import logging

from telegram import KeyboardButton, ReplyKeyboardMarkup, ReplyKeyboardRemove, Update
from telegram.ext import (AIORateLimiter, Application, CommandHandler,
                          ContextTypes, ConversationHandler, MessageHandler,
                          filters)

from trash_calendar.config import Settings
from trash_calendar.exceptions import ResolutionError, ResolutionFailure
from trash_calendar.facade import TrashBotFacade
from trash_calendar.services.notification_service import NotificationService

from .context import CustomContext
from .scheduler import scheduler
from .transport import TelegramTransport

logger = logging.getLogger(__name__)

# States for conversation
STREET, STREET_CHOICE, HOUSE_NUMBER, CONFIRM_ADDRESS, CONFIRM_REMOVE = range(5)

Context = CustomContext

YES = "Ja"
NO = "Nein"
MENU_NO_STREET_CORRECT = "Keine der Straßen ist richtig"
MENU_FIND_AUTOMATICALLY = "📍 Automatisch finden"

MESSAGE_ENTER_STREET_NAME = "Bitte gib den Namen deiner Straße ein, um Vorschläge anzuzeigen:"
MESSAGE_ENTER_STREET_OR_LOCATION = (
    "Bitte gib den Namen deiner Straße ein oder lass mich deine Adresse über deinen Standort finden:"
)
MESSAGE_LOCATION_NOT_FOUND = "An diesem Standort konnte ich keine Adresse finden. Bitte gib deine Straße ein:"
MESSAGE_LOCATION_UNAVAILABLE = "Die Adresssuche ist gerade nicht erreichbar. Bitte gib deine Straße ein:"
MESSAGE_CONFIRM_ONE_OF_THE_STREETS = "Ist deine Straße hier aufgeführt?"
HELP_MESSAGE = (
    "Versuche den vollständigen Namen deiner Straße anzugeben. Ansonsten stelle sicher, "
    "dass deine Straße im Abfuhrkalender aufgeführt ist.\n\nGib deine Straße ein:"
)
HOUSE_NUMBER_MESSAGE = (
    "Bitte gib deine Hausnummer an (die Entsorgungstermine sind abhängig von der Hausnummer)."
)
MESSAGE_CONFIRM_ADDRESS_ADDED = "Adresse hinzugefügt! Du wirst am Vortag jeder Abholung benachrichtigt."
MESSAGE_ERROR_ADDRESS_ADDED = "Konnte Adresse nicht hinzufügen, versuche es später nochmal!"
MESSAGE_DELETED = "Gelöscht!"
NO_DELETE_MSG = "Konnte deine Daten nicht finden, hast du deine Daten schon gelöscht?"
MESSAGE_NOTHING_HAPPENS = "Ok, nichts passiert!"
DELETION = "Willst du all deine Daten löschen?"

RESOLUTION_MESSAGES = {
    ResolutionFailure.NOT_FOUND: (
        "Adresse gespeichert, aber ich konnte sie nicht finden. "
        "Bitte prüfe Straße und Hausnummer und registriere sie mit /register erneut."
    ),
    ResolutionFailure.AMBIGUOUS: (
        "Adresse gespeichert, aber sie ist nicht eindeutig. "
        "Bitte gib die Adresse mit /register genauer an."
    ),
    ResolutionFailure.SERVICE_UNAVAILABLE: (
        "Adresse gespeichert. Die Adresssuche ist gerade nicht erreichbar, "
        "ich versuche es vor der nächsten Benachrichtigung erneut."
    ),
}


def _yes_no_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup([[YES], [NO]], one_time_keyboard=True, resize_keyboard=True)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Sends a welcome message."""
    user = update.effective_user
    greeting = f"Hallo {user.first_name}!" if user and user.first_name else "Hallo!"
    await update.message.reply_text(
        f"{greeting}\nIch erinnere dich am Vortag, welche Tonnen abgeholt werden.\n"
        "Nutze /register, um deine Adresse einzutragen, und /remove, um deine Daten zu löschen."
    )


async def register(update: Update, context: Context) -> int:
    """Starts the registration conversation."""
    context.user_data.clear()
    location_keyboard = ReplyKeyboardMarkup(
        [[KeyboardButton(MENU_FIND_AUTOMATICALLY, request_location=True)]],
        one_time_keyboard=True,
        resize_keyboard=True,
    )
    await update.message.reply_text(MESSAGE_ENTER_STREET_OR_LOCATION, reply_markup=location_keyboard)
    return STREET


async def handle_street_input(update: Update, context: Context) -> int:
    """Looks up the entered street in the calendar and offers matching streets."""
    query = update.message.text.strip()
    if not query:
        await update.message.reply_text(MESSAGE_ENTER_STREET_NAME)
        return STREET

    suggestions = context.facade.suggest_streets(query)
    if not suggestions:
        await update.message.reply_text(HELP_MESSAGE)
        return STREET

    context.user_data["street_suggestions"] = suggestions
    reply_keyboard = [[street] for street in suggestions] + [[MENU_NO_STREET_CORRECT]]
    await update.message.reply_text(
        MESSAGE_CONFIRM_ONE_OF_THE_STREETS,
        reply_markup=ReplyKeyboardMarkup(reply_keyboard, one_time_keyboard=True, resize_keyboard=True),
    )
    return STREET_CHOICE


async def handle_location(update: Update, context: Context) -> int:
    """Looks up the address at a shared location and asks the user to confirm it."""
    location = update.message.location
    try:
        address = await asyncio.to_thread(context.facade.locate_address, location.latitude, location.longitude)
    except ResolutionError as e:
        logger.info(f"No address for the location shared by chat_id {update.message.chat_id}: {e}")
        reply = (
            MESSAGE_LOCATION_UNAVAILABLE
            if e.kind is ResolutionFailure.SERVICE_UNAVAILABLE
            else MESSAGE_LOCATION_NOT_FOUND
        )
        await update.message.reply_text(reply, reply_markup=ReplyKeyboardRemove())
        return STREET

    context.user_data["street"] = address.street
    context.user_data["house_number"] = address.house_number
    await update.message.reply_text(
        f"Ist das deine Adresse: {address}?",
        reply_markup=_yes_no_keyboard(),
    )
    return CONFIRM_ADDRESS


async def handle_street_choice(update: Update, context: Context) -> int:
    """Handles the selection among the suggested streets."""
    choice = update.message.text.strip()

    if choice == MENU_NO_STREET_CORRECT:
        await update.message.reply_text(HELP_MESSAGE, reply_markup=ReplyKeyboardRemove())
        return STREET

    if choice not in context.user_data.get("street_suggestions", []):
        await update.message.reply_text("Bitte wähle eine der Optionen.")
        return STREET_CHOICE

    context.user_data["street"] = choice
    await update.message.reply_text(HOUSE_NUMBER_MESSAGE, reply_markup=ReplyKeyboardRemove())
    return HOUSE_NUMBER


async def handle_house_number(update: Update, context: Context) -> int:
    """Stores the house number and asks the user to confirm the full address."""
    house_number = update.message.text.strip()
    if not house_number:
        await update.message.reply_text(HOUSE_NUMBER_MESSAGE)
        return HOUSE_NUMBER

    context.user_data["house_number"] = house_number
    await update.message.reply_text(
        f"Ist das deine Adresse: {context.user_data['street']} {house_number}?\n"
        "Stelle sicher, dass die Nummer korrekt ist, da sonst möglicherweise keine "
        "Entsorgungstermine gefunden werden können.",
        reply_markup=_yes_no_keyboard(),
    )
    return CONFIRM_ADDRESS


async def confirm_address(update: Update, context: Context) -> int:
    """Saves the address via the facade and reports whether it could be resolved."""
    if update.message.text.strip() != YES:
        await update.message.reply_text(HOUSE_NUMBER_MESSAGE, reply_markup=ReplyKeyboardRemove())
        return HOUSE_NUMBER

    chat_id = update.message.chat_id
    user = update.effective_user
    try:
        result = await asyncio.to_thread(
            context.facade.register_address,
            chat_id,
            context.user_data["street"],
            context.user_data["house_number"],
            user.first_name if user else None,
        )
    except Exception as e:
        logger.exception(f"Unexpected error while registering chat_id {chat_id}: {e}")
        await update.message.reply_text(MESSAGE_ERROR_ADDRESS_ADDED, reply_markup=ReplyKeyboardRemove())
        context.user_data.clear()
        return ConversationHandler.END

    if not result.saved:
        reply = MESSAGE_ERROR_ADDRESS_ADDED
    elif result.resolution_failure is not None:
        reply = RESOLUTION_MESSAGES[result.resolution_failure]
    else:
        reply = MESSAGE_CONFIRM_ADDRESS_ADDED
    await update.message.reply_text(reply, reply_markup=ReplyKeyboardRemove())

    context.user_data.clear()
    return ConversationHandler.END


async def remove(update: Update, context: Context) -> int:
    """Starts the data removal conversation if there is anything to remove."""
    subscriber = await asyncio.to_thread(context.facade.get_subscriber, update.message.chat_id)
    if subscriber is None:
        await update.message.reply_text(NO_DELETE_MSG, reply_markup=ReplyKeyboardRemove())
        return ConversationHandler.END

    await update.message.reply_text(
        f"Eingetragen ist: {subscriber.address}\n{DELETION}",
        reply_markup=_yes_no_keyboard(),
    )
    return CONFIRM_REMOVE


async def confirm_remove(update: Update, context: Context) -> int:
    """Deletes the user's data if confirmed."""
    if update.message.text.strip() != YES:
        await update.message.reply_text(MESSAGE_NOTHING_HAPPENS, reply_markup=ReplyKeyboardRemove())
        return ConversationHandler.END

    removed = await asyncio.to_thread(context.facade.remove_user, update.message.chat_id)
    await update.message.reply_text(
        MESSAGE_DELETED if removed else NO_DELETE_MSG,
        reply_markup=ReplyKeyboardRemove(),
    )
    return ConversationHandler.END


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Cancels and ends the conversation."""
    await update.message.reply_text(
        "Vorgang abgebrochen.", reply_markup=ReplyKeyboardRemove()
    )
    context.user_data.clear()
    return ConversationHandler.END


def setup_handlers(application: Application) -> None:
    """Registers the command and conversation handlers."""
    text_only = filters.TEXT & ~filters.COMMAND

    register_conv = ConversationHandler(
        entry_points=[CommandHandler("register", register)],
        states={
            STREET: [
                MessageHandler(filters.LOCATION, handle_location),
                MessageHandler(text_only, handle_street_input),
            ],
            STREET_CHOICE: [MessageHandler(text_only, handle_street_choice)],
            HOUSE_NUMBER: [MessageHandler(text_only, handle_house_number)],
            CONFIRM_ADDRESS: [MessageHandler(text_only, confirm_address)],
        },
        fallbacks=[CommandHandler("cancel", cancel)],
    )

    remove_conv = ConversationHandler(
        entry_points=[CommandHandler("remove", remove)],
        states={
            CONFIRM_REMOVE: [MessageHandler(text_only, confirm_remove)],
        },
        fallbacks=[CommandHandler("cancel", cancel)],
    )

    application.add_handler(CommandHandler("start", start))
    application.add_handler(register_conv)
    application.add_handler(remove_conv)


def build_application(settings: Settings) -> Application:
    """Creates the Telegram application with rate limiting and the custom context."""
    rate_limiter = AIORateLimiter(
        overall_max_rate=settings.telegram_rate_limit_overall,
        group_max_rate=settings.telegram_rate_limit_group,
    )
    context_types = ContextTypes(context=Context)
    return (
        Application.builder()
        .token(settings.telegram_bot_token)
        .rate_limiter(rate_limiter)
        .context_types(context_types)
        .build()
    )


async def main(settings: Settings, facade_instance: TrashBotFacade) -> None:
    """Initializes and runs the bot, the daily trigger and the calendar refresh loop."""
    application = build_application(settings)

    # Handlers reach the facade through the context class.
    Context.facade = facade_instance
    setup_handlers(application)

    notification_service = NotificationService(
        directory=facade_instance.directory,
        geocoder=facade_instance.geocoder,
        calendar=facade_instance.calendar,
        transport=TelegramTransport(application.bot),
        max_workers=settings.notify_max_workers,
        dispatch_timeout=settings.notify_dispatch_timeout,
    )

    # Manually start the application
    await application.initialize()
    await application.start()
    await application.updater.start_polling()

    logger.info("Bot started and polling...")

    try:
        await asyncio.gather(
            scheduler(notification_service, settings.daily_trigger_time, settings.tzinfo),
            facade_instance.calendar.run_refresh_loop(),
        )
    except asyncio.CancelledError:
        logger.info("Bot is stopping...")
    finally:
        # Gracefully stop the application
        if application.updater.running:
            await application.updater.stop()
        if application.running:
            await application.stop()
        await application.shutdown()
