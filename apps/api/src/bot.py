import logging
import os
from typing import Optional

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, CallbackContext, CommandHandler

from core.telegram.messages import escape_markdown_v2, format_error, format_location, format_location_summary
from services.weather.service import RequestFailed, WeatherService

logger = logging.getLogger(__name__)

WEATHER_SERVICE_KEY = "weather_service"
USAGE_ADD_LOCATION = "Usage: /addlocation <lat> <lon> <name>"
USAGE_WHERE_TO_GO = "Usage: /wheretogo <place>"
USAGE_WEATHER = "Usage: /weather <location id or name>"


def _is_truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in {"1", "true", "yes", "on"}


def bot_enabled() -> bool:
    """The bot runs only when TELEGRAM_BOT_ENABLED is set and FASTAPI_ENV is not a dev environment."""
    dev_mode = os.getenv("FASTAPI_ENV", "").lower() in {"dev", "development"}
    return _is_truthy(os.getenv("TELEGRAM_BOT_ENABLED")) and not dev_mode


telegram_app: Optional[Application] = None


def build_telegram_app(service: WeatherService) -> Optional[Application]:
    """Create the bot application with the weather service attached, or None when the bot is disabled."""
    global telegram_app
    if not bot_enabled():
        return None
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not token:
        raise ValueError("TELEGRAM_BOT_TOKEN environment variable is not set!")

    logger.info("Initializing Telegram bot...")
    telegram_app = Application.builder().token(token).build()
    telegram_app.bot_data[WEATHER_SERVICE_KEY] = service
    register_handlers(telegram_app)
    return telegram_app


def _service(context: CallbackContext) -> WeatherService:
    return context.application.bot_data[WEATHER_SERVICE_KEY]


async def _reply(update: Update, text: str) -> None:
    await update.message.reply_text(text, parse_mode=ParseMode.MARKDOWN_V2)


async def start(update: Update, context: CallbackContext) -> None:
    logger.info("Received /start command from %s", update.effective_user.id)
    await update.message.reply_text(
        "Hello! I keep an eye on the weather.\n"
        f"{USAGE_ADD_LOCATION}\n/locations\n{USAGE_WHERE_TO_GO}\n{USAGE_WEATHER}"
    )


async def add_location(update: Update, context: CallbackContext) -> None:
    args = context.args or []
    if len(args) < 3:
        await update.message.reply_text(USAGE_ADD_LOCATION)
        return
    try:
        lat = float(args[0])
        lon = float(args[1])
    except ValueError:
        await update.message.reply_text(USAGE_ADD_LOCATION)
        return
    name = " ".join(args[2:])

    try:
        location = await _service(context).add_location(name, lat, lon)
    except ValueError as error:
        await update.message.reply_text(str(error))
        return
    except RequestFailed as failure:
        await _reply(update, format_error(failure.code, failure.location))
        return
    await _reply(update, f"✅ Added {format_location(location)}")


async def list_locations(update: Update, context: CallbackContext) -> None:
    sent = 0
    try:
        async for summary in _service(context).list_locations():
            await _reply(update, format_location_summary(summary))
            sent += 1
    except RequestFailed as failure:
        await _reply(update, format_error(failure.code))
        return
    if sent == 0:
        await update.message.reply_text("No locations registered yet.")


async def where_to_go(update: Update, context: CallbackContext) -> None:
    query = " ".join(context.args or []).strip()
    if not query:
        await update.message.reply_text(USAGE_WHERE_TO_GO)
        return
    sent = 0
    try:
        async for summary in _service(context).where_to_go(query):
            await _reply(update, format_location_summary(summary))
            sent += 1
    except RequestFailed as failure:
        await _reply(update, format_error(failure.code))
        return
    if sent == 0:
        await _reply(update, f"🌧️ Nowhere near {escape_markdown_v2(query)} looks dry right now\\.")


async def describe_location(update: Update, context: CallbackContext) -> None:
    key = " ".join(context.args or []).strip()
    if not key:
        await update.message.reply_text(USAGE_WEATHER)
        return
    try:
        summary = await _service(context).describe_location(key)
    except RequestFailed as failure:
        await _reply(update, format_error(failure.code))
        return
    await _reply(update, format_location_summary(summary))


def register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("addlocation", add_location))
    application.add_handler(CommandHandler("locations", list_locations))
    application.add_handler(CommandHandler("wheretogo", where_to_go))
    application.add_handler(CommandHandler("weather", describe_location))
