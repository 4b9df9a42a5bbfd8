import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from aiohttp import web
from aiogram import Bot, Dispatcher, F, Router
from aiogram.client.default import DefaultBotProperties
from aiogram.filters import Command, CommandStart
from aiogram.types import CallbackQuery, ErrorEvent, Message, User
from aiogram.webhook.aiohttp_server import SimpleRequestHandler, setup_application

import config
import storage
from gateway import TelegramGateway
from notifications import Notifier
from registry import ShiftRegistry
from scheduler import ExpirySweeper, parse_thresholds, run_periodically
from sessions import SessionStore
from workflow import ShiftWorkflow


def now_in_timezone() -> datetime:
    """Return the current datetime converted to the configured timezone."""

    return datetime.now(timezone.utc).astimezone(config.TIMEZONE)


def setup_logging() -> None:
    handlers = [logging.StreamHandler()]
    if config.LOG_FILE:
        handlers.append(logging.FileHandler(config.LOG_FILE, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


router = Router()
background_tasks: Dict[str, Optional[asyncio.Task]] = {"sweep": None}


def display_name(user: User) -> str:
    if user.username:
        return f"@{user.username}"
    return user.full_name


async def send_tech(bot: Bot, message: str) -> None:
    if config.TECH_CHAT_ID == 0:
        logging.error("TECH_CHAT_ID is not configured: %s", message)
        return
    try:
        await bot.send_message(config.TECH_CHAT_ID, message)
    except Exception as exc:  # noqa: BLE001
        logging.exception("Failed to send message to the tech chat: %s", exc)


@router.message(CommandStart())
async def on_start(message: Message, workflow: ShiftWorkflow) -> None:
    await workflow.start(message.from_user.id)


@router.message(Command("cancel"))
async def on_cancel(message: Message, workflow: ShiftWorkflow) -> None:
    await workflow.cancel(message.from_user.id)


@router.message(Command("subskrypcje"))
async def on_subscriptions(message: Message, workflow: ShiftWorkflow) -> None:
    await workflow.show_subscriptions(message.from_user.id)


@router.message(Command("admin"))
async def on_admin(message: Message, workflow: ShiftWorkflow) -> None:
    await workflow.show_admin_panel(message.from_user.id)


@router.message(Command("broadcast"))
async def on_broadcast(message: Message, workflow: ShiftWorkflow) -> None:
    await workflow.begin_broadcast(message.from_user.id)


@router.message(F.text)
async def on_text(message: Message, workflow: ShiftWorkflow) -> None:
    user = message.from_user
    await workflow.handle_text(
        user.id,
        display_name(user),
        message.text,
        message_id=message.message_id,
    )


@router.callback_query(F.data)
async def on_callback(call: CallbackQuery, workflow: ShiftWorkflow) -> None:
    answer = await workflow.handle_action(
        call.from_user.id,
        display_name(call.from_user),
        call.data,
        message_id=call.message.message_id if call.message else None,
    )
    await call.answer(answer)


@router.errors()
async def on_error(event: ErrorEvent, bot: Bot) -> bool:
    logging.error("Error while processing update: %s", event.exception, exc_info=event.exception)
    await send_tech(bot, f"Błąd: {event.exception}")
    return True


def build_components(bot: Bot) -> Dict[str, Any]:
    gateway = TelegramGateway(bot)
    store = storage.create_store()
    registry = ShiftRegistry(store, tz=config.TIMEZONE, clock=now_in_timezone)
    sessions = SessionStore(
        gateway,
        clock=now_in_timezone,
        reset_after=timedelta(minutes=config.SESSION_RESET_MINUTES),
        teardown_after=timedelta(minutes=config.SESSION_TEARDOWN_MINUTES),
    )
    notifier = Notifier(
        gateway,
        store,
        clock=now_in_timezone,
        spacing=config.NOTIFY_SPACING_MS / 1000,
        concurrency=config.NOTIFY_CONCURRENCY,
    )
    workflow = ShiftWorkflow(
        sessions=sessions,
        registry=registry,
        notifier=notifier,
        gateway=gateway,
        store=store,
        zones=config.ZONES,
        clock=now_in_timezone,
        admin_id=config.ADMIN_ID,
        max_days=config.DATE_WINDOW_DAYS,
        max_age_hours=config.SHIFT_MAX_AGE_HOURS,
    )
    sweeper = ExpirySweeper(
        registry,
        sessions,
        notifier,
        max_age=timedelta(hours=config.SHIFT_MAX_AGE_HOURS),
        thresholds=parse_thresholds(config.REMINDER_THRESHOLDS),
        clock=now_in_timezone,
    )
    return {
        "workflow": workflow,
        "sessions": sessions,
        "notifier": notifier,
        "sweeper": sweeper,
    }


async def on_startup(bot: Bot, sweeper: ExpirySweeper, sessions: SessionStore) -> None:
    logging.info("Bot started, zones: %s", ", ".join(config.ZONES))
    if background_tasks["sweep"] is None:
        background_tasks["sweep"] = asyncio.create_task(
            run_periodically(sweeper, config.SWEEP_INTERVAL_SECONDS, sessions=sessions)
        )
        logging.info("Shift sweep scheduled every %s seconds", config.SWEEP_INTERVAL_SECONDS)
    if config.WEBHOOK_URL:
        webhook_url = config.WEBHOOK_URL + config.WEBHOOK_PATH
        await bot.set_webhook(webhook_url, drop_pending_updates=True)
        logging.info("Webhook set to %s", webhook_url)
    else:
        logging.warning("WEBHOOK_URL is not set, using polling mode")


async def on_shutdown(bot: Bot, notifier: Notifier) -> None:
    task = background_tasks["sweep"]
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        background_tasks["sweep"] = None
    await notifier.join()
    if config.WEBHOOK_URL:
        await bot.delete_webhook()
        logging.info("Webhook removed")


async def health(_: web.Request) -> web.Response:
    return web.Response(text="Bot is running")


def build_dispatcher(bot: Bot) -> Dispatcher:
    dp = Dispatcher()
    for key, value in build_components(bot).items():
        dp[key] = value
    dp.include_router(router)
    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)
    return dp


async def run_polling(bot: Bot, dp: Dispatcher) -> None:
    await bot.delete_webhook(drop_pending_updates=True)
    await dp.start_polling(bot)


def main() -> None:
    setup_logging()
    if not config.BOT_TOKEN:
        raise RuntimeError(
            "BOT_TOKEN is required.\n"
            "Optional: GOOGLE_SERVICE_ACCOUNT_JSON_BASE64, GOOGLE_SPREADSHEET_ID, "
            "ADMIN_ID, TECH_CHAT_ID, WEBHOOK_URL"
        )
    bot = Bot(
        token=config.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode="HTML", link_preview_is_disabled=True),
    )
    dp = build_dispatcher(bot)
    if config.WEBHOOK_URL:
        app = web.Application()
        app.router.add_get("/", health)
        SimpleRequestHandler(dispatcher=dp, bot=bot).register(app, path=config.WEBHOOK_PATH)
        setup_application(app, dp, bot=bot)
        web.run_app(app, host=config.WEBAPP_HOST, port=config.WEBAPP_PORT)
    else:
        logging.info("Starting in polling mode")
        asyncio.run(run_polling(bot, dp))


if __name__ == "__main__":
    main()
