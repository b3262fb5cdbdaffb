"""
Telegram bot entrypoint built with aiogram 3.

Wires the portal client, token manager, polling scheduler and notification
dispatcher together, and routes operator chat messages to the pending OTP
session.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import timedelta

from aiogram import Bot, Dispatcher, F, Router
from aiogram.types import Message
from pydantic import ValidationError

from .auth import TokenManager
from .config import Settings, get_settings
from .dispatcher import NotificationDispatcher
from .messaging import TelegramMessenger
from .portal import PortalClient, VacancyFetcher
from .scheduler import PollingScheduler
from .sms import SmsGateway
from .subscribers import SupabaseSubscriberStore
from .utils import setup_logging


logger = logging.getLogger(__name__)


def build_operator_router(tokens: TokenManager, operator_chat_id: int) -> Router:
    """Router that feeds operator text messages to the OTP session."""
    router = Router(name="operator-otp")

    @router.message(F.chat.id == operator_chat_id, F.text)
    async def on_operator_text(message: Message) -> None:
        if tokens.handle_operator_message(message.text or ""):
            await message.answer("✅ Code received, verifying with the portal...")

    @router.message()
    async def on_other_message(message: Message) -> None:
        logger.debug("Ignoring message from chat %s", message.chat.id)

    return router


def main() -> None:
    """Entry point for running the watcher."""
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        raise SystemExit(1) from e
    setup_logging(settings)
    asyncio.run(_run(settings))


async def _run(settings: Settings) -> None:
    bot = Bot(settings.bot.token)
    messenger = TelegramMessenger(
        bot,
        channel_chat_id=settings.bot.channel_chat_id,
        operator_chat_id=settings.bot.operator_chat_id,
        login_link=settings.portal.login_link,
    )

    portal = PortalClient(settings.portal)
    tokens = TokenManager(
        portal,
        email=settings.portal.email,
        password=settings.portal.password,
        notify=messenger.notify_operator,
        safety_margin=timedelta(minutes=settings.auth.safety_margin_minutes),
        otp_timeout=settings.auth.otp_timeout_seconds,
        default_lifetime=timedelta(hours=settings.auth.default_token_lifetime_hours),
    )
    if settings.portal.seed_token:
        seeded = tokens.install(settings.portal.seed_token)
        logger.info("Seed token installed, expires at %s", seeded.expires_at.isoformat())

    store = SupabaseSubscriberStore(settings.subscribers, timeout=settings.portal.request_timeout)
    sms = SmsGateway(settings.sms, timeout=settings.portal.request_timeout)
    dispatcher = NotificationDispatcher(
        store,
        send_telegram=messenger.send_personal,
        send_sms=sms.send_template,
        batch_size=settings.dispatch.batch_size,
        batch_pause=settings.dispatch.batch_pause_seconds,
        drain_interval=settings.dispatch.drain_interval_seconds,
        warning_threshold=settings.dispatch.queue_warning_threshold,
    )
    scheduler = PollingScheduler(
        fetch=VacancyFetcher(portal, tokens),
        on_broadcast=messenger.send_broadcast,
        on_quiet=messenger.send_broadcast,
        enqueue=dispatcher.queue,
        on_text=messenger.notify_operator,
        baseline_ms=settings.scheduler.baseline_interval_ms,
        fast1_ms=settings.scheduler.fast1_interval_ms,
        fast2_ms=settings.scheduler.fast2_interval_ms,
        quiet_threshold=timedelta(hours=settings.scheduler.quiet_threshold_hours),
        decay_check_seconds=settings.scheduler.decay_check_seconds,
    )

    dp = Dispatcher()
    dp.include_router(build_operator_router(tokens, settings.bot.operator_chat_id))

    await dispatcher.start()
    await scheduler.start()
    logger.info("Starting polling")
    try:
        await bot.delete_webhook(drop_pending_updates=False)
        await dp.start_polling(bot)
    finally:
        await scheduler.stop()
        await dispatcher.stop()
        await portal.close()
        await store.close()
        await sms.close()
        await bot.session.close()


if __name__ == "__main__":
    main()
