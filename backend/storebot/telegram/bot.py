"""
Telegram bot lifecycle.

The bot runs on the same event loop as the FastAPI app so that poll tasks,
settlements and chat handlers share one set of in-process guards.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from telegram import error
from telegram.ext import Application, MessageHandler, filters

from storebot.agent.dispatcher import CommandDispatcher
from storebot.telegram.handlers import handle_error, make_message_handler
from storebot.telegram.messenger import TelegramMessenger

logger = logging.getLogger(__name__)

ResetCallback = Callable[[], Awaitable[int]]


def build_application(token: str) -> Application:
    # Concurrent updates: one slow chat must not hold up the others
    return Application.builder().token(token).concurrent_updates(True).build()


def register_handlers(app: Application, dispatcher: CommandDispatcher, messenger: TelegramMessenger) -> None:
    app.add_handler(MessageHandler(filters.TEXT | filters.PHOTO, make_message_handler(dispatcher, messenger)))
    app.add_error_handler(handle_error)


async def _start_polling_with_retry(
    app: Application,
    on_reset: Optional[ResetCallback] = None,
    max_retries: int = 3,
    initial_backoff: float = 2,
) -> bool:
    for attempt in range(max_retries):
        try:
            logger.info(f"[Telegram] Starting polling (attempt {attempt + 1}/{max_retries})...")
            await app.updater.start_polling(drop_pending_updates=True)
            logger.info("[Telegram] Polling started")
            return True
        except error.Conflict as e:
            if on_reset is not None:
                # Reconnecting: polls started under the old connection are dropped
                await on_reset()
            if attempt < max_retries - 1:
                backoff = initial_backoff * (2 ** attempt)
                logger.warning(f"[Telegram] Conflict detected: {e}. Retrying in {backoff}s")
                await asyncio.sleep(backoff)
            else:
                logger.error(f"[Telegram] Failed after {max_retries} retries. Bot disabled. Error: {e}")
                return False
        except error.TelegramError as e:
            logger.error(f"[Telegram] Unexpected error starting polling: {e}")
            return False
    return False


async def start_bot(app: Application, on_reset: Optional[ResetCallback] = None) -> bool:
    await app.initialize()
    await app.start()
    started = await _start_polling_with_retry(app, on_reset)
    if not started:
        await stop_bot(app)
    return started


async def stop_bot(app: Application) -> None:
    """Stop polling and release the bot. Safe to call on a half-started app."""
    try:
        if app.updater is not None and app.updater.running:
            await app.updater.stop()
        if app.running:
            await app.stop()
        await app.shutdown()
    except error.TelegramError as e:
        logger.warning(f"[Telegram] Error during shutdown: {e}")
