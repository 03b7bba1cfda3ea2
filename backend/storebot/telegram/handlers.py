"""
Telegram update handler.

Converts each text or photo update into an InboundEvent, hands it to the
dispatcher and delivers the replies. Photo captions arrive as the event text.
"""
import logging
from typing import Optional

from telegram import Message, Update
from telegram.ext import ContextTypes

from storebot.agent.dispatcher import CommandDispatcher
from storebot.schemas.events import InboundEvent
from storebot.telegram.messenger import TelegramMessenger

logger = logging.getLogger(__name__)


async def _download_photo(message: Message) -> Optional[bytes]:
    if not message.photo:
        return None
    # Largest size is last
    photo_file = await message.photo[-1].get_file()
    return bytes(await photo_file.download_as_bytearray())


def update_to_event(update: Update, image: Optional[bytes] = None) -> Optional[InboundEvent]:
    message = update.effective_message
    user = update.effective_user
    if message is None or user is None:
        return None
    return InboundEvent(
        sender_id=str(user.id),
        sender_name=user.full_name or "User",
        text=message.text or message.caption or "",
        image=image,
    )


def make_message_handler(dispatcher: CommandDispatcher, messenger: TelegramMessenger):
    async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or update.effective_user is None:
            return

        image = await _download_photo(message)
        event = update_to_event(update, image)
        logger.info(
            f"[Telegram] user_id={event.sender_id}, photo={event.has_image}, text={event.text[:50]!r}"
        )

        replies = await dispatcher.handle(event.sender_id, event)
        for reply in replies:
            await messenger.send(reply)

    return handle_message


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error(f"[Telegram] Update handling failed: {context.error}", exc_info=context.error)
