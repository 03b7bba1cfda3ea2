"""Outbound Telegram delivery for dispatcher replies and pushed notices."""
import logging
from typing import Optional

from telegram import Bot, error

from storebot.schemas.events import OutboundReply

logger = logging.getLogger(__name__)

# Telegram rejects photo captions longer than this
CAPTION_LIMIT = 1024


class TelegramMessenger:
    def __init__(self, bot: Optional[Bot] = None):
        self.bot = bot

    async def send(self, reply: OutboundReply) -> bool:
        """
        Send a text or photo reply.

        Returns:
            True if delivered, False otherwise (never raises)
        """
        if self.bot is None:
            logger.warning(f"[Telegram] Bot not initialized, dropping reply to {reply.target_id}")
            return False

        try:
            if reply.image:
                if len(reply.text) <= CAPTION_LIMIT:
                    await self.bot.send_photo(chat_id=reply.target_id, photo=reply.image, caption=reply.text)
                else:
                    await self.bot.send_photo(chat_id=reply.target_id, photo=reply.image)
                    await self.bot.send_message(chat_id=reply.target_id, text=reply.text)
            else:
                await self.bot.send_message(chat_id=reply.target_id, text=reply.text)
            return True
        except error.TelegramError as e:
            logger.warning(f"[Telegram] Failed to send to {reply.target_id}: {e}")
            return False
