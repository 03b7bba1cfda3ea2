"""
Outbound notices that are not replies to the sender.

- announce_sale: masked transaction notice to the operations channel
- broadcast:     owner message to every registered user, paced

Both are best effort. A failed send is logged and counted, never raised.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from storebot.schemas.events import OutboundReply
from storebot.schemas.records import OrderRecord
from storebot.services.formatting import (
    format_rupiah,
    mask_id,
    mask_link,
    mask_product_name,
    mask_username,
    wib_datetime,
)

logger = logging.getLogger(__name__)


class Messenger(Protocol):
    async def send(self, reply: OutboundReply) -> bool: ...


@dataclass
class BroadcastReport:
    sent: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.sent + self.failed


def sale_notice(order: OrderRecord) -> str:
    method = "Balance" if order.payment_method == "balance" else "QRIS"
    return (
        "🛒 NEW TRANSACTION\n"
        f"👤 Buyer: {mask_username(order.user_name)}\n"
        f"📱 ID: {mask_id(order.user_id)}\n"
        f"📚 Product: {mask_product_name(order.product_name)}\n"
        f"💰 Price: {format_rupiah(order.price)}\n"
        f"💳 Payment: {method}\n"
        f"🔗 Link: {mask_link(order.link)}\n"
        f"🕐 {wib_datetime()}"
    )


class Notifier:
    def __init__(self, messenger: Messenger, channel_id: Optional[str] = None, pacing_seconds: float = 1):
        self.messenger = messenger
        self.channel_id = channel_id
        self.pacing_seconds = pacing_seconds

    async def _try_send(self, reply: OutboundReply) -> bool:
        try:
            return await self.messenger.send(reply)
        except Exception as e:
            logger.warning(f"[Notifier] Send to {reply.target_id} failed: {e}")
            return False

    async def announce_sale(self, order: OrderRecord) -> bool:
        if not self.channel_id:
            return False
        ok = await self._try_send(OutboundReply(target_id=self.channel_id, text=sale_notice(order)))
        if not ok:
            logger.warning(f"[Notifier] Sale notice for {order.id} not delivered")
        return ok

    async def notify(self, target_id: str, text: str) -> bool:
        return await self._try_send(OutboundReply(target_id=target_id, text=text))

    async def broadcast(self, recipient_ids: Iterable[str], text: str) -> BroadcastReport:
        report = BroadcastReport()
        recipients = list(recipient_ids)
        for index, recipient in enumerate(recipients):
            if await self._try_send(OutboundReply(target_id=recipient, text=text)):
                report.sent += 1
            else:
                report.failed += 1
            if index < len(recipients) - 1 and self.pacing_seconds > 0:
                await asyncio.sleep(self.pacing_seconds)

        logger.info(f"[Notifier] Broadcast done: sent={report.sent}, failed={report.failed}")
        return report
