"""
Session manager: the keyed in-process collections shared by every chat.

Holds the conversation state store, the settlement guard and the payment
poller, and owns their background lifecycle. One instance per process.
"""
import logging
from typing import Dict

from storebot.agent.conversation_state import ConversationStateStore
from storebot.agent.locks import KeyedLockRegistry
from storebot.agent.poller import PaymentPoller

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(
        self,
        states: ConversationStateStore,
        locks: KeyedLockRegistry,
        poller: PaymentPoller,
        sweep_interval_seconds: float = 60,
    ):
        self.states = states
        self.locks = locks
        self.poller = poller
        self.sweep_interval_seconds = sweep_interval_seconds

    def start(self) -> None:
        self.states.start_sweeper(self.sweep_interval_seconds)

    async def reset_transport(self) -> int:
        """Drop outstanding polls when the chat transport reconnects."""
        cancelled = await self.poller.cancel_all()
        if cancelled:
            logger.warning(f"[Session] Transport reset cancelled {cancelled} pending poll(s)")
        return cancelled

    async def shutdown(self) -> None:
        cancelled = await self.poller.cancel_all()
        await self.states.stop_sweeper()
        logger.info(f"[Session] Shutdown complete. Cancelled polls: {cancelled}")

    def snapshot(self) -> Dict[str, int]:
        return {
            "pending_polls": len(self.poller.pending),
            "active_wizards": len(self.states),
            "settlements_in_progress": len(self.locks),
        }
