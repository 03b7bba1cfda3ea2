"""
Conversation State Management - in-memory wizard steps.

One state per user while a multi-step command is open. While a state exists,
every message from that user is the answer to the current step.

States are deliberately not persisted: a restart drops open wizards and the
user simply starts the command again. An idle state is evicted after the
inactivity window by a background sweep, without replying to the user.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class WizardStep:
    """Step tags. Every step accepts the cancel word."""
    # Purchase
    SELECTING_PAYMENT_METHOD = "selecting_payment_method"
    # Owner: add product
    AWAITING_PRODUCT_PAYLOAD = "awaiting_product_payload"
    # Owner: delete product
    AWAITING_DELETE_PRODUCT_ID = "awaiting_delete_product_id"
    # Owner: edit product
    AWAITING_EDIT_PRODUCT_ID = "awaiting_edit_product_id"
    AWAITING_EDIT_FIELD = "awaiting_edit_field"
    AWAITING_EDIT_VALUE = "awaiting_edit_value"


@dataclass
class ConversationState:
    user_id: str
    step: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0


class ConversationStateStore:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._states: Dict[str, ConversationState] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def _expired(self, state: ConversationState, now: float) -> bool:
        return now - state.updated_at >= self.ttl_seconds

    def get(self, user_id: str) -> Optional[ConversationState]:
        state = self._states.get(user_id)
        if state is None:
            return None
        if self._expired(state, self._clock()):
            # Same outcome as the sweep, just earlier
            del self._states[user_id]
            logger.info(f"[State] Expired on read: user={user_id}, step={state.step}")
            return None
        return state

    def set(self, user_id: str, step: str, payload: Optional[Dict[str, Any]] = None) -> ConversationState:
        now = self._clock()
        existing = self._states.get(user_id)
        state = ConversationState(
            user_id=user_id,
            step=step,
            payload=dict(payload or {}),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._states[user_id] = state
        logger.info(f"[State] user={user_id}, step={step}")
        return state

    def touch(self, user_id: str) -> Optional[ConversationState]:
        """Restart the inactivity window after a re-prompt."""
        state = self.get(user_id)
        if state is not None:
            state.updated_at = self._clock()
        return state

    def delete(self, user_id: str) -> bool:
        return self._states.pop(user_id, None) is not None

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict every state idle for longer than the window. Returns the count."""
        now = self._clock() if now is None else now
        stale = [uid for uid, state in self._states.items() if self._expired(state, now)]
        for user_id in stale:
            del self._states[user_id]
        if stale:
            logger.info(f"[State] Swept {len(stale)} idle conversation(s)")
        return len(stale)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, user_id: str) -> bool:
        return self.get(user_id) is not None

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self, interval_seconds: float) -> None:
        logger.info(f"[State] Sweeper started. Interval: {interval_seconds}s, TTL: {self.ttl_seconds}s")
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def start_sweeper(self, interval_seconds: float) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(interval_seconds), name="state-sweeper")
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("[State] Sweeper stopped")
