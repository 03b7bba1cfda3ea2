"""
Concurrency guard for settlement sections.

Keyed, non-blocking mutual exclusion: a second attempt on a held key is
refused immediately with ConcurrencyConflict instead of queueing behind the
first one. Unrelated keys never contend.

All callers run on one event loop; check-and-mark happens without an await
in between, so it is atomic with respect to other tasks.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Set

from storebot.core.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


def balance_key(user_id: str, product_id: str) -> str:
    return f"balance:{user_id}:{product_id}"


def deposit_key(deposit_id: str) -> str:
    return f"deposit:{deposit_id}"


def checkout_key(user_id: str, product_id: str) -> str:
    return f"checkout:{user_id}:{product_id}"


class KeyedLockRegistry:
    def __init__(self) -> None:
        self._held: Set[str] = set()

    @asynccontextmanager
    async def guard(self, key: str) -> AsyncIterator[str]:
        """
        Hold `key` for the duration of the block.

        Raises ConcurrencyConflict if the key is already held. The key is
        released on every exit path, including exceptions and cancellation.
        """
        if key in self._held:
            logger.info(f"[Guard] Rejected concurrent settlement: {key}")
            raise ConcurrencyConflict(key)
        self._held.add(key)
        logger.debug(f"[Guard] Acquired {key}")
        try:
            yield key
        finally:
            self._held.discard(key)
            logger.debug(f"[Guard] Released {key}")

    def is_held(self, key: str) -> bool:
        return key in self._held

    def held_keys(self) -> List[str]:
        return sorted(self._held)

    def __len__(self) -> int:
        return len(self._held)
