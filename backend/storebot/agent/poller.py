"""
Payment status poller.

One asyncio task per pending deposit, held in a registry keyed by deposit id
so that shutdown and transport reconnects can cancel every outstanding poll.

Each poll sleeps CHECK_INTERVAL, asks the gateway, and stops on the first
terminal status. After MAX_CHECK_ATTEMPTS checks without one the deposit is
treated as expired. Interval x attempts equals the deadline shown to the user.

Outcome callbacks:
- on_success(status)  exactly once, after the task left the registry
- on_expired()        gateway said expired, or attempts exhausted
- on_failed(status)   gateway reported an error state
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from storebot.core.audit import AuditLog
from storebot.core.exceptions import GatewayError
from storebot.schemas.payment import DepositState, DepositStatus

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[DepositStatus], Awaitable[None]]
ExpiredCallback = Callable[[], Awaitable[None]]
FailedCallback = Callable[[DepositStatus], Awaitable[None]]


class PollOutcome(str, Enum):
    SETTLED = "settled"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


class PaymentPoller:
    def __init__(self, gateway, interval_seconds: float = 10, max_attempts: int = 30):
        self.gateway = gateway
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(
        self,
        deposit_id: str,
        on_success: SuccessCallback,
        on_expired: ExpiredCallback,
        on_failed: Optional[FailedCallback] = None,
    ) -> asyncio.Task:
        """Start polling `deposit_id`. Scheduling a pending id returns the running task."""
        existing = self._tasks.get(deposit_id)
        if existing is not None and not existing.done():
            logger.warning(f"[Poller] Deposit {deposit_id} already being polled")
            return existing

        task = asyncio.create_task(
            self._poll(deposit_id, on_success, on_expired, on_failed),
            name=f"poll:{deposit_id}",
        )
        self._tasks[deposit_id] = task
        task.add_done_callback(lambda t: self._on_done(deposit_id, t))
        logger.info(
            f"[Poller] Scheduled {deposit_id}: every {self.interval_seconds}s, "
            f"max {self.max_attempts} checks"
        )
        return task

    def _release(self, deposit_id: str) -> None:
        task = self._tasks.get(deposit_id)
        if task is asyncio.current_task():
            del self._tasks[deposit_id]

    def _on_done(self, deposit_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(deposit_id) is task:
            del self._tasks[deposit_id]
        if task.cancelled():
            logger.info(f"[Poller] Poll for {deposit_id} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[Poller] Poll for {deposit_id} crashed: {error}")
            AuditLog.log_error(error, f"Payment poll {deposit_id}")

    async def _poll(
        self,
        deposit_id: str,
        on_success: SuccessCallback,
        on_expired: ExpiredCallback,
        on_failed: Optional[FailedCallback],
    ) -> PollOutcome:
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.interval_seconds)

            try:
                status = await self.gateway.check_status(deposit_id)
            except GatewayError as e:
                # Transient: counts as a normal miss against the same budget
                logger.warning(f"[Poller] Check {attempt}/{self.max_attempts} for {deposit_id} failed: {e}")
                continue

            if status.is_paid:
                # Leave the registry first: shutdown must not cut a settlement in half
                self._release(deposit_id)
                logger.info(f"[Poller] Deposit {deposit_id} paid on check {attempt}")
                await on_success(status)
                return PollOutcome.SETTLED

            if status.status == DepositState.EXPIRED:
                self._release(deposit_id)
                logger.info(f"[Poller] Deposit {deposit_id} expired at gateway")
                await on_expired()
                return PollOutcome.EXPIRED

            if status.status == DepositState.ERROR:
                self._release(deposit_id)
                logger.info(f"[Poller] Deposit {deposit_id} failed at gateway")
                if on_failed is not None:
                    await on_failed(status)
                else:
                    await on_expired()
                return PollOutcome.FAILED

            logger.debug(f"[Poller] Deposit {deposit_id} pending ({attempt}/{self.max_attempts})")

        self._release(deposit_id)
        logger.info(f"[Poller] Deposit {deposit_id} unpaid after {self.max_attempts} checks")
        await on_expired()
        return PollOutcome.EXHAUSTED

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def is_pending(self, deposit_id: str) -> bool:
        return deposit_id in self._tasks

    @property
    def pending(self) -> List[str]:
        return list(self._tasks)

    def cancel(self, deposit_id: str) -> bool:
        task = self._tasks.pop(deposit_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def cancel_all(self) -> int:
        """Cancel every outstanding poll and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[Poller] Cancelled {len(tasks)} pending poll(s)")
        return len(tasks)
