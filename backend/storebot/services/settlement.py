"""
Settlement: balance, stock, token and order mutation with compensation.

A settlement is a short saga. Each step validates before it mutates and knows
how to undo itself; when a later step fails, the completed steps are
compensated in reverse order and the original error is re-raised.

    balance purchase : DebitBalance -> ConsumeToken -> RecordOrder
    QRIS purchase    : ConsumeToken -> CountTransaction -> RecordOrder
    top-up           : CreditBalance

A consumed token has no compensation. Once popped it is never returned to the
pool; if the order cannot be written it is logged for manual recovery.

Concurrency: every settlement runs inside the guard for its key
(user+product, or deposit id). Deposit settlements consult the durable
processed-deposit ledger before taking the guard, and write their ledger
record before the first mutation.

A claimed QRIS purchase that cannot complete, because the product is gone or
the order write failed, credits the paid amount to the buyer's balance.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from storebot.agent.locks import KeyedLockRegistry, balance_key, deposit_key
from storebot.core.audit import AuditLog
from storebot.core.exceptions import (
    AlreadyProcessed,
    InsufficientBalance,
    NotFoundError,
    PaymentRefunded,
    PersistenceError,
    ValidationError,
)
from storebot.schemas.payment import DepositStatus
from storebot.schemas.records import (
    OrderRecord,
    OrderStatus,
    PaymentMethod,
    ProcessedDepositRecord,
    ProductRecord,
    UserRecord,
)
from storebot.services.formatting import generate_id
from storebot.services.storage import SnapshotStore

logger = logging.getLogger(__name__)


def _find_user(users: List[UserRecord], user_id: str) -> Optional[UserRecord]:
    return next((u for u in users if u.id == user_id), None)


def _find_product(products: List[ProductRecord], product_id: str) -> Optional[ProductRecord]:
    return next((p for p in products if p.id == product_id), None)


# ==============================================================================
# STEPS
# ==============================================================================

class SettlementStep(ABC):
    def __init__(self, store: SnapshotStore):
        self.store = store

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def execute(self) -> None: ...

    @abstractmethod
    async def compensate(self) -> None: ...

    async def run(self, ref: str) -> None:
        logger.info(f"[Settlement {ref}] STEP {self.name()}")
        await self.execute()
        logger.info(f"[Settlement {ref}] STEP {self.name()} OK")

    async def run_compensation(self, ref: str) -> None:
        logger.info(f"[Settlement {ref}] COMPENSATE {self.name()}")
        await self.compensate()
        logger.info(f"[Settlement {ref}] COMPENSATE {self.name()} OK")


class DebitBalance(SettlementStep):
    def __init__(self, store: SnapshotStore, user_id: str, amount: int):
        super().__init__(store)
        self.user_id = user_id
        self.amount = amount
        self.balance_after: Optional[int] = None

    def name(self) -> str:
        return "DebitBalance"

    async def execute(self) -> None:
        async with self.store.edit_users() as users:
            user = _find_user(users, self.user_id)
            if not user:
                raise NotFoundError(f"User {self.user_id} not found")
            if user.balance < self.amount:
                raise InsufficientBalance(user.balance, self.amount)
            user.balance -= self.amount
            user.total_transactions += 1
            self.balance_after = user.balance
        AuditLog.log_balance_change(self.user_id, -self.amount, "purchase")

    async def compensate(self) -> None:
        async with self.store.edit_users() as users:
            user = _find_user(users, self.user_id)
            if not user:
                raise NotFoundError(f"User {self.user_id} vanished before refund of {self.amount}")
            user.balance += self.amount
            user.total_transactions = max(0, user.total_transactions - 1)
            self.balance_after = user.balance
        AuditLog.log_balance_change(self.user_id, self.amount, "purchase refund")


class CreditBalance(SettlementStep):
    def __init__(self, store: SnapshotStore, user_id: str, amount: int, reason: str):
        super().__init__(store)
        self.user_id = user_id
        self.amount = amount
        self.reason = reason
        self.balance_after: Optional[int] = None

    def name(self) -> str:
        return "CreditBalance"

    async def execute(self) -> None:
        async with self.store.edit_users() as users:
            user = _find_user(users, self.user_id)
            if not user:
                raise NotFoundError(f"User {self.user_id} not found")
            user.balance += self.amount
            self.balance_after = user.balance
        AuditLog.log_balance_change(self.user_id, self.amount, self.reason)

    async def compensate(self) -> None:
        async with self.store.edit_users() as users:
            user = _find_user(users, self.user_id)
            if user:
                user.balance = max(0, user.balance - self.amount)
                self.balance_after = user.balance
        AuditLog.log_balance_change(self.user_id, -self.amount, f"{self.reason} reversal")


class CountTransaction(SettlementStep):
    """QRIS purchases pay outside the balance but still count as a transaction."""

    def __init__(self, store: SnapshotStore, user_id: str):
        super().__init__(store)
        self.user_id = user_id
        self.applied = False

    def name(self) -> str:
        return "CountTransaction"

    async def execute(self) -> None:
        async with self.store.edit_users() as users:
            user = _find_user(users, self.user_id)
            if not user:
                logger.warning(f"[Settlement] User {self.user_id} not registered, transaction not counted")
                return
            user.total_transactions += 1
            self.applied = True

    async def compensate(self) -> None:
        if not self.applied:
            return
        async with self.store.edit_users() as users:
            user = _find_user(users, self.user_id)
            if user:
                user.total_transactions = max(0, user.total_transactions - 1)


class ConsumeToken(SettlementStep):
    def __init__(self, store: SnapshotStore, product_id: str):
        super().__init__(store)
        self.product_id = product_id
        self.link: Optional[str] = None
        self.product: Optional[ProductRecord] = None

    def name(self) -> str:
        return "ConsumeToken"

    async def execute(self) -> None:
        async with self.store.edit_products() as products:
            product = _find_product(products, self.product_id)
            if not product or not product.available:
                raise NotFoundError(f"Product {self.product_id} unavailable at token pop")
            self.link = product.links.pop(0)
            product.stock = len(product.links)
            product.sold += 1
            self.product = product.model_copy(deep=True)

    async def compensate(self) -> None:
        # Tokens are never returned to the pool
        if self.link is not None:
            AuditLog.log_error(
                RuntimeError(f"Token consumed without order: product={self.product_id}, link={self.link}"),
                "Settlement token burn",
            )


class RecordOrder(SettlementStep):
    def __init__(
        self,
        store: SnapshotStore,
        token_step: ConsumeToken,
        user_id: str,
        user_name: Optional[str],
        price: int,
        payment_method: PaymentMethod,
        deposit_id: Optional[str] = None,
    ):
        super().__init__(store)
        self.token_step = token_step
        self.user_id = user_id
        self.user_name = user_name
        self.price = price
        self.payment_method = payment_method
        self.deposit_id = deposit_id
        self.order: Optional[OrderRecord] = None

    def name(self) -> str:
        return "RecordOrder"

    async def execute(self) -> None:
        product = self.token_step.product
        order = OrderRecord(
            id=generate_id("ORDER"),
            user_id=self.user_id,
            user_name=self.user_name,
            product_id=product.id,
            product_name=product.name,
            price=self.price,
            link=self.token_step.link,
            status=OrderStatus.SUCCESS,
            payment_method=self.payment_method,
            deposit_id=self.deposit_id,
            created_at=datetime.utcnow(),
        )
        await self.store.append_order(order)
        self.order = order

    async def compensate(self) -> None:
        # Orders are immutable once written
        pass


# ==============================================================================
# RESULTS
# ==============================================================================

@dataclass
class SettlementResult:
    order: OrderRecord
    product: ProductRecord
    balance: Optional[int] = None  # remaining balance, balance path only


@dataclass
class TopupResult:
    deposit_id: str
    nominal: int
    credited: int
    balance: int


# ==============================================================================
# SERVICE
# ==============================================================================

class SettlementService:
    def __init__(self, store: SnapshotStore, locks: KeyedLockRegistry):
        self.store = store
        self.locks = locks

    async def _run(self, ref: str, steps: List[SettlementStep]) -> None:
        completed: List[SettlementStep] = []
        try:
            for step in steps:
                await step.run(ref)
                completed.append(step)
            logger.info(f"[Settlement {ref}] OK")
        except Exception as e:
            logger.warning(f"[Settlement {ref}] FAILED: {e}")
            for step in reversed(completed):
                try:
                    await step.run_compensation(ref)
                except Exception as comp_exc:
                    logger.error(f"[Settlement {ref}] COMPENSATION FAILED at {step.name()}: {comp_exc}")
                    AuditLog.log_error(comp_exc, f"Compensation {step.name()} for {ref}")
            raise

    async def _require_available(self, product_id: str) -> ProductRecord:
        product = await self.store.get_product(product_id)
        if not product or not product.available:
            raise NotFoundError(f"Product {product_id} withdrawn or sold out")
        return product

    async def _ensure_unprocessed(self, deposit_id: str) -> None:
        if deposit_id in await self.store.get_processed_deposits():
            logger.info(f"[Settlement] Deposit {deposit_id} already processed")
            raise AlreadyProcessed(deposit_id)

    async def _claim_deposit(self, deposit_id: str, user_id: str, product_id: Optional[str]) -> None:
        """Durable dedup marker, written before any mutation."""
        await self._ensure_unprocessed(deposit_id)
        await self.store.append_processed_deposit(
            ProcessedDepositRecord(
                deposit_id=deposit_id,
                product_id=product_id,
                user_id=user_id,
                processed_at=datetime.utcnow(),
            )
        )
        AuditLog.log_deposit("claimed", deposit_id, user_id, {"product_id": product_id})

    # ------------------------------------------------------------------
    # Balance purchase
    # ------------------------------------------------------------------

    async def settle_with_balance(self, user_id: str, user_name: Optional[str], product_id: str) -> SettlementResult:
        ref = balance_key(user_id, product_id)
        async with self.locks.guard(ref):
            product = await self._require_available(product_id)

            debit = DebitBalance(self.store, user_id, product.price)
            consume = ConsumeToken(self.store, product_id)
            record = RecordOrder(
                self.store, consume, user_id, user_name, product.price, PaymentMethod.BALANCE
            )
            await self._run(ref, [debit, consume, record])

        AuditLog.log_settlement(record.order.id, user_id, product_id, product.price, PaymentMethod.BALANCE.value)
        return SettlementResult(order=record.order, product=consume.product, balance=debit.balance_after)

    # ------------------------------------------------------------------
    # QRIS purchase
    # ------------------------------------------------------------------

    async def settle_qris_purchase(
        self,
        deposit_id: str,
        user_id: str,
        user_name: Optional[str],
        product_id: str,
        paid: DepositStatus,
    ) -> SettlementResult:
        await self._ensure_unprocessed(deposit_id)
        ref = deposit_key(deposit_id)
        async with self.locks.guard(ref):
            await self._claim_deposit(deposit_id, user_id, product_id)

            try:
                product = await self._require_available(product_id)
                consume = ConsumeToken(self.store, product_id)
                record = RecordOrder(
                    self.store, consume, user_id, user_name, product.price,
                    PaymentMethod.QRIS, deposit_id=deposit_id,
                )
                await self._run(ref, [consume, CountTransaction(self.store, user_id), record])
            except (NotFoundError, PersistenceError):
                # The deposit is claimed, so the payment is kept as balance instead
                await self._refund_to_balance(deposit_id, user_id, paid)
                raise

        AuditLog.log_settlement(
            record.order.id, user_id, product_id, product.price, PaymentMethod.QRIS.value, deposit_id
        )
        return SettlementResult(order=record.order, product=consume.product)

    async def _refund_to_balance(self, deposit_id: str, user_id: str, paid: DepositStatus) -> None:
        amount = paid.credit_amount or paid.nominal
        credit = CreditBalance(self.store, user_id, amount, f"refund {deposit_id}")
        await self._run(f"refund:{deposit_id}", [credit])
        AuditLog.log_deposit("refunded", deposit_id, user_id, {"amount": amount})
        raise PaymentRefunded(deposit_id, amount, credit.balance_after)

    # ------------------------------------------------------------------
    # Top-up and manual credit
    # ------------------------------------------------------------------

    async def settle_topup(self, deposit_id: str, user_id: str, paid: DepositStatus) -> TopupResult:
        await self._ensure_unprocessed(deposit_id)
        ref = deposit_key(deposit_id)
        async with self.locks.guard(ref):
            await self._claim_deposit(deposit_id, user_id, None)
            amount = paid.credit_amount or paid.nominal
            credit = CreditBalance(self.store, user_id, amount, f"topup {deposit_id}")
            await self._run(ref, [credit])

        AuditLog.log_deposit("credited", deposit_id, user_id, {"amount": amount})
        return TopupResult(
            deposit_id=deposit_id,
            nominal=paid.nominal,
            credited=amount,
            balance=credit.balance_after,
        )

    async def credit_balance(self, user_id: str, amount: int, reason: str = "owner credit") -> int:
        if amount <= 0:
            raise ValidationError(f"Credit amount must be positive: {amount}")
        credit = CreditBalance(self.store, user_id, amount, reason)
        await self._run(f"credit:{user_id}", [credit])
        return credit.balance_after
