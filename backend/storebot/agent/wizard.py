"""
Wizard State Machine - multi-step purchase and catalog flows.

Transitions:

    buy <id>        -> selecting_payment_method
        "1"         -> balance settlement, state cleared
        "2"         -> deposit created, state cleared, poller owns the rest
        other       -> re-prompt, state kept
    "1" and "2" hold the checkout key, so a repeated answer sent while the
    first is still running gets ConcurrencyConflict.
    addproduct      -> awaiting_product_payload -> product created
    delproduct      -> awaiting_delete_product_id -> product deleted
    editproduct     -> awaiting_edit_product_id -> awaiting_edit_field
                    -> awaiting_edit_value -> one field applied

The cancel word leaves any step. Validation errors propagate to the
dispatcher, which re-prompts and keeps the state.

Poll outcomes arrive after the originating message was answered, so they are
pushed to the user through the notifier instead of being returned.
"""
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from storebot.agent import messages
from storebot.agent.conversation_state import (
    ConversationState,
    ConversationStateStore,
    WizardStep,
)
from storebot.agent.locks import checkout_key
from storebot.agent.poller import PaymentPoller
from storebot.core.audit import AuditLog
from storebot.core.config import Settings
from storebot.core.exceptions import (
    AlreadyProcessed,
    ConcurrencyConflict,
    InsufficientBalance,
    NotFoundError,
    PaymentRefunded,
    StoreError,
)
from storebot.schemas.events import InboundEvent, OutboundReply
from storebot.schemas.payment import DepositRequest, DepositStatus
from storebot.services.catalog import CatalogService, EditableField, parse_product_caption
from storebot.services.notifier import Notifier
from storebot.services.payment_gateway import PaymentGateway
from storebot.services.settlement import SettlementService
from storebot.services.storage import SnapshotStore

logger = logging.getLogger(__name__)

StepHandler = Callable[[InboundEvent, ConversationState], Awaitable[List[OutboundReply]]]


class PaymentChoice:
    BALANCE = "1"
    QRIS = "2"


class WizardStateMachine:
    def __init__(
        self,
        config: Settings,
        store: SnapshotStore,
        states: ConversationStateStore,
        poller: PaymentPoller,
        gateway: PaymentGateway,
        settlement: SettlementService,
        catalog: CatalogService,
        notifier: Notifier,
    ):
        self.config = config
        self.store = store
        self.states = states
        self.poller = poller
        self.gateway = gateway
        self.settlement = settlement
        self.catalog = catalog
        self.notifier = notifier

        self._handlers: Dict[str, StepHandler] = {
            WizardStep.SELECTING_PAYMENT_METHOD: self._on_payment_method,
            WizardStep.AWAITING_PRODUCT_PAYLOAD: self._on_product_payload,
            WizardStep.AWAITING_DELETE_PRODUCT_ID: self._on_delete_product_id,
            WizardStep.AWAITING_EDIT_PRODUCT_ID: self._on_edit_product_id,
            WizardStep.AWAITING_EDIT_FIELD: self._on_edit_field,
            WizardStep.AWAITING_EDIT_VALUE: self._on_edit_value,
        }

    @staticmethod
    def _reply(event: InboundEvent, text: str, image: Optional[bytes] = None) -> List[OutboundReply]:
        return [OutboundReply(target_id=event.sender_id, text=text, image=image)]

    def _deadline_minutes(self) -> int:
        return max(1, int(self.config.payment_deadline_seconds // 60))

    # ==========================================================================
    # ENTRY POINT FOR ACTIVE STATES
    # ==========================================================================

    async def continue_flow(self, event: InboundEvent, state: ConversationState) -> List[OutboundReply]:
        """Interpret `event` strictly as the answer to the current step."""
        if event.text.strip().lower() == self.config.CANCEL_WORD.lower():
            self.states.delete(event.sender_id)
            logger.info(f"[Wizard] user={event.sender_id} cancelled at {state.step}")
            return self._reply(event, messages.cancelled())

        handler = self._handlers.get(state.step)
        if handler is None:
            logger.error(f"[Wizard] Unknown step {state.step} for user={event.sender_id}, resetting")
            self.states.delete(event.sender_id)
            return self._reply(event, messages.generic_failure())
        return await handler(event, state)

    # ==========================================================================
    # PURCHASE
    # ==========================================================================

    async def begin_purchase(self, event: InboundEvent, product_id: str) -> List[OutboundReply]:
        if not product_id:
            return self._reply(event, messages.buy_usage(self.config.COMMAND_PREFIX))

        product = await self.store.get_product(product_id)
        if not product:
            return self._reply(event, messages.product_not_found())
        if not product.available:
            return self._reply(event, messages.product_sold_out(product))

        user = await self.store.ensure_user(event.sender_id, event.sender_name)
        self.states.set(event.sender_id, WizardStep.SELECTING_PAYMENT_METHOD, {"product_id": product.id})
        return self._reply(event, messages.purchase_confirmation(product, user, self.config.CANCEL_WORD))

    async def _on_payment_method(self, event: InboundEvent, state: ConversationState) -> List[OutboundReply]:
        choice = event.text.strip()
        product_id = state.payload["product_id"]

        if choice in (PaymentChoice.BALANCE, PaymentChoice.QRIS):
            # One answer per pending purchase: a repeat while the first is in flight is refused
            async with self.settlement.locks.guard(checkout_key(event.sender_id, product_id)):
                if choice == PaymentChoice.BALANCE:
                    return await self._pay_with_balance(event, product_id)
                return await self._pay_with_qris(event, product_id)

        self.states.touch(event.sender_id)
        return self._reply(event, messages.payment_choice_invalid(self.config.CANCEL_WORD))

    async def _pay_with_balance(self, event: InboundEvent, product_id: str) -> List[OutboundReply]:
        try:
            result = await self.settlement.settle_with_balance(event.sender_id, event.sender_name, product_id)
        except InsufficientBalance as e:
            # Stay in payment selection: the user may still pick QRIS or cancel
            self.states.touch(event.sender_id)
            return self._reply(
                event, messages.insufficient_balance(e.balance, e.price, self.config.COMMAND_PREFIX)
            )
        except NotFoundError:
            self.states.delete(event.sender_id)
            return self._reply(event, messages.product_not_found())

        self.states.delete(event.sender_id)
        await self.notifier.announce_sale(result.order)
        return self._reply(event, messages.purchase_success(result.order, result.balance))

    async def _pay_with_qris(self, event: InboundEvent, product_id: str) -> List[OutboundReply]:
        product = await self.store.get_product(product_id)
        if not product or not product.available:
            self.states.delete(event.sender_id)
            return self._reply(event, messages.product_not_found())

        # GatewayError propagates: the dispatcher clears the state
        deposit = await self.gateway.create_deposit(product.price)

        self.states.delete(event.sender_id)
        user_id, user_name = event.sender_id, event.sender_name

        async def on_success(status: DepositStatus) -> None:
            await self._settle_qris(deposit, user_id, user_name, product_id, status)

        self._schedule(deposit, user_id, on_success)
        AuditLog.log_deposit("created", deposit.id, user_id, {"product_id": product_id, "nominal": deposit.nominal})
        caption = messages.purchase_qr_caption(product, deposit.id, deposit.nominal, self._deadline_minutes())
        return self._reply(event, caption, image=deposit.qr_png())

    async def _settle_qris(
        self,
        deposit: DepositRequest,
        user_id: str,
        user_name: str,
        product_id: str,
        status: DepositStatus,
    ) -> None:
        try:
            result = await self.settlement.settle_qris_purchase(deposit.id, user_id, user_name, product_id, status)
        except PaymentRefunded as e:
            await self.notifier.notify(user_id, messages.purchase_refunded(e.amount, e.balance))
            return
        except (AlreadyProcessed, ConcurrencyConflict) as e:
            logger.info(f"[Wizard] Duplicate settlement for deposit {deposit.id} ignored: {e}")
            return
        except StoreError as e:
            AuditLog.log_error(e, f"QRIS settlement {deposit.id}")
            await self.notifier.notify(user_id, e.user_message)
            return
        except Exception as e:
            AuditLog.log_error(e, f"QRIS settlement {deposit.id}")
            await self.notifier.notify(user_id, messages.generic_failure())
            return

        await self.notifier.notify(user_id, messages.purchase_success(result.order))
        await self.notifier.announce_sale(result.order)

    def _schedule(
        self,
        deposit: DepositRequest,
        user_id: str,
        on_success: Callable[[DepositStatus], Awaitable[None]],
    ) -> None:
        async def on_expired() -> None:
            AuditLog.log_deposit("expired", deposit.id, user_id)
            await self.notifier.notify(user_id, messages.payment_expired(deposit.id))

        async def on_failed(status: DepositStatus) -> None:
            AuditLog.log_deposit("failed", deposit.id, user_id)
            await self.notifier.notify(user_id, messages.payment_failed(deposit.id))

        self.poller.schedule(deposit.id, on_success, on_expired, on_failed)

    # ==========================================================================
    # TOP-UP (single turn, no wizard state)
    # ==========================================================================

    async def begin_topup(self, event: InboundEvent, raw_amount: str) -> List[OutboundReply]:
        raw_amount = (raw_amount or "").strip()
        if not raw_amount:
            return self._reply(event, messages.topup_usage(self.config.COMMAND_PREFIX, self.config.MIN_TOPUP))
        try:
            amount = int(raw_amount)
        except ValueError:
            return self._reply(event, messages.amount_invalid())
        if amount < self.config.MIN_TOPUP:
            return self._reply(event, messages.topup_minimum(self.config.MIN_TOPUP))

        deposit = await self.gateway.create_deposit(amount)
        user_id = event.sender_id

        async def on_success(status: DepositStatus) -> None:
            await self._settle_topup(deposit, user_id, status)

        self._schedule(deposit, user_id, on_success)
        AuditLog.log_deposit("created", deposit.id, user_id, {"nominal": deposit.nominal})
        caption = messages.topup_qr_caption(
            deposit.id, deposit.nominal, deposit.credit_amount, self._deadline_minutes()
        )
        return self._reply(event, caption, image=deposit.qr_png())

    async def _settle_topup(self, deposit: DepositRequest, user_id: str, status: DepositStatus) -> None:
        try:
            result = await self.settlement.settle_topup(deposit.id, user_id, status)
        except (AlreadyProcessed, ConcurrencyConflict) as e:
            logger.info(f"[Wizard] Duplicate top-up for deposit {deposit.id} ignored: {e}")
            return
        except Exception as e:
            AuditLog.log_error(e, f"Top-up settlement {deposit.id}")
            await self.notifier.notify(user_id, messages.generic_failure())
            return

        await self.notifier.notify(user_id, messages.topup_success(result.nominal, result.credited, result.balance))

    # ==========================================================================
    # OWNER: ADD PRODUCT
    # ==========================================================================

    async def begin_add_product(self, event: InboundEvent) -> List[OutboundReply]:
        self.states.set(event.sender_id, WizardStep.AWAITING_PRODUCT_PAYLOAD)
        return self._reply(event, messages.add_product_prompt(self.config.CANCEL_WORD))

    async def _on_product_payload(self, event: InboundEvent, state: ConversationState) -> List[OutboundReply]:
        if not event.has_image:
            self.states.touch(event.sender_id)
            return self._reply(event, messages.add_product_needs_image())

        draft = parse_product_caption(event.text)
        product = await self.catalog.add_product(draft, event.image)
        self.states.delete(event.sender_id)
        return self._reply(event, messages.product_added(product))

    # ==========================================================================
    # OWNER: DELETE PRODUCT
    # ==========================================================================

    async def begin_delete_product(self, event: InboundEvent) -> List[OutboundReply]:
        products = await self.catalog.list_products()
        if not products:
            return self._reply(event, messages.catalog_empty_for("delete"))
        self.states.set(event.sender_id, WizardStep.AWAITING_DELETE_PRODUCT_ID)
        return self._reply(
            event, messages.product_pick_list("🗑️ DELETE PRODUCT", products, "delete", self.config.CANCEL_WORD)
        )

    async def _on_delete_product_id(self, event: InboundEvent, state: ConversationState) -> List[OutboundReply]:
        try:
            product = await self.catalog.delete_product(event.text.strip())
        except NotFoundError:
            self.states.touch(event.sender_id)
            return self._reply(event, messages.product_id_unknown())

        self.states.delete(event.sender_id)
        return self._reply(event, messages.product_deleted(product))

    # ==========================================================================
    # OWNER: EDIT PRODUCT
    # ==========================================================================

    async def begin_edit_product(self, event: InboundEvent) -> List[OutboundReply]:
        products = await self.catalog.list_products()
        if not products:
            return self._reply(event, messages.catalog_empty_for("edit"))
        self.states.set(event.sender_id, WizardStep.AWAITING_EDIT_PRODUCT_ID)
        return self._reply(
            event, messages.product_pick_list("✏️ EDIT PRODUCT", products, "edit", self.config.CANCEL_WORD)
        )

    async def _on_edit_product_id(self, event: InboundEvent, state: ConversationState) -> List[OutboundReply]:
        product = await self.store.get_product(event.text.strip())
        if not product:
            self.states.touch(event.sender_id)
            return self._reply(event, messages.product_id_unknown())

        self.states.set(event.sender_id, WizardStep.AWAITING_EDIT_FIELD, {"product_id": product.id})
        return self._reply(event, messages.edit_field_menu(product))

    async def _on_edit_field(self, event: InboundEvent, state: ConversationState) -> List[OutboundReply]:
        field = EditableField.BY_CHOICE.get(event.text.strip())
        if field is None:
            self.states.touch(event.sender_id)
            return self._reply(event, messages.edit_field_invalid())

        product_id = state.payload["product_id"]
        if not await self.store.get_product(product_id):
            self.states.delete(event.sender_id)
            return self._reply(event, messages.product_not_found())

        self.states.set(
            event.sender_id, WizardStep.AWAITING_EDIT_VALUE, {"product_id": product_id, "field": field}
        )
        return self._reply(event, messages.EDIT_VALUE_PROMPTS[field])

    async def _on_edit_value(self, event: InboundEvent, state: ConversationState) -> List[OutboundReply]:
        try:
            product = await self.catalog.edit_field(state.payload["product_id"], state.payload["field"], event.text)
        except NotFoundError:
            self.states.delete(event.sender_id)
            return self._reply(event, messages.product_not_found())

        self.states.delete(event.sender_id)
        return self._reply(event, messages.product_updated(product))
