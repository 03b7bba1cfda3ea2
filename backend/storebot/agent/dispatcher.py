"""
Command Dispatcher - single entry point for inbound chat messages.

Flow:
1. Register the sender on first contact
2. Active wizard state? -> the message answers the current step
3. Otherwise parse `<prefix><command> [args]` and run the command

Error policy:
- ValidationError           -> reply, state kept (re-prompt)
- ConcurrencyConflict,
  AlreadyProcessed          -> reply, nothing changed
- other StoreError          -> reply, state cleared
- anything else             -> audit log, generic reply, state cleared
One user's failure never affects another user's state.
"""
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from storebot.agent import messages
from storebot.agent.session import SessionManager
from storebot.agent.wizard import WizardStateMachine
from storebot.core.audit import AuditLog
from storebot.core.config import Settings
from storebot.core.exceptions import (
    AlreadyProcessed,
    ConcurrencyConflict,
    PersistenceError,
    StoreError,
    ValidationError,
)
from storebot.schemas.events import InboundEvent, OutboundReply
from storebot.schemas.records import OrderStatus
from storebot.services.notifier import Notifier
from storebot.services.settlement import SettlementService
from storebot.services.storage import SnapshotStore

logger = logging.getLogger(__name__)

CommandHandler = Callable[[InboundEvent, str], Awaitable[List[OutboundReply]]]

HISTORY_LIMIT = 10
USER_LIST_LIMIT = 20


def parse_command(text: str, prefix: str) -> Optional[Tuple[str, str]]:
    """
    '/buy ebook123' -> ('buy', 'ebook123'). Returns None for free text.

    The command word is lower-cased and a trailing '@botname' is dropped.
    Everything after the first whitespace is returned untouched.
    """
    text = (text or "").strip()
    if not prefix or not text.startswith(prefix):
        return None
    body = text[len(prefix):]
    parts = body.split(None, 1)
    if not parts:
        return None
    command = parts[0].split("@", 1)[0].lower()
    rest = parts[1].strip() if len(parts) > 1 else ""
    return command, rest


class CommandDispatcher:
    def __init__(
        self,
        config: Settings,
        store: SnapshotStore,
        session: SessionManager,
        wizard: WizardStateMachine,
        settlement: SettlementService,
        notifier: Notifier,
    ):
        self.config = config
        self.store = store
        self.session = session
        self.wizard = wizard
        self.settlement = settlement
        self.notifier = notifier

        self._commands: Dict[str, CommandHandler] = {
            "menu": self._cmd_menu,
            "start": self._cmd_menu,
            "catalog": self._cmd_catalog,
            "products": self._cmd_catalog,
            "katalog": self._cmd_catalog,
            "produk": self._cmd_catalog,
            "balance": self._cmd_balance,
            "saldo": self._cmd_balance,
            "topup": self._cmd_topup,
            "buy": self._cmd_buy,
            "beli": self._cmd_buy,
            "history": self._cmd_history,
            "riwayat": self._cmd_history,
            "help": self._cmd_help,
            "bantuan": self._cmd_help,
            "tos": self._cmd_tos,
            "sk": self._cmd_tos,
        }
        self._owner_commands: Dict[str, CommandHandler] = {
            "addproduct": self._cmd_add_product,
            "addproduk": self._cmd_add_product,
            "delproduct": self._cmd_delete_product,
            "delproduk": self._cmd_delete_product,
            "editproduct": self._cmd_edit_product,
            "editproduk": self._cmd_edit_product,
            "listusers": self._cmd_list_users,
            "listuser": self._cmd_list_users,
            "broadcast": self._cmd_broadcast,
            "bc": self._cmd_broadcast,
            "stats": self._cmd_stats,
            "addbalance": self._cmd_add_balance,
            "addsaldo": self._cmd_add_balance,
        }

    @staticmethod
    def _reply(event: InboundEvent, text: str) -> List[OutboundReply]:
        return [OutboundReply(target_id=event.sender_id, text=text)]

    async def handle(self, user_id: str, event: InboundEvent) -> List[OutboundReply]:
        """Process one inbound message and return the replies for its sender."""
        states = self.session.states
        try:
            await self.store.ensure_user(user_id, event.sender_name)

            state = states.get(user_id)
            if state is not None:
                return await self.wizard.continue_flow(event, state)
            return await self._dispatch_command(event)

        except ValidationError as e:
            states.touch(user_id)
            return self._reply(event, e.user_message)
        except (ConcurrencyConflict, AlreadyProcessed) as e:
            return self._reply(event, e.user_message)
        except StoreError as e:
            logger.warning(f"[Dispatcher] user={user_id} flow aborted: {e}")
            if isinstance(e, PersistenceError):
                AuditLog.log_error(e, f"Message from {user_id}")
            states.delete(user_id)
            return self._reply(event, e.user_message)
        except Exception as e:
            logger.error(f"[Dispatcher] Unhandled error for user={user_id}: {e}", exc_info=True)
            AuditLog.log_error(e, f"Message from {user_id}")
            states.delete(user_id)
            return self._reply(event, messages.generic_failure())

    async def _dispatch_command(self, event: InboundEvent) -> List[OutboundReply]:
        parsed = parse_command(event.text, self.config.COMMAND_PREFIX)
        if parsed is None:
            # Free text outside a wizard is ignored
            return []
        command, rest = parsed
        logger.info(f"[Dispatcher] user={event.sender_id} command={command}")

        handler = self._commands.get(command)
        if handler is not None:
            return await handler(event, rest)

        handler = self._owner_commands.get(command)
        if handler is not None:
            if not self.config.is_owner(event.sender_id):
                return self._reply(event, messages.owner_only())
            return await handler(event, rest)

        return self._reply(event, messages.unknown_command(self.config.COMMAND_PREFIX))

    # ==========================================================================
    # USER COMMANDS
    # ==========================================================================

    async def _cmd_menu(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        user = await self.store.ensure_user(event.sender_id, event.sender_name)
        users = await self.store.get_users()
        products = await self.store.get_products()
        text = messages.menu(
            bot_name=self.config.BOT_NAME,
            owner_name=self.config.OWNER_NAME,
            prefix=self.config.COMMAND_PREFIX,
            user=user,
            user_count=len(users),
            product_count=len(products),
            total_sold=sum(p.sold for p in products),
            is_owner=self.config.is_owner(event.sender_id),
        )
        return self._reply(event, text)

    async def _cmd_catalog(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        products = await self.store.get_products()
        return self._reply(event, messages.catalog(self.config.COMMAND_PREFIX, products))

    async def _cmd_balance(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        user = await self.store.ensure_user(event.sender_id, event.sender_name)
        return self._reply(event, messages.balance_card(self.config.COMMAND_PREFIX, user))

    async def _cmd_topup(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        amount = rest.split()[0] if rest else ""
        return await self.wizard.begin_topup(event, amount)

    async def _cmd_buy(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        product_id = rest.split()[0] if rest else ""
        return await self.wizard.begin_purchase(event, product_id)

    async def _cmd_history(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        orders = [
            o for o in await self.store.get_user_orders(event.sender_id)
            if o.status == OrderStatus.SUCCESS.value
        ]
        recent = list(reversed(orders))[:HISTORY_LIMIT]
        return self._reply(event, messages.history(recent))

    async def _cmd_help(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        return self._reply(event, messages.help_text(self.config.COMMAND_PREFIX))

    async def _cmd_tos(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        return self._reply(event, messages.terms())

    # ==========================================================================
    # OWNER COMMANDS
    # ==========================================================================

    async def _cmd_add_product(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        return await self.wizard.begin_add_product(event)

    async def _cmd_delete_product(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        return await self.wizard.begin_delete_product(event)

    async def _cmd_edit_product(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        return await self.wizard.begin_edit_product(event)

    async def _cmd_list_users(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        users = await self.store.get_users()
        return self._reply(event, messages.user_list(users, USER_LIST_LIMIT))

    async def _cmd_broadcast(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        if not rest:
            return self._reply(event, messages.broadcast_usage(self.config.COMMAND_PREFIX))

        users = await self.store.get_users()
        await self.notifier.notify(event.sender_id, messages.broadcast_started(len(users)))
        report = await self.notifier.broadcast(
            [u.id for u in users], messages.broadcast_message(self.config.OWNER_NAME, rest)
        )
        return self._reply(event, messages.broadcast_done(report.sent, report.failed))

    async def _cmd_stats(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        users = await self.store.get_users()
        products = await self.store.get_products()
        orders = [o for o in await self.store.get_orders() if o.status == OrderStatus.SUCCESS.value]
        deposits = await self.store.get_processed_deposits()

        best_seller = max(products, key=lambda p: p.sold, default=None)
        text = messages.stats(
            user_count=len(users),
            active_users=sum(1 for u in users if u.total_transactions > 0),
            product_count=len(products),
            total_stock=sum(p.stock for p in products),
            best_seller=best_seller,
            order_count=len(orders),
            revenue=sum(o.price for o in orders),
            processed_deposits=len(deposits),
        )
        return self._reply(event, text)

    async def _cmd_add_balance(self, event: InboundEvent, rest: str) -> List[OutboundReply]:
        args = rest.split()
        if len(args) < 2:
            return self._reply(event, messages.addbalance_usage(self.config.COMMAND_PREFIX))

        target_id, raw_amount = args[0], args[1]
        try:
            amount = int(raw_amount)
        except ValueError:
            return self._reply(event, messages.amount_invalid())
        if amount <= 0:
            return self._reply(event, messages.amount_invalid())

        if not await self.store.get_user(target_id):
            return self._reply(event, messages.user_not_found(target_id))

        balance = await self.settlement.credit_balance(target_id, amount, f"owner credit by {event.sender_id}")
        await self.notifier.notify(target_id, messages.balance_received(amount, balance))
        return self._reply(event, messages.balance_credited(target_id, amount, balance))
