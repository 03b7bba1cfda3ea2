"""Component wiring shared by the FastAPI lifespan and the tests."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from storebot.agent.conversation_state import ConversationStateStore
from storebot.agent.dispatcher import CommandDispatcher
from storebot.agent.locks import KeyedLockRegistry
from storebot.agent.poller import PaymentPoller
from storebot.agent.session import SessionManager
from storebot.agent.wizard import WizardStateMachine
from storebot.core.config import Settings
from storebot.services.catalog import CatalogService
from storebot.services.notifier import Messenger, Notifier
from storebot.services.payment_gateway import PaymentGateway
from storebot.services.settlement import SettlementService
from storebot.services.storage import SnapshotStore


@dataclass
class StoreRuntime:
    config: Settings
    store: SnapshotStore
    session: SessionManager
    gateway: PaymentGateway
    settlement: SettlementService
    catalog: CatalogService
    notifier: Notifier
    wizard: WizardStateMachine
    dispatcher: CommandDispatcher


def build_runtime(
    config: Settings,
    session_factory: sessionmaker,
    messenger: Messenger,
    gateway: Optional[PaymentGateway] = None,
) -> StoreRuntime:
    store = SnapshotStore(session_factory)
    gateway = gateway or PaymentGateway(config)
    session = SessionManager(
        states=ConversationStateStore(ttl_seconds=config.STATE_TTL_SECONDS),
        locks=KeyedLockRegistry(),
        poller=PaymentPoller(
            gateway,
            interval_seconds=config.CHECK_INTERVAL_SECONDS,
            max_attempts=config.MAX_CHECK_ATTEMPTS,
        ),
        sweep_interval_seconds=config.STATE_SWEEP_INTERVAL_SECONDS,
    )
    settlement = SettlementService(store, session.locks)
    catalog = CatalogService(store)
    notifier = Notifier(messenger, channel_id=config.CHANNEL_ID, pacing_seconds=config.BROADCAST_DELAY_SECONDS)
    wizard = WizardStateMachine(
        config=config,
        store=store,
        states=session.states,
        poller=session.poller,
        gateway=gateway,
        settlement=settlement,
        catalog=catalog,
        notifier=notifier,
    )
    dispatcher = CommandDispatcher(
        config=config,
        store=store,
        session=session,
        wizard=wizard,
        settlement=settlement,
        notifier=notifier,
    )
    return StoreRuntime(
        config=config,
        store=store,
        session=session,
        gateway=gateway,
        settlement=settlement,
        catalog=catalog,
        notifier=notifier,
        wizard=wizard,
        dispatcher=dispatcher,
    )
