"""Pytest fixtures for the store bot: file-backed SQLite store, scripted gateway, recording messenger."""
import asyncio
import base64
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

import pytest

from storebot.core.config import Settings
from storebot.core.exceptions import GatewayError
from storebot.db.init_db import init_db
from storebot.db.session import make_engine, make_session_factory
from storebot.runtime import build_runtime
from storebot.schemas.events import InboundEvent, OutboundReply
from storebot.schemas.payment import DepositRequest, DepositState, DepositStatus
from storebot.schemas.records import ProductRecord, UserRecord
from storebot.services.storage import SnapshotStore

OWNER_ID = "9000"
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-qr"
QR_DATA_URI = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


class FakeGateway:
    """
    Scripted payment gateway.

    Each deposit walks through `script` (per id, or `default_script`), one
    entry per status check; the last entry repeats. An entry is either a
    DepositState or an exception instance to raise.
    """

    def __init__(self):
        self.created: List[DepositRequest] = []
        self.scripts: Dict[str, list] = {}
        self.default_script: list = [DepositState.PENDING]
        self.checks: Dict[str, int] = defaultdict(int)
        self.fail_create = False
        self.create_delay = 0.0
        self.closed = False

    async def create_deposit(self, nominal: int) -> DepositRequest:
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.fail_create:
            raise GatewayError("gateway down")
        deposit = DepositRequest(
            id=f"DEP{len(self.created) + 1}",
            nominal=nominal,
            credit_amount=nominal,
            qr_image=QR_DATA_URI,
        )
        self.created.append(deposit)
        return deposit

    async def check_status(self, deposit_id: str) -> DepositStatus:
        self.checks[deposit_id] += 1
        script = self.scripts.get(deposit_id, self.default_script)
        outcome = script[min(self.checks[deposit_id], len(script)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        nominal = next((d.nominal for d in self.created if d.id == deposit_id), 0)
        return DepositStatus(deposit_id=deposit_id, status=outcome, nominal=nominal, credit_amount=nominal)

    async def close(self) -> None:
        self.closed = True


class FakeMessenger:
    def __init__(self):
        self.sent: List[OutboundReply] = []
        self.unreachable: Set[str] = set()

    async def send(self, reply: OutboundReply) -> bool:
        if reply.target_id in self.unreachable:
            return False
        self.sent.append(reply)
        return True

    def texts_to(self, target_id: str) -> List[str]:
        return [r.text for r in self.sent if r.target_id == target_id]


def make_product(
    product_id: str = "ebook1",
    name: str = "Cooking Recipes Ebook",
    price: int = 15000,
    links: Optional[List[str]] = None,
    age_minutes: int = 0,
) -> ProductRecord:
    links = list(links if links is not None else ["https://example.com/a", "https://example.com/b"])
    return ProductRecord(
        id=product_id,
        name=name,
        price=price,
        description="Demo ebook",
        links=links,
        stock=len(links),
        created_at=datetime.utcnow() - timedelta(minutes=age_minutes),
    )


def make_user(user_id: str = "1001", balance: int = 0, name: str = "Budi Santoso") -> UserRecord:
    return UserRecord(id=user_id, name=name, balance=balance)


def event(sender_id: str, text: str = "", image: Optional[bytes] = None, name: str = "Budi Santoso") -> InboundEvent:
    return InboundEvent(sender_id=sender_id, sender_name=name, text=text, image=image)


async def drain_polls() -> None:
    """Wait for every scheduled payment poll to finish."""
    while True:
        polls = [t for t in asyncio.all_tasks() if t.get_name().startswith("poll:") and not t.done()]
        if not polls:
            return
        await asyncio.gather(*polls, return_exceptions=True)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> SnapshotStore:
    return SnapshotStore(session_factory)


@pytest.fixture
def config() -> Settings:
    return Settings(
        OWNER_IDS=[OWNER_ID],
        CHANNEL_ID="-100777",
        CHECK_INTERVAL_SECONDS=0,
        MAX_CHECK_ATTEMPTS=3,
        STATE_TTL_SECONDS=300,
        BROADCAST_DELAY_SECONDS=0,
        MIN_TOPUP=5000,
        COMMAND_PREFIX="/",
        CANCEL_WORD="cancel",
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def runtime(config, session_factory, messenger, gateway):
    return build_runtime(config, session_factory, messenger, gateway=gateway)
