"""
Snapshot storage.

The only contract the core relies on is whole-collection read and
whole-collection write (plus append for the two append-only ledgers).
Everything else here is derived from those calls.

SQLAlchemy work is synchronous, so each call runs in a worker thread to keep
the event loop free for other users and for payment polls.

Read-modify-write of users and products goes through `edit_users()` /
`edit_products()`, which hold a per-collection lock for the whole cycle.
This only orders writers inside this process.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Type

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from pydantic import BaseModel

from storebot.core.exceptions import AlreadyProcessed, PersistenceError
from storebot.models import Order, ProcessedDeposit, Product, User
from storebot.schemas.records import (
    OrderRecord,
    ProcessedDepositRecord,
    ProductRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)


class SnapshotStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._users_lock = asyncio.Lock()
        self._products_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Sync primitives (run in worker threads)
    # ------------------------------------------------------------------

    def _read_all(self, model, record_cls: Type[BaseModel]) -> list:
        db = self._session_factory()
        try:
            rows = db.query(model).all()
            return [record_cls.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"[Storage] Read failed for {model.__tablename__}: {e}")
            raise PersistenceError(f"Could not read {model.__tablename__}") from e
        finally:
            db.close()

    def _replace_all(self, model, records: List[BaseModel]) -> None:
        db = self._session_factory()
        try:
            db.query(model).delete()
            db.add_all([model(**record.model_dump(mode="python")) for record in records])
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[Storage] Snapshot write failed for {model.__tablename__}: {e}")
            raise PersistenceError(f"Could not save {model.__tablename__}") from e
        finally:
            db.close()

    def _append(self, model, record: BaseModel) -> None:
        db = self._session_factory()
        try:
            db.add(model(**record.model_dump(mode="python")))
            db.commit()
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"[Storage] Append failed for {model.__tablename__}: {e}")
            raise PersistenceError(f"Could not append to {model.__tablename__}") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_users(self) -> List[UserRecord]:
        return await asyncio.to_thread(self._read_all, User, UserRecord)

    async def save_users(self, users: List[UserRecord]) -> None:
        await asyncio.to_thread(self._replace_all, User, users)

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        users = await self.get_users()
        return next((u for u in users if u.id == user_id), None)

    async def ensure_user(self, user_id: str, name: str = "User") -> UserRecord:
        """Auto-register a sender on first contact."""
        existing = await self.get_user(user_id)
        if existing:
            return existing
        async with self.edit_users() as users:
            for user in users:
                if user.id == user_id:
                    return user
            user = UserRecord(id=user_id, name=name or "User", join_date=datetime.utcnow())
            users.append(user)
            logger.info(f"[Storage] Registered user {user_id}")
            return user

    @asynccontextmanager
    async def edit_users(self) -> AsyncIterator[List[UserRecord]]:
        """Read the users snapshot, let the caller mutate it, write it back.

        Nothing is written if the block raises.
        """
        async with self._users_lock:
            users = await self.get_users()
            yield users
            await self.save_users(users)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def get_products(self) -> List[ProductRecord]:
        products = await asyncio.to_thread(self._read_all, Product, ProductRecord)
        return sorted(products, key=lambda p: p.created_at)

    async def save_products(self, products: List[ProductRecord]) -> None:
        await asyncio.to_thread(self._replace_all, Product, products)

    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        products = await self.get_products()
        return next((p for p in products if p.id == product_id), None)

    @asynccontextmanager
    async def edit_products(self) -> AsyncIterator[List[ProductRecord]]:
        async with self._products_lock:
            products = await self.get_products()
            yield products
            await self.save_products(products)

    # ------------------------------------------------------------------
    # Orders (append-only)
    # ------------------------------------------------------------------

    async def get_orders(self) -> List[OrderRecord]:
        orders = await asyncio.to_thread(self._read_all, Order, OrderRecord)
        return sorted(orders, key=lambda o: o.created_at)

    async def append_order(self, order: OrderRecord) -> None:
        try:
            await asyncio.to_thread(self._append, Order, order)
        except IntegrityError as e:
            raise PersistenceError(f"Duplicate order id {order.id}") from e

    async def get_user_orders(self, user_id: str) -> List[OrderRecord]:
        return [o for o in await self.get_orders() if o.user_id == user_id]

    # ------------------------------------------------------------------
    # Processed deposits (append-only ledger)
    # ------------------------------------------------------------------

    async def get_processed_deposits(self) -> Dict[str, ProcessedDepositRecord]:
        records = await asyncio.to_thread(self._read_all, ProcessedDeposit, ProcessedDepositRecord)
        return {r.deposit_id: r for r in records}

    async def append_processed_deposit(self, record: ProcessedDepositRecord) -> None:
        try:
            await asyncio.to_thread(self._append, ProcessedDeposit, record)
        except IntegrityError as e:
            raise AlreadyProcessed(record.deposit_id) from e
