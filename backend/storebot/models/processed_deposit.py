"""
Processed deposit ledger.

Durable dedup marker for gateway deposits. The primary key on deposit_id is
what makes a replayed "paid" notification a no-op across restarts.
"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from storebot.db.base import Base


class ProcessedDeposit(Base):
    __tablename__ = "processed_deposits"

    deposit_id = Column(String(128), primary_key=True, index=True)
    product_id = Column(String(64), nullable=True)  # None for top-ups
    user_id = Column(String(64), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
