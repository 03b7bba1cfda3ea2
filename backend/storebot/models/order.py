from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from storebot.db.base import Base


class Order(Base):
    """Append-only: written once as the terminal effect of a settlement."""
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    user_name = Column(String(255), nullable=True)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False)
    link = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="success")
    payment_method = Column(String(16), nullable=False)
    deposit_id = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
