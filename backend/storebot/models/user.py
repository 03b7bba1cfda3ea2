from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from storebot.db.base import Base


class User(Base):
    """A chat user. Balance is kept in the minor unit and never goes below zero."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(255), nullable=False, default="User")
    balance = Column(Integer, nullable=False, default=0)
    total_transactions = Column(Integer, nullable=False, default=0)
    join_date = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User id={self.id} balance={self.balance}>"
