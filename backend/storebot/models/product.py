from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from storebot.db.base import Base


class Product(Base):
    """
    Digital product with its pool of single-use download links.

    INVARIANT: stock == len(links). A link is popped exactly once per sale.
    """
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    sold = Column(Integer, nullable=False, default=0)
    links = Column(JSON, nullable=False, default=list)
    image = Column(Text, nullable=True)  # base64 encoded
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Product id={self.id} stock={self.stock}>"
