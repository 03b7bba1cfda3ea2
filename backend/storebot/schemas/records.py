from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.utcnow()


class OrderStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    BALANCE = "balance"
    QRIS = "qris"


class UserRecord(BaseModel):
    id: str
    name: str = "User"
    balance: int = 0
    total_transactions: int = 0
    join_date: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True


class ProductRecord(BaseModel):
    id: str
    name: str
    price: int
    description: str = ""
    stock: int = 0
    sold: int = 0
    links: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True

    @property
    def available(self) -> bool:
        return self.stock > 0 and len(self.links) > 0


class OrderRecord(BaseModel):
    id: str
    user_id: str
    user_name: Optional[str] = None
    product_id: str
    product_name: str
    price: int
    link: str
    status: OrderStatus = OrderStatus.SUCCESS
    payment_method: PaymentMethod
    deposit_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True
        frozen = True
        use_enum_values = True


class ProcessedDepositRecord(BaseModel):
    deposit_id: str
    product_id: Optional[str] = None
    user_id: str
    processed_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True
        frozen = True


class ProductSummary(BaseModel):
    """Public view of a product. Never carries the download links."""
    id: str
    name: str
    price: int
    description: str = ""
    stock: int = 0
    sold: int = 0

    class Config:
        from_attributes = True
