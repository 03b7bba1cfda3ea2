from storebot.schemas.records import (
    UserRecord,
    ProductRecord,
    OrderRecord,
    OrderStatus,
    PaymentMethod,
    ProcessedDepositRecord,
    ProductSummary,
)
from storebot.schemas.events import InboundEvent, OutboundReply
from storebot.schemas.payment import DepositRequest, DepositState, DepositStatus

__all__ = [
    "UserRecord",
    "ProductRecord",
    "OrderRecord",
    "OrderStatus",
    "PaymentMethod",
    "ProcessedDepositRecord",
    "ProductSummary",
    "InboundEvent",
    "OutboundReply",
    "DepositRequest",
    "DepositState",
    "DepositStatus",
]
