import base64
import binascii
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class DepositState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    EXPIRED = "expired"
    ERROR = "error"

    @classmethod
    def from_gateway(cls, raw: Optional[str]) -> "DepositState":
        value = (raw or "").strip().lower()
        if value in ("success", "paid"):
            return cls.SUCCESS
        if value == "expired":
            return cls.EXPIRED
        if value in ("error", "failed", "cancel", "cancelled", "canceled"):
            return cls.ERROR
        return cls.PENDING


class DepositRequest(BaseModel):
    """A created gateway deposit. Lifecycle is owned by the gateway."""
    id: str
    nominal: int
    credit_amount: int
    qr_image: str  # data URI: "data:image/png;base64,..."

    def qr_png(self) -> bytes:
        payload = self.qr_image.split(",", 1)[-1]
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return b""


class DepositStatus(BaseModel):
    deposit_id: str
    status: DepositState
    nominal: int = 0
    credit_amount: int = 0

    @property
    def is_paid(self) -> bool:
        return self.status == DepositState.SUCCESS
