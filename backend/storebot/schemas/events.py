"""Transport-neutral chat messages exchanged with the dispatcher."""
from typing import Optional

from pydantic import BaseModel


class InboundEvent(BaseModel):
    sender_id: str
    sender_name: str = "User"
    text: str = ""
    image: Optional[bytes] = None  # photo attachment, caption arrives as text

    @property
    def has_image(self) -> bool:
        return bool(self.image)


class OutboundReply(BaseModel):
    target_id: str
    text: str
    image: Optional[bytes] = None
