"""Display helpers: rupiah amounts, WIB timestamps and masking for public notices."""
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

# Western Indonesia Time, no DST
WIB = timezone(timedelta(hours=7), "WIB")


def format_rupiah(amount: int) -> str:
    """15000 -> 'Rp 15.000'"""
    return "Rp " + f"{int(amount):,}".replace(",", ".")


def wib_datetime(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(WIB).strftime("%d/%m/%Y, %H:%M") + " WIB"


def format_date(value: datetime) -> str:
    return value.strftime("%d/%m/%Y")


def mask_id(user_id: str) -> str:
    text = str(user_id)
    return text[:-5] + "*****" if len(text) > 5 else text


def mask_username(name: Optional[str]) -> str:
    if not name:
        return "Unknown***"
    return name[:-3] + "***" if len(name) > 5 else name + "***"


def mask_product_name(name: str) -> str:
    return name[:-4] + "****" if len(name) > 4 else name


def mask_link(link: str) -> str:
    if "drive.google.com" in link:
        return "https://drive.google.com/***"
    return link[:20] + "***" if len(link) > 20 else link


def generate_id(prefix: str = "ID") -> str:
    return f"{prefix}{int(time.time() * 1000)}{uuid.uuid4().hex[:9]}"


def generate_product_id() -> str:
    return f"ebook{int(time.time() * 1000)}"
