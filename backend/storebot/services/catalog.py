"""
Catalog maintenance for owner commands.

All writes go through `SnapshotStore.edit_products()` so they serialize with
token consumption in settlements. Stock is always recomputed from the link
list, never adjusted independently.
"""
import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from storebot.core.exceptions import NotFoundError, ValidationError
from storebot.schemas.records import ProductRecord
from storebot.services.formatting import generate_product_id
from storebot.services.storage import SnapshotStore

logger = logging.getLogger(__name__)


class EditableField:
    NAME = "name"
    PRICE = "price"
    DESCRIPTION = "description"
    LINKS = "links"

    # Menu choice -> field
    BY_CHOICE = {"1": NAME, "2": PRICE, "3": DESCRIPTION, "4": LINKS}


@dataclass
class ProductDraft:
    name: str
    price: int
    description: str
    links: List[str]


def parse_price(raw: str) -> int:
    try:
        price = int(raw.strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Price is not a number: {raw!r}", user_message="Price must be a positive number.")
    if price <= 0:
        raise ValidationError(f"Price not positive: {price}", user_message="Price must be a positive number.")
    return price


def parse_links(raw: str) -> List[str]:
    return [line.strip() for line in raw.splitlines() if line.strip()]


def parse_product_caption(caption: str) -> ProductDraft:
    """
    Parse an add-product caption:

        name
        price
        description
        link1
        link2 ...
    """
    lines = [line.strip() for line in (caption or "").splitlines() if line.strip()]
    if len(lines) < 4:
        raise ValidationError(
            f"Caption has {len(lines)} line(s)",
            user_message="Incomplete format! Name, price, description and at least one link are required.",
        )
    return ProductDraft(
        name=lines[0],
        price=parse_price(lines[1]),
        description=lines[2],
        links=lines[3:],
    )


class CatalogService:
    def __init__(self, store: SnapshotStore):
        self.store = store

    async def list_products(self) -> List[ProductRecord]:
        return await self.store.get_products()

    async def add_product(self, draft: ProductDraft, image: Optional[bytes] = None) -> ProductRecord:
        if not draft.links:
            raise ValidationError("No links", user_message="At least one download link is required.")

        async with self.store.edit_products() as products:
            product_id = generate_product_id()
            taken = {p.id for p in products}
            suffix = 1
            while product_id in taken:
                # Two adds inside the same millisecond
                product_id = f"{generate_product_id()}{suffix}"
                suffix += 1

            product = ProductRecord(
                id=product_id,
                name=draft.name,
                price=draft.price,
                description=draft.description,
                links=list(draft.links),
                stock=len(draft.links),
                sold=0,
                image=base64.b64encode(image).decode("ascii") if image else None,
                created_at=datetime.utcnow(),
            )
            products.append(product)

        logger.info(f"[Catalog] Added product {product.id}: {product.name}, stock={product.stock}")
        return product

    async def delete_product(self, product_id: str) -> ProductRecord:
        async with self.store.edit_products() as products:
            product = next((p for p in products if p.id == product_id), None)
            if not product:
                raise NotFoundError(f"Product {product_id} not found", user_message="Product not found!")
            products.remove(product)

        logger.info(f"[Catalog] Deleted product {product_id}")
        return product

    async def edit_field(self, product_id: str, field: str, raw_value: str) -> ProductRecord:
        """Apply one field edit. Added links raise stock by the number added."""
        value = (raw_value or "").strip()
        async with self.store.edit_products() as products:
            product = next((p for p in products if p.id == product_id), None)
            if not product:
                raise NotFoundError(f"Product {product_id} not found", user_message="Product not found!")

            if field == EditableField.NAME:
                if not value:
                    raise ValidationError("Empty name", user_message="Name cannot be empty.")
                product.name = value
            elif field == EditableField.PRICE:
                product.price = parse_price(value)
            elif field == EditableField.DESCRIPTION:
                product.description = value
            elif field == EditableField.LINKS:
                new_links = parse_links(value)
                if not new_links:
                    raise ValidationError("No links", user_message="Send at least one link.")
                product.links.extend(new_links)
                product.stock = len(product.links)
            else:
                raise ValidationError(f"Unknown field {field}")

            updated = product.model_copy(deep=True)

        logger.info(f"[Catalog] Edited product {product_id}: {field}")
        return updated
