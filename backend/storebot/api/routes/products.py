"""Read-only catalog endpoints. Download links are never exposed here."""
from typing import List

from fastapi import APIRouter, Depends

from storebot.api.deps import get_store
from storebot.core.exceptions import BusinessError, NotFoundError, StoreError
from storebot.schemas.records import ProductSummary
from storebot.services.storage import SnapshotStore

router = APIRouter()


@router.get("", response_model=List[ProductSummary])
async def list_products(store: SnapshotStore = Depends(get_store)):
    try:
        products = await store.get_products()
    except StoreError as e:
        raise BusinessError.from_store_error(e)
    return [ProductSummary.model_validate(p, from_attributes=True) for p in products]


@router.get("/{product_id}", response_model=ProductSummary)
async def get_product(product_id: str, store: SnapshotStore = Depends(get_store)):
    try:
        product = await store.get_product(product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
    except StoreError as e:
        raise BusinessError.from_store_error(e)
    return ProductSummary.model_validate(product, from_attributes=True)
