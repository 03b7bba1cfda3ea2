"""Seed the catalog with demo ebooks. Each link is one sellable unit."""
import asyncio
from typing import Optional

from sqlalchemy.orm import sessionmaker

from storebot.db.init_db import init_db
from storebot.db.session import SessionLocal
from storebot.services.catalog import CatalogService, ProductDraft
from storebot.services.formatting import format_rupiah
from storebot.services.storage import SnapshotStore

DEMO_PRODUCTS = [
    ProductDraft(
        name="Cooking Recipes Ebook",
        price=15000,
        description="100+ home recipes from across the archipelago",
        links=[f"https://drive.google.com/file/d/demo-recipes-{i}" for i in range(1, 6)],
    ),
    ProductDraft(
        name="Python for Beginners",
        price=25000,
        description="Step by step programming course with exercises",
        links=[f"https://drive.google.com/file/d/demo-python-{i}" for i in range(1, 4)],
    ),
    ProductDraft(
        name="Personal Finance Basics",
        price=10000,
        description="Budgeting, saving and investing for first earners",
        links=[f"https://drive.google.com/file/d/demo-finance-{i}" for i in range(1, 11)],
    ),
]


async def seed_products(session_factory: Optional[sessionmaker] = None) -> int:
    store = SnapshotStore(session_factory or SessionLocal)
    catalog = CatalogService(store)

    # Clear existing catalog for clean seed
    await store.save_products([])

    for draft in DEMO_PRODUCTS:
        product = await catalog.add_product(draft)
        print(f"  📌 {product.name}")
        print(f"     💰 Price: {format_rupiah(product.price)} | 📦 Stock: {product.stock} | 🆔 {product.id}")

    print(f"\n✅ Successfully added {len(DEMO_PRODUCTS)} products")
    return len(DEMO_PRODUCTS)


if __name__ == "__main__":
    init_db()
    asyncio.run(seed_products())
