import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()

DEFAULT_MENU = [
    {"name": "Coffee", "category": "drinks", "description": "Freshly brewed house blend", "price": 350},
    {"name": "Green Tea", "category": "drinks", "description": "Hot or iced Japanese green tea", "price": 300},
    {"name": "Matcha Latte", "category": "drinks", "description": "Matcha with steamed milk", "price": 450},
    {"name": "Cheesecake", "category": "food", "description": "Baked New York style cheesecake", "price": 500},
    {"name": "Club Sandwich", "category": "food", "description": "Turkey, bacon, lettuce and tomato", "price": 650},
    {"name": "Cookies", "category": "snacks", "description": "Two chocolate chip cookies", "price": 250},
]


def build_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, pool_pre_ping=True)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def init_db(engine: AsyncEngine):
    # models must be imported so their tables are registered on Base
    from app import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_menu(session_factory: async_sessionmaker):
    from app.models import MenuItem

    async with session_factory() as db:
        count = (await db.execute(select(func.count(MenuItem.id)))).scalar_one()
        if count:
            return
        db.add_all([MenuItem(**item) for item in DEFAULT_MENU])
        await db.commit()
        logging.info(f"Seeded {len(DEFAULT_MENU)} menu items")
