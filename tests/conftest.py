import json
import os

# main モジュールは import 時に DATABASE_URL を読む。接続は各テストの engine で差し替える。
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from order_app.events import ActingUser
from order_app.schema import create_schema

MANAGER_ID = "00000000-0000-0000-0000-00000000a001"
USER_ID = "00000000-0000-0000-0000-00000000a002"
INACTIVE_ID = "00000000-0000-0000-0000-00000000a003"

BURGER_ID = "00000000-0000-0000-0000-00000000b001"
FRIES_ID = "00000000-0000-0000-0000-00000000b002"
SOUP_ID = "00000000-0000-0000-0000-00000000b003"  # inactive
FAMILY_DEAL_ID = "00000000-0000-0000-0000-00000000c001"
OLD_DEAL_ID = "00000000-0000-0000-0000-00000000c002"  # inactive

MANAGER = ActingUser(user_id=MANAGER_ID, username="manager", role="Manager")
USER = ActingUser(user_id=USER_ID, username="cashier", role="User")


class RecordingRedis:
    """redis.asyncio.Redis の publish だけを記録する"""

    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1

    def event_types(self):
        return [payload["event_type"] for _, payload in self.published]


async def seed(session: AsyncSession) -> None:
    users = [
        (MANAGER_ID, "manager", "Manager", True),
        (USER_ID, "cashier", "User", True),
        (INACTIVE_ID, "former", "User", False),
    ]
    for uid, username, role, active in users:
        await session.execute(
            text("INSERT INTO users (id, username, role, is_active) VALUES (:id, :u, :r, :a)"),
            {"id": uid, "u": username, "r": role, "a": active},
        )

    menu_items = [
        (BURGER_ID, "Zinger Burger", "MI-001", 500, True),
        (FRIES_ID, "Fries", "MI-002", 200, True),
        (SOUP_ID, "Hot & Sour Soup", "MI-003", 300, False),
    ]
    for mid, name, ref, price, active in menu_items:
        await session.execute(
            text("""
                INSERT INTO menu_items (id, name, reference_number, price, is_active)
                VALUES (:id, :name, :ref, :price, :active)
            """),
            {"id": mid, "name": name, "ref": ref, "price": price, "active": active},
        )

    deals = [
        (FAMILY_DEAL_ID, "Family Deal", "DL-001", 1000, True),
        (OLD_DEAL_ID, "Old Deal", "DL-002", 800, False),
    ]
    for did, name, ref, price, active in deals:
        await session.execute(
            text("""
                INSERT INTO deals (id, name, reference_number, price, is_active)
                VALUES (:id, :name, :ref, :price, :active)
            """),
            {"id": did, "name": name, "ref": ref, "price": price, "active": active},
        )
    for n, (item_id, qty) in enumerate([(BURGER_ID, 2), (FRIES_ID, 1)]):
        await session.execute(
            text("""
                INSERT INTO deal_items (id, deal_id, menu_item_id, quantity)
                VALUES (:id, :deal_id, :item_id, :qty)
            """),
            {"id": f"deal-item-{n}", "deal_id": FAMILY_DEAL_ID, "item_id": item_id, "qty": qty},
        )
    await session.commit()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await seed(session)
    return factory


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis():
    return RecordingRedis()
