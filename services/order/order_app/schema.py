"""
Order Service — スキーマ定義

PostgreSQL（本番）と SQLite（テスト）の両方で動くよう、
方言に依存しない DDL だけを使う。起動時に CREATE TABLE IF NOT EXISTS で適用する。

users / menu_items / deals / deal_items はユーザー管理・カタログ管理サービスが
書き込むテーブルで、このサービスは読み取りのみ。
"""

from sqlalchemy import DateTime, TextClause, bindparam, text
from sqlalchemy.ext.asyncio import AsyncEngine

_STATUSES = "'DRAFT', 'PREPARING', 'READY', 'OUT_FOR_DELIVERY', 'DELIVERED', 'PICKED_UP', 'FINISHED', 'CANCELLED'"

STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id VARCHAR(36) PRIMARY KEY,
        username VARCHAR(100) NOT NULL UNIQUE,
        email VARCHAR(255),
        role VARCHAR(20) NOT NULL DEFAULT 'User' CHECK (role IN ('Manager', 'User')),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        first_name VARCHAR(100),
        last_name VARCHAR(100),
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS menu_items (
        id VARCHAR(36) PRIMARY KEY,
        name VARCHAR(120) NOT NULL,
        reference_number VARCHAR(30) NOT NULL UNIQUE,
        description TEXT,
        price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deals (
        id VARCHAR(36) PRIMARY KEY,
        name VARCHAR(120) NOT NULL,
        reference_number VARCHAR(30) NOT NULL UNIQUE,
        description TEXT,
        price NUMERIC(10, 2) NOT NULL CHECK (price >= 0),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deal_items (
        id VARCHAR(36) PRIMARY KEY,
        deal_id VARCHAR(36) NOT NULL REFERENCES deals (id) ON DELETE CASCADE,
        menu_item_id VARCHAR(36) NOT NULL REFERENCES menu_items (id) ON DELETE CASCADE,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        UNIQUE (deal_id, menu_item_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(36) PRIMARY KEY,
        order_number VARCHAR(30) NOT NULL UNIQUE,
        order_type VARCHAR(20) NOT NULL CHECK (order_type IN ('DINE', 'TAKEAWAY', 'DELIVERY')),
        status VARCHAR(20) NOT NULL DEFAULT 'DRAFT' CHECK (status IN ({_STATUSES})),
        payment_method VARCHAR(20) CHECK (payment_method IN ('CASH', 'ONLINE')),
        payment_status VARCHAR(20) NOT NULL DEFAULT 'UNPAID' CHECK (payment_status IN ('PAID', 'UNPAID')),
        customer_name VARCHAR(100),
        customer_phone VARCHAR(30),
        customer_address TEXT,
        subtotal NUMERIC(10, 2) NOT NULL DEFAULT 0,
        delivery_charges NUMERIC(10, 2) NOT NULL DEFAULT 0 CHECK (delivery_charges >= 0),
        discount NUMERIC(10, 2) NOT NULL DEFAULT 0 CHECK (discount >= 0),
        created_by_user_id VARCHAR(36) NOT NULL REFERENCES users (id),
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS orders_created_at_idx ON orders (created_at)",
    """
    CREATE TABLE IF NOT EXISTS order_lines (
        id VARCHAR(36) PRIMARY KEY,
        order_id VARCHAR(36) NOT NULL REFERENCES orders (id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        product_type VARCHAR(10) NOT NULL CHECK (product_type IN ('ITEM', 'DEAL')),
        product_id VARCHAR(36) NOT NULL,
        name_at_sale VARCHAR(120) NOT NULL,
        unit_price_at_sale NUMERIC(10, 2) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        line_total NUMERIC(10, 2) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS order_lines_order_id_idx ON order_lines (order_id)",
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id VARCHAR(36) PRIMARY KEY,
        action VARCHAR(40) NOT NULL,
        order_id VARCHAR(36) NOT NULL,
        order_number VARCHAR(30) NOT NULL,
        user_id VARCHAR(36) NOT NULL,
        username VARCHAR(100) NOT NULL,
        user_role VARCHAR(20) NOT NULL,
        details TEXT NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS audit_log_order_id_idx ON audit_log (order_id)",
]


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in STATEMENTS:
            await conn.execute(text(statement))


def with_timestamps(clause: TextClause, *names: str) -> TextClause:
    """日時パラメータを DateTime(timezone=True) として束縛する（SQLite でも書式が揃う）。"""
    return clause.bindparams(
        *(bindparam(name, type_=DateTime(timezone=True)) for name in names)
    )
