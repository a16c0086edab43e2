"""
Order Service — カタログスナップショットリゾルバ

メニュー項目 (ITEM) / セット (DEAL) の名前と単価をカタログから読み出し、
注文明細に凍結する。カタログの CRUD 自体は別サービスの責務で、
ここでは読み取りのみ行う。
"""

from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import OrderLine, to_money
from .constants import ProductType
from .edit_guard import check_amount_limit
from .errors import NotFoundError, ValidationError

_TABLES = {
    ProductType.ITEM: ("menu_items", "Menu item"),
    ProductType.DEAL: ("deals", "Deal"),
}


@dataclass(frozen=True)
class CatalogEntry:
    product_type: str
    product_id: str
    name: str
    price: float
    is_active: bool


async def resolve_catalog_entry(
    session: AsyncSession, product_type: str, product_id: str
) -> CatalogEntry:
    """商品を1件引く。存在しなければ NotFoundError。"""
    try:
        table, label = _TABLES[ProductType(product_type)]
    except ValueError:
        raise ValidationError("Product type must be ITEM or DEAL") from None

    result = await session.execute(
        text(f"SELECT id, name, price, is_active FROM {table} WHERE id = :id"),
        {"id": str(product_id)},
    )
    row = result.fetchone()
    if not row:
        raise NotFoundError(f"{label} with ID {product_id} not found")
    return CatalogEntry(
        product_type=ProductType(product_type).value,
        product_id=str(row.id),
        name=row.name,
        price=to_money(row.price),
        is_active=bool(row.is_active),
    )


async def snapshot_line(
    session: AsyncSession, product_type: str, product_id: str, quantity: int
) -> OrderLine:
    """カタログの現在値で明細スナップショットを作る。非アクティブ商品は拒否。"""
    entry = await resolve_catalog_entry(session, product_type, product_id)
    if not entry.is_active:
        label = _TABLES[ProductType(entry.product_type)][1]
        raise ValidationError(f"{label} {entry.name} is not active")
    line = OrderLine.snapshot(
        entry.product_type, entry.product_id, entry.name, entry.price, quantity
    )
    check_amount_limit(line.line_total, f"Line total for {entry.name}")
    return line


async def snapshot_lines(session: AsyncSession, requested: list[dict]) -> list[OrderLine]:
    """
    明細リクエストを順番どおりスナップショットに変換する。

    同じ商品が複数行あっても合算しない（1行 = 1レコード）。
    """
    return [
        await snapshot_line(
            session, line["product_type"], line["product_id"], line["quantity"]
        )
        for line in requested
    ]


# ── 注文入力画面向けの一覧 ───────────────────────

async def list_active_menu_items(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT id, name, reference_number, description, price
            FROM menu_items
            WHERE is_active = :active
            ORDER BY name ASC
        """),
        {"active": True},
    )
    return [
        {
            "id": str(row.id),
            "name": row.name,
            "reference_number": row.reference_number,
            "description": row.description,
            "price": to_money(row.price),
        }
        for row in result.fetchall()
    ]


async def list_active_deals(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT id, name, reference_number, description, price
            FROM deals
            WHERE is_active = :active
            ORDER BY name ASC
        """),
        {"active": True},
    )
    deals = [
        {
            "id": str(row.id),
            "name": row.name,
            "reference_number": row.reference_number,
            "description": row.description,
            "price": to_money(row.price),
            "deal_items": [],
        }
        for row in result.fetchall()
    ]
    if not deals:
        return deals

    by_id = {d["id"]: d for d in deals}
    items = await session.execute(
        text("""
            SELECT di.deal_id, di.menu_item_id, di.quantity, mi.name
            FROM deal_items di
            JOIN menu_items mi ON mi.id = di.menu_item_id
            ORDER BY mi.name ASC
        """)
    )
    for row in items.fetchall():
        deal = by_id.get(str(row.deal_id))
        if deal is not None:
            deal["deal_items"].append(
                {
                    "menu_item_id": str(row.menu_item_id),
                    "name": row.name,
                    "quantity": int(row.quantity),
                }
            )
    return deals
