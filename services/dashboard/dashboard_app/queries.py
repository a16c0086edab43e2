"""
Dashboard Service — 注文ストリーム (Read 側)

Order Service と同じ DB の orders / order_lines を読み取り専用で参照する。
全件を一度にメモリへ載せず、created_at の降順にページ単位で返す。
ページ送りは (created_at, id) のキーセットで行う。
"""

import logging
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from .statistics import LineRecord, OrderRecord

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = """
    id, order_number, order_type, status, payment_method, payment_status,
    customer_name, subtotal, delivery_charges, discount,
    created_by_user_id, created_at
"""


def _money(value) -> float:
    return float(value) if value is not None else 0.0


def _aware(value) -> datetime:
    # SQLite は文字列、PostgreSQL は datetime を返す
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


async def _fetch_page(session: AsyncSession, cursor, page_size: int):
    if cursor is None:
        result = await session.execute(
            text(f"""
                SELECT {_ORDER_COLUMNS}
                FROM orders
                ORDER BY created_at DESC, id DESC
                LIMIT :limit
            """),
            {"limit": page_size},
        )
    else:
        created_at, order_id = cursor
        result = await session.execute(
            text(f"""
                SELECT {_ORDER_COLUMNS}
                FROM orders
                WHERE created_at < :created_at
                   OR (created_at = :created_at AND id < :id)
                ORDER BY created_at DESC, id DESC
                LIMIT :limit
            """),
            {"created_at": created_at, "id": order_id, "limit": page_size},
        )
    return result.fetchall()


async def _fetch_lines(session: AsyncSession, order_ids: list[str]) -> dict[str, list[LineRecord]]:
    result = await session.execute(
        text("""
            SELECT order_id, product_type, product_id, name_at_sale, quantity, line_total
            FROM order_lines
            WHERE order_id IN :ids
            ORDER BY order_id, position ASC
        """).bindparams(bindparam("ids", expanding=True)),
        {"ids": order_ids},
    )
    lines: dict[str, list[LineRecord]] = {oid: [] for oid in order_ids}
    for row in result.fetchall():
        lines[str(row.order_id)].append(
            LineRecord(
                product_type=row.product_type,
                product_id=str(row.product_id),
                name_at_sale=row.name_at_sale,
                quantity=int(row.quantity),
                line_total=_money(row.line_total),
            )
        )
    return lines


async def stream_orders(session: AsyncSession, page_size: int = 500) -> AsyncIterator[OrderRecord]:
    """全注文を新しい順に1件ずつ返す。読み取りに失敗したら例外をそのまま伝える。"""
    cursor = None
    pages = 0
    while True:
        rows = await _fetch_page(session, cursor, page_size)
        if not rows:
            break
        pages += 1
        lines = await _fetch_lines(session, [str(r.id) for r in rows])
        for row in rows:
            yield OrderRecord(
                id=str(row.id),
                order_number=row.order_number,
                order_type=row.order_type,
                status=row.status,
                payment_method=row.payment_method,
                payment_status=row.payment_status,
                customer_name=row.customer_name,
                subtotal=_money(row.subtotal),
                delivery_charges=_money(row.delivery_charges),
                discount=_money(row.discount),
                created_by_user_id=row.created_by_user_id,
                created_at=_aware(row.created_at),
                lines=tuple(lines[str(row.id)]),
            )
        if len(rows) < page_size:
            break
        # ドライバが返した生の値をそのまま次ページの境界に使う
        cursor = (rows[-1].created_at, rows[-1].id)
    logger.debug("Streamed orders in %d page(s)", pages)
