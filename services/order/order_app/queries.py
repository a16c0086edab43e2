"""
Order Service — クエリハンドラ (CQRS の Read 側)

orders / order_lines テーブルから注文を読み出す。
コマンド側もステータス判定の前にここで現在の注文を取得する。
"""

import math

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import OrderAggregate, OrderLine, to_datetime, to_money
from .constants import OrderStatus, OrderType, PaymentStatus
from .errors import ValidationError
from .events import ActingUser

_ORDER_COLUMNS = """
    id, order_number, order_type, status, payment_method, payment_status,
    customer_name, customer_phone, customer_address,
    subtotal, delivery_charges, discount,
    created_by_user_id, version, created_at, updated_at
"""

_LINE_COLUMNS = """
    id, order_id, product_type, product_id, name_at_sale,
    unit_price_at_sale, quantity, line_total
"""

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 100


async def _load_lines(session: AsyncSession, order_ids: list[str]) -> dict[str, list[OrderLine]]:
    if not order_ids:
        return {}
    result = await session.execute(
        text(f"""
            SELECT {_LINE_COLUMNS}
            FROM order_lines
            WHERE order_id IN :ids
            ORDER BY order_id, position ASC
        """).bindparams(bindparam("ids", expanding=True)),
        {"ids": order_ids},
    )
    lines: dict[str, list[OrderLine]] = {oid: [] for oid in order_ids}
    for row in result.fetchall():
        lines[str(row.order_id)].append(OrderLine.from_row(row))
    return lines


async def get_order(session: AsyncSession, order_id: str) -> OrderAggregate | None:
    """注文を明細込みで1件取得する。"""
    result = await session.execute(
        text(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = :id"),
        {"id": str(order_id)},
    )
    row = result.fetchone()
    if not row:
        return None
    lines = await _load_lines(session, [str(row.id)])
    return OrderAggregate.from_row(row, lines[str(row.id)])


async def order_number_exists(session: AsyncSession, order_number: str) -> bool:
    result = await session.execute(
        text("SELECT 1 FROM orders WHERE order_number = :n"),
        {"n": order_number},
    )
    return result.fetchone() is not None


def _check_filter(enum_cls, value, label: str):
    if value is None:
        return None
    try:
        return enum_cls(value).value
    except ValueError:
        valid = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {label}. Valid values are: {valid}") from None


async def list_orders(
    session: AsyncSession,
    status: str | None = None,
    order_type: str | None = None,
    payment_status: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_LIMIT,
) -> dict:
    """条件に合う注文を新しい順にページ単位で返す。"""
    if page < 1:
        raise ValidationError("Page must be greater than 0")
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_LIMIT}")

    filters = {
        "status": _check_filter(OrderStatus, status, "status"),
        "order_type": _check_filter(OrderType, order_type, "order_type"),
        "payment_status": _check_filter(PaymentStatus, payment_status, "payment_status"),
    }
    params = {k: v for k, v in filters.items() if v is not None}
    where = " AND ".join(f"{k} = :{k}" for k in params) or "1 = 1"

    count = await session.execute(
        text(f"SELECT COUNT(*) AS total FROM orders WHERE {where}"), params
    )
    total = int(count.scalar_one())

    result = await session.execute(
        text(f"""
            SELECT {_ORDER_COLUMNS}
            FROM orders
            WHERE {where}
            ORDER BY created_at DESC, id DESC
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": limit, "offset": (page - 1) * limit},
    )
    rows = result.fetchall()
    lines = await _load_lines(session, [str(r.id) for r in rows])

    return {
        "orders": [
            OrderAggregate.from_row(r, lines[str(r.id)]).to_dict() for r in rows
        ],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        },
    }


async def list_order_lines(session: AsyncSession) -> list[dict]:
    """全明細を、親注文の概要付きで新しい順に返す。"""
    result = await session.execute(
        text("""
            SELECT l.id, l.order_id, l.product_type, l.product_id, l.name_at_sale,
                   l.unit_price_at_sale, l.quantity, l.line_total, l.created_at,
                   o.order_number, o.order_type, o.status, o.subtotal,
                   o.created_at AS order_created_at
            FROM order_lines l
            JOIN orders o ON o.id = l.order_id
            ORDER BY l.created_at DESC, l.order_id, l.position
        """)
    )
    out = []
    for row in result.fetchall():
        created_at = to_datetime(row.created_at)
        order_created_at = to_datetime(row.order_created_at)
        out.append(
            {
                **OrderLine.from_row(row).to_dict(),
                "created_at": created_at.isoformat() if created_at else None,
                "order": {
                    "id": str(row.order_id),
                    "order_number": row.order_number,
                    "order_type": row.order_type,
                    "status": row.status,
                    "subtotal": to_money(row.subtotal),
                    "created_at": order_created_at.isoformat() if order_created_at else None,
                },
            }
        )
    return out


async def get_active_user(session: AsyncSession, user_id: str) -> ActingUser | None:
    """有効なユーザーだけを返す。存在しない・無効なら None。"""
    result = await session.execute(
        text("SELECT id, username, role, is_active FROM users WHERE id = :id"),
        {"id": str(user_id)},
    )
    row = result.fetchone()
    if not row or not bool(row.is_active):
        return None
    return ActingUser(user_id=str(row.id), username=row.username, role=row.role)
