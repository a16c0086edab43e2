"""
Order Service — コマンドハンドラ (CQRS の Write 側)

注文の作成・編集・ステータス変更・削除を処理する。

各コマンドは 1 注文に閉じた単一ライターの操作で、
「読む → 判定する → 書く」を version 列の比較 (compare-and-swap) で
原子的に行う。古い version を読んだ同時リクエストは ConflictError になる。

コミット後に Redis Pub/Sub の order_events チャネルへイベントを発行する。
"""

import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import audit_log, catalog, queries
from .aggregate import OrderAggregate, OrderLine, compute_total, subtotal_of
from .constants import (
    DEFAULT_ORDER_NUMBER_MAX_ATTEMPTS,
    CancelPolicy,
    OrderStatus,
    UserRole,
)
from .edit_guard import check_amount_limit, check_edit_eligibility, validate_changes
from .errors import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    TransitionRejected,
)
from .events import (
    ActingUser,
    AuditAction,
    OrderCreated,
    OrderDeleted,
    OrderStatusChanged,
    OrderUpdated,
)
from .lifecycle import TransitionDecision, decide_transition
from .numbering import candidate_numbers
from .schema import with_timestamps

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


def is_manager(user: ActingUser) -> bool:
    return user.role == UserRole.MANAGER.value


async def _publish(redis: aioredis.Redis | None, event: BaseModel) -> None:
    """コミット済みの変更を通知する。発行の失敗はコマンドの結果を変えない。"""
    if redis is None:
        return
    try:
        await redis.publish(ORDER_EVENTS_CHANNEL, json.dumps({
            "event_type": type(event).__name__,
            "data": event.model_dump(mode="json"),
        }, default=str))
    except RedisError:
        logger.exception("Failed to publish %s", type(event).__name__)


async def _require_order(session: AsyncSession, order_id: str) -> OrderAggregate:
    order = await queries.get_order(session, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def _insert_lines(
    session: AsyncSession, order_id: str, lines: list[OrderLine], now: datetime
) -> None:
    for position, line in enumerate(lines):
        await session.execute(
            with_timestamps(text("""
                INSERT INTO order_lines
                    (id, order_id, position, product_type, product_id, name_at_sale,
                     unit_price_at_sale, quantity, line_total, created_at)
                VALUES
                    (:id, :order_id, :position, :product_type, :product_id, :name_at_sale,
                     :unit_price_at_sale, :quantity, :line_total, :now)
            """), "now"),
            {
                "id": str(uuid4()),
                "order_id": order_id,
                "position": position,
                "product_type": line.product_type,
                "product_id": line.product_id,
                "name_at_sale": line.name_at_sale,
                "unit_price_at_sale": line.unit_price_at_sale,
                "quantity": line.quantity,
                "line_total": line.line_total,
                "now": now,
            },
        )


# ── 注文作成 ─────────────────────────────────────

async def create_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    acting_user: ActingUser,
    payload: dict,
    max_attempts: int = DEFAULT_ORDER_NUMBER_MAX_ATTEMPTS,
) -> OrderAggregate:
    """
    注文作成コマンド

    1. フィールドを検証し、明細をカタログからスナップショット
    2. 注文番号を採番して INSERT（UNIQUE 制約違反なら別の番号で再試行）
    3. コミット後に OrderCreated を発行

    新規注文は必ず DRAFT で始まる。
    """
    fields = validate_changes(payload)
    lines = await catalog.snapshot_lines(session, fields["order_lines"])
    subtotal = check_amount_limit(subtotal_of(lines), "Order subtotal")

    order_id = str(uuid4())
    for order_number in candidate_numbers(max_attempts):
        if await queries.order_number_exists(session, order_number):
            continue

        now = datetime.now(timezone.utc)
        try:
            await session.execute(
                with_timestamps(text("""
                    INSERT INTO orders
                        (id, order_number, order_type, status, payment_method, payment_status,
                         customer_name, customer_phone, customer_address,
                         subtotal, delivery_charges, discount,
                         created_by_user_id, version, created_at, updated_at)
                    VALUES
                        (:id, :order_number, :order_type, :status, :payment_method, :payment_status,
                         :customer_name, :customer_phone, :customer_address,
                         :subtotal, :delivery_charges, :discount,
                         :user_id, 0, :now, :now)
                """), "now"),
                {
                    "id": order_id,
                    "order_number": order_number,
                    "order_type": fields["order_type"],
                    "status": OrderStatus.DRAFT.value,
                    "payment_method": fields["payment_method"],
                    "payment_status": fields["payment_status"],
                    "customer_name": fields["customer_name"],
                    "customer_phone": fields["customer_phone"],
                    "customer_address": fields["customer_address"],
                    "subtotal": subtotal,
                    "delivery_charges": fields["delivery_charges"],
                    "discount": fields["discount"],
                    "user_id": acting_user.user_id,
                    "now": now,
                },
            )
            await _insert_lines(session, order_id, lines, now)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if not await queries.order_number_exists(session, order_number):
                raise
            logger.warning("Order number collision on %s, retrying", order_number)
            continue
        break
    else:
        raise ConflictError(
            f"Unable to generate unique order number after {max_attempts} attempts"
        )

    logger.info("Order created: %s by %s", order_number, acting_user.username)
    await _publish(redis, OrderCreated(
        order_id=order_id,
        order_number=order_number,
        order_type=fields["order_type"],
        subtotal=subtotal,
        total=compute_total(subtotal, fields["delivery_charges"], fields["discount"]),
        created_by_user_id=acting_user.user_id,
        timestamp=now,
    ))
    return await _require_order(session, order_id)


# ── 注文編集 ─────────────────────────────────────

_UPDATABLE_COLUMNS = (
    "order_type",
    "payment_method",
    "payment_status",
    "customer_name",
    "customer_phone",
    "customer_address",
    "delivery_charges",
    "discount",
)


async def update_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    acting_user: ActingUser,
    order_id: str,
    changes: dict,
) -> OrderAggregate:
    """
    注文編集コマンド

    changes には呼び出し側が指定したフィールドだけが入る（未指定は変更しない）。
    order_lines を指定した場合は既存明細を全削除し、カタログから取り直す。
    """
    order = await _require_order(session, order_id)
    check_edit_eligibility(order.status, changes.keys(), is_manager(acting_user))
    fields = validate_changes(changes, existing=order)
    if not fields:
        return order

    values = {col: fields[col] for col in _UPDATABLE_COLUMNS if col in fields}
    new_lines = None
    if "order_lines" in fields:
        new_lines = await catalog.snapshot_lines(session, fields["order_lines"])
        values["subtotal"] = check_amount_limit(subtotal_of(new_lines), "Order subtotal")

    now = datetime.now(timezone.utc)
    assignments = ", ".join(f"{col} = :{col}" for col in values)
    result = await session.execute(
        with_timestamps(text(f"""
            UPDATE orders
            SET {assignments}, version = version + 1, updated_at = :now
            WHERE id = :id AND version = :version
        """), "now"),
        {**values, "now": now, "id": order.id, "version": order.version},
    )
    if result.rowcount != 1:
        await session.rollback()
        logger.warning("Concurrent edit detected on %s", order.order_number)
        raise ConflictError(
            f"Order {order.order_number} was modified concurrently. Reload and retry."
        )

    if new_lines is not None:
        await session.execute(
            text("DELETE FROM order_lines WHERE order_id = :id"), {"id": order.id}
        )
        await _insert_lines(session, order.id, new_lines, now)

    await session.commit()

    logger.info("Order updated: %s fields=%s", order.order_number, sorted(fields))
    await _publish(redis, OrderUpdated(
        order_id=order.id,
        order_number=order.order_number,
        fields=sorted(fields),
        timestamp=now,
    ))
    return await _require_order(session, order.id)


# ── ステータス変更 ───────────────────────────────

async def change_status(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    acting_user: ActingUser,
    order_id: str,
    requested_status: str,
    cancel_policy: CancelPolicy = CancelPolicy.ANY_ROLE,
) -> tuple[OrderAggregate, TransitionDecision]:
    """
    ステータス変更コマンド

    1. ライフサイクルエンジンで判定（拒否なら TransitionRejected）
    2. version 比較付き UPDATE で永続化（競合なら ConflictError）
    3. 同じトランザクションで監査イベントを1件だけ追記
       - 差し戻し → ORDER_REOPENED
       - キャンセル → ORDER_CANCELLED
       - 前進 → ORDER_STATUS_CHANGED
    """
    order = await _require_order(session, order_id)
    decision = decide_transition(
        order.order_type,
        order.status,
        requested_status,
        is_manager(acting_user),
        cancel_policy,
    )
    if not decision.allowed:
        logger.info(
            "Transition rejected for %s: %s -> %s (%s)",
            order.order_number, order.status, requested_status, decision.reason,
        )
        raise TransitionRejected(decision.reason)

    now = datetime.now(timezone.utc)
    result = await session.execute(
        with_timestamps(text("""
            UPDATE orders
            SET status = :new_status, version = version + 1, updated_at = :now
            WHERE id = :id AND version = :version AND status = :current_status
        """), "now"),
        {
            "new_status": requested_status,
            "now": now,
            "id": order.id,
            "version": order.version,
            "current_status": order.status,
        },
    )
    if result.rowcount != 1:
        await session.rollback()
        logger.warning("Concurrent status change detected on %s", order.order_number)
        raise ConflictError(
            f"Order {order.order_number} status changed concurrently. Reload and retry."
        )

    details = {
        "previous_status": order.status,
        "new_status": requested_status,
        "order_type": order.order_type,
    }
    if decision.is_override:
        details["reason"] = (
            f"Manager override: Reverting order from {order.status} to {requested_status}"
        )
    await audit_log.append_event(
        session,
        audit_log.build_event(decision.audit_action, order, acting_user, details),
    )
    await session.commit()

    await _publish(redis, OrderStatusChanged(
        order_id=order.id,
        order_number=order.order_number,
        order_type=order.order_type,
        previous_status=order.status,
        new_status=requested_status,
        is_override=decision.is_override,
        timestamp=now,
    ))
    return await _require_order(session, order.id), decision


# ── 注文削除 ─────────────────────────────────────

async def delete_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    acting_user: ActingUser,
    order_id: str,
) -> dict:
    """
    注文削除コマンド（Manager のみ）

    ステータスに関係なく削除でき、ORDER_DELETED を監査ログに残す。
    """
    if not is_manager(acting_user):
        raise PermissionDenied("Access denied. Manager role required.")

    order = await _require_order(session, order_id)
    await session.execute(
        text("DELETE FROM order_lines WHERE order_id = :id"), {"id": order.id}
    )
    await session.execute(text("DELETE FROM orders WHERE id = :id"), {"id": order.id})

    summary = {
        "order_number": order.order_number,
        "status": order.status,
        "order_type": order.order_type,
        "subtotal": order.subtotal,
    }
    await audit_log.append_event(
        session,
        audit_log.build_event(
            AuditAction.ORDER_DELETED,
            order,
            acting_user,
            {"deleted_order": summary, "reason": "Order deleted by manager"},
        ),
    )
    await session.commit()

    await _publish(redis, OrderDeleted(
        order_id=order.id,
        order_number=order.order_number,
        timestamp=datetime.now(timezone.utc),
    ))
    return {"id": order.id, "order_number": order.order_number, "status": order.status}
