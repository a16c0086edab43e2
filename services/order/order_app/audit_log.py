"""
Order Service — 監査ログ (Audit Log Sink)

ライフサイクルに関わる操作（ステータス変更・差し戻し・キャンセル・削除）を
追記専用で記録する。UPDATE / DELETE は一切行わない。

書き込みは呼び出し側と同じセッション（トランザクション）で行うため、
ステータスの永続化と監査ログは一緒にコミット・ロールバックされる。
"""

import json
import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import OrderAggregate, to_datetime
from .errors import ValidationError
from .events import ActingUser, AuditAction, AuditEvent
from .schema import with_timestamps

logger = logging.getLogger(__name__)

MAX_EVENT_LIMIT = 500


def build_event(
    action: AuditAction,
    order: OrderAggregate,
    acting_user: ActingUser,
    details: dict | None = None,
) -> AuditEvent:
    return AuditEvent(
        action=action,
        order_id=order.id,
        order_number=order.order_number,
        acting_user=acting_user,
        details=details or {},
        timestamp=datetime.now(timezone.utc),
    )


async def append_event(session: AsyncSession, event: AuditEvent) -> str:
    """監査イベントを1件追記し、採番した ID を返す。コミットは呼び出し側。"""
    event_id = str(uuid4())
    await session.execute(
        with_timestamps(text("""
            INSERT INTO audit_log
                (id, action, order_id, order_number, user_id, username, user_role, details, created_at)
            VALUES
                (:id, :action, :order_id, :order_number, :user_id, :username, :user_role, :details, :now)
        """), "now"),
        {
            "id": event_id,
            "action": event.action.value,
            "order_id": event.order_id,
            "order_number": event.order_number,
            "user_id": event.acting_user.user_id,
            "username": event.acting_user.username,
            "user_role": event.acting_user.role,
            "details": json.dumps(event.details, default=str),
            "now": event.timestamp,
        },
    )
    logger.info(
        "[AUDIT] %s order=%s by=%s(%s) details=%s",
        event.action.value,
        event.order_number,
        event.acting_user.username,
        event.acting_user.role,
        json.dumps(event.details, default=str),
    )
    return event_id


def _row_to_dict(row) -> dict:
    created_at = to_datetime(row.created_at)
    return {
        "id": row.id,
        "action": row.action,
        "order_id": row.order_id,
        "order_number": row.order_number,
        "user_id": row.user_id,
        "username": row.username,
        "user_role": row.user_role,
        "details": json.loads(row.details) if isinstance(row.details, str) else row.details,
        "created_at": created_at.isoformat() if created_at else None,
    }


async def load_events(session: AsyncSession, order_id: str) -> list[dict]:
    """指定注文の監査イベントを時系列順に返す。"""
    result = await session.execute(
        text("""
            SELECT id, action, order_id, order_number, user_id, username, user_role, details, created_at
            FROM audit_log
            WHERE order_id = :order_id
            ORDER BY created_at ASC
        """),
        {"order_id": order_id},
    )
    return [_row_to_dict(row) for row in result.fetchall()]


async def load_all_events(
    session: AsyncSession, limit: int = MAX_EVENT_LIMIT
) -> list[dict]:
    """直近の監査イベントを新しい順に返す。"""
    if limit < 1 or limit > MAX_EVENT_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_EVENT_LIMIT}")
    result = await session.execute(
        text("""
            SELECT id, action, order_id, order_number, user_id, username, user_role, details, created_at
            FROM audit_log
            ORDER BY created_at DESC
            LIMIT :limit
        """),
        {"limit": limit},
    )
    return [_row_to_dict(row) for row in result.fetchall()]
