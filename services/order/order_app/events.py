"""
Order Service — イベント定義

監査ログに追記するイベント (AuditEvent) と、
Redis Pub/Sub の order_events チャネルへ発行するドメインイベントを定義する。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditAction(str, Enum):
    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    ORDER_REOPENED = "ORDER_REOPENED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_DELETED = "ORDER_DELETED"


class ActingUser(BaseModel):
    """操作したユーザー"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    role: str


class AuditEvent(BaseModel):
    """監査ログの1レコード（追記のみ）"""
    model_config = ConfigDict(frozen=True)

    action: AuditAction
    order_id: str
    order_number: str
    acting_user: ActingUser
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


# ── order_events チャネルへ発行するイベント ─────────

class OrderCreated(BaseModel):
    """注文が作成された"""
    order_id: str
    order_number: str
    order_type: str
    subtotal: float
    total: float
    created_by_user_id: str
    timestamp: datetime


class OrderUpdated(BaseModel):
    """注文の内容が編集された"""
    order_id: str
    order_number: str
    fields: list[str]
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """注文のステータスが変わった（前進・差し戻し・キャンセル）"""
    order_id: str
    order_number: str
    order_type: str
    previous_status: str
    new_status: str
    is_override: bool
    timestamp: datetime


class OrderDeleted(BaseModel):
    """注文が削除された（Manager のみ）"""
    order_id: str
    order_number: str
    timestamp: datetime
