"""
Order Service — ドメイン定数

注文種別・ステータス・支払い・商品種別の列挙と、
注文種別ごとのステータス遷移経路(パス)を定義する。

遷移ルールは if/else で書かず、このテーブルの並び順だけから導出する。
新しいチャネルを追加する場合は ORDER_PATHS に1行足すだけでよい。
"""

from enum import Enum


class OrderType(str, Enum):
    DINE = "DINE"
    TAKEAWAY = "TAKEAWAY"
    DELIVERY = "DELIVERY"


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    PREPARING = "PREPARING"
    READY = "READY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    PICKED_UP = "PICKED_UP"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    ONLINE = "ONLINE"


class PaymentStatus(str, Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"


class ProductType(str, Enum):
    ITEM = "ITEM"
    DEAL = "DEAL"


class UserRole(str, Enum):
    MANAGER = "Manager"
    USER = "User"


class CancelPolicy(str, Enum):
    """キャンセル権限のポリシー（環境変数 CANCEL_POLICY で切り替える）"""
    ANY_ROLE = "ANY_ROLE"
    MANAGER_ONLY = "MANAGER_ONLY"


# ── 注文種別ごとの前進パス ───────────────────────

ORDER_PATHS: dict[OrderType, tuple[OrderStatus, ...]] = {
    OrderType.DINE: (
        OrderStatus.DRAFT,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.FINISHED,
    ),
    OrderType.TAKEAWAY: (
        OrderStatus.DRAFT,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.PICKED_UP,
        OrderStatus.FINISHED,
    ),
    OrderType.DELIVERY: (
        OrderStatus.DRAFT,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.FINISHED,
    ),
}

TERMINAL_STATUSES = frozenset({OrderStatus.FINISHED, OrderStatus.CANCELLED})

# payment_status 以外の編集可能フィールド（API 上の名前）
EDITABLE_FIELDS = (
    "order_type",
    "payment_method",
    "customer_name",
    "customer_phone",
    "customer_address",
    "delivery_charges",
    "discount",
    "order_lines",
)

ORDER_NUMBER_PREFIX = "ORD-AC-"
DEFAULT_ORDER_NUMBER_MAX_ATTEMPTS = 100

# 金額列は NUMERIC(10, 2)、数量列は INTEGER
MAX_AMOUNT = 99_999_999.99
MAX_QUANTITY = 2_147_483_647
