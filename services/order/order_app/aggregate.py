"""
Order Service — 注文集約 (Order Aggregate)

注文と注文明細の状態を保持し、金額を算出する。

明細 (OrderLine) は作成時点のカタログ名・単価をスナップショットとして持ち、
以後カタログが変わっても書き換えない。明細を変える場合は
全件削除して新しいスナップショットを作り直す。

    total = max(0, subtotal + delivery_charges - discount)
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone


def to_money(value) -> float:
    """DB の NUMERIC (Decimal / float / None) を float に揃える。"""
    if value is None:
        return 0.0
    return round(float(value), 2)


def to_datetime(value) -> datetime | None:
    """DB ドライバごとに異なる日時表現を aware な datetime に揃える。"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def compute_total(subtotal: float, delivery_charges: float, discount: float) -> float:
    return round(max(0.0, subtotal + delivery_charges - discount), 2)


@dataclass(frozen=True)
class OrderLine:
    """
    不変の注文明細。

    frozen=True なので作成後に単価や名前を変更できない。
    """
    product_type: str
    product_id: str
    name_at_sale: str
    unit_price_at_sale: float
    quantity: int
    line_total: float
    id: str | None = None

    @classmethod
    def snapshot(
        cls,
        product_type: str,
        product_id: str,
        name: str,
        unit_price: float,
        quantity: int,
    ) -> "OrderLine":
        unit_price = to_money(unit_price)
        return cls(
            product_type=product_type,
            product_id=product_id,
            name_at_sale=name,
            unit_price_at_sale=unit_price,
            quantity=quantity,
            line_total=round(unit_price * quantity, 2),
        )

    @classmethod
    def from_row(cls, row) -> "OrderLine":
        return cls(
            id=str(row.id),
            product_type=row.product_type,
            product_id=str(row.product_id),
            name_at_sale=row.name_at_sale,
            unit_price_at_sale=to_money(row.unit_price_at_sale),
            quantity=int(row.quantity),
            line_total=to_money(row.line_total),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def subtotal_of(lines: list[OrderLine]) -> float:
    return round(sum(line.line_total for line in lines), 2)


class OrderAggregate:
    """
    注文集約 — orders テーブルの1行と、その明細から構築する。

    version は楽観的ロック用。ステータス変更と編集は
    読み出した version と一致する場合にだけ書き込める。
    """

    def __init__(self) -> None:
        self.id: str | None = None
        self.order_number: str = ""
        self.order_type: str = ""
        self.status: str = "DRAFT"
        self.payment_method: str | None = None
        self.payment_status: str = "UNPAID"
        self.customer_name: str | None = None
        self.customer_phone: str | None = None
        self.customer_address: str | None = None
        self.subtotal: float = 0.0
        self.delivery_charges: float = 0.0
        self.discount: float = 0.0
        self.created_by_user_id: str | None = None
        self.created_at: datetime | None = None
        self.updated_at: datetime | None = None
        self.version: int = 0
        self.lines: list[OrderLine] = []

    @property
    def total(self) -> float:
        return compute_total(self.subtotal, self.delivery_charges, self.discount)

    @classmethod
    def from_row(cls, row, lines: list[OrderLine] | None = None) -> "OrderAggregate":
        agg = cls()
        agg.id = str(row.id)
        agg.order_number = row.order_number
        agg.order_type = row.order_type
        agg.status = row.status
        agg.payment_method = row.payment_method
        agg.payment_status = row.payment_status
        agg.customer_name = row.customer_name
        agg.customer_phone = row.customer_phone
        agg.customer_address = row.customer_address
        agg.subtotal = to_money(row.subtotal)
        agg.delivery_charges = to_money(row.delivery_charges)
        agg.discount = to_money(row.discount)
        agg.created_by_user_id = row.created_by_user_id
        agg.created_at = to_datetime(row.created_at)
        agg.updated_at = to_datetime(row.updated_at)
        agg.version = int(row.version)
        agg.lines = list(lines or [])
        return agg

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "order_type": self.order_type,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "subtotal": self.subtotal,
            "delivery_charges": self.delivery_charges,
            "discount": self.discount,
            "total": self.total,
            "created_by_user_id": self.created_by_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "order_lines": [line.to_dict() for line in self.lines],
        }
