"""
Order Service — 編集可否ガード

ステータス遷移とは独立に、注文のフィールド編集が許されるかを判定する。

    payment_status だけの変更 … どのステータスでも可
    それ以外を含む変更       … DRAFT のときだけ可
                               (PREPARING の Manager は「まず DRAFT に戻す」よう案内)

あわせて、ステータスに依存しないフィールド単位の検証と正規化を行う。
明細のカタログ解決 (スナップショット) は catalog.py の責務。
"""

import logging
import math

from .aggregate import OrderAggregate
from .constants import (
    EDITABLE_FIELDS,
    MAX_AMOUNT,
    MAX_QUANTITY,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    ProductType,
)
from .errors import EditForbidden, ValidationError

logger = logging.getLogger(__name__)

CUSTOMER_NAME_MAX = 100
CUSTOMER_PHONE_MAX = 30


# ── 編集可否 ─────────────────────────────────────

def is_payment_status_only(fields) -> bool:
    fields = set(fields)
    return fields == {"payment_status"}


def check_edit_eligibility(current_status: str, fields, is_manager: bool) -> None:
    """
    編集が許されない場合 EditForbidden を送出する。

    fields は呼び出し側が実際に指定したフィールド名の集合。
    何も指定されていなければ何も変わらないので許可する。
    """
    fields = set(fields)
    if not fields or is_payment_status_only(fields):
        return
    if current_status == OrderStatus.DRAFT.value:
        return

    if is_manager and current_status == OrderStatus.PREPARING.value:
        message = (
            "Cannot edit PREPARING order directly. Reopen it to DRAFT first "
            "using the order status endpoint, then apply the edit."
        )
    elif is_manager:
        message = (
            f"Order status is {current_status}. Only DRAFT orders can be edited. "
            "Managers can reopen PREPARING orders to DRAFT first."
        )
    else:
        message = (
            f"Only DRAFT orders can be edited. Current order status: {current_status}. "
            "Only payment_status can be changed at this stage."
        )
    logger.info("Edit rejected: status=%s fields=%s", current_status, sorted(fields))
    raise EditForbidden(message)


# ── フィールド検証 ───────────────────────────────

def parse_amount(value, label: str) -> float:
    """None は 0 とみなす。数値に解釈できない・負・列の上限を超える値は ValidationError。"""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a non-negative number")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a non-negative number") from None
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        raise ValidationError(f"{label} must be a non-negative number")
    return check_amount_limit(round(amount, 2), label)


def check_amount_limit(amount: float, label: str) -> float:
    """金額列 NUMERIC(10, 2) に収まらなければ ValidationError。"""
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{label} must not exceed {MAX_AMOUNT:.2f}")
    return amount


def _enum_value(enum_cls, value, message: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        raise ValidationError(message) from None


def _customer_field(value, label: str, max_length: int | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{label} must be less than {max_length} characters")
    return value or None


def validate_order_lines(lines) -> list[dict]:
    """明細リクエストを検証・正規化する（カタログ参照はしない）。"""
    if not isinstance(lines, list) or not lines:
        raise ValidationError(
            "Order lines are required. An order must contain at least one item."
        )
    normalized = []
    for line in lines:
        if not isinstance(line, dict):
            raise ValidationError("Each order line must be an object")
        product_type = _enum_value(
            ProductType,
            line.get("product_type"),
            "Each order line must have product_type as ITEM or DEAL",
        )
        product_id = line.get("product_id")
        quantity = line.get("quantity")
        if not product_id:
            raise ValidationError("Each order line must have a product_id")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Each order line must have a quantity of at least 1")
        if quantity > MAX_QUANTITY:
            raise ValidationError(
                f"Each order line must have a quantity of at most {MAX_QUANTITY}"
            )
        normalized.append(
            {"product_type": product_type, "product_id": str(product_id), "quantity": quantity}
        )
    return normalized


def validate_changes(changes: dict, existing: OrderAggregate | None = None) -> dict:
    """
    指定されたフィールドだけを検証・正規化して返す。

    existing が None の場合は新規作成として扱い、order_type と order_lines を必須にする。
    DELIVERY の顧客情報・配達料のチェックは、既存値と変更後の値を合成して行う。
    """
    unknown = set(changes) - set(EDITABLE_FIELDS) - {"payment_status"}
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    creating = existing is None
    out: dict = {}

    if "order_type" in changes or creating:
        out["order_type"] = _enum_value(
            OrderType,
            changes.get("order_type"),
            "Order type must be DINE, TAKEAWAY, or DELIVERY",
        )
    if "payment_method" in changes:
        value = changes["payment_method"]
        out["payment_method"] = None if value is None else _enum_value(
            PaymentMethod, value, "Payment method must be CASH, ONLINE, or null"
        )
    if "payment_status" in changes:
        out["payment_status"] = _enum_value(
            PaymentStatus, changes["payment_status"], "Payment status must be PAID or UNPAID"
        )
    if "customer_name" in changes:
        out["customer_name"] = _customer_field(
            changes["customer_name"], "Customer name", CUSTOMER_NAME_MAX
        )
    if "customer_phone" in changes:
        out["customer_phone"] = _customer_field(
            changes["customer_phone"], "Customer phone", CUSTOMER_PHONE_MAX
        )
    if "customer_address" in changes:
        out["customer_address"] = _customer_field(
            changes["customer_address"], "Customer address", None
        )
    if "delivery_charges" in changes:
        out["delivery_charges"] = parse_amount(changes["delivery_charges"], "Delivery charges")
    if "discount" in changes:
        out["discount"] = parse_amount(changes["discount"], "Discount")
    if "order_lines" in changes or creating:
        out["order_lines"] = validate_order_lines(changes.get("order_lines"))

    if creating:
        out.setdefault("payment_method", None)
        out.setdefault("payment_status", PaymentStatus.UNPAID.value)
        out.setdefault("customer_name", None)
        out.setdefault("customer_phone", None)
        out.setdefault("customer_address", None)
        out.setdefault("delivery_charges", 0.0)
        out.setdefault("discount", 0.0)

    _check_delivery_requirements(out, existing)
    return out


def _check_delivery_requirements(out: dict, existing: OrderAggregate | None) -> None:
    def final(field):
        if field in out:
            return out[field]
        return getattr(existing, field) if existing is not None else None

    if final("order_type") != OrderType.DELIVERY.value:
        return
    if not (final("customer_name") and final("customer_phone") and final("customer_address")):
        raise ValidationError("Delivery orders require customer name, phone, and address")
    if not final("delivery_charges") or final("delivery_charges") <= 0:
        raise ValidationError("Delivery orders require positive delivery charges")
