"""
Order Service — 注文ライフサイクルエンジン

注文種別ごとのパス (constants.ORDER_PATHS) 上のインデックス比較だけで
遷移を判定する。判定は2つの独立した述語に分かれている:

    classify_transition  … パス上で位置関係として成立するか（トポロジー）
    is_authorized        … そのロールにその遷移が許されるか（権限）

decide_transition は両者を合成し、監査ログに出すべきアクションも決める。
永続化や監査ログの書き込みは呼び出し側（commands.py）の責務。
"""

from dataclasses import dataclass
from enum import Enum

from .constants import (
    ORDER_PATHS,
    TERMINAL_STATUSES,
    CancelPolicy,
    OrderStatus,
    OrderType,
)
from .events import AuditAction


class TransitionKind(str, Enum):
    FORWARD = "FORWARD"
    BACKWARD = "BACKWARD"
    CANCEL = "CANCEL"
    NOOP = "NOOP"
    INVALID = "INVALID"


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    is_override: bool
    reason: str
    kind: TransitionKind
    audit_action: AuditAction | None = None


_AUDIT_ACTIONS = {
    TransitionKind.FORWARD: AuditAction.ORDER_STATUS_CHANGED,
    TransitionKind.BACKWARD: AuditAction.ORDER_REOPENED,
    TransitionKind.CANCEL: AuditAction.ORDER_CANCELLED,
}


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _position(path: tuple[OrderStatus, ...], status: OrderStatus) -> int | None:
    try:
        return path.index(status)
    except ValueError:
        return None


# ── 述語 1: トポロジー ───────────────────────────

def classify_transition(order_type, current_status, requested_status) -> TransitionKind:
    """パス上の位置関係だけで遷移の種類を判定する（ロールは見ない）。"""
    order_type = _coerce(OrderType, order_type)
    current = _coerce(OrderStatus, current_status)
    requested = _coerce(OrderStatus, requested_status)
    if order_type is None or current is None or requested is None:
        return TransitionKind.INVALID

    if current == requested:
        return TransitionKind.NOOP

    path = ORDER_PATHS[order_type]
    i = _position(path, current)
    if i is None:
        # CANCELLED や別チャネルのステータスからは動かせない
        return TransitionKind.INVALID

    if requested == OrderStatus.CANCELLED:
        if current in TERMINAL_STATUSES:
            return TransitionKind.INVALID
        return TransitionKind.CANCEL

    j = _position(path, requested)
    if j is None:
        return TransitionKind.INVALID
    if j == i + 1:
        return TransitionKind.FORWARD
    if j == i - 1:
        return TransitionKind.BACKWARD
    return TransitionKind.INVALID


# ── 述語 2: 権限 ─────────────────────────────────

def is_authorized(
    kind: TransitionKind,
    is_manager: bool,
    cancel_policy: CancelPolicy = CancelPolicy.ANY_ROLE,
) -> bool:
    """遷移の種類に対してロールが許可されているかを返す。"""
    if kind == TransitionKind.FORWARD:
        return True
    if kind == TransitionKind.BACKWARD:
        return is_manager
    if kind == TransitionKind.CANCEL:
        return is_manager or cancel_policy == CancelPolicy.ANY_ROLE
    return False


# ── 合成 ─────────────────────────────────────────

def valid_next_statuses(
    order_type,
    current_status,
    is_manager: bool,
    cancel_policy: CancelPolicy = CancelPolicy.ANY_ROLE,
) -> list[OrderStatus]:
    """現在のステータスから1回の呼び出しで移れるステータス一覧。

    並びは 前進 → キャンセル → 差し戻し(Manager のみ)。
    """
    order_type = _coerce(OrderType, order_type)
    if order_type is None:
        return []
    candidates = [*ORDER_PATHS[order_type], OrderStatus.CANCELLED]
    result = []
    for kind in (TransitionKind.FORWARD, TransitionKind.CANCEL, TransitionKind.BACKWARD):
        for status in candidates:
            if status in result:
                continue
            if classify_transition(order_type, current_status, status) != kind:
                continue
            if is_authorized(kind, is_manager, cancel_policy):
                result.append(status)
    return result


def _status_label(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def decide_transition(
    order_type,
    current_status,
    requested_status,
    is_manager: bool,
    cancel_policy: CancelPolicy = CancelPolicy.ANY_ROLE,
) -> TransitionDecision:
    """
    ステータス変更リクエストを判定する。

    - 前進: 全ロール可、オーバーライドではない
    - キャンセル: 終端以外から、cancel_policy に従う
    - 差し戻し: Manager のみ、is_override=True
    - 同一ステータス・飛び越し・別ブランチ・終端からの離脱: 拒否
    """
    kind = classify_transition(order_type, current_status, requested_status)
    current = _status_label(current_status)
    requested = _status_label(requested_status)
    type_label = _status_label(order_type)

    if _coerce(OrderType, order_type) is None:
        return TransitionDecision(
            False, False, f"Invalid order type: {type_label}", kind
        )
    if _coerce(OrderStatus, requested_status) is None:
        return TransitionDecision(
            False,
            False,
            "Invalid order status. Must be one of: "
            + ", ".join(s.value for s in OrderStatus),
            kind,
        )

    options = valid_next_statuses(order_type, current_status, is_manager, cancel_policy)
    hint = ", ".join(s.value for s in options) or "none"

    if kind == TransitionKind.NOOP:
        return TransitionDecision(
            False,
            False,
            f"Order is already {current}. Valid next statuses: {hint}",
            kind,
        )

    if kind == TransitionKind.INVALID:
        return TransitionDecision(
            False,
            False,
            f"Invalid status transition from {current} to {requested} "
            f"for {type_label} order. Valid next statuses: {hint}",
            kind,
        )

    if not is_authorized(kind, is_manager, cancel_policy):
        if kind == TransitionKind.CANCEL:
            reason = f"Only Managers can cancel orders. Valid next statuses: {hint}"
        else:
            reason = (
                f"Only Managers can move a {type_label} order back from "
                f"{current} to {requested}. Valid next statuses: {hint}"
            )
        return TransitionDecision(False, False, reason, kind)

    if kind == TransitionKind.BACKWARD:
        return TransitionDecision(
            True,
            True,
            "Status transition allowed (Manager override)",
            kind,
            _AUDIT_ACTIONS[kind],
        )
    return TransitionDecision(
        True, False, "Status transition allowed", kind, _AUDIT_ACTIONS[kind]
    )
