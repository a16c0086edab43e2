"""
Dashboard Service — 集計エンジン (Statistics Aggregator)

注文ストリームを1件ずつ受け取り、以下を同時に集計する。

    overview       … 全期間の集計
    order_summary  … 種別・ステータス・支払い方法の内訳
    top_items / top_deals … 販売数量の上位 10 件
    day_history    … 営業日 (06:00 〜 翌 05:59:59) ごとの集計
    monthly / yearly … 暦月・暦年ごとの集計
    recent_orders  … 直近 10 件

I/O を一切持たない純粋な集計で、同じ入力と同じ now からは常に同じ出力になる。
「現在時刻」は呼び出し側から渡す。
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable

COMPLETED_STATUSES = frozenset({"FINISHED", "DELIVERED", "PICKED_UP"})
EXCLUDED_STATUSES = frozenset({"DRAFT", "CANCELLED"})

ORDER_TYPES = ("DINE", "TAKEAWAY", "DELIVERY")
ORDER_STATUSES = (
    "DRAFT",
    "PREPARING",
    "READY",
    "OUT_FOR_DELIVERY",
    "DELIVERED",
    "PICKED_UP",
    "FINISHED",
    "CANCELLED",
)
PAYMENT_METHODS = ("CASH", "ONLINE")

DAY_CYCLE_START = time(6, 0)
TOP_N = 10
RECENT_N = 10

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


@dataclass(frozen=True)
class LineRecord:
    product_type: str
    product_id: str
    name_at_sale: str
    quantity: int
    line_total: float


@dataclass(frozen=True)
class OrderRecord:
    """集計に必要な注文の射影"""
    id: str
    order_number: str
    order_type: str
    status: str
    payment_method: str | None
    payment_status: str
    customer_name: str | None
    subtotal: float
    delivery_charges: float
    discount: float
    created_by_user_id: str | None
    created_at: datetime
    lines: tuple[LineRecord, ...] = ()

    @property
    def revenue(self) -> float:
        # 注文単位では 0 で切り捨てない
        return self.subtotal + self.delivery_charges - self.discount

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["total"] = round(max(0.0, self.revenue), 2)
        data["order_lines"] = data.pop("lines")
        return data


# ── 営業日 (Day Cycle) ───────────────────────────

def cycle_date(moment: datetime, tz: tzinfo) -> date:
    """06:00 より前の注文は前日の営業日に属する。"""
    local = moment.astimezone(tz)
    if local.time() < DAY_CYCLE_START:
        return local.date() - timedelta(days=1)
    return local.date()


def last_completed_cycle(now: datetime, tz: tzinfo) -> date:
    """進行中の営業日の1つ前。"""
    return cycle_date(now, tz) - timedelta(days=1)


def cycle_key(start: date) -> str:
    """例: 12-01-2026/13-01-26"""
    end = start + timedelta(days=1)
    return f"{start:%d-%m-%Y}/{end:%d-%m-%y}"


def month_label(year: int, month: int) -> str:
    return f"{MONTH_NAMES[month - 1]} {year}"


# ── 期間ごとの集計 ───────────────────────────────

class PeriodStats:
    """1つの期間（全体・営業日・月・年）の集計値"""

    def __init__(self) -> None:
        self.total_orders = 0
        self.completed_orders = 0
        self.cancelled_orders = 0
        self.total_revenue = 0.0
        self.total_items_quantity = 0
        self.total_delivery_charges = 0.0
        self.total_discount = 0.0
        self.payments = {m: {"amount": 0.0, "count": 0} for m in PAYMENT_METHODS}

    def add(self, order: OrderRecord) -> None:
        self.total_orders += 1
        if order.status in COMPLETED_STATUSES:
            revenue = order.revenue
            self.completed_orders += 1
            self.total_revenue += revenue
            self.total_delivery_charges += order.delivery_charges
            self.total_discount += order.discount
            if order.payment_method in self.payments:
                self.payments[order.payment_method]["amount"] += revenue
                self.payments[order.payment_method]["count"] += 1
        if order.status == "CANCELLED":
            self.cancelled_orders += 1
        if order.status not in EXCLUDED_STATUSES:
            self.total_items_quantity += sum(line.quantity for line in order.lines)

    def payment_methods(self) -> dict:
        return {
            m: {"amount": round(p["amount"], 2), "count": p["count"]}
            for m, p in self.payments.items()
        }

    def to_dict(self) -> dict:
        return {
            "total_orders": self.total_orders,
            "completed_orders": self.completed_orders,
            "cancelled_orders": self.cancelled_orders,
            "total_revenue": round(self.total_revenue, 2),
            "total_items_quantity": self.total_items_quantity,
            "total_delivery_charges": round(self.total_delivery_charges, 2),
            "total_discount": round(self.total_discount, 2),
            "payment_methods": self.payment_methods(),
        }


@dataclass
class _ProductTally:
    id: str
    name: str
    quantity: int = 0
    revenue: float = 0.0


def rank_products(tallies: Iterable[_ProductTally], limit: int = TOP_N) -> list[dict]:
    """数量の降順、同数なら売上の降順。それでも同じなら商品 ID 順。"""
    ranked = sorted(tallies, key=lambda t: (-t.quantity, -t.revenue, t.id))
    return [
        {"id": t.id, "name": t.name, "quantity": t.quantity, "revenue": round(t.revenue, 2)}
        for t in ranked[:limit]
    ]


# ── アキュムレータ ───────────────────────────────

@dataclass
class DashboardAccumulator:
    """
    注文を1件ずつ add() し、最後に build() でレポートを組み立てる。

    保持するのはバケットごとの集計値だけで、注文そのものは
    直近 RECENT_N 件しか保持しない。
    """
    tz: tzinfo
    overall: PeriodStats = field(default_factory=PeriodStats)
    days: dict = field(default_factory=lambda: defaultdict(PeriodStats))
    months: dict = field(default_factory=lambda: defaultdict(PeriodStats))
    years: dict = field(default_factory=lambda: defaultdict(PeriodStats))
    orders_by_type: dict = field(default_factory=lambda: dict.fromkeys(ORDER_TYPES, 0))
    orders_by_status: dict = field(default_factory=lambda: dict.fromkeys(ORDER_STATUSES, 0))
    items: dict = field(default_factory=dict)
    deals: dict = field(default_factory=dict)
    recent: list = field(default_factory=list)

    def add(self, order: OrderRecord) -> None:
        local = order.created_at.astimezone(self.tz)

        self.overall.add(order)
        self.days[cycle_date(order.created_at, self.tz)].add(order)
        self.months[(local.year, local.month)].add(order)
        self.years[local.year].add(order)

        self.orders_by_status[order.status] = self.orders_by_status.get(order.status, 0) + 1
        if order.status not in EXCLUDED_STATUSES:
            self.orders_by_type[order.order_type] = self.orders_by_type.get(order.order_type, 0) + 1
            for line in order.lines:
                tallies = self.items if line.product_type == "ITEM" else self.deals
                tally = tallies.get(line.product_id)
                if tally is None:
                    tally = tallies[line.product_id] = _ProductTally(line.product_id, line.name_at_sale)
                tally.quantity += line.quantity
                tally.revenue += line.line_total

        self.recent.append(order)
        self.recent.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        del self.recent[RECENT_N:]

    def _day_history(self, now: datetime) -> dict:
        dates = set(self.days)
        if dates:
            day = min(dates)
            last = last_completed_cycle(now, self.tz)
            while day <= last:
                dates.add(day)
                day += timedelta(days=1)

        history = {}
        for day in sorted(dates, reverse=True):
            key = cycle_key(day)
            stats = self.days.get(day) or PeriodStats()
            cycle_start = datetime.combine(day, DAY_CYCLE_START, tzinfo=self.tz)
            history[key] = {
                "date": key,
                "cycle_start": cycle_start.isoformat(),
                **stats.to_dict(),
            }
        return history

    def build(self, now: datetime) -> dict:
        overview = self.overall.to_dict()
        payment_methods = overview.pop("payment_methods")
        return {
            "overview": overview,
            "order_summary": {
                "total_orders": self.overall.total_orders,
                "orders_by_type": dict(self.orders_by_type),
                "orders_by_status": dict(self.orders_by_status),
                "cancelled_orders_count": self.orders_by_status.get("CANCELLED", 0),
                "payment_methods": payment_methods,
            },
            "top_items": rank_products(self.items.values()),
            "top_deals": rank_products(self.deals.values()),
            "day_history": self._day_history(now),
            "monthly": {
                f"{year}-{month:02d}": {"period": month_label(year, month), **stats.to_dict()}
                for (year, month), stats in sorted(self.months.items(), reverse=True)
            },
            "yearly": {
                str(year): {"period": str(year), **stats.to_dict()}
                for year, stats in sorted(self.years.items(), reverse=True)
            },
            "recent_orders": [order.to_dict() for order in self.recent],
        }


def build_dashboard(orders: Iterable[OrderRecord], now: datetime, tz: tzinfo) -> dict:
    """注文の集合からダッシュボードを組み立てる（テスト・バッチ用の同期版）。"""
    acc = DashboardAccumulator(tz)
    for order in orders:
        acc.add(order)
    return acc.build(now)
