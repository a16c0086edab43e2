from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from order_app.aggregate import (
    OrderAggregate,
    OrderLine,
    compute_total,
    subtotal_of,
    to_datetime,
    to_money,
)


def test_total_scenario():
    assert compute_total(1000, 150, 50) == 1100


@pytest.mark.parametrize(
    "subtotal, charges, discount, expected",
    [
        (0, 0, 0, 0),
        (500, 0, 0, 500),
        (500, 0, 600, 0),
        (99.99, 0.01, 0, 100.0),
        (1000, 150, 1150, 0),
    ],
)
def test_total_is_floored_at_zero(subtotal, charges, discount, expected):
    assert compute_total(subtotal, charges, discount) == expected


def test_line_snapshot_computes_line_total():
    line = OrderLine.snapshot("ITEM", "burger", "Zinger Burger", "499.50", 3)
    assert line.unit_price_at_sale == 499.5
    assert line.line_total == 1498.5
    assert line.name_at_sale == "Zinger Burger"


def test_line_is_immutable():
    line = OrderLine.snapshot("ITEM", "burger", "Zinger Burger", 500, 1)
    with pytest.raises(AttributeError):
        line.unit_price_at_sale = 1


def test_subtotal_keeps_duplicate_lines_separate():
    lines = [
        OrderLine.snapshot("ITEM", "fries", "Fries", 200, 1),
        OrderLine.snapshot("ITEM", "fries", "Fries", 200, 2),
    ]
    assert len(lines) == 2
    assert subtotal_of(lines) == 600


def test_to_money_and_to_datetime():
    assert to_money(None) == 0.0
    assert to_money("10.005") in (10.0, 10.01)
    assert to_datetime(None) is None
    parsed = to_datetime("2026-01-12 05:59:59.000000")
    assert parsed == datetime(2026, 1, 12, 5, 59, 59, tzinfo=timezone.utc)
    aware = datetime(2026, 1, 12, 6, tzinfo=timezone.utc)
    assert to_datetime(aware) is aware


def test_aggregate_from_row_and_to_dict():
    row = SimpleNamespace(
        id="o1",
        order_number="ORD-AC-12345",
        order_type="DELIVERY",
        status="DRAFT",
        payment_method="CASH",
        payment_status="UNPAID",
        customer_name="Ali",
        customer_phone="0300",
        customer_address="House 1",
        subtotal="1000.00",
        delivery_charges=150,
        discount=50,
        created_by_user_id="u1",
        version=3,
        created_at="2026-01-12 10:00:00.000000",
        updated_at="2026-01-12 10:05:00.000000",
    )
    line = OrderLine.snapshot("ITEM", "burger", "Zinger Burger", 500, 2)
    order = OrderAggregate.from_row(row, [line])

    assert order.total == 1100
    assert order.version == 3
    data = order.to_dict()
    assert data["total"] == 1100
    assert data["subtotal"] == 1000.0
    assert data["created_at"] == "2026-01-12T10:00:00+00:00"
    assert data["order_lines"][0]["line_total"] == 1000.0
