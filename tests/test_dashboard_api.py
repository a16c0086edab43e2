from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from conftest import BURGER_ID, FAMILY_DEAL_ID, FRIES_ID, USER
from dashboard_app import main, queries
from order_app import commands
from order_app.schema import with_timestamps

NOW = datetime(2026, 1, 15, 8, 0, tzinfo=timezone.utc)


async def place(session, redis, created_at, statuses=(), payment_method="CASH", lines=None):
    order = await commands.create_order(session, redis, USER, {
        "order_type": "TAKEAWAY",
        "payment_method": payment_method,
        "order_lines": lines or [{"product_type": "ITEM", "product_id": BURGER_ID, "quantity": 1}],
    })
    for status in statuses:
        order, _ = await commands.change_status(session, redis, USER, order.id, status)
    await session.execute(
        with_timestamps(text("UPDATE orders SET created_at = :ts WHERE id = :id"), "ts"),
        {"ts": created_at, "id": order.id},
    )
    await session.commit()
    return order


@pytest.fixture
async def client(session_factory, monkeypatch):
    monkeypatch.setattr(main, "async_session", session_factory)
    monkeypatch.setattr(main, "now_utc", lambda: NOW)
    monkeypatch.setattr(main, "BUSINESS_TIMEZONE", timezone.utc)
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_health(client):
    assert (await client.get("/health")).json() == {"status": "ok", "service": "dashboard-service"}


async def test_dashboard_report(client, session, redis, monkeypatch):
    monkeypatch.setattr(main, "ORDERS_PAGE_SIZE", 2)
    completed = ("PREPARING", "READY", "PICKED_UP")

    await place(session, redis, datetime(2026, 1, 12, 5, 59, 59, tzinfo=timezone.utc), completed)
    await place(session, redis, datetime(2026, 1, 12, 6, 0, 0, tzinfo=timezone.utc), completed,
                payment_method="ONLINE",
                lines=[{"product_type": "DEAL", "product_id": FAMILY_DEAL_ID, "quantity": 2}])
    await place(session, redis, datetime(2026, 1, 13, 12, tzinfo=timezone.utc), ("CANCELLED",))
    await place(session, redis, datetime(2026, 1, 15, 7, tzinfo=timezone.utc))
    await place(session, redis, datetime(2026, 1, 15, 7, 30, tzinfo=timezone.utc), ("PREPARING",),
                lines=[{"product_type": "ITEM", "product_id": FRIES_ID, "quantity": 4}])

    resp = await client.get("/queries/dashboard")
    assert resp.status_code == 200
    report = resp.json()

    assert report["overview"]["total_orders"] == 5
    assert report["overview"]["completed_orders"] == 2
    assert report["overview"]["cancelled_orders"] == 1
    assert report["overview"]["total_revenue"] == 2500.0
    assert report["overview"]["total_items_quantity"] == 1 + 2 + 4

    summary = report["order_summary"]
    assert summary["orders_by_status"]["PICKED_UP"] == 2
    assert summary["orders_by_status"]["DRAFT"] == 1
    assert summary["orders_by_type"]["TAKEAWAY"] == 3
    assert summary["payment_methods"] == {
        "CASH": {"amount": 500.0, "count": 1},
        "ONLINE": {"amount": 2000.0, "count": 1},
    }

    assert report["top_items"][0] == {
        "id": FRIES_ID, "name": "Fries", "quantity": 4, "revenue": 800.0,
    }
    assert report["top_deals"][0]["quantity"] == 2

    history = report["day_history"]
    assert list(history) == [
        "15-01-2026/16-01-26",
        "14-01-2026/15-01-26",
        "13-01-2026/14-01-26",
        "12-01-2026/13-01-26",
        "11-01-2026/12-01-26",
    ]
    assert history["11-01-2026/12-01-26"]["total_revenue"] == 500.0
    assert history["12-01-2026/13-01-26"]["total_revenue"] == 2000.0
    assert history["14-01-2026/15-01-26"]["total_orders"] == 0

    assert list(report["monthly"]) == ["2026-01"]
    assert report["monthly"]["2026-01"]["period"] == "January 2026"
    assert report["yearly"]["2026"]["total_orders"] == 5

    recent = report["recent_orders"]
    assert len(recent) == 5
    assert recent[0]["created_at"] == "2026-01-15T07:30:00+00:00"


async def test_dashboard_is_idempotent(client, session, redis):
    for i in range(3):
        await place(session, redis, NOW - timedelta(days=i, hours=3), ("PREPARING", "READY"))
    first = await client.get("/queries/dashboard")
    second = await client.get("/queries/dashboard")
    assert first.content == second.content


async def test_empty_dashboard(client):
    report = (await client.get("/queries/dashboard")).json()
    assert report["overview"]["total_orders"] == 0
    assert report["day_history"] == {}


async def test_fetch_failure_is_503_without_partial_output(client, monkeypatch):
    async def failing_stream(session, page_size=500):
        raise OperationalError("SELECT", {}, Exception("connection refused"))
        yield  # pragma: no cover

    monkeypatch.setattr(queries, "stream_orders", failing_stream)
    resp = await client.get("/queries/dashboard")
    assert resp.status_code == 503
    assert resp.json() == {"detail": "Order store is unavailable"}


async def test_stream_orders_pages_through_everything(session, redis):
    base = datetime(2026, 1, 10, 12, tzinfo=timezone.utc)
    placed = [await place(session, redis, base + timedelta(minutes=i)) for i in range(5)]

    streamed = [o async for o in queries.stream_orders(session, page_size=2)]
    assert [o.id for o in streamed] == [o.id for o in reversed(placed)]
    assert all(len(o.lines) == 1 for o in streamed)
    assert streamed[0].created_at == base + timedelta(minutes=4)
