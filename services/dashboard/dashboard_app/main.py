"""
Dashboard Service — FastAPI エントリーポイント

売上・支払い・人気商品のダッシュボードを返す Query 専用サービス。
Order Service の DB を読み取り専用で参照し、リクエストごとに集計する。

このサービスは CQRS の Read 側のみ。Command エンドポイントは持たない。

┌──────────────┐                  ┌───────────────────┐
│ Order Service │ ── orders ────▶ │ Dashboard Service │
│ (Write 側)   │   (共有 DB)      │ (Read 側のみ)     │
└──────────────┘                  └───────────────────┘
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import queries
from .statistics import DashboardAccumulator

DATABASE_URL = os.environ["DATABASE_URL"]
BUSINESS_TIMEZONE = ZoneInfo(os.environ.get("BUSINESS_TIMEZONE", "UTC"))
ORDERS_PAGE_SIZE = int(os.environ.get("ORDERS_PAGE_SIZE", "500"))

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Dashboard service started (timezone=%s)", BUSINESS_TIMEZONE.key)
    yield
    await engine.dispose()


app = FastAPI(title="Dashboard Service", lifespan=lifespan)


@app.exception_handler(SQLAlchemyError)
async def handle_storage_error(request: Request, exc: SQLAlchemyError):
    logger.exception("Order fetch failed; dashboard not produced")
    return JSONResponse(status_code=503, content={"detail": "Order store is unavailable"})


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ── Query Endpoints (Read 側のみ) ─────────────────

@app.get("/queries/dashboard")
async def query_dashboard():
    """ダッシュボード統計（全期間・営業日・月・年・人気商品）"""
    now = now_utc()
    acc = DashboardAccumulator(BUSINESS_TIMEZONE)
    async with async_session() as session:
        async for order in queries.stream_orders(session, ORDERS_PAGE_SIZE):
            acc.add(order)
    return acc.build(now)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "dashboard-service"}
