"""
Order Service — FastAPI エントリーポイント

CQRS パターンに従い、Command (POST/PUT/DELETE) と Query (GET) のエンドポイントを分離。
ライフサイクルに関わる操作はすべて監査ログ (audit_log) に追記する。

操作ユーザーは上流のゲートウェイが X-User-Id ヘッダーで渡す。
"""

import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import audit_log, catalog, commands, queries
from .constants import DEFAULT_ORDER_NUMBER_MAX_ATTEMPTS, CancelPolicy
from .errors import AuthenticationError, DependencyError, NotFoundError, OrderServiceError
from .events import ActingUser
from .lifecycle import valid_next_statuses
from .schema import create_schema

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
ORDER_NUMBER_MAX_ATTEMPTS = int(
    os.environ.get("ORDER_NUMBER_MAX_ATTEMPTS", DEFAULT_ORDER_NUMBER_MAX_ATTEMPTS)
)
CANCEL_POLICY = CancelPolicy(os.environ.get("CANCEL_POLICY", CancelPolicy.ANY_ROLE.value))

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    await create_schema(engine)
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    logger.info("Order service started (cancel_policy=%s)", CANCEL_POLICY.value)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Error Handlers ───────────────────────────────

@app.exception_handler(OrderServiceError)
async def handle_order_service_error(request: Request, exc: OrderServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def handle_storage_error(request: Request, exc: SQLAlchemyError):
    if isinstance(exc, IntegrityError):
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=409,
            content={"detail": "Request conflicts with existing data"},
        )
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return await handle_order_service_error(
        request, DependencyError("Order store is unavailable")
    )


# ── Request / Response Models ────────────────────

class OrderLineRequest(BaseModel):
    product_type: str | None = None
    product_id: str | None = None
    quantity: int | None = None


class CreateOrderRequest(BaseModel):
    order_type: str | None = None
    payment_method: str | None = None
    payment_status: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_address: str | None = None
    delivery_charges: float | None = None
    discount: float | None = None
    order_lines: list[OrderLineRequest] | None = None


class UpdateOrderRequest(CreateOrderRequest):
    """未指定のフィールドは変更しない（exclude_unset で判定）"""


class UpdateStatusRequest(BaseModel):
    status: str


# ── 操作ユーザー ─────────────────────────────────

async def current_user(x_user_id: str | None = Header(default=None)) -> ActingUser:
    if not x_user_id:
        raise AuthenticationError("Authentication required. Missing X-User-Id header.")
    async with async_session() as session:
        user = await queries.get_active_user(session, x_user_id)
    if user is None:
        raise AuthenticationError("User not found or inactive")
    return user


def _changes(req: BaseModel) -> dict:
    """リクエストで実際に指定されたフィールドだけを取り出す。"""
    return req.model_dump(exclude_unset=True)


# ── Command Endpoints (Write 側) ─────────────────

@app.post("/commands/orders", status_code=201)
async def cmd_create_order(req: CreateOrderRequest, user: ActingUser = Depends(current_user)):
    """注文作成コマンド（DRAFT で作成される）"""
    async with async_session() as session:
        order = await commands.create_order(
            session, redis_pool, user, _changes(req),
            max_attempts=ORDER_NUMBER_MAX_ATTEMPTS,
        )
        return order.to_dict()


@app.put("/commands/orders/{order_id}")
async def cmd_update_order(
    order_id: str, req: UpdateOrderRequest, user: ActingUser = Depends(current_user)
):
    """注文編集コマンド（payment_status だけならどのステータスでも可）"""
    async with async_session() as session:
        order = await commands.update_order(session, redis_pool, user, order_id, _changes(req))
        return order.to_dict()


@app.post("/commands/orders/{order_id}/status")
async def cmd_change_status(
    order_id: str, req: UpdateStatusRequest, user: ActingUser = Depends(current_user)
):
    """ステータス変更コマンド（前進・キャンセル・Manager による差し戻し）"""
    async with async_session() as session:
        order, decision = await commands.change_status(
            session, redis_pool, user, order_id, req.status, CANCEL_POLICY,
        )
        return {**order.to_dict(), "is_override": decision.is_override}


@app.delete("/commands/orders/{order_id}")
async def cmd_delete_order(order_id: str, user: ActingUser = Depends(current_user)):
    """注文削除コマンド（Manager のみ）"""
    async with async_session() as session:
        deleted = await commands.delete_order(session, redis_pool, user, order_id)
        return {"message": "Order deleted successfully", "order": deleted}


# ── Query Endpoints (Read 側) ────────────────────

@app.get("/queries/orders")
async def query_list_orders(
    status: str | None = None,
    order_type: str | None = None,
    payment_status: str | None = None,
    page: int = 1,
    limit: int = queries.DEFAULT_PAGE_LIMIT,
    user: ActingUser = Depends(current_user),
):
    """注文一覧（フィルタ・ページング付き、新しい順）"""
    async with async_session() as session:
        return await queries.list_orders(
            session, status, order_type, payment_status, page, limit
        )


@app.get("/queries/orders/{order_id}")
async def query_get_order(order_id: str, user: ActingUser = Depends(current_user)):
    async with async_session() as session:
        order = await queries.get_order(session, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order.to_dict()


@app.get("/queries/orders/{order_id}/next-statuses")
async def query_next_statuses(order_id: str, user: ActingUser = Depends(current_user)):
    """操作ユーザーがこの注文に対して選べるステータス一覧"""
    async with async_session() as session:
        order = await queries.get_order(session, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    options = valid_next_statuses(
        order.order_type, order.status, commands.is_manager(user), CANCEL_POLICY
    )
    return {
        "order_id": order.id,
        "status": order.status,
        "order_type": order.order_type,
        "next_statuses": [s.value for s in options],
    }


@app.get("/queries/order-lines")
async def query_list_order_lines(user: ActingUser = Depends(current_user)):
    async with async_session() as session:
        return await queries.list_order_lines(session)


@app.get("/queries/catalog/menu-items")
async def query_active_menu_items(user: ActingUser = Depends(current_user)):
    """注文入力画面向け: 有効なメニュー項目"""
    async with async_session() as session:
        return await catalog.list_active_menu_items(session)


@app.get("/queries/catalog/deals")
async def query_active_deals(user: ActingUser = Depends(current_user)):
    """注文入力画面向け: 有効なセット（構成品付き）"""
    async with async_session() as session:
        return await catalog.list_active_deals(session)


# ── Audit Log ────────────────────────────────────

@app.get("/audit-log")
async def get_all_audit_events(
    limit: int = audit_log.MAX_EVENT_LIMIT, user: ActingUser = Depends(current_user)
):
    """直近の監査イベントを返す"""
    async with async_session() as session:
        return await audit_log.load_all_events(session, limit)


@app.get("/audit-log/{order_id}")
async def get_order_audit_events(order_id: str, user: ActingUser = Depends(current_user)):
    """指定注文の監査イベントを返す"""
    async with async_session() as session:
        return await audit_log.load_events(session, order_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
