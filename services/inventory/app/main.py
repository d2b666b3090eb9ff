"""
Inventory Service - FastAPI エントリーポイント

在庫台帳と引き当てを管理するサービス。
同じ正準オペレーションを 3 つのワイヤプロトコルで公開する:

  REST     /api/stock/...
  GraphQL  POST /graphql
  JSON-RPC POST /rpc

起動時にテーブルを作成し、引き当て期限切れのリーパーを
バックグラウンドタスクとして開始する。
"""

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import timedelta

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from services.shared.bindings import graphql_api, rest_api, rpc_api
from services.shared.logs import RequestLoggingMiddleware, configure_logging
from .reaper import run_reaper
from .schema import create_schema
from .service import InventoryService

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
RESERVATION_TTL_HOURS = float(os.environ.get("RESERVATION_TTL_HOURS", "24"))
REAPER_INTERVAL_SECONDS = float(os.environ.get("REAPER_INTERVAL_SECONDS", "60"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "console")

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None
inventory_service: InventoryService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool, inventory_service
    configure_logging("inventory-service", LOG_LEVEL, LOG_FORMAT)
    await create_schema(engine)

    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    inventory_service = InventoryService(
        async_session,
        redis_pool,
        reservation_ttl=timedelta(hours=RESERVATION_TTL_HOURS),
    )

    shutdown_event = asyncio.Event()
    reaper_task = asyncio.create_task(
        run_reaper(inventory_service, REAPER_INTERVAL_SECONDS, shutdown_event)
    )
    yield
    shutdown_event.set()
    reaper_task.cancel()
    try:
        await reaper_task
    except asyncio.CancelledError:
        pass
    await redis_pool.aclose()
    await engine.dispose()


def get_operations() -> InventoryService:
    if inventory_service is None:
        raise HTTPException(status_code=503, detail="Inventory service is starting up")
    return inventory_service


app = FastAPI(title="Inventory Service", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(rest_api.build_router(get_operations), prefix="/api/stock", tags=["rest"])
app.include_router(graphql_api.build_router(get_operations), tags=["graphql"])
app.include_router(rpc_api.build_router(get_operations), tags=["rpc"])


@app.get("/health")
async def health():
    return {"status": "ok", "service": "inventory-service"}
