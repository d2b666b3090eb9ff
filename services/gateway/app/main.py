"""
Gateway サービス

在庫サービスの前に立つ API ゲートウェイ。
クライアントには 3 つのプロトコルで同じ正準オペレーションを公開し、
下流の在庫サービスへはオペレーションごとに決まったプロトコルで呼び出す。

  ┌──────────┐  REST /v1/stock   ┌─────────┐  REST     ┌───────────────────┐
  │  Client  │──GraphQL /graphql─▶│ Gateway │──GraphQL─▶│ Inventory Service │
  │          │  JSON-RPC /rpc    │         │  JSON-RPC │                   │
  └──────────┘                   └─────────┘           └───────────────────┘
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.shared.bindings import graphql_api, rest_api, rpc_api
from services.shared.logs import RequestLoggingMiddleware, configure_logging
from .graphql_client import GraphQLStockClient
from .orchestrator import StockOrchestrator
from .rest_client import RestStockClient
from .rpc_client import RpcStockClient

logger = logging.getLogger(__name__)

INVENTORY_SERVICE_URL = os.environ["INVENTORY_SERVICE_URL"]
HTTP_CONNECT_TIMEOUT = float(os.environ.get("HTTP_CONNECT_TIMEOUT", "5"))
HTTP_READ_TIMEOUT = float(os.environ.get("HTTP_READ_TIMEOUT", "10"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "console")

orchestrator: StockOrchestrator | None = None


def build_orchestrator(client: httpx.AsyncClient) -> StockOrchestrator:
    """1 つの httpx クライアントを 3 つのトランスポートで共有する。"""
    return StockOrchestrator(
        {
            "rest": RestStockClient(client),
            "graphql": GraphQLStockClient(client),
            "rpc": RpcStockClient(client),
        }
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global orchestrator
    configure_logging("gateway", LOG_LEVEL, LOG_FORMAT)
    timeout = httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT)
    async with httpx.AsyncClient(base_url=INVENTORY_SERVICE_URL, timeout=timeout) as client:
        orchestrator = build_orchestrator(client)
        yield
    orchestrator = None


def get_operations() -> StockOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Gateway is starting up")
    return orchestrator


app = FastAPI(title="Stock Gateway", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)

# CORS 設定
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """入力検証エラーは 400 とフィールドごとのメッセージで返す"""
    field_errors: dict[str, str] = {}
    for error in exc.errors():
        location = [str(part) for part in error["loc"] if part not in ("body", "query", "path")]
        field_errors.setdefault(".".join(location) or "request", error["msg"])
    logger.warning("Validation error: %s", field_errors)
    return JSONResponse(
        {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": 400,
            "error": "Validation Failed",
            "message": str(field_errors),
            "fieldErrors": field_errors,
        },
        status_code=400,
    )


app.include_router(rest_api.build_router(get_operations), prefix="/v1/stock", tags=["rest"])
app.include_router(graphql_api.build_router(get_operations), tags=["graphql"])
app.include_router(rpc_api.build_router(get_operations), tags=["rpc"])


@app.get("/health")
async def health():
    return {"status": "ok", "service": "gateway"}
