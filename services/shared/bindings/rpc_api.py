"""
Shared - JSON-RPC 2.0 バインディング (名前付きプロシージャのエンベロープ)

  POST /rpc
  {"jsonrpc": "2.0", "method": "bulkStockUpdate", "params": {...}, "id": "1"}

params は常に名前付き (オブジェクト)。SKU をキーにする更新系は
"sku" とリクエストのフィールドを同じ階層に並べる。
"""

import json
import logging
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from ..contracts import (
    BulkUpdateRequest,
    CanonicalModel,
    DamagedReturnRequest,
    DiscontinueRequest,
    PriceAdjustmentRequest,
    ReservationRequest,
    StockOperations,
    StockSearchRequest,
    ThresholdRequest,
    to_wire,
)

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RpcEnvelope(BaseModel):
    jsonrpc: str = Field(pattern=r"^2\.0$")
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    id: str | int | None = None


class _SkuParams(CanonicalModel):
    sku: str = Field(min_length=1)


class _WarehouseParams(CanonicalModel):
    warehouse_code: str = Field(min_length=1)


class _ReservationIdParams(CanonicalModel):
    reservation_id: str = Field(min_length=1)


Handler = Callable[[StockOperations, dict], Awaitable[BaseModel]]


async def _check_availability(ops: StockOperations, params: dict):
    return await ops.check_availability(_SkuParams.model_validate(params).sku)


async def _reserve_stock(ops: StockOperations, params: dict):
    return await ops.reserve_stock(ReservationRequest.model_validate(params))


async def _cancel_reservation(ops: StockOperations, params: dict):
    reservation_id = _ReservationIdParams.model_validate(params).reservation_id
    return await ops.cancel_reservation(reservation_id)


async def _update_threshold(ops: StockOperations, params: dict):
    sku = _SkuParams.model_validate(params).sku
    return await ops.update_threshold(sku, ThresholdRequest.model_validate(params))


async def _bulk_stock_update(ops: StockOperations, params: dict):
    return await ops.bulk_stock_update(BulkUpdateRequest.model_validate(params))


async def _get_warehouse_status(ops: StockOperations, params: dict):
    warehouse_code = _WarehouseParams.model_validate(params).warehouse_code
    return await ops.get_warehouse_status(warehouse_code)


async def _fetch_product_details(ops: StockOperations, params: dict):
    return await ops.fetch_product_details(_SkuParams.model_validate(params).sku)


async def _register_damaged_return(ops: StockOperations, params: dict):
    return await ops.register_damaged_return(DamagedReturnRequest.model_validate(params))


async def _adjust_price(ops: StockOperations, params: dict):
    sku = _SkuParams.model_validate(params).sku
    return await ops.adjust_price(sku, PriceAdjustmentRequest.model_validate(params))


async def _discontinue_product(ops: StockOperations, params: dict):
    sku = _SkuParams.model_validate(params).sku
    return await ops.discontinue_product(sku, DiscontinueRequest.model_validate(params))


async def _search_stock(ops: StockOperations, params: dict):
    return await ops.search_stock(StockSearchRequest.model_validate(params))


METHODS: dict[str, Handler] = {
    "checkAvailability": _check_availability,
    "reserveStock": _reserve_stock,
    "cancelReservation": _cancel_reservation,
    "updateThreshold": _update_threshold,
    "bulkStockUpdate": _bulk_stock_update,
    "getWarehouseStatus": _get_warehouse_status,
    "fetchProductDetails": _fetch_product_details,
    "registerDamagedReturn": _register_damaged_return,
    "adjustPrice": _adjust_price,
    "discontinueProduct": _discontinue_product,
    "searchStock": _search_stock,
}


def _error(request_id, code: int, message: str, data: Any = None) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


async def dispatch(ops: StockOperations, raw: bytes) -> dict:
    """エンベロープを解釈してプロシージャを呼び出し、応答エンベロープを返す。"""
    try:
        body = json.loads(raw)
    except ValueError:
        return _error(None, PARSE_ERROR, "Parse error")

    try:
        envelope = RpcEnvelope.model_validate(body)
    except ValidationError as exc:
        request_id = body.get("id") if isinstance(body, dict) else None
        return _error(
            request_id,
            INVALID_REQUEST,
            "Invalid request",
            exc.errors(include_url=False, include_context=False),
        )

    handler = METHODS.get(envelope.method)
    if handler is None:
        return _error(envelope.id, METHOD_NOT_FOUND, f"Method not found: {envelope.method}")

    try:
        result = await handler(ops, envelope.params)
    except ValidationError as exc:
        return _error(
            envelope.id,
            INVALID_PARAMS,
            "Invalid params",
            exc.errors(include_url=False, include_context=False),
        )
    except Exception:
        logger.exception("RPC method %s failed", envelope.method)
        return _error(envelope.id, INTERNAL_ERROR, "Internal error")

    return {"jsonrpc": "2.0", "id": envelope.id, "result": to_wire(result)}


def build_router(get_operations: Callable[..., StockOperations]) -> APIRouter:
    router = APIRouter()

    @router.post("/rpc")
    async def rpc_endpoint(request: Request, ops=Depends(get_operations)):
        """JSON-RPC 2.0 エンドポイント"""
        return JSONResponse(await dispatch(ops, await request.body()))

    return router
