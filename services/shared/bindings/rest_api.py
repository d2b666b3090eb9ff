"""
Shared - REST バインディング (フラットオブジェクト)

正準オペレーションを HTTP リソースとして公開する薄いアダプタ。
業務ロジックは持たず、StockOperations へ委譲するだけ。
在庫サービスは /api/stock、ゲートウェイは /v1/stock にマウントする。
"""

from typing import Callable

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ..contracts import (
    BulkUpdateRequest,
    DamagedReturnRequest,
    DiscontinueRequest,
    PriceAdjustmentRequest,
    ReservationRequest,
    StockOperations,
    StockSearchRequest,
    ThresholdRequest,
    to_wire,
)


def build_router(get_operations: Callable[..., StockOperations]) -> APIRouter:
    router = APIRouter()

    # ── Query Endpoints ──────────────────────────

    @router.get("/availability/{sku}")
    async def check_availability(sku: str, ops=Depends(get_operations)):
        """在庫可用性を確認する"""
        return JSONResponse(to_wire(await ops.check_availability(sku)))

    @router.get("/warehouses/{warehouse_code}/status")
    async def get_warehouse_status(warehouse_code: str, ops=Depends(get_operations)):
        """倉庫ステータスを取得する"""
        return JSONResponse(to_wire(await ops.get_warehouse_status(warehouse_code)))

    @router.get("/products/{sku}/details")
    async def fetch_product_details(sku: str, ops=Depends(get_operations)):
        """商品詳細 + 在庫集計 + 主倉庫ロケーション"""
        return JSONResponse(to_wire(await ops.fetch_product_details(sku)))

    @router.get("/search")
    async def search_stock(
        sku: str | None = None,
        warehouse_code: str | None = Query(None, alias="warehouseCode"),
        stock_status: str | None = Query(None, alias="stockStatus"),
        min_quantity: int | None = Query(None, alias="minQuantity", ge=0),
        max_quantity: int | None = Query(None, alias="maxQuantity", ge=0),
        sort_by: str = Query("sku", alias="sortBy"),
        sort_direction: str = Query("ASC", alias="sortDirection"),
        page: int = Query(0, ge=0),
        size: int = Query(20, ge=1, le=100),
        ops=Depends(get_operations),
    ):
        """フィルタ・ソート・ページング付きの在庫検索"""
        request = StockSearchRequest(
            sku=sku,
            warehouse_code=warehouse_code,
            stock_status=stock_status,
            min_quantity=min_quantity,
            max_quantity=max_quantity,
            sort_by=sort_by,
            sort_direction=sort_direction,
            page=page,
            size=size,
        )
        return JSONResponse(to_wire(await ops.search_stock(request)))

    # ── Command Endpoints ────────────────────────

    @router.post("/reservations")
    async def reserve_stock(
        body: ReservationRequest, request: Request, ops=Depends(get_operations)
    ):
        """在庫引き当て。成功は 201 Created、業務ルール違反は 409 Conflict"""
        result = await ops.reserve_stock(body)
        if result.success:
            return JSONResponse(
                to_wire(result),
                status_code=201,
                headers={"Location": f"{request.url.path}/{result.reservation_id}"},
            )
        return JSONResponse(to_wire(result), status_code=409)

    @router.delete("/reservations/{reservation_id}")
    async def cancel_reservation(reservation_id: str, ops=Depends(get_operations)):
        """引き当てを取り消し、確保数量を解放する"""
        return JSONResponse(to_wire(await ops.cancel_reservation(reservation_id)))

    @router.put("/thresholds/{sku}")
    async def update_threshold(
        sku: str, body: ThresholdRequest, ops=Depends(get_operations)
    ):
        """閾値・発注点を更新する"""
        return JSONResponse(to_wire(await ops.update_threshold(sku, body)))

    @router.post("/bulk-updates")
    async def bulk_stock_update(body: BulkUpdateRequest, ops=Depends(get_operations)):
        """在庫数の一括更新 (SET / ADD / REMOVE)"""
        return JSONResponse(to_wire(await ops.bulk_stock_update(body)))

    @router.post("/damaged-returns")
    async def register_damaged_return(
        body: DamagedReturnRequest, ops=Depends(get_operations)
    ):
        """破損返品を登録する"""
        return JSONResponse(to_wire(await ops.register_damaged_return(body)))

    @router.patch("/products/{sku}/price")
    async def adjust_price(
        sku: str, body: PriceAdjustmentRequest, ops=Depends(get_operations)
    ):
        """価格を改定する"""
        return JSONResponse(to_wire(await ops.adjust_price(sku, body)))

    @router.delete("/products/{sku}")
    async def discontinue_product(
        sku: str,
        reason: str = Query(..., min_length=1),
        disposition: str | None = None,
        discontinued_by: str | None = Query(None, alias="discontinuedBy"),
        ops=Depends(get_operations),
    ):
        """商品を廃番にする"""
        request = DiscontinueRequest(
            reason=reason,
            discontinued_by=discontinued_by,
            stock_disposition=disposition,
        )
        return JSONResponse(to_wire(await ops.discontinue_product(sku, request)))

    return router
