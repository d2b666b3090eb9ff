"""
Gateway - JSON-RPC トランスポート

在庫サービスの POST /rpc に名前付きプロシージャのエンベロープを送る。
error エンベロープはすべて TransportError になる。
"""

from itertools import count

from pydantic import BaseModel

from services.shared.contracts import (
    BulkUpdateRequest,
    BulkUpdateResult,
    DamagedReturnRequest,
    DamagedReturnResult,
    DiscontinueRequest,
    DiscontinueResult,
    PriceAdjustmentRequest,
    PriceAdjustmentResult,
    ProductDetails,
    ReservationRequest,
    ReservationResult,
    StockAvailability,
    StockSearchRequest,
    StockSearchResult,
    ThresholdRequest,
    ThresholdResult,
    WarehouseStatus,
    to_wire,
)
from .transport import HttpTransport, TransportError


class RpcStockClient(HttpTransport):
    name = "rpc"

    def __init__(self, client):
        super().__init__(client)
        self._ids = count(1)

    async def _call(self, method: str, params: dict, model: type[BaseModel]):
        request_id = next(self._ids)
        payload = await self._request(
            "POST",
            "/rpc",
            json={"jsonrpc": "2.0", "method": method, "params": params, "id": request_id},
        )
        if "error" in payload:
            error = payload["error"] or {}
            raise TransportError(
                f"rpc {method} failed: [{error.get('code')}] {error.get('message')}"
            )
        if "result" not in payload:
            raise TransportError(f"rpc {method} returned neither result nor error")
        return self._parse(model, payload["result"])

    async def check_availability(self, sku: str) -> StockAvailability:
        return await self._call("checkAvailability", {"sku": sku}, StockAvailability)

    async def reserve_stock(self, request: ReservationRequest) -> ReservationResult:
        return await self._call("reserveStock", to_wire(request), ReservationResult)

    async def cancel_reservation(self, reservation_id: str) -> ReservationResult:
        return await self._call(
            "cancelReservation", {"reservationId": reservation_id}, ReservationResult
        )

    async def update_threshold(self, sku: str, request: ThresholdRequest) -> ThresholdResult:
        return await self._call(
            "updateThreshold", {"sku": sku, **to_wire(request)}, ThresholdResult
        )

    async def bulk_stock_update(self, request: BulkUpdateRequest) -> BulkUpdateResult:
        return await self._call("bulkStockUpdate", to_wire(request), BulkUpdateResult)

    async def get_warehouse_status(self, warehouse_code: str) -> WarehouseStatus:
        return await self._call(
            "getWarehouseStatus", {"warehouseCode": warehouse_code}, WarehouseStatus
        )

    async def fetch_product_details(self, sku: str) -> ProductDetails:
        return await self._call("fetchProductDetails", {"sku": sku}, ProductDetails)

    async def register_damaged_return(
        self, request: DamagedReturnRequest
    ) -> DamagedReturnResult:
        return await self._call(
            "registerDamagedReturn", to_wire(request), DamagedReturnResult
        )

    async def adjust_price(
        self, sku: str, request: PriceAdjustmentRequest
    ) -> PriceAdjustmentResult:
        return await self._call(
            "adjustPrice", {"sku": sku, **to_wire(request)}, PriceAdjustmentResult
        )

    async def discontinue_product(
        self, sku: str, request: DiscontinueRequest
    ) -> DiscontinueResult:
        return await self._call(
            "discontinueProduct", {"sku": sku, **to_wire(request)}, DiscontinueResult
        )

    async def search_stock(self, request: StockSearchRequest) -> StockSearchResult:
        return await self._call("searchStock", to_wire(request), StockSearchResult)
