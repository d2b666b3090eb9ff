"""
Gateway - REST トランスポート

在庫サービスの /api/stock/... を呼び出す。
"""

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
from .transport import HttpTransport

PREFIX = "/api/stock"


class RestStockClient(HttpTransport):
    name = "rest"

    async def check_availability(self, sku: str) -> StockAvailability:
        payload = await self._request("GET", f"{PREFIX}/availability/{sku}")
        return self._parse(StockAvailability, payload)

    async def reserve_stock(self, request: ReservationRequest) -> ReservationResult:
        # 409 は業務ルール違反 (在庫不足など) なので結果として受け取る
        payload = await self._request(
            "POST", f"{PREFIX}/reservations", json=to_wire(request), accept=(201, 409)
        )
        return self._parse(ReservationResult, payload)

    async def cancel_reservation(self, reservation_id: str) -> ReservationResult:
        payload = await self._request("DELETE", f"{PREFIX}/reservations/{reservation_id}")
        return self._parse(ReservationResult, payload)

    async def update_threshold(self, sku: str, request: ThresholdRequest) -> ThresholdResult:
        payload = await self._request("PUT", f"{PREFIX}/thresholds/{sku}", json=to_wire(request))
        return self._parse(ThresholdResult, payload)

    async def bulk_stock_update(self, request: BulkUpdateRequest) -> BulkUpdateResult:
        payload = await self._request("POST", f"{PREFIX}/bulk-updates", json=to_wire(request))
        return self._parse(BulkUpdateResult, payload)

    async def get_warehouse_status(self, warehouse_code: str) -> WarehouseStatus:
        payload = await self._request("GET", f"{PREFIX}/warehouses/{warehouse_code}/status")
        return self._parse(WarehouseStatus, payload)

    async def fetch_product_details(self, sku: str) -> ProductDetails:
        payload = await self._request("GET", f"{PREFIX}/products/{sku}/details")
        return self._parse(ProductDetails, payload)

    async def register_damaged_return(
        self, request: DamagedReturnRequest
    ) -> DamagedReturnResult:
        payload = await self._request(
            "POST", f"{PREFIX}/damaged-returns", json=to_wire(request)
        )
        return self._parse(DamagedReturnResult, payload)

    async def adjust_price(
        self, sku: str, request: PriceAdjustmentRequest
    ) -> PriceAdjustmentResult:
        payload = await self._request(
            "PATCH", f"{PREFIX}/products/{sku}/price", json=to_wire(request)
        )
        return self._parse(PriceAdjustmentResult, payload)

    async def discontinue_product(
        self, sku: str, request: DiscontinueRequest
    ) -> DiscontinueResult:
        params = {"reason": request.reason}
        if request.stock_disposition:
            params["disposition"] = request.stock_disposition
        if request.discontinued_by:
            params["discontinuedBy"] = request.discontinued_by
        payload = await self._request("DELETE", f"{PREFIX}/products/{sku}", params=params)
        return self._parse(DiscontinueResult, payload)

    async def search_stock(self, request: StockSearchRequest) -> StockSearchResult:
        payload = await self._request("GET", f"{PREFIX}/search", params=to_wire(request))
        return self._parse(StockSearchResult, payload)
