"""
Gateway - GraphQL トランスポート

在庫サービスの POST /graphql に query / mutation ドキュメントを送る。
選択セットは正準 DTO のフィールドから生成するので、
REST / JSON-RPC と同じフィールドが返ってくる。
"""

from pydantic import BaseModel

from services.shared.bindings.graphql_api import nested_model
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


def selection_set(model: type[BaseModel]) -> str:
    """DTO のフィールドから選択セット { a b nested { c } } を作る。"""
    parts = []
    for name, field in model.model_fields.items():
        alias = field.alias or name
        child = nested_model(field.annotation)
        parts.append(f"{alias} {selection_set(child)}" if child else alias)
    return "{ " + " ".join(parts) + " }"


def document(
    operation: str, field: str, variables: dict[str, str], model: type[BaseModel]
) -> str:
    """operation (query / mutation) のドキュメントを組み立てる。"""
    declared = ", ".join(f"${name}: {type_}" for name, type_ in variables.items())
    arguments = ", ".join(f"{name}: ${name}" for name in variables)
    header = f"{operation} ({declared})" if declared else operation
    call = f"{field}({arguments})" if arguments else field
    return f"{header} {{ {call} {selection_set(model)} }}"


class GraphQLStockClient(HttpTransport):
    name = "graphql"

    async def _execute(
        self,
        operation: str,
        field: str,
        variables: dict[str, str],
        values: dict,
        model: type[BaseModel],
    ):
        payload = await self._request(
            "POST",
            "/graphql",
            json={"query": document(operation, field, variables, model), "variables": values},
            accept=(200, 400),
        )
        if payload.get("errors"):
            messages = "; ".join(error.get("message", "?") for error in payload["errors"])
            raise TransportError(f"graphql {field} returned errors: {messages}")
        data = payload.get("data") or {}
        if data.get(field) is None:
            raise TransportError(f"graphql {field} returned no data")
        return self._parse(model, data[field])

    async def check_availability(self, sku: str) -> StockAvailability:
        return await self._execute(
            "query", "stockAvailability", {"sku": "String!"}, {"sku": sku}, StockAvailability
        )

    async def reserve_stock(self, request: ReservationRequest) -> ReservationResult:
        return await self._execute(
            "mutation",
            "reserveStock",
            {"input": "ReservationRequest!"},
            {"input": to_wire(request)},
            ReservationResult,
        )

    async def cancel_reservation(self, reservation_id: str) -> ReservationResult:
        return await self._execute(
            "mutation",
            "cancelReservation",
            {"reservationId": "String!"},
            {"reservationId": reservation_id},
            ReservationResult,
        )

    async def update_threshold(self, sku: str, request: ThresholdRequest) -> ThresholdResult:
        return await self._execute(
            "mutation",
            "updateStockThreshold",
            {"sku": "String!", "input": "ThresholdRequest!"},
            {"sku": sku, "input": to_wire(request)},
            ThresholdResult,
        )

    async def bulk_stock_update(self, request: BulkUpdateRequest) -> BulkUpdateResult:
        return await self._execute(
            "mutation",
            "bulkStockUpdate",
            {"input": "BulkUpdateRequest!"},
            {"input": to_wire(request)},
            BulkUpdateResult,
        )

    async def get_warehouse_status(self, warehouse_code: str) -> WarehouseStatus:
        return await self._execute(
            "query",
            "warehouseStatus",
            {"warehouseCode": "String!"},
            {"warehouseCode": warehouse_code},
            WarehouseStatus,
        )

    async def fetch_product_details(self, sku: str) -> ProductDetails:
        return await self._execute(
            "query", "productDetails", {"sku": "String!"}, {"sku": sku}, ProductDetails
        )

    async def register_damaged_return(
        self, request: DamagedReturnRequest
    ) -> DamagedReturnResult:
        return await self._execute(
            "mutation",
            "registerDamagedReturn",
            {"input": "DamagedReturnRequest!"},
            {"input": to_wire(request)},
            DamagedReturnResult,
        )

    async def adjust_price(
        self, sku: str, request: PriceAdjustmentRequest
    ) -> PriceAdjustmentResult:
        return await self._execute(
            "mutation",
            "adjustPrice",
            {"sku": "String!", "input": "PriceAdjustmentRequest!"},
            {"sku": sku, "input": to_wire(request)},
            PriceAdjustmentResult,
        )

    async def discontinue_product(
        self, sku: str, request: DiscontinueRequest
    ) -> DiscontinueResult:
        return await self._execute(
            "mutation",
            "discontinueProduct",
            {"sku": "String!", "input": "DiscontinueRequest!"},
            {"sku": sku, "input": to_wire(request)},
            DiscontinueResult,
        )

    async def search_stock(self, request: StockSearchRequest) -> StockSearchResult:
        return await self._execute(
            "query",
            "searchStock",
            {"filter": "StockSearchRequest"},
            {"filter": to_wire(request)},
            StockSearchResult,
        )
