"""
Shared - 正準コントラクト (Canonical Contract)

ゲートウェイと在庫サービスが共有する業務契約。
3 つのワイヤプロトコル (REST / GraphQL / JSON-RPC) はすべて
ここで定義した DTO と StockOperations プロトコルに変換される。

フィールド名はワイヤ上では camelCase、Python 側では snake_case。
値のないフィールドは null を出力せず省略する (to_wire)。
"""

from datetime import datetime
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class StockStatus(str, Enum):
    IN_STOCK = "IN_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OUT_OF_STOCK = "OUT_OF_STOCK"


class ReservationStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    # 永続化されない。失敗結果としてのみ返す
    FAILED = "FAILED"


class CanonicalModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def to_wire(model: BaseModel) -> dict:
    """DTO をワイヤ形式 (camelCase, null 省略) の dict に変換する。"""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


# ── Availability ─────────────────────────────────


class StockAvailability(CanonicalModel):
    sku: str
    product_name: str | None = None
    available_quantity: int | None = None
    reserved_quantity: int | None = None
    warehouse_code: str | None = None
    is_available: bool | None = None
    status: str | None = None
    last_updated: datetime | None = None
    success: bool | None = None
    message: str | None = None


# ── Reservation ──────────────────────────────────


class ReservationRequest(CanonicalModel):
    sku: str = Field(min_length=1)
    order_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    warehouse_code: str | None = None
    customer_id: str | None = None
    notes: str | None = None


class ReservationResult(CanonicalModel):
    reservation_id: str | None = None
    sku: str | None = None
    order_id: str | None = None
    quantity: int | None = None
    warehouse_code: str | None = None
    customer_id: str | None = None
    status: str | None = None
    reserved_at: datetime | None = None
    expires_at: datetime | None = None
    success: bool | None = None
    message: str | None = None


# ── Threshold ────────────────────────────────────


class ThresholdRequest(CanonicalModel):
    min_threshold: int = Field(ge=0)
    max_threshold: int = Field(ge=0)
    reorder_point: int | None = Field(default=None, ge=0)
    reorder_quantity: int | None = Field(default=None, ge=0)
    warehouse_code: str | None = None
    auto_reorder: bool | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "ThresholdRequest":
        if self.min_threshold > self.max_threshold:
            raise ValueError("minThreshold must not exceed maxThreshold")
        return self


class ThresholdResult(CanonicalModel):
    sku: str
    min_threshold: int | None = None
    max_threshold: int | None = None
    reorder_point: int | None = None
    reorder_quantity: int | None = None
    warehouse_code: str | None = None
    auto_reorder: bool | None = None
    updated_rows: int | None = None
    success: bool | None = None
    message: str | None = None


# ── Bulk update ──────────────────────────────────


class BulkUpdateItem(CanonicalModel):
    sku: str = Field(min_length=1)
    quantity: int
    operation: str = "SET"
    reason: str | None = None


class BulkUpdateRequest(CanonicalModel):
    batch_id: str | None = None
    warehouse_code: str | None = None
    items: list[BulkUpdateItem] = Field(default_factory=list)


class BulkUpdateItemResult(CanonicalModel):
    sku: str
    success: bool
    previous_quantity: int | None = None
    new_quantity: int | None = None
    message: str | None = None


class BulkUpdateResult(CanonicalModel):
    batch_id: str | None = None
    warehouse_code: str | None = None
    total_items: int | None = None
    success_count: int | None = None
    failure_count: int | None = None
    status: str | None = None
    results: list[BulkUpdateItemResult] | None = None
    success: bool | None = None
    message: str | None = None


# ── Warehouse status ─────────────────────────────


class WarehouseStatus(CanonicalModel):
    warehouse_code: str
    warehouse_name: str | None = None
    location: str | None = None
    region: str | None = None
    status: str | None = None
    total_capacity: int | None = None
    used_capacity: int | None = None
    available_capacity: int | None = None
    utilization_percentage: float | None = None
    total_skus: int | None = None
    low_stock_skus: int | None = None
    out_of_stock_skus: int | None = None
    last_inventory_check: datetime | None = None
    last_updated: datetime | None = None
    is_operational: bool | None = None
    success: bool | None = None
    message: str | None = None


# ── Product details ──────────────────────────────


class ProductDetails(CanonicalModel):
    sku: str
    product_name: str | None = None
    description: str | None = None
    category: str | None = None
    brand: str | None = None
    unit_price: float | None = None
    currency: str | None = None
    unit_of_measure: str | None = None
    stock_count: int | None = None
    reserved_count: int | None = None
    available_count: int | None = None
    stock_status: str | None = None
    warehouse_code: str | None = None
    warehouse_name: str | None = None
    warehouse_location: str | None = None
    warehouse_region: str | None = None
    aisle: str | None = None
    shelf: str | None = None
    bin: str | None = None
    last_stock_update: datetime | None = None
    last_price_update: datetime | None = None
    is_active: bool | None = None
    success: bool | None = None
    message: str | None = None


# ── Damaged return ───────────────────────────────


class DamagedReturnRequest(CanonicalModel):
    sku: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    damage_type: str = Field(min_length=1)
    damage_description: str
    warehouse_code: str | None = None
    reported_by: str | None = None
    disposition: str | None = None
    notes: str | None = None


class DamagedReturnResult(CanonicalModel):
    return_id: str | None = None
    sku: str | None = None
    quantity: int | None = None
    damage_type: str | None = None
    damage_description: str | None = None
    warehouse_code: str | None = None
    reported_by: str | None = None
    disposition: str | None = None
    reported_at: datetime | None = None
    status: str | None = None
    notes: str | None = None
    success: bool | None = None
    message: str | None = None


# ── Price / discontinue ──────────────────────────


class PriceAdjustmentRequest(CanonicalModel):
    new_price: float = Field(gt=0)
    discount_percentage: float | None = Field(default=None, ge=0, le=100)
    adjustment_reason: str | None = None
    adjusted_by: str | None = None


class PriceAdjustmentResult(CanonicalModel):
    sku: str
    current_price: float | None = None
    new_price: float | None = None
    discount_percentage: float | None = None
    adjustment_reason: str | None = None
    adjusted_by: str | None = None
    success: bool | None = None
    message: str | None = None


class DiscontinueRequest(CanonicalModel):
    reason: str = Field(min_length=1)
    discontinued_by: str | None = None
    stock_disposition: str | None = None


class DiscontinueResult(CanonicalModel):
    sku: str
    reason: str | None = None
    discontinued_by: str | None = None
    stock_disposition: str | None = None
    effective_date: datetime | None = None
    remaining_quantity: int | None = None
    success: bool | None = None
    message: str | None = None


# ── Search ───────────────────────────────────────


class StockSearchRequest(CanonicalModel):
    sku: str | None = None
    warehouse_code: str | None = None
    stock_status: str | None = None
    min_quantity: int | None = Field(default=None, ge=0)
    max_quantity: int | None = Field(default=None, ge=0)
    sort_by: str = "sku"
    sort_direction: str = "ASC"
    page: int = Field(default=0, ge=0)
    size: int = Field(default=20, ge=1, le=100)


class StockSearchItem(CanonicalModel):
    sku: str
    product_name: str | None = None
    category: str | None = None
    quantity: int | None = None
    reserved_quantity: int | None = None
    available_quantity: int | None = None
    warehouse_code: str | None = None
    warehouse_location: str | None = None
    stock_status: str | None = None
    last_updated: datetime | None = None


class Pagination(CanonicalModel):
    current_page: int
    page_size: int
    total_elements: int
    total_pages: int
    has_next: bool
    has_previous: bool


class SearchMetadata(CanonicalModel):
    sort_by: str | None = None
    sort_direction: str | None = None
    search_time_ms: int | None = None


class StockSearchResult(CanonicalModel):
    items: list[StockSearchItem] = Field(default_factory=list)
    pagination: Pagination | None = None
    metadata: SearchMetadata | None = None
    success: bool | None = None
    message: str | None = None


# ── Canonical operations ─────────────────────────


class StockOperations(Protocol):
    """
    正準オペレーション。

    在庫サービス (InventoryService) とゲートウェイ (StockOrchestrator)、
    ゲートウェイ側の各トランスポートがこのプロトコルを実装する。
    ワイヤバインディングはこのプロトコルだけを知っていればよい。
    """

    async def check_availability(self, sku: str) -> StockAvailability: ...

    async def reserve_stock(self, request: ReservationRequest) -> ReservationResult: ...

    async def cancel_reservation(self, reservation_id: str) -> ReservationResult: ...

    async def update_threshold(
        self, sku: str, request: ThresholdRequest
    ) -> ThresholdResult: ...

    async def bulk_stock_update(self, request: BulkUpdateRequest) -> BulkUpdateResult: ...

    async def get_warehouse_status(self, warehouse_code: str) -> WarehouseStatus: ...

    async def fetch_product_details(self, sku: str) -> ProductDetails: ...

    async def register_damaged_return(
        self, request: DamagedReturnRequest
    ) -> DamagedReturnResult: ...

    async def adjust_price(
        self, sku: str, request: PriceAdjustmentRequest
    ) -> PriceAdjustmentResult: ...

    async def discontinue_product(
        self, sku: str, request: DiscontinueRequest
    ) -> DiscontinueResult: ...

    async def search_stock(self, request: StockSearchRequest) -> StockSearchResult: ...
