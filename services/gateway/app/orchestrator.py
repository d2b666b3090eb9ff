"""
Gateway - オーケストレーション・ファサード

呼び出し元のプロトコル (REST / GraphQL / JSON-RPC) に関係なく、
正準オペレーションを 1 つずつ公開する。各オペレーションについて:

  1. ルーティング表で下流トランスポートを選ぶ
  2. オペレーションごとのリトライ方針で呼び出す
     - 在庫確認: 最大 3 回リトライ (指数バックオフ, 1 秒起点)
     - 引き当て: 最大 2 回リトライ (固定 0.5 秒)
     - その他: リトライしない
  3. リトライしても失敗したら、そのオペレーションの結果型に
     success=False と説明つきのメッセージを入れて返す (検索も同じ)

引き当ての再送は在庫サービス側で (order_id, sku) により冪等になる。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_none,
)
from tenacity.wait import wait_base

from services.shared.contracts import (
    BulkUpdateRequest,
    BulkUpdateResult,
    DamagedReturnRequest,
    DamagedReturnResult,
    DiscontinueRequest,
    DiscontinueResult,
    Pagination,
    PriceAdjustmentRequest,
    PriceAdjustmentResult,
    ProductDetails,
    ReservationRequest,
    ReservationResult,
    ReservationStatus,
    StockAvailability,
    StockOperations,
    StockSearchRequest,
    StockSearchResult,
    ThresholdRequest,
    ThresholdResult,
    WarehouseStatus,
)
from .transport import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 0
    wait: wait_base = field(default_factory=wait_none)

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=self.wait,
            retry=retry_if_exception_type(TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


NO_RETRY = RetryPolicy()

RETRY_POLICIES: dict[str, RetryPolicy] = {
    "check_availability": RetryPolicy(3, wait_exponential(multiplier=1, min=1, max=8)),
    "reserve_stock": RetryPolicy(2, wait_fixed(0.5)),
}

DEFAULT_ROUTING: dict[str, str] = {
    "check_availability": "rest",
    "reserve_stock": "rest",
    "cancel_reservation": "rest",
    "update_threshold": "rest",
    "adjust_price": "rest",
    "discontinue_product": "rest",
    "search_stock": "rest",
    "bulk_stock_update": "rpc",
    "get_warehouse_status": "rpc",
    "fetch_product_details": "graphql",
    "register_damaged_return": "graphql",
}

FAILURE_MESSAGES: dict[str, str] = {
    "check_availability": "Failed to check availability",
    "reserve_stock": "Reservation failed",
    "cancel_reservation": "Cancellation failed",
    "update_threshold": "Threshold update failed",
    "adjust_price": "Price adjustment failed",
    "discontinue_product": "Discontinuation failed",
    "search_stock": "Search failed",
    "bulk_stock_update": "Bulk update failed",
    "get_warehouse_status": "Status check failed",
    "fetch_product_details": "Failed to fetch product details",
    "register_damaged_return": "Registration failed",
}


class StockOrchestrator:
    """ゲートウェイ側の StockOperations 実装"""

    def __init__(
        self,
        transports: dict[str, StockOperations],
        routing: dict[str, str] | None = None,
        retry_policies: dict[str, RetryPolicy] | None = None,
    ):
        self.transports = transports
        self.routing = {**DEFAULT_ROUTING, **(routing or {})}
        self.retry_policies = RETRY_POLICIES if retry_policies is None else retry_policies

    async def _run(
        self,
        operation: str,
        call: Callable[[StockOperations], Awaitable[Any]],
        on_failure: Callable[[str], Any],
    ):
        transport = self.transports[self.routing[operation]]
        policy = self.retry_policies.get(operation, NO_RETRY)
        attempts = 0
        try:
            async for attempt in policy.retrying():
                with attempt:
                    attempts += 1
                    result = await call(transport)
        except TransportError as e:
            logger.error(
                "%s via %s failed after %d attempt(s): %s",
                operation,
                self.routing[operation],
                attempts,
                e,
            )
            return on_failure(f"{FAILURE_MESSAGES[operation]}: {e}")
        return result

    # ── Query ─────────────────────────────────────

    async def check_availability(self, sku: str) -> StockAvailability:
        return await self._run(
            "check_availability",
            lambda t: t.check_availability(sku),
            lambda message: StockAvailability(
                sku=sku, is_available=False, status="ERROR", success=False, message=message
            ),
        )

    async def get_warehouse_status(self, warehouse_code: str) -> WarehouseStatus:
        return await self._run(
            "get_warehouse_status",
            lambda t: t.get_warehouse_status(warehouse_code),
            lambda message: WarehouseStatus(
                warehouse_code=warehouse_code,
                is_operational=False,
                success=False,
                message=message,
            ),
        )

    async def fetch_product_details(self, sku: str) -> ProductDetails:
        return await self._run(
            "fetch_product_details",
            lambda t: t.fetch_product_details(sku),
            lambda message: ProductDetails(sku=sku, success=False, message=message),
        )

    async def search_stock(self, request: StockSearchRequest) -> StockSearchResult:
        return await self._run(
            "search_stock",
            lambda t: t.search_stock(request),
            lambda message: StockSearchResult(
                items=[],
                pagination=Pagination(
                    current_page=request.page,
                    page_size=request.size,
                    total_elements=0,
                    total_pages=0,
                    has_next=False,
                    has_previous=request.page > 0,
                ),
                success=False,
                message=message,
            ),
        )

    # ── Command ───────────────────────────────────

    async def reserve_stock(self, request: ReservationRequest) -> ReservationResult:
        return await self._run(
            "reserve_stock",
            lambda t: t.reserve_stock(request),
            lambda message: ReservationResult(
                sku=request.sku,
                order_id=request.order_id,
                quantity=request.quantity,
                status=ReservationStatus.FAILED.value,
                success=False,
                message=message,
            ),
        )

    async def cancel_reservation(self, reservation_id: str) -> ReservationResult:
        return await self._run(
            "cancel_reservation",
            lambda t: t.cancel_reservation(reservation_id),
            lambda message: ReservationResult(
                reservation_id=reservation_id, success=False, message=message
            ),
        )

    async def update_threshold(self, sku: str, request: ThresholdRequest) -> ThresholdResult:
        return await self._run(
            "update_threshold",
            lambda t: t.update_threshold(sku, request),
            lambda message: ThresholdResult(sku=sku, success=False, message=message),
        )

    async def bulk_stock_update(self, request: BulkUpdateRequest) -> BulkUpdateResult:
        return await self._run(
            "bulk_stock_update",
            lambda t: t.bulk_stock_update(request),
            lambda message: BulkUpdateResult(
                batch_id=request.batch_id,
                warehouse_code=request.warehouse_code,
                total_items=len(request.items),
                success_count=0,
                failure_count=len(request.items),
                status="FAILED",
                success=False,
                message=message,
            ),
        )

    async def register_damaged_return(
        self, request: DamagedReturnRequest
    ) -> DamagedReturnResult:
        return await self._run(
            "register_damaged_return",
            lambda t: t.register_damaged_return(request),
            lambda message: DamagedReturnResult(
                sku=request.sku,
                quantity=request.quantity,
                damage_type=request.damage_type,
                success=False,
                message=message,
            ),
        )

    async def adjust_price(
        self, sku: str, request: PriceAdjustmentRequest
    ) -> PriceAdjustmentResult:
        return await self._run(
            "adjust_price",
            lambda t: t.adjust_price(sku, request),
            lambda message: PriceAdjustmentResult(
                sku=sku, new_price=request.new_price, success=False, message=message
            ),
        )

    async def discontinue_product(
        self, sku: str, request: DiscontinueRequest
    ) -> DiscontinueResult:
        return await self._run(
            "discontinue_product",
            lambda t: t.discontinue_product(sku, request),
            lambda message: DiscontinueResult(
                sku=sku, reason=request.reason, success=False, message=message
            ),
        )
