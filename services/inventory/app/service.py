"""
Inventory Service - 正準オペレーションの実装

StockOperations プロトコルをコマンド / クエリハンドラに対応づける。
呼び出しごとにセッションを 1 つ開き、終わったら閉じる。
"""

from datetime import timedelta

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

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
)
from . import commands, queries


class InventoryService:
    """在庫サービスの正準オペレーション"""

    def __init__(
        self,
        session_factory: sessionmaker,
        redis: aioredis.Redis | None = None,
        reservation_ttl: timedelta = commands.DEFAULT_RESERVATION_TTL,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.reservation_ttl = reservation_ttl

    def _session(self) -> AsyncSession:
        return self.session_factory()

    # ── Read 側 ──────────────────────────────────

    async def check_availability(self, sku: str) -> StockAvailability:
        async with self._session() as session:
            return await queries.check_availability(session, sku)

    async def get_warehouse_status(self, warehouse_code: str) -> WarehouseStatus:
        async with self._session() as session:
            return await queries.get_warehouse_status(session, warehouse_code)

    async def fetch_product_details(self, sku: str) -> ProductDetails:
        async with self._session() as session:
            return await queries.get_product_details(session, sku)

    async def search_stock(self, request: StockSearchRequest) -> StockSearchResult:
        async with self._session() as session:
            return await queries.search_stock(session, request)

    # ── Write 側 ─────────────────────────────────

    async def reserve_stock(self, request: ReservationRequest) -> ReservationResult:
        async with self._session() as session:
            return await commands.reserve_stock(
                session, self.redis, request, self.reservation_ttl
            )

    async def cancel_reservation(self, reservation_id: str) -> ReservationResult:
        async with self._session() as session:
            return await commands.cancel_reservation(session, self.redis, reservation_id)

    async def update_threshold(self, sku: str, request: ThresholdRequest) -> ThresholdResult:
        async with self._session() as session:
            return await commands.update_threshold(session, self.redis, sku, request)

    async def bulk_stock_update(self, request: BulkUpdateRequest) -> BulkUpdateResult:
        async with self._session() as session:
            return await commands.bulk_stock_update(session, self.redis, request)

    async def register_damaged_return(
        self, request: DamagedReturnRequest
    ) -> DamagedReturnResult:
        async with self._session() as session:
            return await commands.register_damaged_return(session, self.redis, request)

    async def adjust_price(
        self, sku: str, request: PriceAdjustmentRequest
    ) -> PriceAdjustmentResult:
        async with self._session() as session:
            return await commands.adjust_price(session, self.redis, sku, request)

    async def discontinue_product(
        self, sku: str, request: DiscontinueRequest
    ) -> DiscontinueResult:
        async with self._session() as session:
            return await commands.discontinue_product(session, self.redis, sku, request)

    async def release_expired(self, now=None) -> int:
        """期限切れの引き当てを解放する (リーパーから呼ばれる)。"""
        async with self._session() as session:
            return await commands.release_expired_reservations(session, self.redis, now)
