"""
Inventory Service - イベント定義と発行

在庫ドメインで発生するイベント。コミット後に Redis Pub/Sub の
inventory_events チャネルへ発行する。
発行に失敗してもコミット済みのコマンドは失敗させない (警告ログのみ)。
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CHANNEL = "inventory_events"


class StockReserved(BaseModel):
    """在庫が引き当てられた"""
    reservation_id: str
    sku: str
    order_id: str
    quantity: int
    warehouse_code: str
    expires_at: datetime
    timestamp: datetime


class StockReservationFailed(BaseModel):
    """在庫引き当てが失敗した（在庫不足・単一倉庫で不足）"""
    sku: str
    order_id: str
    quantity_requested: int
    quantity_available: int | None
    reason: str
    timestamp: datetime


class ReservationReleased(BaseModel):
    """引き当てが解放された（取消 or 期限切れ）"""
    reservation_id: str
    sku: str
    order_id: str
    quantity: int
    warehouse_code: str
    status: str
    timestamp: datetime


class StockAdjusted(BaseModel):
    """一括更新で在庫数が変わった"""
    batch_id: str
    sku: str
    warehouse_code: str
    operation: str
    previous_quantity: int
    new_quantity: int
    reason: str | None
    timestamp: datetime


class ThresholdUpdated(BaseModel):
    sku: str
    warehouse_code: str | None
    min_threshold: int
    max_threshold: int
    updated_rows: int
    timestamp: datetime


class DamagedReturnRegistered(BaseModel):
    """破損返品が登録された"""
    return_id: str
    sku: str
    quantity: int
    damage_type: str
    warehouse_code: str | None
    timestamp: datetime


class PriceAdjusted(BaseModel):
    sku: str
    previous_price: float
    new_price: float
    timestamp: datetime


class ProductDiscontinued(BaseModel):
    sku: str
    reason: str
    remaining_quantity: int
    timestamp: datetime


async def publish(redis: aioredis.Redis | None, event: BaseModel) -> None:
    """イベントを inventory_events チャネルに発行する。"""
    if redis is None:
        return
    payload = json.dumps(
        {
            "event_type": type(event).__name__,
            "data": event.model_dump(mode="json"),
        }
    )
    try:
        await redis.publish(CHANNEL, payload)
    except RedisError as exc:
        logger.warning("Failed to publish %s: %s", type(event).__name__, exc)
