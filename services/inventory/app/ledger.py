"""
Inventory Service - 在庫台帳 (Stock Ledger)

(sku, warehouse_code) ごとの quantity / reserved_quantity を管理する。
available = quantity - reserved_quantity で算出し、
stock_status は変更のたびに同じトランザクション内で再計算する。

過剰引き当て (oversell) を防ぐ二重の仕組み:
  1. プロセス内: SKU ごとの asyncio.Lock (KeyedLocks) で書き込みを直列化
  2. ストレージ: 条件付き UPDATE (quantity - reserved_quantity >= :qty) で
     比較と加算を 1 文で行い、更新行数で成否を判定する
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.shared.contracts import StockStatus
from .errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_MIN_THRESHOLD = 10
DEFAULT_MAX_THRESHOLD = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(value: datetime) -> str:
    """DB に保存する固定長の ISO-8601 文字列 (文字列比較で時刻順に並ぶ)。"""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value) -> datetime | None:
    """DB の ISO-8601 文字列を datetime に戻す。"""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class AdjustMode(str, Enum):
    SET = "SET"
    ADD = "ADD"
    REMOVE = "REMOVE"

    @classmethod
    def parse(cls, value: str | None) -> "AdjustMode":
        try:
            return cls((value or "SET").upper())
        except ValueError:
            raise ValueError(f"Unsupported operation: {value}") from None


def derive_status(available: int, min_threshold: int) -> StockStatus:
    if available <= 0:
        return StockStatus.OUT_OF_STOCK
    if available <= min_threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


@dataclass
class StockRecord:
    sku: str
    warehouse_code: str
    quantity: int
    reserved_quantity: int
    min_threshold: int
    max_threshold: int
    reorder_point: int | None
    reorder_quantity: int | None
    auto_reorder: bool
    stock_status: str
    aisle: str | None = None
    shelf: str | None = None
    bin: str | None = None
    updated_at: datetime | None = None

    @property
    def available(self) -> int:
        return self.quantity - self.reserved_quantity

    @classmethod
    def from_row(cls, row) -> "StockRecord":
        return cls(
            sku=row.sku,
            warehouse_code=row.warehouse_code,
            quantity=row.quantity,
            reserved_quantity=row.reserved_quantity,
            min_threshold=row.min_threshold,
            max_threshold=row.max_threshold,
            reorder_point=row.reorder_point,
            reorder_quantity=row.reorder_quantity,
            auto_reorder=bool(row.auto_reorder),
            stock_status=row.stock_status,
            aisle=row.aisle,
            shelf=row.shelf,
            bin=row.bin,
            updated_at=parse_ts(row.updated_at),
        )


class KeyedLocks:
    """キーごとの asyncio.Lock。保持者がいなくなったロックは自動で破棄される。"""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @asynccontextmanager
    async def acquire(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield


sku_locks = KeyedLocks()


_SELECT = """
    SELECT sku, warehouse_code, quantity, reserved_quantity,
           min_threshold, max_threshold, reorder_point, reorder_quantity,
           auto_reorder, stock_status, aisle, shelf, bin, updated_at
    FROM stock
"""

_REFRESH_STATUS = """
    UPDATE stock
    SET stock_status = CASE
            WHEN quantity - reserved_quantity <= 0 THEN 'OUT_OF_STOCK'
            WHEN quantity - reserved_quantity <= min_threshold THEN 'LOW_STOCK'
            ELSE 'IN_STOCK'
        END,
        updated_at = :now
    WHERE sku = :sku
"""

_ADJUST_EXPR = {
    AdjustMode.SET: ":qty",
    AdjustMode.ADD: "quantity + :qty",
    AdjustMode.REMOVE: "CASE WHEN quantity > :qty THEN quantity - :qty ELSE 0 END",
}


# ── 読み取り ─────────────────────────────────────


async def rows(session: AsyncSession, sku: str) -> list[StockRecord]:
    """SKU の全倉庫の行を warehouse_code 昇順で返す。"""
    result = await session.execute(
        text(_SELECT + " WHERE sku = :sku ORDER BY warehouse_code ASC"),
        {"sku": sku},
    )
    return [StockRecord.from_row(row) for row in result.fetchall()]


async def get(session: AsyncSession, sku: str, warehouse_code: str) -> StockRecord | None:
    result = await session.execute(
        text(_SELECT + " WHERE sku = :sku AND warehouse_code = :wh"),
        {"sku": sku, "wh": warehouse_code},
    )
    row = result.fetchone()
    return StockRecord.from_row(row) if row else None


# ── 書き込み ─────────────────────────────────────


async def refresh_status(
    session: AsyncSession, sku: str, warehouse_code: str | None = None
) -> None:
    """stock_status を現在の数量から再計算する。"""
    sql = _REFRESH_STATUS
    params = {"sku": sku, "now": to_db(utcnow())}
    if warehouse_code is not None:
        sql += " AND warehouse_code = :wh"
        params["wh"] = warehouse_code
    await session.execute(text(sql), params)


async def create(session: AsyncSession, sku: str, warehouse_code: str) -> StockRecord:
    """既定の閾値 (min=10, max=1000) で空の行を作る。一括更新の経路でのみ使う。"""
    now = utcnow()
    await session.execute(
        text("""
            INSERT INTO stock
                (sku, warehouse_code, quantity, reserved_quantity,
                 min_threshold, max_threshold, auto_reorder, stock_status, updated_at)
            VALUES
                (:sku, :wh, 0, 0, :min, :max, FALSE, :status, :now)
        """),
        {
            "sku": sku,
            "wh": warehouse_code,
            "min": DEFAULT_MIN_THRESHOLD,
            "max": DEFAULT_MAX_THRESHOLD,
            "status": derive_status(0, DEFAULT_MIN_THRESHOLD).value,
            "now": to_db(now),
        },
    )
    logger.info("Created stock row for %s @ %s", sku, warehouse_code)
    return StockRecord(
        sku=sku,
        warehouse_code=warehouse_code,
        quantity=0,
        reserved_quantity=0,
        min_threshold=DEFAULT_MIN_THRESHOLD,
        max_threshold=DEFAULT_MAX_THRESHOLD,
        reorder_point=None,
        reorder_quantity=None,
        auto_reorder=False,
        stock_status=StockStatus.OUT_OF_STOCK.value,
        updated_at=now,
    )


async def adjust(
    session: AsyncSession,
    sku: str,
    warehouse_code: str,
    quantity: int,
    mode: AdjustMode,
    *,
    create_missing: bool = False,
) -> tuple[int, int]:
    """
    quantity を SET / ADD / REMOVE で変更し、(変更前, 変更後) を返す。

    REMOVE は 0 未満にならない。reserved_quantity には触れない。
    行がない場合は create_missing のときだけ作成し、それ以外は NotFoundError。
    """
    if quantity < 0:
        raise ValueError(f"Quantity must not be negative: {quantity}")

    record = await get(session, sku, warehouse_code)
    if record is None:
        if not create_missing:
            raise NotFoundError(f"No stock found for SKU {sku} in warehouse {warehouse_code}")
        record = await create(session, sku, warehouse_code)

    await session.execute(
        text(f"""
            UPDATE stock
            SET quantity = {_ADJUST_EXPR[mode]}
            WHERE sku = :sku AND warehouse_code = :wh
        """),
        {"qty": quantity, "sku": sku, "wh": warehouse_code},
    )
    await refresh_status(session, sku, warehouse_code)

    updated = await get(session, sku, warehouse_code)
    return record.quantity, updated.quantity


async def hold(session: AsyncSession, sku: str, warehouse_code: str, quantity: int) -> bool:
    """
    reserved_quantity を quantity だけ増やす (比較と加算を 1 文で)。

    空き在庫が足りなければ 1 行も更新されず False を返す。
    """
    result = await session.execute(
        text("""
            UPDATE stock
            SET reserved_quantity = reserved_quantity + :qty
            WHERE sku = :sku
              AND warehouse_code = :wh
              AND quantity - reserved_quantity >= :qty
        """),
        {"qty": quantity, "sku": sku, "wh": warehouse_code},
    )
    if result.rowcount != 1:
        return False
    await refresh_status(session, sku, warehouse_code)
    return True


async def release(session: AsyncSession, sku: str, warehouse_code: str, quantity: int) -> None:
    """引き当てで確保した数量を同じ行から戻す (0 未満にはしない)。"""
    result = await session.execute(
        text("""
            UPDATE stock
            SET reserved_quantity = CASE
                    WHEN reserved_quantity > :qty THEN reserved_quantity - :qty
                    ELSE 0
                END
            WHERE sku = :sku AND warehouse_code = :wh
        """),
        {"qty": quantity, "sku": sku, "wh": warehouse_code},
    )
    if result.rowcount != 1:
        raise NotFoundError(f"No stock found for SKU {sku} in warehouse {warehouse_code}")
    await refresh_status(session, sku, warehouse_code)
