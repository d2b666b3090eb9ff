"""
Inventory Service - コマンドハンドラ (Write 側)

在庫台帳を変更するユースケース:
  - 在庫引き当て (Reservation Coordinator) と取消・期限切れ解放
  - 閾値 / 発注点の更新 (Threshold Policy)
  - 一括在庫更新
  - 破損返品の登録 (Damaged Return Adjuster)
  - 価格改定・販売終了

業務ルール違反 (在庫不足など) は例外にせず success=False の結果で返す。
同じ SKU への書き込みは ledger.sku_locks で直列化する。
イベントはコミット後に発行する。
"""

import logging
from datetime import datetime, timedelta
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.shared.contracts import (
    BulkUpdateItemResult,
    BulkUpdateRequest,
    BulkUpdateResult,
    DamagedReturnRequest,
    DamagedReturnResult,
    DiscontinueRequest,
    DiscontinueResult,
    PriceAdjustmentRequest,
    PriceAdjustmentResult,
    ReservationRequest,
    ReservationResult,
    ReservationStatus,
    ThresholdRequest,
    ThresholdResult,
)
from . import events, ledger, queries
from .errors import BusinessRuleViolation, InventoryError, NotFoundError
from .ledger import AdjustMode, parse_ts, sku_locks, to_db, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RESERVATION_TTL = timedelta(hours=24)
DEFAULT_WAREHOUSE = "DEFAULT"


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:8].upper()}"


def _reservation_result(row, success: bool, message: str) -> ReservationResult:
    return ReservationResult(
        reservation_id=row.reservation_id,
        sku=row.sku,
        order_id=row.order_id,
        quantity=row.quantity,
        warehouse_code=row.warehouse_code,
        customer_id=row.customer_id,
        status=row.status,
        reserved_at=parse_ts(row.reserved_at),
        expires_at=parse_ts(row.expires_at),
        success=success,
        message=message,
    )


async def _find_reservation(session: AsyncSession, reservation_id: str):
    result = await session.execute(
        text("SELECT * FROM stock_reservations WHERE reservation_id = :id"),
        {"id": reservation_id},
    )
    return result.fetchone()


async def _find_active_reservation(session: AsyncSession, order_id: str, sku: str):
    result = await session.execute(
        text("""
            SELECT * FROM stock_reservations
            WHERE order_id = :order_id AND sku = :sku AND status = 'CONFIRMED'
            ORDER BY reserved_at
        """),
        {"order_id": order_id, "sku": sku},
    )
    return result.fetchone()


# ── Reservation Coordinator ──────────────────────


async def reserve_stock(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    request: ReservationRequest,
    ttl: timedelta = DEFAULT_RESERVATION_TTL,
) -> ReservationResult:
    """
    在庫引き当てコマンド

    0. 同じ (order_id, sku) の CONFIRMED 引き当てがあり、数量 (と指定があれば倉庫) が
       一致すればそれを返す (再送対策)。一致しなければ何も変更せず FAILED
    1. 在庫集計で全体の空き数量を確認。不足なら何も変更せず FAILED
    2. warehouse_code 昇順に倉庫を走査し、単一倉庫で足りる最初の行を hold
    3. CONFIRMED の引き当てを記録 (expires_at = now + ttl)
    4. コミット後に StockReserved を発行

    1-4 は SKU ロックの中で行う。hold 自体も条件付き UPDATE なので、
    別プロセスからの同時書き込みでも reserved_quantity が quantity を超えない。
    """
    async with sku_locks.acquire(request.sku):
        existing = await _find_active_reservation(session, request.order_id, request.sku)
        if existing is not None:
            if existing.quantity != request.quantity or (
                request.warehouse_code and existing.warehouse_code != request.warehouse_code
            ):
                return await _reservation_failed(
                    redis,
                    request,
                    None,
                    f"Conflicting reservation {existing.reservation_id} exists for order "
                    f"{request.order_id} (quantity: {existing.quantity}, "
                    f"warehouse: {existing.warehouse_code})",
                )
            logger.info(
                "Reservation %s already exists for order %s",
                existing.reservation_id,
                request.order_id,
            )
            return _reservation_result(existing, True, "Reservation already exists for order")

        availability = await queries.check_availability(session, request.sku)
        if availability.status == queries.NOT_FOUND:
            return await _reservation_failed(
                redis, request, availability.available_quantity, "Product not found or inactive"
            )
        if availability.available_quantity < request.quantity:
            return await _reservation_failed(
                redis,
                request,
                availability.available_quantity,
                f"Insufficient stock available. Requested: {request.quantity}, "
                f"Available: {availability.available_quantity}",
            )

        candidates = await ledger.rows(session, request.sku)
        if request.warehouse_code:
            candidates = [r for r in candidates if r.warehouse_code == request.warehouse_code]

        chosen = None
        for record in candidates:
            if record.available < request.quantity:
                continue
            if await ledger.hold(session, request.sku, record.warehouse_code, request.quantity):
                chosen = record
                break

        if chosen is None:
            await session.rollback()
            # hold の間に別プロセスが在庫を減らした場合は不足として報告し直す
            availability = await queries.check_availability(session, request.sku)
            if (availability.available_quantity or 0) < request.quantity:
                message = (
                    f"Insufficient stock available. Requested: {request.quantity}, "
                    f"Available: {availability.available_quantity}"
                )
            else:
                message = "No single warehouse has sufficient stock"
            return await _reservation_failed(
                redis, request, availability.available_quantity, message
            )

        now = utcnow()
        expires_at = now + ttl
        reservation_id = _short_id("RES")
        await session.execute(
            text("""
                INSERT INTO stock_reservations
                    (reservation_id, sku, order_id, quantity, warehouse_code,
                     customer_id, status, notes, reserved_at, expires_at)
                VALUES
                    (:id, :sku, :order_id, :qty, :wh,
                     :customer_id, :status, :notes, :reserved_at, :expires_at)
            """),
            {
                "id": reservation_id,
                "sku": request.sku,
                "order_id": request.order_id,
                "qty": request.quantity,
                "wh": chosen.warehouse_code,
                "customer_id": request.customer_id,
                "status": ReservationStatus.CONFIRMED.value,
                "notes": request.notes,
                "reserved_at": to_db(now),
                "expires_at": to_db(expires_at),
            },
        )
        await session.commit()

    logger.info(
        "Reserved %d of %s in %s for order %s (%s)",
        request.quantity,
        request.sku,
        chosen.warehouse_code,
        request.order_id,
        reservation_id,
    )
    await events.publish(
        redis,
        events.StockReserved(
            reservation_id=reservation_id,
            sku=request.sku,
            order_id=request.order_id,
            quantity=request.quantity,
            warehouse_code=chosen.warehouse_code,
            expires_at=expires_at,
            timestamp=now,
        ),
    )

    return ReservationResult(
        reservation_id=reservation_id,
        sku=request.sku,
        order_id=request.order_id,
        quantity=request.quantity,
        warehouse_code=chosen.warehouse_code,
        customer_id=request.customer_id,
        status=ReservationStatus.CONFIRMED.value,
        reserved_at=now,
        expires_at=expires_at,
        success=True,
        message="Stock reserved successfully",
    )


async def _reservation_failed(
    redis: aioredis.Redis | None,
    request: ReservationRequest,
    available: int | None,
    reason: str,
) -> ReservationResult:
    logger.info("Reservation failed for %s (order %s): %s", request.sku, request.order_id, reason)
    await events.publish(
        redis,
        events.StockReservationFailed(
            sku=request.sku,
            order_id=request.order_id,
            quantity_requested=request.quantity,
            quantity_available=available,
            reason=reason,
            timestamp=utcnow(),
        ),
    )
    return ReservationResult(
        sku=request.sku,
        order_id=request.order_id,
        quantity=request.quantity,
        status=ReservationStatus.FAILED.value,
        success=False,
        message=reason,
    )


# ── Reservation lifecycle ────────────────────────


async def _retire(
    session: AsyncSession, row, status: ReservationStatus, now: datetime
) -> bool:
    """
    CONFIRMED の引き当てを status に移し、同じ在庫行から hold を戻す。

    status = 'CONFIRMED' を条件にした UPDATE なので、取消と期限切れが
    競合しても先に着地した方だけが効き、もう一方は False を返す。
    """
    result = await session.execute(
        text("""
            UPDATE stock_reservations
            SET status = :status, released_at = :now
            WHERE reservation_id = :id AND status = 'CONFIRMED'
        """),
        {"status": status.value, "now": to_db(now), "id": row.reservation_id},
    )
    if result.rowcount != 1:
        return False
    await ledger.release(session, row.sku, row.warehouse_code, row.quantity)
    return True


async def cancel_reservation(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    reservation_id: str,
) -> ReservationResult:
    """引き当て取消コマンド (CONFIRMED → CANCELLED)"""
    row = await _find_reservation(session, reservation_id)
    if row is None:
        return ReservationResult(
            reservation_id=reservation_id,
            success=False,
            message=f"Reservation not found: {reservation_id}",
        )

    now = utcnow()
    async with sku_locks.acquire(row.sku):
        released = await _retire(session, row, ReservationStatus.CANCELLED, now)
        if not released:
            await session.rollback()
            current = await _find_reservation(session, reservation_id)
            return _reservation_result(
                current, False, f"Reservation is not active (status: {current.status})"
            )
        await session.commit()

    logger.info("Cancelled reservation %s", reservation_id)
    await events.publish(
        redis,
        events.ReservationReleased(
            reservation_id=row.reservation_id,
            sku=row.sku,
            order_id=row.order_id,
            quantity=row.quantity,
            warehouse_code=row.warehouse_code,
            status=ReservationStatus.CANCELLED.value,
            timestamp=now,
        ),
    )
    current = await _find_reservation(session, reservation_id)
    return _reservation_result(current, True, "Reservation cancelled successfully")


async def release_expired_reservations(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    now: datetime | None = None,
) -> int:
    """
    expires_at を過ぎた CONFIRMED の引き当てを EXPIRED にして hold を戻す。

    1 件ずつコミットする。解放した件数を返す。
    """
    now = now or utcnow()
    result = await session.execute(
        text("""
            SELECT * FROM stock_reservations
            WHERE status = 'CONFIRMED' AND expires_at < :now
            ORDER BY expires_at
        """),
        {"now": to_db(now)},
    )
    expired = result.fetchall()

    released = 0
    for row in expired:
        async with sku_locks.acquire(row.sku):
            if not await _retire(session, row, ReservationStatus.EXPIRED, now):
                await session.rollback()
                continue
            await session.commit()
        released += 1
        await events.publish(
            redis,
            events.ReservationReleased(
                reservation_id=row.reservation_id,
                sku=row.sku,
                order_id=row.order_id,
                quantity=row.quantity,
                warehouse_code=row.warehouse_code,
                status=ReservationStatus.EXPIRED.value,
                timestamp=now,
            ),
        )

    if released:
        logger.info("Released %d expired reservation(s)", released)
    return released


# ── Threshold / Reorder Policy ───────────────────


async def update_threshold(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    sku: str,
    request: ThresholdRequest,
) -> ThresholdResult:
    """
    閾値更新コマンド

    warehouse_code がなければ SKU の全行、あれば一致する 1 行だけを更新する。
    省略された reorder_point / reorder_quantity / auto_reorder は現在値を保つ。
    auto_reorder は保存するだけで自動発注は行わない。
    """
    try:
        async with sku_locks.acquire(sku):
            updated = await _apply_threshold(session, sku, request)
            await session.commit()
    except NotFoundError as exc:
        await session.rollback()
        return ThresholdResult(sku=sku, success=False, message=str(exc))

    first = updated[0]
    await events.publish(
        redis,
        events.ThresholdUpdated(
            sku=sku,
            warehouse_code=request.warehouse_code,
            min_threshold=request.min_threshold,
            max_threshold=request.max_threshold,
            updated_rows=len(updated),
            timestamp=utcnow(),
        ),
    )
    return ThresholdResult(
        sku=sku,
        min_threshold=first.min_threshold,
        max_threshold=first.max_threshold,
        reorder_point=first.reorder_point,
        reorder_quantity=first.reorder_quantity,
        warehouse_code=request.warehouse_code,
        auto_reorder=first.auto_reorder,
        updated_rows=len(updated),
        success=True,
        message="Threshold updated successfully",
    )


async def _apply_threshold(
    session: AsyncSession, sku: str, request: ThresholdRequest
) -> list[ledger.StockRecord]:
    sql = """
        UPDATE stock
        SET min_threshold = :min,
            max_threshold = :max,
            reorder_point = COALESCE(:reorder_point, reorder_point),
            reorder_quantity = COALESCE(:reorder_quantity, reorder_quantity),
            auto_reorder = COALESCE(:auto_reorder, auto_reorder)
        WHERE sku = :sku
    """
    params = {
        "min": request.min_threshold,
        "max": request.max_threshold,
        "reorder_point": request.reorder_point,
        "reorder_quantity": request.reorder_quantity,
        "auto_reorder": request.auto_reorder,
        "sku": sku,
    }
    if request.warehouse_code:
        sql += " AND warehouse_code = :wh"
        params["wh"] = request.warehouse_code

    result = await session.execute(text(sql), params)
    if result.rowcount == 0:
        if request.warehouse_code:
            raise NotFoundError(
                f"No stock found for SKU: {sku} in warehouse {request.warehouse_code}"
            )
        raise NotFoundError(f"No stock found for SKU: {sku}")

    await ledger.refresh_status(session, sku, request.warehouse_code or None)
    records = await ledger.rows(session, sku)
    if request.warehouse_code:
        records = [r for r in records if r.warehouse_code == request.warehouse_code]
    return records


# ── Bulk update ──────────────────────────────────


async def bulk_stock_update(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    request: BulkUpdateRequest,
) -> BulkUpdateResult:
    """
    一括在庫更新コマンド

    明細ごとにコミットし、失敗した明細はその明細だけロールバックする。
    行がなければ既定の閾値で作成する (作成されるのはこの経路だけ)。
    数量が引き当て済み数量を下回る明細は失敗にする。
    """
    batch_id = request.batch_id or _short_id("BATCH")
    warehouse_code = request.warehouse_code or DEFAULT_WAREHOUSE

    if not request.items:
        return BulkUpdateResult(
            batch_id=batch_id,
            warehouse_code=request.warehouse_code,
            total_items=0,
            success_count=0,
            failure_count=0,
            status="FAILED",
            success=False,
            message="No items to update",
        )

    logger.info("Processing bulk stock update %s for %d items", batch_id, len(request.items))
    results: list[BulkUpdateItemResult] = []
    applied: list[events.StockAdjusted] = []

    for item in request.items:
        try:
            async with sku_locks.acquire(item.sku):
                mode = AdjustMode.parse(item.operation)
                previous, new = await ledger.adjust(
                    session, item.sku, warehouse_code, item.quantity, mode, create_missing=True
                )
                record = await ledger.get(session, item.sku, warehouse_code)
                if record.available < 0:
                    raise BusinessRuleViolation(
                        f"Quantity {new} would fall below reserved quantity "
                        f"{record.reserved_quantity}"
                    )
                await session.commit()
        except (InventoryError, ValueError) as exc:
            await session.rollback()
            logger.warning("Bulk item %s failed: %s", item.sku, exc)
            results.append(
                BulkUpdateItemResult(
                    sku=item.sku, success=False, message=f"Update failed: {exc}"
                )
            )
            continue

        results.append(
            BulkUpdateItemResult(
                sku=item.sku,
                success=True,
                previous_quantity=previous,
                new_quantity=new,
                message="Updated successfully",
            )
        )
        applied.append(
            events.StockAdjusted(
                batch_id=batch_id,
                sku=item.sku,
                warehouse_code=warehouse_code,
                operation=mode.value,
                previous_quantity=previous,
                new_quantity=new,
                reason=item.reason,
                timestamp=utcnow(),
            )
        )

    for event in applied:
        await events.publish(redis, event)

    success_count = sum(1 for r in results if r.success)
    failure_count = len(results) - success_count
    return BulkUpdateResult(
        batch_id=batch_id,
        warehouse_code=request.warehouse_code,
        total_items=len(request.items),
        success_count=success_count,
        failure_count=failure_count,
        status="COMPLETED" if failure_count == 0 else "PARTIAL",
        results=results,
        success=success_count > 0,
        message=f"Bulk update completed. Success: {success_count}, Failed: {failure_count}",
    )


# ── Damaged Return Adjuster ──────────────────────


async def register_damaged_return(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    request: DamagedReturnRequest,
) -> DamagedReturnResult:
    """
    破損返品の登録コマンド

    返品を PENDING で記録し、warehouse_code があればその行の quantity を
    REMOVE で減らす (0 未満にはしない)。reserved_quantity は変更しない。
    """
    return_id = _short_id("RET")
    now = utcnow()

    try:
        async with sku_locks.acquire(request.sku):
            if request.warehouse_code:
                record = await ledger.get(session, request.sku, request.warehouse_code)
                if record is None:
                    raise NotFoundError(
                        f"No stock found for SKU {request.sku} "
                        f"in warehouse {request.warehouse_code}"
                    )

            await session.execute(
                text("""
                    INSERT INTO damaged_returns
                        (return_id, sku, quantity, damage_type, damage_description,
                         warehouse_code, reported_by, disposition, status, notes, reported_at)
                    VALUES
                        (:id, :sku, :qty, :damage_type, :description,
                         :wh, :reported_by, :disposition, 'PENDING', :notes, :now)
                """),
                {
                    "id": return_id,
                    "sku": request.sku,
                    "qty": request.quantity,
                    "damage_type": request.damage_type,
                    "description": request.damage_description,
                    "wh": request.warehouse_code,
                    "reported_by": request.reported_by,
                    "disposition": request.disposition,
                    "notes": request.notes,
                    "now": to_db(now),
                },
            )

            if request.warehouse_code:
                await ledger.adjust(
                    session,
                    request.sku,
                    request.warehouse_code,
                    request.quantity,
                    AdjustMode.REMOVE,
                )
                record = await ledger.get(session, request.sku, request.warehouse_code)
                if record.quantity < record.reserved_quantity:
                    logger.warning(
                        "Damaged return %s left %s @ %s with quantity %d below reserved %d",
                        return_id,
                        request.sku,
                        request.warehouse_code,
                        record.quantity,
                        record.reserved_quantity,
                    )
            await session.commit()
    except NotFoundError as exc:
        await session.rollback()
        return DamagedReturnResult(sku=request.sku, success=False, message=str(exc))

    await events.publish(
        redis,
        events.DamagedReturnRegistered(
            return_id=return_id,
            sku=request.sku,
            quantity=request.quantity,
            damage_type=request.damage_type,
            warehouse_code=request.warehouse_code,
            timestamp=now,
        ),
    )
    return DamagedReturnResult(
        return_id=return_id,
        sku=request.sku,
        quantity=request.quantity,
        damage_type=request.damage_type,
        damage_description=request.damage_description,
        warehouse_code=request.warehouse_code,
        reported_by=request.reported_by,
        disposition=request.disposition,
        reported_at=now,
        status="PENDING",
        notes=request.notes,
        success=True,
        message="Damaged return registered successfully",
    )


# ── Price / discontinue ──────────────────────────


async def adjust_price(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    sku: str,
    request: PriceAdjustmentRequest,
) -> PriceAdjustmentResult:
    product = await queries.get_product(session, sku)
    if product is None:
        return PriceAdjustmentResult(sku=sku, success=False, message="Product not found")

    now = utcnow()
    current_price = float(product.unit_price)
    await session.execute(
        text("UPDATE products SET unit_price = :price, updated_at = :now WHERE sku = :sku"),
        {"price": request.new_price, "now": to_db(now), "sku": sku},
    )
    await session.commit()

    await events.publish(
        redis,
        events.PriceAdjusted(
            sku=sku, previous_price=current_price, new_price=request.new_price, timestamp=now
        ),
    )
    return PriceAdjustmentResult(
        sku=sku,
        current_price=current_price,
        new_price=request.new_price,
        discount_percentage=request.discount_percentage,
        adjustment_reason=request.adjustment_reason,
        adjusted_by=request.adjusted_by,
        success=True,
        message="Price adjusted successfully",
    )


async def discontinue_product(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    sku: str,
    request: DiscontinueRequest,
) -> DiscontinueResult:
    """販売終了コマンド。在庫行はそのまま残し、商品を非アクティブにする。"""
    product = await queries.get_product(session, sku)
    if product is None:
        return DiscontinueResult(sku=sku, success=False, message="Product not found")

    records = await ledger.rows(session, sku)
    remaining = sum(r.quantity for r in records)
    now = utcnow()
    await session.execute(
        text("""
            UPDATE products
            SET is_active = :active, discontinued_at = :now,
                discontinued_reason = :reason, updated_at = :now
            WHERE sku = :sku
        """),
        {"active": False, "now": to_db(now), "reason": request.reason, "sku": sku},
    )
    await session.commit()

    logger.info("Discontinued %s (%d units remaining)", sku, remaining)
    await events.publish(
        redis,
        events.ProductDiscontinued(
            sku=sku, reason=request.reason, remaining_quantity=remaining, timestamp=now
        ),
    )
    return DiscontinueResult(
        sku=sku,
        reason=request.reason,
        discontinued_by=request.discontinued_by,
        stock_disposition=request.stock_disposition,
        effective_date=now,
        remaining_quantity=remaining,
        success=True,
        message="Product discontinued successfully",
    )
