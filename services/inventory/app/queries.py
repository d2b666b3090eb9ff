"""
Inventory Service - クエリハンドラ (Read 側)

在庫台帳・商品・倉庫を読み取るだけで、書き込みは行わない。
ロックは取らないので、書き込みと並行して実行される。
"""

import logging
import math
import time

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from services.shared.contracts import (
    Pagination,
    ProductDetails,
    SearchMetadata,
    StockAvailability,
    StockSearchItem,
    StockSearchRequest,
    StockSearchResult,
    StockStatus,
    WarehouseStatus,
)
from . import ledger
from .ledger import parse_ts, utcnow

logger = logging.getLogger(__name__)

NOT_FOUND = "NOT_FOUND"

# 並び替えに使える列 (ワイヤ名 / snake_case の両方を受け付ける)
SORT_COLUMNS = {
    "sku": "s.sku",
    "productName": "p.product_name",
    "product_name": "p.product_name",
    "quantity": "s.quantity",
    "reservedQuantity": "s.reserved_quantity",
    "reserved_quantity": "s.reserved_quantity",
    "warehouseCode": "s.warehouse_code",
    "warehouse_code": "s.warehouse_code",
    "stockStatus": "s.stock_status",
    "stock_status": "s.stock_status",
    "lastUpdated": "s.updated_at",
    "last_updated": "s.updated_at",
}


async def get_product(session: AsyncSession, sku: str):
    result = await session.execute(
        text("""
            SELECT sku, product_name, description, category, brand, unit_price,
                   currency, unit_of_measure, is_active, updated_at
            FROM products
            WHERE sku = :sku
        """),
        {"sku": sku},
    )
    return result.fetchone()


async def get_warehouse(session: AsyncSession, warehouse_code: str):
    result = await session.execute(
        text("SELECT * FROM warehouses WHERE warehouse_code = :wh"),
        {"wh": warehouse_code},
    )
    return result.fetchone()


# ── Availability Calculator ──────────────────────


async def check_availability(session: AsyncSession, sku: str) -> StockAvailability:
    """
    SKU の在庫を全倉庫で集計する。

    商品が存在しない / 非アクティブなら台帳を見ずに NOT_FOUND を返す。
    以降の書き込みとはトランザクションで結ばれない単なるスナップショット。
    """
    product = await get_product(session, sku)
    if product is None or not product.is_active:
        return StockAvailability(
            sku=sku,
            available_quantity=0,
            reserved_quantity=0,
            is_available=False,
            status=NOT_FOUND,
            success=False,
            message="Product not found or inactive",
        )

    records = await ledger.rows(session, sku)
    total = sum(r.quantity for r in records)
    reserved = sum(r.reserved_quantity for r in records)
    available = total - reserved
    primary = records[0] if records else None

    return StockAvailability(
        sku=sku,
        product_name=product.product_name,
        available_quantity=available,
        reserved_quantity=reserved,
        warehouse_code=primary.warehouse_code if primary else None,
        is_available=available > 0,
        status=(StockStatus.IN_STOCK if available > 0 else StockStatus.OUT_OF_STOCK).value,
        last_updated=primary.updated_at if primary else None,
        success=True,
        message="Availability check successful",
    )


# ── Warehouse status ─────────────────────────────


async def get_warehouse_status(session: AsyncSession, warehouse_code: str) -> WarehouseStatus:
    warehouse = await get_warehouse(session, warehouse_code)
    if warehouse is None:
        return WarehouseStatus(
            warehouse_code=warehouse_code,
            is_operational=False,
            success=False,
            message="Warehouse not found",
        )

    result = await session.execute(
        text("""
            SELECT COUNT(DISTINCT sku) AS total_skus,
                   SUM(CASE WHEN stock_status = 'LOW_STOCK' THEN 1 ELSE 0 END) AS low_stock,
                   SUM(CASE WHEN stock_status = 'OUT_OF_STOCK' THEN 1 ELSE 0 END) AS out_of_stock
            FROM stock
            WHERE warehouse_code = :wh
        """),
        {"wh": warehouse_code},
    )
    counts = result.fetchone()

    total_capacity = warehouse.total_capacity or 0
    used_capacity = warehouse.used_capacity or 0
    utilization = used_capacity * 100.0 / total_capacity if total_capacity > 0 else 0.0

    return WarehouseStatus(
        warehouse_code=warehouse.warehouse_code,
        warehouse_name=warehouse.warehouse_name,
        location=warehouse.location,
        region=warehouse.region,
        status=warehouse.status,
        total_capacity=total_capacity,
        used_capacity=used_capacity,
        available_capacity=total_capacity - used_capacity,
        utilization_percentage=round(utilization, 2),
        total_skus=counts.total_skus or 0,
        low_stock_skus=counts.low_stock or 0,
        out_of_stock_skus=counts.out_of_stock or 0,
        last_inventory_check=parse_ts(warehouse.last_inventory_check),
        last_updated=utcnow(),
        is_operational=bool(warehouse.is_operational),
        success=True,
        message="Status retrieved successfully",
    )


# ── Product details ──────────────────────────────


async def get_product_details(session: AsyncSession, sku: str) -> ProductDetails:
    """商品情報に在庫の集計と主倉庫 (warehouse_code 昇順の先頭) の棚位置を合わせる。"""
    product = await get_product(session, sku)
    if product is None:
        return ProductDetails(sku=sku, success=False, message="Product not found")

    records = await ledger.rows(session, sku)
    primary = records[0] if records else None
    warehouse = await get_warehouse(session, primary.warehouse_code) if primary else None

    stock_count = sum(r.quantity for r in records)
    reserved_count = sum(r.reserved_quantity for r in records)

    return ProductDetails(
        sku=product.sku,
        product_name=product.product_name,
        description=product.description,
        category=product.category,
        brand=product.brand,
        unit_price=float(product.unit_price) if product.unit_price is not None else None,
        currency=product.currency,
        unit_of_measure=product.unit_of_measure,
        stock_count=stock_count,
        reserved_count=reserved_count,
        available_count=stock_count - reserved_count,
        stock_status=primary.stock_status if primary else "UNKNOWN",
        warehouse_code=primary.warehouse_code if primary else None,
        warehouse_name=warehouse.warehouse_name if warehouse else None,
        warehouse_location=warehouse.location if warehouse else None,
        warehouse_region=warehouse.region if warehouse else None,
        aisle=primary.aisle if primary else None,
        shelf=primary.shelf if primary else None,
        bin=primary.bin if primary else None,
        last_stock_update=primary.updated_at if primary else None,
        last_price_update=parse_ts(product.updated_at),
        is_active=bool(product.is_active),
        success=True,
        message="Product details retrieved successfully",
    )


# ── Search ───────────────────────────────────────


async def search_stock(session: AsyncSession, request: StockSearchRequest) -> StockSearchResult:
    """
    在庫行の検索 (ページング付き)。

    sort_by は SORT_COLUMNS にある列だけを受け付け、それ以外は sku で並べる。
    """
    started = time.perf_counter()

    sort_by = request.sort_by if request.sort_by in SORT_COLUMNS else "sku"
    direction = "DESC" if request.sort_direction.upper() == "DESC" else "ASC"

    conditions = []
    params: dict = {}
    if request.sku:
        conditions.append("s.sku LIKE :sku")
        params["sku"] = f"%{request.sku}%"
    if request.warehouse_code:
        conditions.append("s.warehouse_code = :wh")
        params["wh"] = request.warehouse_code
    if request.stock_status:
        conditions.append("s.stock_status = :status")
        params["status"] = request.stock_status.upper()
    if request.min_quantity is not None:
        conditions.append("s.quantity >= :min_qty")
        params["min_qty"] = request.min_quantity
    if request.max_quantity is not None:
        conditions.append("s.quantity <= :max_qty")
        params["max_qty"] = request.max_quantity
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    total_result = await session.execute(
        text(f"SELECT COUNT(*) FROM stock s {where}"),
        params,
    )
    total = total_result.scalar_one()

    result = await session.execute(
        text(f"""
            SELECT s.sku, s.warehouse_code, s.quantity, s.reserved_quantity,
                   s.stock_status, s.updated_at,
                   p.product_name, p.category, w.location AS warehouse_location
            FROM stock s
            LEFT JOIN products p ON p.sku = s.sku
            LEFT JOIN warehouses w ON w.warehouse_code = s.warehouse_code
            {where}
            ORDER BY {SORT_COLUMNS[sort_by]} {direction}, s.sku, s.warehouse_code
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": request.size, "offset": request.page * request.size},
    )
    items = [
        StockSearchItem(
            sku=row.sku,
            product_name=row.product_name or "Unknown",
            category=row.category,
            quantity=row.quantity,
            reserved_quantity=row.reserved_quantity,
            available_quantity=row.quantity - row.reserved_quantity,
            warehouse_code=row.warehouse_code,
            warehouse_location=row.warehouse_location,
            stock_status=row.stock_status,
            last_updated=parse_ts(row.updated_at),
        )
        for row in result.fetchall()
    ]

    total_pages = math.ceil(total / request.size) if total else 0
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info("Stock search returned %d of %d rows in %d ms", len(items), total, elapsed_ms)

    return StockSearchResult(
        items=items,
        pagination=Pagination(
            current_page=request.page,
            page_size=request.size,
            total_elements=total,
            total_pages=total_pages,
            has_next=request.page + 1 < total_pages,
            has_previous=request.page > 0,
        ),
        metadata=SearchMetadata(
            sort_by=sort_by,
            sort_direction=direction,
            search_time_ms=elapsed_ms,
        ),
        success=True,
        message="Search completed",
    )
