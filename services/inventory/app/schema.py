"""
Inventory Service - テーブル定義

起動時に create_schema() で冪等に適用する。
タイムスタンプは PostgreSQL と SQLite で同じ SQL が動くように
ISO-8601 (UTC) の文字列で保存する。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

DDL = [
    """
    CREATE TABLE IF NOT EXISTS products (
        sku                 VARCHAR(64) PRIMARY KEY,
        product_name        VARCHAR(255) NOT NULL,
        description         TEXT,
        category            VARCHAR(100),
        brand               VARCHAR(100),
        unit_price          NUMERIC(12, 2) NOT NULL DEFAULT 0,
        currency            VARCHAR(3) NOT NULL DEFAULT 'USD',
        unit_of_measure     VARCHAR(20),
        is_active           BOOLEAN NOT NULL DEFAULT TRUE,
        discontinued_at     VARCHAR(40),
        discontinued_reason TEXT,
        updated_at          VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS warehouses (
        warehouse_code       VARCHAR(32) PRIMARY KEY,
        warehouse_name       VARCHAR(255) NOT NULL,
        location             VARCHAR(255),
        region               VARCHAR(100),
        status               VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
        total_capacity       INTEGER NOT NULL DEFAULT 0,
        used_capacity        INTEGER NOT NULL DEFAULT 0,
        is_operational       BOOLEAN NOT NULL DEFAULT TRUE,
        last_inventory_check VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stock (
        sku               VARCHAR(64) NOT NULL,
        warehouse_code    VARCHAR(32) NOT NULL,
        quantity          INTEGER NOT NULL DEFAULT 0,
        reserved_quantity INTEGER NOT NULL DEFAULT 0,
        min_threshold     INTEGER NOT NULL DEFAULT 10,
        max_threshold     INTEGER NOT NULL DEFAULT 1000,
        reorder_point     INTEGER,
        reorder_quantity  INTEGER,
        auto_reorder      BOOLEAN NOT NULL DEFAULT FALSE,
        stock_status      VARCHAR(20) NOT NULL DEFAULT 'OUT_OF_STOCK',
        aisle             VARCHAR(20),
        shelf             VARCHAR(20),
        bin               VARCHAR(20),
        updated_at        VARCHAR(40),
        PRIMARY KEY (sku, warehouse_code),
        CHECK (quantity >= 0),
        CHECK (reserved_quantity >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS stock_reservations (
        reservation_id VARCHAR(32) PRIMARY KEY,
        sku            VARCHAR(64) NOT NULL,
        order_id       VARCHAR(64) NOT NULL,
        quantity       INTEGER NOT NULL,
        warehouse_code VARCHAR(32) NOT NULL,
        customer_id    VARCHAR(64),
        status         VARCHAR(20) NOT NULL,
        notes          TEXT,
        reserved_at    VARCHAR(40) NOT NULL,
        expires_at     VARCHAR(40) NOT NULL,
        released_at    VARCHAR(40)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_stock_reservations_status_expires
        ON stock_reservations (status, expires_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_stock_reservations_order
        ON stock_reservations (order_id, sku)
    """,
    """
    CREATE TABLE IF NOT EXISTS damaged_returns (
        return_id          VARCHAR(32) PRIMARY KEY,
        sku                VARCHAR(64) NOT NULL,
        quantity           INTEGER NOT NULL,
        damage_type        VARCHAR(50) NOT NULL,
        damage_description TEXT,
        warehouse_code     VARCHAR(32),
        reported_by        VARCHAR(100),
        disposition        VARCHAR(50),
        status             VARCHAR(20) NOT NULL,
        notes              TEXT,
        reported_at        VARCHAR(40) NOT NULL
    )
    """,
]


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in DDL:
            await conn.execute(text(statement))
