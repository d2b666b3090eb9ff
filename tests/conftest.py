"""
Shared fixtures

各テストは tmp_path 上の SQLite ファイル DB を使い、Redis は AsyncMock で置き換える。
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INVENTORY_SERVICE_URL", "http://inventory")

from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from services.gateway.app import main as gateway_main
from services.inventory.app import ledger
from services.inventory.app import main as inventory_main
from services.inventory.app.ledger import derive_status, to_db, utcnow
from services.inventory.app.schema import create_schema
from services.inventory.app.service import InventoryService


class Seeder:
    """テストデータの投入と台帳の読み出し"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _execute(self, sql: str, params: dict) -> None:
        async with self.session_factory() as session:
            await session.execute(text(sql), params)
            await session.commit()

    async def product(
        self,
        sku: str,
        name: str = "Test Product",
        price: float = 19.99,
        active: bool = True,
        category: str | None = "Tools",
    ) -> None:
        await self._execute(
            """
            INSERT INTO products (sku, product_name, category, brand, unit_price,
                                  currency, unit_of_measure, is_active, updated_at)
            VALUES (:sku, :name, :category, 'Acme', :price, 'USD', 'EA', :active, :now)
            """,
            {
                "sku": sku,
                "name": name,
                "category": category,
                "price": price,
                "active": active,
                "now": to_db(utcnow()),
            },
        )

    async def warehouse(
        self,
        code: str,
        name: str | None = None,
        total_capacity: int = 10000,
        used_capacity: int = 2500,
        operational: bool = True,
    ) -> None:
        await self._execute(
            """
            INSERT INTO warehouses (warehouse_code, warehouse_name, location, region,
                                    status, total_capacity, used_capacity, is_operational)
            VALUES (:code, :name, :location, 'EU', 'ACTIVE', :total, :used, :operational)
            """,
            {
                "code": code,
                "name": name or f"Warehouse {code}",
                "location": f"{code} Street 1",
                "total": total_capacity,
                "used": used_capacity,
                "operational": operational,
            },
        )

    async def stock(
        self,
        sku: str,
        warehouse_code: str,
        quantity: int,
        reserved: int = 0,
        min_threshold: int = 10,
        max_threshold: int = 1000,
        aisle: str | None = None,
    ) -> None:
        status = derive_status(quantity - reserved, min_threshold).value
        await self._execute(
            """
            INSERT INTO stock (sku, warehouse_code, quantity, reserved_quantity,
                               min_threshold, max_threshold, auto_reorder,
                               stock_status, aisle, shelf, bin, updated_at)
            VALUES (:sku, :wh, :qty, :reserved, :min, :max, :auto, :status,
                    :aisle, 'S1', 'B1', :now)
            """,
            {
                "sku": sku,
                "wh": warehouse_code,
                "qty": quantity,
                "reserved": reserved,
                "min": min_threshold,
                "max": max_threshold,
                "auto": False,
                "status": status,
                "aisle": aisle,
                "now": to_db(utcnow()),
            },
        )

    async def get(self, sku: str, warehouse_code: str) -> ledger.StockRecord | None:
        async with self.session_factory() as session:
            return await ledger.get(session, sku, warehouse_code)

    async def all_stock(self) -> list[ledger.StockRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                text(ledger._SELECT + " ORDER BY sku, warehouse_code")
            )
            return [ledger.StockRecord.from_row(row) for row in result.fetchall()]

    async def reservation(self, reservation_id: str):
        async with self.session_factory() as session:
            result = await session.execute(
                text("SELECT * FROM stock_reservations WHERE reservation_id = :id"),
                {"id": reservation_id},
            )
            return result.fetchone()

    async def assert_invariant(self) -> None:
        for record in await self.all_stock():
            assert 0 <= record.reserved_quantity <= record.quantity, record


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def redis():
    return AsyncMock()


@pytest.fixture
def service(session_factory, redis):
    return InventoryService(session_factory, redis)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
async def catalog(seed):
    """SKU-001 を 2 倉庫 (WH-A, WH-B) に持つ標準的な在庫"""
    await seed.warehouse("WH-A")
    await seed.warehouse("WH-B")
    await seed.product("SKU-001", name="Cordless Drill")
    await seed.stock("SKU-001", "WH-A", quantity=100, reserved=20, aisle="A1")
    await seed.stock("SKU-001", "WH-B", quantity=50, reserved=0, aisle="B7")
    return seed


@pytest.fixture
async def inventory_client(service):
    """在庫サービスの ASGI アプリ (lifespan なし、オペレーションはテスト用 DB)"""
    inventory_main.app.dependency_overrides[inventory_main.get_operations] = lambda: service
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=inventory_main.app),
        base_url="http://inventory",
    ) as client:
        yield client
    inventory_main.app.dependency_overrides.clear()


@pytest.fixture
async def gateway_client(inventory_client):
    """ゲートウェイ → (ASGI) → 在庫サービスをプロセス内でつなぐ"""
    orchestrator = gateway_main.build_orchestrator(inventory_client)
    gateway_main.app.dependency_overrides[gateway_main.get_operations] = lambda: orchestrator
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=gateway_main.app),
        base_url="http://gateway",
    ) as client:
        yield client
    gateway_main.app.dependency_overrides.clear()
