"""
Tests for the stock ledger: adjust modes, conditional hold, release and status derivation.
"""

import asyncio

import pytest

from services.inventory.app import ledger
from services.inventory.app.errors import NotFoundError
from services.inventory.app.ledger import AdjustMode, derive_status
from services.shared.contracts import StockStatus


class TestDeriveStatus:
    @pytest.mark.parametrize(
        "available, min_threshold, expected",
        [
            (0, 10, StockStatus.OUT_OF_STOCK),
            (-3, 10, StockStatus.OUT_OF_STOCK),
            (10, 10, StockStatus.LOW_STOCK),
            (1, 10, StockStatus.LOW_STOCK),
            (11, 10, StockStatus.IN_STOCK),
        ],
    )
    def test_status_from_available_and_min_threshold(self, available, min_threshold, expected):
        assert derive_status(available, min_threshold) is expected


class TestAdjustMode:
    def test_parse_is_case_insensitive_and_defaults_to_set(self):
        assert AdjustMode.parse("add") is AdjustMode.ADD
        assert AdjustMode.parse(None) is AdjustMode.SET

    def test_unknown_operation_is_rejected(self):
        with pytest.raises(ValueError, match="Unsupported operation"):
            AdjustMode.parse("MULTIPLY")


class TestAdjust:
    async def test_add_and_remove_with_floor(self, session_factory, seed):
        # Given: a row with quantity=10
        await seed.stock("SKU-1", "WH-A", quantity=10)

        # When / Then: ADD 5 yields 10 -> 15
        async with session_factory() as session:
            assert await ledger.adjust(session, "SKU-1", "WH-A", 5, AdjustMode.ADD) == (10, 15)
            await session.commit()

        # When / Then: REMOVE 40 floors at 0
        async with session_factory() as session:
            assert await ledger.adjust(session, "SKU-1", "WH-A", 40, AdjustMode.REMOVE) == (15, 0)
            await session.commit()

        record = await seed.get("SKU-1", "WH-A")
        assert record.quantity == 0
        assert record.stock_status == StockStatus.OUT_OF_STOCK.value

    async def test_set_replaces_quantity_and_recomputes_status(self, session_factory, seed):
        await seed.stock("SKU-1", "WH-A", quantity=5)

        async with session_factory() as session:
            previous, new = await ledger.adjust(session, "SKU-1", "WH-A", 500, AdjustMode.SET)
            await session.commit()

        assert (previous, new) == (5, 500)
        record = await seed.get("SKU-1", "WH-A")
        assert record.stock_status == StockStatus.IN_STOCK.value

    async def test_missing_row_requires_create_missing(self, session_factory, seed):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await ledger.adjust(session, "SKU-NEW", "WH-A", 5, AdjustMode.ADD)

        async with session_factory() as session:
            assert await ledger.adjust(
                session, "SKU-NEW", "WH-A", 5, AdjustMode.ADD, create_missing=True
            ) == (0, 5)
            await session.commit()

        record = await seed.get("SKU-NEW", "WH-A")
        assert record.min_threshold == 10
        assert record.max_threshold == 1000
        assert record.reserved_quantity == 0
        assert record.stock_status == StockStatus.LOW_STOCK.value

    async def test_negative_quantity_is_rejected(self, session_factory, seed):
        await seed.stock("SKU-1", "WH-A", quantity=10)
        async with session_factory() as session:
            with pytest.raises(ValueError):
                await ledger.adjust(session, "SKU-1", "WH-A", -1, AdjustMode.SET)


class TestHoldAndRelease:
    async def test_hold_increments_reserved_when_free_stock_suffices(self, session_factory, seed):
        await seed.stock("SKU-1", "WH-A", quantity=100, reserved=20)

        async with session_factory() as session:
            assert await ledger.hold(session, "SKU-1", "WH-A", 80) is True
            await session.commit()

        record = await seed.get("SKU-1", "WH-A")
        assert record.reserved_quantity == 100
        assert record.stock_status == StockStatus.OUT_OF_STOCK.value
        await seed.assert_invariant()

    async def test_hold_refuses_to_exceed_quantity(self, session_factory, seed):
        await seed.stock("SKU-1", "WH-A", quantity=100, reserved=20)

        async with session_factory() as session:
            assert await ledger.hold(session, "SKU-1", "WH-A", 81) is False
            await session.commit()

        record = await seed.get("SKU-1", "WH-A")
        assert record.reserved_quantity == 20

    async def test_release_floors_at_zero(self, session_factory, seed):
        await seed.stock("SKU-1", "WH-A", quantity=100, reserved=20)

        async with session_factory() as session:
            await ledger.release(session, "SKU-1", "WH-A", 50)
            await session.commit()

        record = await seed.get("SKU-1", "WH-A")
        assert record.reserved_quantity == 0
        assert record.available == 100

    async def test_release_on_missing_row_raises(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await ledger.release(session, "SKU-X", "WH-A", 1)

    async def test_rows_are_ordered_by_warehouse_code(self, session_factory, seed):
        await seed.stock("SKU-1", "WH-C", quantity=1)
        await seed.stock("SKU-1", "WH-A", quantity=2)
        await seed.stock("SKU-1", "WH-B", quantity=3)

        async with session_factory() as session:
            records = await ledger.rows(session, "SKU-1")

        assert [r.warehouse_code for r in records] == ["WH-A", "WH-B", "WH-C"]


class TestKeyedLocks:
    async def test_same_key_is_serialised(self):
        locks = ledger.KeyedLocks()
        order: list[str] = []

        async def worker(name: str, delay: float):
            async with locks.acquire("SKU-1"):
                order.append(f"{name}-start")
                await asyncio.sleep(delay)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a", 0.05), worker("b", 0))

        assert order == ["a-start", "a-end", "b-start", "b-end"]
