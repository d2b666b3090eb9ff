"""
Tests for bulk updates, threshold policy, damaged returns and the catalogue pass-throughs.
"""

import json

from sqlalchemy import text

from services.shared.contracts import (
    BulkUpdateItem,
    BulkUpdateRequest,
    DamagedReturnRequest,
    DiscontinueRequest,
    PriceAdjustmentRequest,
    ReservationRequest,
    ThresholdRequest,
)


def _bulk(*items, warehouse_code="WH-A") -> BulkUpdateRequest:
    return BulkUpdateRequest(
        warehouse_code=warehouse_code,
        items=[BulkUpdateItem(**item) for item in items],
    )


class TestBulkStockUpdate:
    async def test_add_and_remove_floor(self, service, seed):
        # Given: two rows with quantity=10
        await seed.stock("SKU-A", "WH-A", quantity=10)
        await seed.stock("SKU-B", "WH-A", quantity=10)

        # When
        result = await service.bulk_stock_update(
            _bulk(
                {"sku": "SKU-A", "quantity": 5, "operation": "ADD"},
                {"sku": "SKU-B", "quantity": 15, "operation": "REMOVE"},
            )
        )

        # Then
        assert result.status == "COMPLETED"
        assert result.success_count == 2
        assert result.failure_count == 0
        assert result.batch_id.startswith("BATCH-")
        added, removed = result.results
        assert (added.previous_quantity, added.new_quantity) == (10, 15)
        assert (removed.previous_quantity, removed.new_quantity) == (10, 0)
        assert (await seed.get("SKU-B", "WH-A")).quantity == 0
        assert result.message == "Bulk update completed. Success: 2, Failed: 0"

    async def test_set_is_default_and_creates_missing_rows(self, service, seed):
        result = await service.bulk_stock_update(_bulk({"sku": "SKU-NEW", "quantity": 40}))

        assert result.results[0].success is True
        assert result.results[0].previous_quantity == 0
        record = await seed.get("SKU-NEW", "WH-A")
        assert record.quantity == 40
        assert record.min_threshold == 10
        assert record.max_threshold == 1000

    async def test_default_warehouse(self, service, seed):
        await service.bulk_stock_update(
            _bulk({"sku": "SKU-NEW", "quantity": 1}, warehouse_code=None)
        )

        assert (await seed.get("SKU-NEW", "DEFAULT")).quantity == 1

    async def test_failed_items_do_not_block_the_batch(self, service, seed):
        await seed.stock("SKU-A", "WH-A", quantity=10)

        result = await service.bulk_stock_update(
            _bulk(
                {"sku": "SKU-A", "quantity": 1, "operation": "MULTIPLY"},
                {"sku": "SKU-A", "quantity": -5, "operation": "SET"},
                {"sku": "SKU-A", "quantity": 3, "operation": "ADD"},
            )
        )

        assert result.status == "PARTIAL"
        assert result.success_count == 1
        assert result.failure_count == 2
        assert result.results[0].message.startswith("Update failed: Unsupported operation")
        assert (await seed.get("SKU-A", "WH-A")).quantity == 13

    async def test_quantity_cannot_drop_below_reserved(self, service, seed):
        await seed.stock("SKU-A", "WH-A", quantity=50, reserved=30)

        result = await service.bulk_stock_update(
            _bulk({"sku": "SKU-A", "quantity": 10, "operation": "SET"})
        )

        assert result.results[0].success is False
        assert (await seed.get("SKU-A", "WH-A")).quantity == 50
        await seed.assert_invariant()

    async def test_empty_batch_fails(self, service):
        result = await service.bulk_stock_update(BulkUpdateRequest(items=[]))

        assert result.status == "FAILED"
        assert result.total_items == 0
        assert result.message == "No items to update"

    async def test_publishes_stock_adjusted(self, service, seed, redis):
        await seed.stock("SKU-A", "WH-A", quantity=10)

        await service.bulk_stock_update(
            _bulk({"sku": "SKU-A", "quantity": 2, "operation": "ADD", "reason": "recount"})
        )

        channel, payload = redis.publish.await_args.args
        event = json.loads(payload)
        assert channel == "inventory_events"
        assert event["event_type"] == "StockAdjusted"
        assert event["data"]["new_quantity"] == 12
        assert event["data"]["reason"] == "recount"


class TestUpdateThreshold:
    async def test_without_warehouse_updates_every_row(self, service, catalog):
        result = await service.update_threshold(
            "SKU-001", ThresholdRequest(min_threshold=5, max_threshold=500)
        )

        assert result.success is True
        assert result.updated_rows == 2
        assert (await catalog.get("SKU-001", "WH-A")).min_threshold == 5
        assert (await catalog.get("SKU-001", "WH-B")).min_threshold == 5

    async def test_with_warehouse_updates_only_matching_row(self, service, catalog):
        result = await service.update_threshold(
            "SKU-001",
            ThresholdRequest(min_threshold=60, max_threshold=500, warehouse_code="WH-B"),
        )

        assert result.success is True
        assert result.updated_rows == 1
        assert (await catalog.get("SKU-001", "WH-A")).min_threshold == 10
        record = await catalog.get("SKU-001", "WH-B")
        assert record.min_threshold == 60
        # available 50 <= 60
        assert record.stock_status == "LOW_STOCK"

    async def test_omitted_reorder_settings_are_kept(self, service, catalog):
        await service.update_threshold(
            "SKU-001",
            ThresholdRequest(
                min_threshold=5,
                max_threshold=500,
                reorder_point=20,
                reorder_quantity=100,
                auto_reorder=True,
            ),
        )

        result = await service.update_threshold(
            "SKU-001", ThresholdRequest(min_threshold=8, max_threshold=400)
        )

        record = await catalog.get("SKU-001", "WH-A")
        assert record.min_threshold == 8
        assert record.reorder_point == 20
        assert record.reorder_quantity == 100
        assert record.auto_reorder is True
        assert result.auto_reorder is True

    async def test_unknown_sku(self, service):
        result = await service.update_threshold(
            "NOPE", ThresholdRequest(min_threshold=1, max_threshold=2)
        )

        assert result.success is False
        assert result.message == "No stock found for SKU: NOPE"

    async def test_unknown_warehouse(self, service, catalog):
        result = await service.update_threshold(
            "SKU-001",
            ThresholdRequest(min_threshold=1, max_threshold=2, warehouse_code="WH-Z"),
        )

        assert result.success is False
        assert (await catalog.get("SKU-001", "WH-A")).min_threshold == 10


class TestDamagedReturn:
    async def test_decrements_quantity_not_reserved(self, service, seed):
        # Given: W1 row with quantity=20
        await seed.stock("SKU-1", "W1", quantity=20, reserved=4)

        # When
        result = await service.register_damaged_return(
            DamagedReturnRequest(
                sku="SKU-1",
                quantity=5,
                damage_type="CRUSHED",
                damage_description="Box crushed in transit",
                warehouse_code="W1",
            )
        )

        # Then
        assert result.success is True
        assert result.status == "PENDING"
        assert result.return_id.startswith("RET-")
        record = await seed.get("SKU-1", "W1")
        assert record.quantity == 15
        assert record.reserved_quantity == 4

    async def test_quantity_floors_at_zero(self, service, seed):
        await seed.stock("SKU-1", "W1", quantity=3)

        await service.register_damaged_return(
            DamagedReturnRequest(
                sku="SKU-1",
                quantity=5,
                damage_type="WATER",
                damage_description="Soaked",
                warehouse_code="W1",
            )
        )

        assert (await seed.get("SKU-1", "W1")).quantity == 0

    async def test_without_warehouse_only_records_the_return(self, service, seed):
        await seed.stock("SKU-1", "W1", quantity=20)

        result = await service.register_damaged_return(
            DamagedReturnRequest(
                sku="SKU-1", quantity=5, damage_type="DENT", damage_description="Dented"
            )
        )

        assert result.success is True
        assert (await seed.get("SKU-1", "W1")).quantity == 20

    async def test_unknown_warehouse_row_persists_nothing(self, service, session_factory):
        result = await service.register_damaged_return(
            DamagedReturnRequest(
                sku="SKU-1",
                quantity=5,
                damage_type="DENT",
                damage_description="Dented",
                warehouse_code="W9",
            )
        )

        assert result.success is False
        async with session_factory() as session:
            count = await session.execute(text("SELECT COUNT(*) FROM damaged_returns"))
            assert count.scalar_one() == 0


class TestCatalogPassThrough:
    async def test_adjust_price(self, service, catalog):
        result = await service.adjust_price(
            "SKU-001", PriceAdjustmentRequest(new_price=24.5, adjustment_reason="supplier")
        )

        assert result.success is True
        assert result.current_price == 19.99
        assert result.new_price == 24.5
        details = await service.fetch_product_details("SKU-001")
        assert details.unit_price == 24.5

    async def test_adjust_price_unknown_product(self, service):
        result = await service.adjust_price("NOPE", PriceAdjustmentRequest(new_price=1))

        assert result.success is False
        assert result.message == "Product not found"

    async def test_discontinue_makes_product_unavailable(self, service, catalog):
        result = await service.discontinue_product(
            "SKU-001", DiscontinueRequest(reason="End of line", stock_disposition="LIQUIDATE")
        )

        assert result.success is True
        assert result.remaining_quantity == 150
        assert result.effective_date is not None

        availability = await service.check_availability("SKU-001")
        assert availability.status == "NOT_FOUND"

        reservation = await service.reserve_stock(
            ReservationRequest(sku="SKU-001", order_id="ORD-9", quantity=1)
        )
        assert reservation.success is False
