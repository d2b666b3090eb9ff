"""
Tests for the background reservation reaper loop.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

from services.inventory.app.reaper import run_reaper
from services.inventory.app.service import InventoryService
from services.shared.contracts import ReservationRequest


class TestRunReaper:
    async def test_sweeps_until_shutdown(self):
        service = AsyncMock()
        service.release_expired.return_value = 2
        shutdown_event = asyncio.Event()

        task = asyncio.create_task(run_reaper(service, 0.01, shutdown_event))
        await asyncio.sleep(0.05)
        shutdown_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert service.release_expired.await_count >= 2

    async def test_failed_sweep_does_not_stop_the_loop(self):
        service = AsyncMock()
        service.release_expired.side_effect = [RuntimeError("db down"), 0, 0, 0, 0, 0]
        shutdown_event = asyncio.Event()

        task = asyncio.create_task(run_reaper(service, 0.01, shutdown_event))
        await asyncio.sleep(0.05)
        shutdown_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert service.release_expired.await_count >= 2

    async def test_stops_promptly_on_shutdown(self):
        service = AsyncMock()
        service.release_expired.return_value = 0
        shutdown_event = asyncio.Event()

        task = asyncio.create_task(run_reaper(service, 3600, shutdown_event))
        await asyncio.sleep(0)
        shutdown_event.set()

        await asyncio.wait_for(task, timeout=1)
        assert task.done()

    async def test_releases_real_expired_reservations(self, service, catalog):
        short_lived = InventoryService(
            service.session_factory, service.redis, reservation_ttl=timedelta(seconds=-1)
        )
        reserved = await short_lived.reserve_stock(
            ReservationRequest(sku="SKU-001", order_id="ORD-1", quantity=30)
        )
        assert (await catalog.get("SKU-001", "WH-A")).reserved_quantity == 50

        shutdown_event = asyncio.Event()
        task = asyncio.create_task(run_reaper(short_lived, 3600, shutdown_event))
        for _ in range(100):
            if (await catalog.get("SKU-001", "WH-A")).reserved_quantity == 20:
                break
            await asyncio.sleep(0.02)
        shutdown_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert (await catalog.get("SKU-001", "WH-A")).reserved_quantity == 20
        assert (await catalog.reservation(reserved.reservation_id)).status == "EXPIRED"
