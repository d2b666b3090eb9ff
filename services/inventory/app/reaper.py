"""
Inventory Service - 引き当て期限切れリーパー

expires_at を過ぎた CONFIRMED の引き当てを定期的に EXPIRED にし、
確保していた数量を在庫行に戻す。lifespan でバックグラウンドタスクとして起動する。

取消との競合は commands._retire の条件付き UPDATE で決まる
(先に着地した方が有効、もう一方は何もしない)。
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


async def run_reaper(
    service,
    interval: float,
    shutdown_event: asyncio.Event,
) -> None:
    """
    shutdown_event がセットされるまで interval 秒ごとに期限切れを解放する。
    1 回の失敗ではループを止めない。
    """
    logger.info("Reservation reaper started (interval=%ss)", interval)
    while not shutdown_event.is_set():
        try:
            released = await service.release_expired()
            if released:
                logger.info("Reaper released %d reservation(s)", released)
        except Exception:
            logger.exception("Reservation reaper sweep failed")

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    logger.info("Reservation reaper stopped")
