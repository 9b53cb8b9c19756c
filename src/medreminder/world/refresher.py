"""
跟进通知补充循环: 调度时只给处于跟进窗口内的 occurrence 挂跟进通知，
之后进入窗口的 occurrence 由这里定期补上。
"""

import asyncio
import time

from medreminder.config.settings import FOLLOWUP_REFRESH_MINUTES
from medreminder.core.service import ReminderService
from medreminder.errors import PersistenceFailure
from medreminder.logger import logger

__shutdown_event: asyncio.Event = None
__last_refresh_at_epoch: float | None = None


def get_status() -> dict[str, object]:
    running = __shutdown_event is not None and not __shutdown_event.is_set()
    return {
        "running": running,
        "last_refresh_at_epoch": __last_refresh_at_epoch,
    }


async def main_loop(shutdown_event: asyncio.Event, service: ReminderService,
                    interval_minutes: int = FOLLOWUP_REFRESH_MINUTES):
    global __shutdown_event, __last_refresh_at_epoch
    __shutdown_event = shutdown_event
    logger.info("跟进通知补充循环已启动")

    while not shutdown_event.is_set():
        __last_refresh_at_epoch = time.time()
        try:
            await service.refresh_followups()
        except PersistenceFailure as e:
            logger.error(f"补挂跟进通知失败，等待下一轮: {e}")

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_minutes * 60)
        except asyncio.TimeoutError:
            pass

    logger.info("跟进通知补充循环已关闭")
