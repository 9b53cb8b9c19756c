"""
进程内通知后端: 挂载的通知只保存在内存里，由投递循环在到点时通过事件总线发出。
进程重启后全部丢失，因此启动时需要重新调度所有规则(见 core.service.ReminderService.reschedule_all)。
"""

import asyncio
import time
from datetime import datetime
from typing import Callable, Dict, List

from ulid import ULID

from medreminder.config.settings import DELIVERY_POLL_SECONDS
from medreminder.datamodel import NotificationPayload
from medreminder.errors import SchedulingFailure, StaleHandleFailure
from medreminder.events import bus, E
from medreminder.logger import logger
from medreminder.metrics import runtime_metrics
from medreminder.notify.base import ArmedNotification, NotificationBackend
from medreminder.utils import now_local

__all__ = ["LocalNotificationBackend"]


class LocalNotificationBackend(NotificationBackend):
    volatile = True

    def __init__(self, clock: Callable[[], datetime] = now_local, permission_granted: bool = True) -> None:
        self._clock = clock
        self._armed: Dict[str, ArmedNotification] = {}
        self.permission_granted = permission_granted
        self._shutdown_event: asyncio.Event | None = None
        self._last_check_at_epoch: float | None = None

    def get_status(self) -> dict[str, object]:
        running = self._shutdown_event is not None and not self._shutdown_event.is_set()
        return {
            "running": running,
            "armed_count": len(self._armed),
            "last_check_at_epoch": self._last_check_at_epoch,
        }

    async def arm(self, instant: datetime, payload: NotificationPayload) -> str:
        if not self.permission_granted:
            raise SchedulingFailure("通知权限未授予")
        if instant <= self._clock():
            raise SchedulingFailure(f"不能挂载已过去的时间: {instant}")
        handle = str(ULID())
        self._armed[handle] = ArmedNotification(handle=handle, instant=instant, payload=payload)
        return handle

    async def cancel(self, handle: str) -> None:
        if self._armed.pop(handle, None) is None:
            raise StaleHandleFailure(handle)

    async def list_armed(self) -> List[ArmedNotification]:
        return sorted(self._armed.values(), key=lambda item: item.instant)

    def pop_due(self, now: datetime) -> List[ArmedNotification]:
        """取出所有到点的通知(按时间升序)，取出后句柄即失效"""
        due = [item for item in self._armed.values() if item.instant <= now]
        due.sort(key=lambda item: item.instant)
        for item in due:
            del self._armed[item.handle]
        return due

    async def main_loop(self, shutdown_event: asyncio.Event, poll_seconds: float = DELIVERY_POLL_SECONDS) -> None:
        self._shutdown_event = shutdown_event
        logger.info("通知投递循环已启动")

        while not shutdown_event.is_set():
            self._last_check_at_epoch = time.time()
            for item in self.pop_due(self._clock()):
                logger.debug(f"投递通知: handle={item.handle}, rule_id={item.payload.rule_id}, kind={item.payload.kind.value}")
                runtime_metrics.record_delivered()
                bus.emit(E.NOTIFICATION_DELIVERED, notification=item)

            await asyncio.sleep(poll_seconds)

        logger.info("通知投递循环已关闭")
