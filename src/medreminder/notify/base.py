from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List

from medreminder.datamodel import NotificationPayload
from medreminder.errors import SchedulingFailure

__all__ = ["NotificationCapability", "ArmedNotification", "NotificationBackend", "DisabledNotificationBackend"]


class NotificationCapability(str, Enum):
    AVAILABLE = "available"
    ABSENT = "absent"


@dataclass
class ArmedNotification:
    handle: str
    instant: datetime
    payload: NotificationPayload


class NotificationBackend(ABC):
    """通知子系统

    只提供 "在某个时刻投递一条通知，返回句柄" 和 "按句柄取消" 两个能力；
    调度逻辑不依赖任何 "查询已挂载通知" 的能力。
    """

    capability: NotificationCapability = NotificationCapability.AVAILABLE
    # 进程退出后已挂载的通知是否全部丢失
    volatile: bool = False

    @abstractmethod
    async def arm(self, instant: datetime, payload: NotificationPayload) -> str:
        """挂载一条通知，被拒绝时抛出 SchedulingFailure"""

    @abstractmethod
    async def cancel(self, handle: str) -> None:
        """取消一条通知，未知或已触发的句柄抛出 StaleHandleFailure"""

    async def list_armed(self) -> List[ArmedNotification]:
        """仅供调试"""
        return []


class DisabledNotificationBackend(NotificationBackend):
    """通知子系统不可用时的占位实现"""

    capability = NotificationCapability.ABSENT

    async def arm(self, instant: datetime, payload: NotificationPayload) -> str:
        raise SchedulingFailure("通知子系统不可用")

    async def cancel(self, handle: str) -> None:
        return None
