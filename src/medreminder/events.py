"""进程内事件总线: 存储层与核心逻辑在状态变化后发出事件，入口模块订阅它们做日志、统计等旁路处理

事件处理器不参与核心流程的正确性：没有订阅者时 emit 是空操作；
处理器抛出的异常由总线记录日志后吞掉，不会传回发出事件的一方。
"""

from __future__ import annotations

from typing import Awaitable, Callable, Set

from pyee.asyncio import AsyncIOEventEmitter

from medreminder.logger import logger

AsyncHandler = Callable[..., Awaitable[None]]


class E:
    # 规则: rule_id, title / rule_id
    RULE_SAVED = "rule.saved"
    RULE_DELETED = "rule.deleted"
    # occurrence 状态: rule_id, occurrence_key
    OCCURRENCE_ACKNOWLEDGED = "occurrence.acknowledged"
    OCCURRENCE_UNACKNOWLEDGED = "occurrence.unacknowledged"
    OCCURRENCE_SNOOZED = "occurrence.snoozed"
    # 通知: notification(ArmedNotification) / rule_id, occurrence_key, action
    NOTIFICATION_DELIVERED = "notification.delivered"
    NOTIFICATION_RESPONSE = "notification.response"


# 用户对通知的操作只能有一个处理器
EXCLUSIVE_EVENTS = {E.NOTIFICATION_RESPONSE}


class Bus(AsyncIOEventEmitter):
    def __init__(self) -> None:
        super().__init__()
        self._exclusive: Set[str] = set()
        super().on("error", self._on_handler_error)

    @staticmethod
    def _on_handler_error(error: Exception) -> None:
        logger.opt(exception=error).error(f"事件处理器执行失败: {error}")

    def on(self, event: str) -> Callable[[AsyncHandler], AsyncHandler]:
        """注册事件处理器装饰器，独占事件重复注册时抛出 RuntimeError"""
        def decorator(handler: AsyncHandler) -> AsyncHandler:
            if event in EXCLUSIVE_EVENTS:
                if event in self._exclusive:
                    raise RuntimeError(f"独占事件的唯一处理器已注册: {event}")
                self._exclusive.add(event)

            logger.debug(f"注册事件处理器: {event} -> {handler.__name__}")
            super(Bus, self).on(event, handler)
            return handler

        return decorator

    def off(self, event: str, handler: AsyncHandler) -> None:
        """注销处理器，独占事件随之空出"""
        self.remove_listener(event, handler)
        self._exclusive.discard(event)


bus = Bus()

__all__ = ["bus", "E", "Bus", "EXCLUSIVE_EVENTS"]
