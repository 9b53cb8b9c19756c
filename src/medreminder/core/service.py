"""提醒服务: 对外暴露的全部操作

所有修改类操作(保存/删除/确认/稍后提醒/补挂跟进)都是对共享存储的读-改-写，没有乐观锁。
后台补挂循环与前台操作可能同时作用于同一条规则，因此这里按 rule_id 加 asyncio.Lock 串行化；
不同规则之间互不阻塞。锁只在单个进程内有效，多进程共用一个数据库不在支持范围内。

对外只抛出 ValidationError(含 RuleNotFound) 与 PersistenceFailure，通知子系统的错误都在内部吸收。
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional

from medreminder.config.settings import DISPLAY_LOOKAHEAD_HOURS, DISPLAY_LOOKBACK_HOURS
from medreminder.core.reconciler import Reconciler
from medreminder.core.scheduler import Scheduler
from medreminder.core.upcoming import list_upcoming, upcoming_count
from medreminder.datamodel import *
from medreminder.errors import RuleNotFound, ValidationError
from medreminder.events import bus, E
from medreminder.logger import logger
from medreminder.notify.base import NotificationBackend
from medreminder.schemas import validate_rule
from medreminder.utils import now_local, occurrence_key, parse_occurrence_key
import medreminder.storage.ack as ack_storage
import medreminder.storage.rule as rule_storage

__all__ = ["ReminderService"]


class ReminderService:
    def __init__(
        self,
        backend: NotificationBackend,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = now_local,
        lookback_hours: int = DISPLAY_LOOKBACK_HOURS,
        lookahead_hours: int = DISPLAY_LOOKAHEAD_HOURS,
    ) -> None:
        self.backend = backend
        self.scheduler = scheduler or Scheduler(backend, clock=clock)
        self.reconciler = Reconciler(self.scheduler)
        self.lookback_hours = lookback_hours
        self.lookahead_hours = lookahead_hours
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, rule_id: str) -> asyncio.Lock:
        lock = self._locks.get(rule_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[rule_id] = lock
        return lock

    async def _require_rule(self, rule_id: str) -> ReminderRule:
        rule = await rule_storage.get_rule(rule_id)
        if rule is None:
            raise RuleNotFound(f"规则不存在: {rule_id}")
        return rule

    @staticmethod
    def _canonical_key(key: str) -> str:
        """同一时刻的不同 ISO 写法统一成存储用的 occurrence key"""
        try:
            return occurrence_key(parse_occurrence_key(key))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"无法解析的 occurrence key: {key!r}") from e

    # ---------------- 规则 ----------------
    async def create_or_update_rule(self, rule: ReminderRule) -> ReminderRule:
        """校验并保存规则，然后(重新)调度。rule_id 已存在时原地更新，创建时间保持不变"""
        rule = validate_rule(rule)
        async with self._lock_for(rule.rule_id):
            existing = await rule_storage.get_rule(rule.rule_id)
            if existing is None:
                await rule_storage.save_rule(rule)
                await self.scheduler.schedule(rule, self._clock())
                logger.info(f"规则已创建: rule_id={rule.rule_id}, title={rule.title}")
            else:
                rule.created_at = existing.created_at
                rule.updated_at = self._clock()
                await rule_storage.save_rule(rule)
                await self.reconciler.reschedule_rule(rule, self._clock())
                logger.info(f"规则已更新: rule_id={rule.rule_id}, title={rule.title}")
        return rule

    async def delete_rule(self, rule_id: str) -> None:
        async with self._lock_for(rule_id):
            await self.reconciler.delete_rule(rule_id)

    async def get_rule(self, rule_id: str) -> ReminderRule | None:
        return await rule_storage.get_rule(rule_id)

    async def list_rules(self) -> List[ReminderRule]:
        return await rule_storage.get_all_rules()

    # ---------------- 列表视图 ----------------
    async def list_upcoming(self, now: Optional[datetime] = None) -> UpcomingView:
        rules = await rule_storage.get_all_rules()
        return await list_upcoming(
            rules,
            now or self._clock(),
            lookback_hours=self.lookback_hours,
            lookahead_hours=self.lookahead_hours,
        )

    async def upcoming_count(self, rule_id: str, now: Optional[datetime] = None) -> int:
        rule = await self._require_rule(rule_id)
        return upcoming_count(rule, now or self._clock(), lookahead_hours=self.lookahead_hours)

    # ---------------- 确认 ----------------
    # 规则是否存在要在持锁之后再查: 排在 delete_rule 后面的操作不能给已删除的规则留下记录
    async def is_acknowledged(self, rule_id: str, key: str) -> bool:
        return await ack_storage.is_acknowledged(rule_id, self._canonical_key(key))

    async def acknowledge(self, rule_id: str, key: str) -> None:
        key = self._canonical_key(key)
        async with self._lock_for(rule_id):
            await self._require_rule(rule_id)
            await self.reconciler.acknowledge(rule_id, key)

    async def unacknowledge(self, rule_id: str, key: str) -> List[str]:
        key = self._canonical_key(key)
        async with self._lock_for(rule_id):
            rule = await self._require_rule(rule_id)
            return await self.reconciler.unacknowledge(rule, key, self._clock())

    async def toggle_acknowledgment(self, rule_id: str, key: str) -> bool:
        """切换确认状态，返回切换后的状态(True 表示已确认)"""
        key = self._canonical_key(key)
        async with self._lock_for(rule_id):
            rule = await self._require_rule(rule_id)
            if await ack_storage.is_acknowledged(rule_id, key):
                await self.reconciler.unacknowledge(rule, key, self._clock())
                return False
            await self.reconciler.acknowledge(rule_id, key)
            return True

    async def snooze_occurrence(self, rule_id: str, key: str) -> Optional[str]:
        key = self._canonical_key(key)
        async with self._lock_for(rule_id):
            rule = await self._require_rule(rule_id)
            handle = await self.scheduler.snooze(rule, key, self._clock())
        if handle is not None:
            bus.emit(E.OCCURRENCE_SNOOZED, rule_id=rule_id, occurrence_key=key)
        return handle

    async def handle_notification_response(self, rule_id: str, occurrence_key: str, action: ResponseAction | str) -> None:
        """用户在通知上点击了按钮"""
        try:
            action = ResponseAction(action)
        except ValueError as e:
            raise ValidationError(f"未知的通知操作: {action!r}") from e
        if action == ResponseAction.MARK_DONE:
            await self.acknowledge(rule_id, occurrence_key)
        elif action == ResponseAction.SNOOZE:
            await self.snooze_occurrence(rule_id, occurrence_key)
        else:
            logger.debug(f"通知被查看: rule_id={rule_id}, occurrence_key={occurrence_key}")

    # ---------------- 启动与后台维护 ----------------
    async def recover(self) -> int:
        return await self.reconciler.recover_pending()

    async def reschedule_all(self, cancel_old: bool = True) -> int:
        """重新调度所有规则，返回规则数

        进程内通知后端重启后为空，旧句柄已全部失效，此时传 cancel_old=False 直接丢弃存储的句柄。
        """
        rules = await rule_storage.get_all_rules()
        for rule in rules:
            async with self._lock_for(rule.rule_id):
                await self.reconciler.reschedule_rule(rule, self._clock(), cancel_old=cancel_old)
        logger.info(f"已重新调度全部规则: count={len(rules)}")
        return len(rules)

    async def refresh_followups(self) -> int:
        """为新进入跟进窗口的 occurrence 补挂跟进通知，返回补挂的 occurrence 总数"""
        total = 0
        for rule in await rule_storage.get_all_rules():
            async with self._lock_for(rule.rule_id):
                total += await self.scheduler.top_up_followups(rule, self._clock())
        if total:
            logger.info(f"补挂跟进通知: occurrences={total}")
        return total
