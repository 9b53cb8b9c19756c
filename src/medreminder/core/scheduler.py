"""调度器

把规则的 occurrence 逐个交给通知子系统挂载，并保存返回的句柄:
- 主通知: 窗口内每个未来的 occurrence 一条，句柄列表以 rule_id 为键保存;
- 跟进通知: 对处于跟进窗口(默认前后 6 小时)内且未确认的 occurrence，在其后每 5 分钟挂一条，
  直到跟进窗口结束。通知子系统没有"重复直到被确认"的能力，这里用预先挂满、确认后再取消来近似。
  跟进句柄以 (rule_id, occurrence_key) 为键保存。

单条挂载失败只记录日志并跳过该 occurrence(连同它的跟进通知)，不回滚已挂载的部分。
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from medreminder.config.settings import (
    FOLLOWUP_HORIZON_MINUTES,
    FOLLOWUP_STEP_MINUTES,
    RECURRING_HORIZON_DAYS,
    SNOOZE_MINUTES,
)
from medreminder.core.occurrence import occurrences_in_window
from medreminder.datamodel import *
from medreminder.errors import SchedulingFailure, StaleHandleFailure
from medreminder.logger import logger
from medreminder.metrics import runtime_metrics
from medreminder.notify.base import NotificationBackend, NotificationCapability
from medreminder.utils import now_local, occurrence_key
import medreminder.storage.ack as ack_storage
import medreminder.storage.handle as handle_storage

__all__ = ["Scheduler"]


class Scheduler:
    def __init__(
        self,
        backend: NotificationBackend,
        horizon_days: int = RECURRING_HORIZON_DAYS,
        followup_horizon_minutes: int = FOLLOWUP_HORIZON_MINUTES,
        followup_step_minutes: int = FOLLOWUP_STEP_MINUTES,
        snooze_minutes: int = SNOOZE_MINUTES,
        clock: Callable[[], datetime] = now_local,
    ) -> None:
        self.backend = backend
        # 能力只在启动时判断一次
        self.enabled = backend.capability == NotificationCapability.AVAILABLE
        if not self.enabled:
            logger.warning("通知子系统不可用，所有通知调度都将被跳过")

        self.horizon = timedelta(days=horizon_days)
        self.followup_horizon = timedelta(minutes=followup_horizon_minutes)
        self.followup_step = timedelta(minutes=followup_step_minutes)
        self.snooze_delay = timedelta(minutes=snooze_minutes)
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def within_followup_horizon(self, instant: datetime, now: datetime) -> bool:
        return abs(instant - now) <= self.followup_horizon

    def scheduling_window(self, rule: ReminderRule, now: datetime) -> Tuple[datetime, datetime]:
        # 起点往前推一个跟进窗口，使刚过去且未确认的 occurrence 也能补上跟进通知
        start = now - self.followup_horizon
        recurrence = rule.recurrence
        if isinstance(recurrence, CustomInstants) and recurrence.instants:
            return start, max(max(recurrence.instants), now)
        return start, now + self.horizon

    async def _arm(self, instant: datetime, payload: NotificationPayload) -> Optional[str]:
        try:
            handle = await self.backend.arm(instant, payload)
        except SchedulingFailure as e:
            runtime_metrics.record_arm_failure()
            logger.warning(f"通知挂载被拒绝，跳过: rule_id={payload.rule_id}, at={instant}, kind={payload.kind.value}, error={e}")
            return None
        except Exception as e:
            runtime_metrics.record_arm_failure()
            logger.opt(exception=e).error(f"通知挂载出现异常，跳过: rule_id={payload.rule_id}, at={instant}")
            return None
        runtime_metrics.record_armed()
        return handle

    async def schedule(self, rule: ReminderRule, now: Optional[datetime] = None) -> List[str]:
        """挂载规则在调度窗口内的全部通知，保存并返回主通知句柄(只含挂载成功的部分)"""
        now = now or self.now()
        if not self.enabled:
            await handle_storage.save_primary_handles(rule.rule_id, [])
            return []

        window_start, window_end = self.scheduling_window(rule, now)
        acknowledged = await ack_storage.get_acknowledged_keys(rule.rule_id)

        handles: List[str] = []
        skipped = 0
        followup_occurrences = 0
        for instant in occurrences_in_window(rule, window_start, window_end, today=now.date()):
            key = occurrence_key(instant)
            if instant > now:
                handle = await self._arm(instant, NotificationPayload.for_rule(rule, key))
                if handle is None:
                    skipped += 1
                    continue
                handles.append(handle)

            if key in acknowledged or not self.within_followup_horizon(instant, now):
                continue
            if await self.arm_followups(rule, instant, now):
                followup_occurrences += 1

        await handle_storage.save_primary_handles(rule.rule_id, handles)
        runtime_metrics.record_schedule()
        logger.info(
            f"规则调度完成: rule_id={rule.rule_id}, armed={len(handles)}, skipped={skipped}, "
            f"followup_occurrences={followup_occurrences}"
        )
        return handles

    async def arm_followups(self, rule: ReminderRule, instant: datetime, now: Optional[datetime] = None) -> List[str]:
        """为单个 occurrence 挂载跟进通知，occurrence 已超出跟进窗口时返回空列表"""
        now = now or self.now()
        if not self.enabled:
            return []
        key = occurrence_key(instant)
        if not self.within_followup_horizon(instant, now):
            logger.debug(f"occurrence 不在跟进窗口内，不挂载跟进通知: rule_id={rule.rule_id}, occurrence_key={key}")
            return []

        # 同一个 occurrence 只保留一组跟进通知
        existing = await handle_storage.get_followup_handles(rule.rule_id, key)
        if existing:
            await self.cancel(existing)

        payload = NotificationPayload.for_rule(rule, key, kind=NotificationKind.FOLLOWUP)
        handles: List[str] = []
        steps = int(self.followup_horizon / self.followup_step)
        for step in range(1, steps + 1):
            at = instant + self.followup_step * step
            if at <= now:
                continue
            handle = await self._arm(at, payload)
            if handle is not None:
                handles.append(handle)

        if handles:
            await handle_storage.save_followup_handles(rule.rule_id, key, handles)
        elif existing:
            await handle_storage.delete_followup_handles(rule.rule_id, key)
        logger.debug(f"跟进通知已挂载: rule_id={rule.rule_id}, occurrence_key={key}, count={len(handles)}")
        return handles

    async def top_up_followups(self, rule: ReminderRule, now: Optional[datetime] = None) -> int:
        """为新进入跟进窗口、尚未确认且没有跟进通知的 occurrence 补挂跟进通知，返回补挂的 occurrence 数"""
        now = now or self.now()
        if not self.enabled:
            return 0
        acknowledged = await ack_storage.get_acknowledged_keys(rule.rule_id)
        armed = 0
        window = occurrences_in_window(rule, now - self.followup_horizon, now + self.followup_horizon, today=now.date())
        for instant in window:
            key = occurrence_key(instant)
            if key in acknowledged or await handle_storage.has_followup_handles(rule.rule_id, key):
                continue
            if await self.arm_followups(rule, instant, now):
                armed += 1
        return armed

    async def snooze(self, rule: ReminderRule, key: str, now: Optional[datetime] = None) -> Optional[str]:
        """稍后提醒: 在 now + snooze_delay 挂一条通知，句柄并入该 occurrence 的跟进句柄，确认时一并取消"""
        now = now or self.now()
        if not self.enabled:
            return None
        payload = NotificationPayload.for_rule(rule, key, kind=NotificationKind.SNOOZE)
        handle = await self._arm(now + self.snooze_delay, payload)
        if handle is None:
            return None
        existing = await handle_storage.get_followup_handles(rule.rule_id, key)
        await handle_storage.save_followup_handles(rule.rule_id, key, existing + [handle])
        return handle

    async def cancel(self, handles: List[str]) -> int:
        """逐个取消，单个失败只记录日志；返回成功取消的数量"""
        cancelled = 0
        for handle in handles:
            try:
                await self.backend.cancel(handle)
            except StaleHandleFailure as e:
                runtime_metrics.record_cancel(error=True)
                logger.warning(f"取消通知失败(句柄已失效): {e}")
                continue
            except Exception as e:
                runtime_metrics.record_cancel(error=True)
                logger.warning(f"取消通知失败: handle={handle}, error={e}")
                continue
            runtime_metrics.record_cancel()
            cancelled += 1
        if handles:
            logger.debug(f"取消通知: total={len(handles)}, cancelled={cancelled}")
        return cancelled

    async def reschedule(self, rule: ReminderRule, old_handles: List[str], now: Optional[datetime] = None) -> List[str]:
        """取消旧句柄后完整重新调度，不做增量比较"""
        await self.cancel(old_handles)
        return await self.schedule(rule, now)
