"""确认与对账

每个 occurrence 的状态: 未确认 <-> 已确认，可来回切换。

确认时的写入顺序是固定的: 预写标记 -> 取消跟进通知 -> 删除跟进句柄 -> 写确认记录 -> 清除预写标记。
取消可以重复执行，所以中途退出时由 recover_pending 在下次启动时补完；
"已确认但跟进通知还在响" 是更糟糕的不一致，因此确认记录一定最后写。

删除规则时先取消所有句柄再丢弃记录，否则这些句柄就再也取消不了。
编辑规则不会清理旧 occurrence 的确认记录。
"""

from datetime import datetime
from typing import List, Optional

from medreminder.core.scheduler import Scheduler
from medreminder.datamodel import *
from medreminder.events import bus, E
from medreminder.logger import logger, rule_logger
from medreminder.metrics import runtime_metrics
from medreminder.utils import parse_occurrence_key
import medreminder.storage.ack as ack_storage
import medreminder.storage.handle as handle_storage
import medreminder.storage.pending as pending_storage
import medreminder.storage.rule as rule_storage

__all__ = ["Reconciler"]


class Reconciler:
    def __init__(self, scheduler: Scheduler) -> None:
        self.scheduler = scheduler

    async def acknowledge(self, rule_id: str, occurrence_key: str) -> int:
        """确认 occurrence 并取消其剩余跟进通知，返回本次需要取消的句柄数(重复确认时为 0)"""
        handles = await handle_storage.get_followup_handles(rule_id, occurrence_key)
        if handles:
            await pending_storage.save_pending(rule_id, occurrence_key, handles)
            await self.scheduler.cancel(handles)
            await handle_storage.delete_followup_handles(rule_id, occurrence_key)

        await ack_storage.add_acknowledgment(rule_id, occurrence_key)
        if handles:
            await pending_storage.delete_pending(rule_id, occurrence_key)

        runtime_metrics.record_acknowledged()
        bus.emit(E.OCCURRENCE_ACKNOWLEDGED, rule_id=rule_id, occurrence_key=occurrence_key)
        rule_logger(rule_id, occurrence_key).info(f"occurrence 已确认, 取消跟进通知 {len(handles)} 条")
        return len(handles)

    async def unacknowledge(self, rule: ReminderRule, occurrence_key: str, now: Optional[datetime] = None) -> List[str]:
        """取消确认，occurrence 仍在跟进窗口内时重新挂载跟进通知"""
        instant = parse_occurrence_key(occurrence_key)
        await ack_storage.remove_acknowledgment(rule.rule_id, occurrence_key)
        handles = await self.scheduler.arm_followups(rule, instant, now)

        bus.emit(E.OCCURRENCE_UNACKNOWLEDGED, rule_id=rule.rule_id, occurrence_key=occurrence_key)
        logger.info(
            f"occurrence 已取消确认: rule_id={rule.rule_id}, occurrence_key={occurrence_key}, rearmed={len(handles)}"
        )
        return handles

    async def _cancel_followup_sets(self, rule_id: str, cancel: bool = True) -> int:
        sets = await handle_storage.get_followup_sets_for_rule(rule_id)
        for key, handles in sets.items():
            if cancel:
                await self.scheduler.cancel(handles)
            await handle_storage.delete_followup_handles(rule_id, key)
        return len(sets)

    async def reschedule_rule(self, rule: ReminderRule, now: Optional[datetime] = None,
                              cancel_old: bool = True) -> List[str]:
        """规则被编辑后: 取消主通知与全部跟进通知，再完整重新调度

        cancel_old=False 用于通知后端刚启动、旧句柄已全部失效的情况: 只丢弃存储的句柄，不逐个取消。
        """
        old_handles = await handle_storage.get_primary_handles(rule.rule_id)
        cleared = await self._cancel_followup_sets(rule.rule_id, cancel=cancel_old)
        logger.debug(
            f"重新调度前清理: rule_id={rule.rule_id}, primary={len(old_handles)}, followup_sets={cleared}, "
            f"cancel_old={cancel_old}"
        )
        if not cancel_old:
            return await self.scheduler.schedule(rule, now)
        return await self.scheduler.reschedule(rule, old_handles, now)

    async def delete_rule(self, rule_id: str) -> None:
        """级联删除: 主句柄 -> 跟进句柄 -> 预写标记 -> 确认记录 -> 规则本身"""
        primary = await handle_storage.get_primary_handles(rule_id)
        if primary:
            await self.scheduler.cancel(primary)
        await handle_storage.delete_primary_handles(rule_id)

        cleared = await self._cancel_followup_sets(rule_id)

        for pending_rule_id, key, handles in await pending_storage.get_all_pending():
            if pending_rule_id == rule_id:
                await self.scheduler.cancel(handles)
        await pending_storage.delete_pending_for_rule(rule_id)

        await ack_storage.delete_acknowledgments_for_rule(rule_id)
        await rule_storage.delete_rule(rule_id)
        logger.info(f"规则已删除: rule_id={rule_id}, primary={len(primary)}, followup_sets={cleared}")

    async def recover_pending(self) -> int:
        """补完上次中断的确认操作，返回处理的标记数"""
        entries = await pending_storage.get_all_pending()
        for rule_id, key, handles in entries:
            logger.warning(f"发现未完成的确认操作，重新执行: rule_id={rule_id}, occurrence_key={key}")
            await self.scheduler.cancel(handles)
            await handle_storage.delete_followup_handles(rule_id, key)
            if await rule_storage.get_rule(rule_id) is not None:
                await ack_storage.add_acknowledgment(rule_id, key)
            await pending_storage.delete_pending(rule_id, key)
        return len(entries)
