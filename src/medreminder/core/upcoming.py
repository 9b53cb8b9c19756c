"""即将到来 / 待处理 列表

每次按需从规则重新推导 occurrence，再与确认记录对照；不读取通知句柄，也不写任何东西。
- 未来(>= now)且在 lookahead 内 -> upcoming，按时间升序，带确认标记;
- 过去(< now)且在 lookback 内、未确认 -> active(错过/待处理)，按时间降序;
- 过去且已确认的 occurrence 两边都不出现。
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from medreminder.config.settings import DISPLAY_LOOKAHEAD_HOURS, DISPLAY_LOOKBACK_HOURS
from medreminder.core.occurrence import occurrences_in_window
from medreminder.datamodel import *
from medreminder.utils import format_label, now_local, occurrence_key
import medreminder.storage.ack as ack_storage

__all__ = ["list_upcoming", "upcoming_count"]


async def list_upcoming(
    rules: Iterable[ReminderRule],
    now: Optional[datetime] = None,
    lookback_hours: int = DISPLAY_LOOKBACK_HOURS,
    lookahead_hours: int = DISPLAY_LOOKAHEAD_HOURS,
) -> UpcomingView:
    now = now or now_local()
    window_start = now - timedelta(hours=lookback_hours)
    window_end = now + timedelta(hours=lookahead_hours)

    view = UpcomingView()
    for rule in rules:
        acknowledged = await ack_storage.get_acknowledged_keys(rule.rule_id)
        for instant in occurrences_in_window(rule, window_start, window_end, today=now.date()):
            key = occurrence_key(instant)
            is_acked = key in acknowledged
            if instant >= now:
                view.upcoming.append(UpcomingItem(rule, instant, key, format_label(instant), is_acked))
            elif not is_acked:
                view.active.append(UpcomingItem(rule, instant, key, format_label(instant), False))

    view.upcoming.sort(key=lambda item: item.instant)
    view.active.sort(key=lambda item: item.instant, reverse=True)
    return view


def upcoming_count(
    rule: ReminderRule,
    now: Optional[datetime] = None,
    lookahead_hours: int = DISPLAY_LOOKAHEAD_HOURS,
) -> int:
    """规则在 [now, now + lookahead] 内的 occurrence 数，与 upcoming 列表口径一致"""
    now = now or now_local()
    return len(occurrences_in_window(rule, now, now + timedelta(hours=lookahead_hours), today=now.date()))
