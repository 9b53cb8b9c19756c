"""Occurrence 模型

把一条规则展开成某个时间窗口内的具体触发时刻。纯函数，没有副作用，也不读写存储；
窗口大小由调用方决定(调度用 365 天，列表视图用 now-6h .. now+24h)。

- Daily: 窗口内每一天 x 每个时间点;
- EveryNDays: 同上，但只保留与锚点日期相差 interval 整数倍天数的日期(锚点之前的日期不产生);
- CustomInstants: 窗口内的显式时刻; 旧数据没有显式时刻时，把 times_of_day 当作"今天"的时间点。

时间点字符串宽松解析(见 utils.parse_time_of_day)，从不因为格式问题抛错。
重复的时间点不去重，每一个都会对应独立的通知。
"""

from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional

from medreminder.datamodel import *
from medreminder.utils import at_time_of_day, midnight

__all__ = ["occurrences_in_window", "is_occurrence"]


def _scan_days(window_start: datetime, window_end: datetime) -> Iterator[date]:
    # 前后各多扫一天: 越界的时间点(如 "24:30")会落到相邻日期
    day = window_start.date() - timedelta(days=1)
    last = window_end.date() + timedelta(days=1)
    while day <= last:
        yield day
        day += timedelta(days=1)


def _custom_instants(recurrence: CustomInstants, window_start: datetime, window_end: datetime,
                     today: Optional[date]) -> List[datetime]:
    if recurrence.instants:
        candidates = list(recurrence.instants)
    else:
        # 旧数据兼容: 没有显式时刻时按今天的时间点处理
        day = today or window_start.date()
        candidates = [at_time_of_day(day, t) for t in recurrence.times_of_day]
    return [i for i in candidates if window_start <= i <= window_end]


def occurrences_in_window(
    rule: ReminderRule,
    window_start: datetime,
    window_end: datetime,
    today: Optional[date] = None,
) -> List[datetime]:
    """返回 [window_start, window_end] 内的全部 occurrence，按时间升序

    today 只影响旧版 CustomInstants 数据的兜底逻辑，缺省为窗口起点所在日期。
    """
    if window_end < window_start:
        return []

    recurrence = rule.recurrence
    if isinstance(recurrence, CustomInstants):
        found = _custom_instants(recurrence, window_start, window_end, today)
        found.sort()
        return found

    anchor = None
    interval = 1
    if isinstance(recurrence, EveryNDays):
        anchor = rule.anchor_midnight()
        interval = max(1, recurrence.interval or 1)

    found: List[datetime] = []
    for day in _scan_days(window_start, window_end):
        if anchor is not None:
            diff_days = (midnight(day) - anchor).days
            if diff_days < 0 or diff_days % interval != 0:
                continue
        for time_str in recurrence.times_of_day:
            instant = at_time_of_day(day, time_str)
            if window_start <= instant <= window_end:
                found.append(instant)

    found.sort()
    return found


def is_occurrence(rule: ReminderRule, instant: datetime, today: Optional[date] = None) -> bool:
    """instant 是否是该规则的一个有效 occurrence"""
    return instant in occurrences_in_window(rule, instant, instant, today=today)
