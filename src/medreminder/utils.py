"""时间工具

整个系统只使用单一的本地挂钟时间：规则、occurrence 实例在内存中都是 naive 的本地 datetime。
只有 occurrence key 会换算成 UTC 的 ISO-8601 字符串(形如 2024-01-01T01:00:00.000Z)，作为稳定标识。
"""

import re
from datetime import date, datetime, time, timedelta, timezone

__all__ = ["now_local", "midnight", "occurrence_key", "parse_occurrence_key",
           "parse_time_of_day", "at_time_of_day", "is_valid_time_format", "format_label",
           "DEFAULT_HOUR", "DEFAULT_MINUTE"]

DEFAULT_HOUR = 9
DEFAULT_MINUTE = 0

_TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def now_local() -> datetime:
    """获取当前本地时间(naive)"""
    return datetime.now()


def midnight(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def occurrence_key(instant: datetime) -> str:
    """本地时间 -> UTC ISO 字符串，毫秒精度，以 Z 结尾"""
    utc = instant.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_occurrence_key(key: str) -> datetime:
    """occurrence key -> 本地时间(naive)，无法解析时抛出 ValueError"""
    if not isinstance(key, str) or not key.strip():
        raise ValueError(f"occurrence key 为空: {key!r}")
    text = key.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed
    return parsed.astimezone().replace(tzinfo=None)


def _lenient_int(raw: str, default: int) -> int:
    match = _LEADING_INT.match(raw)
    if match is None:
        return default
    return int(match.group(1))


def parse_time_of_day(value: str) -> tuple[int, int]:
    """宽松解析 "HH:MM"：小时无法解析时取 9，分钟无法解析时取 0，从不抛异常"""
    parts = str(value).split(":")
    hour = _lenient_int(parts[0], DEFAULT_HOUR)
    minute = _lenient_int(parts[1], DEFAULT_MINUTE) if len(parts) > 1 else DEFAULT_MINUTE
    return hour, minute


def at_time_of_day(day: date | datetime, value: str) -> datetime:
    # 越界的小时/分钟顺延到相邻日期，而不是报错
    hour, minute = parse_time_of_day(value)
    return midnight(day) + timedelta(hours=hour, minutes=minute)


def is_valid_time_format(value: str) -> bool:
    """验证时间格式是否为 24 小时制 HH:MM"""
    if not isinstance(value, str):
        return False
    return _TIME_PATTERN.match(value) is not None


def format_label(instant: datetime) -> str:
    """按当前 locale 格式化，用于列表展示"""
    return instant.strftime("%x %X")
