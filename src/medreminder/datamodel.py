from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from ulid import ULID

from medreminder.utils import midnight, occurrence_key, parse_occurrence_key

__all__ = [
    "RecurrenceKind", "Daily", "EveryNDays", "CustomInstants", "Recurrence",
    "ReminderRule", "rule_to_dict", "rule_from_dict",
    "NotificationKind", "PlatformHints", "NotificationPayload",
    "ResponseAction", "TASK_REMINDER_CATEGORY",
    "UpcomingItem", "UpcomingView",
]


# ----------------- 规则数据模型 ----------------
class RecurrenceKind(str, Enum):
    DAILY = "daily"
    EVERY_N_DAYS = "every_n_days"
    CUSTOM_INSTANTS = "custom_instants"


# 旧版本数据里的类型名
_LEGACY_KIND_NAMES = {
    "alternateDays": RecurrenceKind.EVERY_N_DAYS,
    "customTimes": RecurrenceKind.CUSTOM_INSTANTS,
}


@dataclass
class Daily:
    times_of_day: List[str] = field(default_factory=list)  # ["09:00", "21:00"]
    kind: ClassVar[RecurrenceKind] = RecurrenceKind.DAILY


@dataclass
class EveryNDays:
    times_of_day: List[str] = field(default_factory=list)
    interval: int = 1
    anchor_date: Optional[date] = None  # 为空时以规则创建日期为锚点
    kind: ClassVar[RecurrenceKind] = RecurrenceKind.EVERY_N_DAYS


@dataclass
class CustomInstants:
    instants: List[datetime] = field(default_factory=list)
    times_of_day: List[str] = field(default_factory=list)  # 仅旧数据使用: instants 为空时当作"今天的时间点"
    kind: ClassVar[RecurrenceKind] = RecurrenceKind.CUSTOM_INSTANTS


Recurrence = Union[Daily, EveryNDays, CustomInstants]


@dataclass
class ReminderRule:
    title: str
    recurrence: Recurrence
    details: str = ""
    rule_id: str = field(default_factory=lambda: str(ULID()))
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: Optional[datetime] = None

    def anchor_midnight(self) -> datetime:
        """EveryNDays 的计数起点: 显式锚点日期 -> 创建日期"""
        anchor = getattr(self.recurrence, "anchor_date", None)
        return midnight(anchor if anchor is not None else self.created_at)


def _recurrence_to_dict(recurrence: Recurrence) -> Dict[str, Any]:
    data: Dict[str, Any] = {"kind": recurrence.kind.value}
    if isinstance(recurrence, EveryNDays):
        data["times_of_day"] = list(recurrence.times_of_day)
        data["interval"] = recurrence.interval
        data["anchor_date"] = recurrence.anchor_date.isoformat() if recurrence.anchor_date else None
    elif isinstance(recurrence, CustomInstants):
        data["instants"] = [occurrence_key(i) for i in recurrence.instants]
        data["times_of_day"] = list(recurrence.times_of_day)
    else:
        data["times_of_day"] = list(recurrence.times_of_day)
    return data


def _recurrence_from_dict(data: Dict[str, Any]) -> Recurrence:
    raw_kind = data.get("kind", RecurrenceKind.DAILY.value)
    kind = _LEGACY_KIND_NAMES.get(raw_kind) or RecurrenceKind(raw_kind)
    times = list(data.get("times_of_day") or [])
    if kind == RecurrenceKind.EVERY_N_DAYS:
        anchor = data.get("anchor_date")
        return EveryNDays(
            times_of_day=times,
            interval=int(data.get("interval") or 1),
            anchor_date=date.fromisoformat(anchor) if anchor else None,
        )
    if kind == RecurrenceKind.CUSTOM_INSTANTS:
        return CustomInstants(
            instants=[parse_occurrence_key(s) for s in data.get("instants") or []],
            times_of_day=times,
        )
    return Daily(times_of_day=times)


def rule_to_dict(rule: ReminderRule) -> Dict[str, Any]:
    return {
        "rule_id": rule.rule_id,
        "title": rule.title,
        "details": rule.details,
        "recurrence": _recurrence_to_dict(rule.recurrence),
        "created_at": rule.created_at.isoformat(),
        "updated_at": rule.updated_at.isoformat() if rule.updated_at else None,
    }


def rule_from_dict(data: Dict[str, Any]) -> ReminderRule:
    updated_at = data.get("updated_at")
    return ReminderRule(
        rule_id=data["rule_id"],
        title=data["title"],
        details=data.get("details") or "",
        recurrence=_recurrence_from_dict(data["recurrence"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
    )


# ----------------- 通知数据模型 ----------------
TASK_REMINDER_CATEGORY = "TASK_REMINDER"


class NotificationKind(str, Enum):
    PRIMARY = "primary"
    FOLLOWUP = "followup"
    SNOOZE = "snooze"


class ResponseAction(str, Enum):
    MARK_DONE = "MARK_DONE"
    SNOOZE = "SNOOZE"
    VIEW = "VIEW"


@dataclass(frozen=True)
class PlatformHints:
    sound: str = "default"
    vibrate: tuple = (0, 250, 250, 250)
    android_priority: str = "high"
    category: str = TASK_REMINDER_CATEGORY


@dataclass(frozen=True)
class NotificationPayload:
    title: str
    body: str
    rule_id: str
    occurrence_key: Optional[str] = None  # 与 rule_id 一起用于把用户的操作关联回 occurrence
    kind: NotificationKind = NotificationKind.PRIMARY
    priority: str = "high"
    hints: Optional[PlatformHints] = None

    @classmethod
    def for_rule(
        cls,
        rule: ReminderRule,
        occurrence_key: Optional[str] = None,
        kind: NotificationKind = NotificationKind.PRIMARY,
    ) -> "NotificationPayload":
        return cls(
            title=f"Reminder: {rule.title}",
            body=rule.details or f"Time for {rule.title}",
            rule_id=rule.rule_id,
            occurrence_key=occurrence_key,
            kind=kind,
            hints=PlatformHints(),
        )


# ----------------- 视图数据模型 ----------------
@dataclass
class UpcomingItem:
    rule: ReminderRule
    instant: datetime
    occurrence_key: str
    label: str
    acknowledged: bool = False


@dataclass
class UpcomingView:
    upcoming: List[UpcomingItem] = field(default_factory=list)  # 按时间升序
    active: List[UpcomingItem] = field(default_factory=list)  # 已过时且未确认，按时间降序
