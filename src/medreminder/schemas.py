"""规则输入校验

在任何调度/写入动作之前执行；校验失败统一转换为 errors.ValidationError。
注意与 core.occurrence 的宽松解析区分：这里拒绝非法输入，而 occurrence 模型面对旧数据时从不抛错。
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional

import pydantic
from pydantic import BaseModel, Field, field_validator, model_validator

from medreminder.config.settings import MAX_DETAILS_LENGTH, MAX_INTERVAL_DAYS, MAX_TITLE_LENGTH, MIN_INTERVAL_DAYS
from medreminder.datamodel import *
from medreminder.errors import ValidationError
from medreminder.utils import is_valid_time_format

__all__ = ["RecurrenceSchema", "RuleSchema", "validate_rule", "parse_rule"]


class RecurrenceSchema(BaseModel):
    kind: RecurrenceKind
    times_of_day: List[str] = Field(default_factory=list)
    interval: int = 1
    anchor_date: Optional[date] = None
    instants: List[datetime] = Field(default_factory=list)

    @field_validator("times_of_day")
    @classmethod
    def _check_times(cls, value: List[str]) -> List[str]:
        for item in value:
            if not is_valid_time_format(item):
                raise ValueError(f"无效的时间格式: {item!r}，预期格式为 HH:MM")
        return value

    @model_validator(mode="after")
    def _check_kind(self) -> "RecurrenceSchema":
        if self.kind in (RecurrenceKind.DAILY, RecurrenceKind.EVERY_N_DAYS) and not self.times_of_day:
            raise ValueError("至少需要一个时间点")
        if self.kind == RecurrenceKind.EVERY_N_DAYS and not (MIN_INTERVAL_DAYS <= self.interval <= MAX_INTERVAL_DAYS):
            raise ValueError(f"间隔天数必须在 {MIN_INTERVAL_DAYS} 到 {MAX_INTERVAL_DAYS} 之间: {self.interval}")
        if self.kind == RecurrenceKind.CUSTOM_INSTANTS and not self.instants and not self.times_of_day:
            raise ValueError("自定义时间点至少需要一个具体时间")
        return self

    def to_recurrence(self) -> Recurrence:
        if self.kind == RecurrenceKind.EVERY_N_DAYS:
            return EveryNDays(times_of_day=list(self.times_of_day), interval=self.interval, anchor_date=self.anchor_date)
        if self.kind == RecurrenceKind.CUSTOM_INSTANTS:
            # 统一成 naive 本地时间
            instants = [i.astimezone().replace(tzinfo=None) if i.tzinfo else i for i in self.instants]
            return CustomInstants(instants=instants, times_of_day=list(self.times_of_day))
        return Daily(times_of_day=list(self.times_of_day))


class RuleSchema(BaseModel):
    title: str
    details: str = ""
    recurrence: RecurrenceSchema
    rule_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("标题不能为空")
        if len(value) > MAX_TITLE_LENGTH:
            raise ValueError(f"标题长度不能超过 {MAX_TITLE_LENGTH}")
        return value

    @field_validator("details")
    @classmethod
    def _check_details(cls, value: str) -> str:
        if len(value) > MAX_DETAILS_LENGTH:
            raise ValueError(f"详情长度不能超过 {MAX_DETAILS_LENGTH}")
        return value


def _raise_validation_error(e: pydantic.ValidationError) -> None:
    messages = []
    for err in e.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    raise ValidationError("提醒规则校验失败: " + "; ".join(messages), errors=messages) from e


def validate_rule(rule: ReminderRule) -> ReminderRule:
    """校验已构造好的规则，返回规范化后的规则(同一个 rule_id)"""
    recurrence = rule.recurrence
    try:
        schema = RuleSchema(
            title=rule.title,
            details=rule.details or "",
            recurrence=RecurrenceSchema(
                kind=recurrence.kind,
                times_of_day=list(recurrence.times_of_day),
                interval=getattr(recurrence, "interval", 1),
                anchor_date=getattr(recurrence, "anchor_date", None),
                instants=list(getattr(recurrence, "instants", [])),
            ),
        )
    except pydantic.ValidationError as e:
        _raise_validation_error(e)

    return ReminderRule(
        rule_id=rule.rule_id,
        title=schema.title,
        details=schema.details,
        recurrence=schema.recurrence.to_recurrence(),
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


def parse_rule(data: dict[str, Any]) -> ReminderRule:
    """从调用方的原始输入(例如表单 JSON)构造并校验规则"""
    try:
        schema = RuleSchema.model_validate(data)
    except pydantic.ValidationError as e:
        _raise_validation_error(e)

    rule = ReminderRule(
        title=schema.title,
        details=schema.details,
        recurrence=schema.recurrence.to_recurrence(),
    )
    if schema.rule_id:
        rule.rule_id = schema.rule_id
    if schema.created_at:
        created_at = schema.created_at
        rule.created_at = created_at.astimezone().replace(tzinfo=None) if created_at.tzinfo else created_at
    return rule
