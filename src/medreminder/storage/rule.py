import json

import medreminder.storage.db_config as db_config
from medreminder.datamodel import *
from medreminder.events import bus, E
from medreminder.logger import logger
from medreminder.storage.db_config import persistence_guard

_SELECT_COLUMNS = "rule_id, title, details, recurrence_json, created_at, updated_at"


def _row_to_rule(row) -> ReminderRule:
    return rule_from_dict({
        "rule_id": row[0],
        "title": row[1],
        "details": row[2],
        "recurrence": json.loads(row[3]),
        "created_at": row[4],
        "updated_at": row[5],
    })


@persistence_guard
async def save_rule(rule: ReminderRule) -> None:
    """新建或原地更新规则(rule_id 不变)"""
    data = rule_to_dict(rule)
    await db_config.conn.execute(
        "INSERT INTO rules (rule_id, title, details, recurrence_json, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(rule_id) DO UPDATE SET title = excluded.title, details = excluded.details, "
        "recurrence_json = excluded.recurrence_json, updated_at = excluded.updated_at",
        (
            data["rule_id"], data["title"], data["details"],
            json.dumps(data["recurrence"], ensure_ascii=False),
            data["created_at"], data["updated_at"],
        )
    )
    await db_config.conn.commit()
    bus.emit(E.RULE_SAVED, rule_id=rule.rule_id, title=rule.title)
    logger.trace(f"保存规则: rule_id={rule.rule_id}, title={rule.title}, kind={rule.recurrence.kind.value}")


@persistence_guard
async def get_rule(rule_id: str) -> ReminderRule | None:
    async with db_config.conn.execute(
        f"SELECT {_SELECT_COLUMNS} FROM rules WHERE rule_id = ?",
        (rule_id,)
    ) as cursor:
        row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_rule(row)


@persistence_guard
async def get_all_rules() -> list[ReminderRule]:
    """按创建时间列出全部规则"""
    async with db_config.conn.execute(
        f"SELECT {_SELECT_COLUMNS} FROM rules ORDER BY created_at, rule_id"
    ) as cursor:
        rows = await cursor.fetchall()
        return [_row_to_rule(row) for row in rows]


@persistence_guard
async def delete_rule(rule_id: str) -> None:
    await db_config.conn.execute("DELETE FROM rules WHERE rule_id = ?", (rule_id,))
    await db_config.conn.commit()
    bus.emit(E.RULE_DELETED, rule_id=rule_id)
    logger.trace(f"删除规则: rule_id={rule_id}")
