"""通知句柄存储

两类记录互相独立:
1. 主句柄: 以 rule_id 为键，保存规则本身各个 occurrence 的通知句柄;
2. 跟进句柄: 以 (rule_id, occurrence_key) 为键，保存某个 occurrence 的跟进/稍后提醒句柄。
句柄是通知子系统返回的不透明字符串，只用于之后的取消。
"""

import json

import medreminder.storage.db_config as db_config
from medreminder.logger import logger
from medreminder.storage.db_config import persistence_guard


@persistence_guard
async def save_primary_handles(rule_id: str, handles: list[str]) -> None:
    await db_config.conn.execute(
        "INSERT INTO primary_handles (rule_id, handles_json) VALUES (?, ?) "
        "ON CONFLICT(rule_id) DO UPDATE SET handles_json = excluded.handles_json, updated_at_utc = CURRENT_TIMESTAMP",
        (rule_id, json.dumps(handles))
    )
    await db_config.conn.commit()
    logger.trace(f"保存主通知句柄: rule_id={rule_id}, count={len(handles)}")


@persistence_guard
async def get_primary_handles(rule_id: str) -> list[str]:
    async with db_config.conn.execute(
        "SELECT handles_json FROM primary_handles WHERE rule_id = ?",
        (rule_id,)
    ) as cursor:
        row = await cursor.fetchone()
        return json.loads(row[0]) if row else []


@persistence_guard
async def delete_primary_handles(rule_id: str) -> None:
    await db_config.conn.execute("DELETE FROM primary_handles WHERE rule_id = ?", (rule_id,))
    await db_config.conn.commit()
    logger.trace(f"删除主通知句柄: rule_id={rule_id}")


@persistence_guard
async def save_followup_handles(rule_id: str, occurrence_key: str, handles: list[str]) -> None:
    await db_config.conn.execute(
        "INSERT INTO followup_handles (rule_id, occurrence_key, handles_json) VALUES (?, ?, ?) "
        "ON CONFLICT(rule_id, occurrence_key) DO UPDATE SET handles_json = excluded.handles_json, "
        "updated_at_utc = CURRENT_TIMESTAMP",
        (rule_id, occurrence_key, json.dumps(handles))
    )
    await db_config.conn.commit()
    logger.trace(f"保存跟进通知句柄: rule_id={rule_id}, occurrence_key={occurrence_key}, count={len(handles)}")


@persistence_guard
async def get_followup_handles(rule_id: str, occurrence_key: str) -> list[str]:
    async with db_config.conn.execute(
        "SELECT handles_json FROM followup_handles WHERE rule_id = ? AND occurrence_key = ?",
        (rule_id, occurrence_key)
    ) as cursor:
        row = await cursor.fetchone()
        return json.loads(row[0]) if row else []


@persistence_guard
async def has_followup_handles(rule_id: str, occurrence_key: str) -> bool:
    async with db_config.conn.execute(
        "SELECT COUNT(1) FROM followup_handles WHERE rule_id = ? AND occurrence_key = ?",
        (rule_id, occurrence_key)
    ) as cursor:
        row = await cursor.fetchone()
        return bool(row[0]) if row else False


@persistence_guard
async def get_followup_sets_for_rule(rule_id: str) -> dict[str, list[str]]:
    """列出某规则下全部 occurrence 的跟进句柄: {occurrence_key: [handle, ...]}"""
    sets: dict[str, list[str]] = {}
    async with db_config.conn.execute(
        "SELECT occurrence_key, handles_json FROM followup_handles WHERE rule_id = ? ORDER BY occurrence_key",
        (rule_id,)
    ) as cursor:
        async for row in cursor:
            sets[row[0]] = json.loads(row[1])
    return sets


@persistence_guard
async def delete_followup_handles(rule_id: str, occurrence_key: str) -> None:
    await db_config.conn.execute(
        "DELETE FROM followup_handles WHERE rule_id = ? AND occurrence_key = ?",
        (rule_id, occurrence_key)
    )
    await db_config.conn.commit()
    logger.trace(f"删除跟进通知句柄: rule_id={rule_id}, occurrence_key={occurrence_key}")
