"""确认操作的预写标记

确认一个 occurrence 要先后写两张表(删除跟进句柄、写入确认记录)，中间没有事务。
在取消跟进通知之前先记下要取消的句柄，确认记录写完后再删除标记；
进程若在中途退出，下次启动时根据残留标记重新执行一遍(取消操作可重复执行)。
"""

import json

import medreminder.storage.db_config as db_config
from medreminder.logger import logger
from medreminder.storage.db_config import persistence_guard


@persistence_guard
async def save_pending(rule_id: str, occurrence_key: str, handles: list[str]) -> None:
    await db_config.conn.execute(
        "INSERT OR REPLACE INTO pending_cancellations (rule_id, occurrence_key, handles_json) VALUES (?, ?, ?)",
        (rule_id, occurrence_key, json.dumps(handles))
    )
    await db_config.conn.commit()
    logger.trace(f"写入预写标记: rule_id={rule_id}, occurrence_key={occurrence_key}, count={len(handles)}")


@persistence_guard
async def get_all_pending() -> list[tuple[str, str, list[str]]]:
    """返回 [(rule_id, occurrence_key, handles), ...]"""
    async with db_config.conn.execute(
        "SELECT rule_id, occurrence_key, handles_json FROM pending_cancellations ORDER BY created_at_utc"
    ) as cursor:
        rows = await cursor.fetchall()
        return [(row[0], row[1], json.loads(row[2])) for row in rows]


@persistence_guard
async def delete_pending(rule_id: str, occurrence_key: str) -> None:
    await db_config.conn.execute(
        "DELETE FROM pending_cancellations WHERE rule_id = ? AND occurrence_key = ?",
        (rule_id, occurrence_key)
    )
    await db_config.conn.commit()
    logger.trace(f"清除预写标记: rule_id={rule_id}, occurrence_key={occurrence_key}")


@persistence_guard
async def delete_pending_for_rule(rule_id: str) -> None:
    await db_config.conn.execute("DELETE FROM pending_cancellations WHERE rule_id = ?", (rule_id,))
    await db_config.conn.commit()
