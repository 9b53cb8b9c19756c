import medreminder.storage.db_config as db_config
from medreminder.logger import logger
from medreminder.storage.db_config import persistence_guard


@persistence_guard
async def add_acknowledgment(rule_id: str, occurrence_key: str) -> None:
    """记录已确认的 occurrence，重复确认不会产生第二条记录"""
    await db_config.conn.execute(
        "INSERT OR IGNORE INTO acknowledgments (rule_id, occurrence_key) VALUES (?, ?)",
        (rule_id, occurrence_key)
    )
    await db_config.conn.commit()
    logger.trace(f"确认 occurrence: rule_id={rule_id}, occurrence_key={occurrence_key}")


@persistence_guard
async def remove_acknowledgment(rule_id: str, occurrence_key: str) -> None:
    await db_config.conn.execute(
        "DELETE FROM acknowledgments WHERE rule_id = ? AND occurrence_key = ?",
        (rule_id, occurrence_key)
    )
    await db_config.conn.commit()
    logger.trace(f"取消确认 occurrence: rule_id={rule_id}, occurrence_key={occurrence_key}")


@persistence_guard
async def is_acknowledged(rule_id: str, occurrence_key: str) -> bool:
    async with db_config.conn.execute(
        "SELECT COUNT(1) FROM acknowledgments WHERE rule_id = ? AND occurrence_key = ?",
        (rule_id, occurrence_key)
    ) as cursor:
        row = await cursor.fetchone()
        return bool(row[0]) if row else False


@persistence_guard
async def get_acknowledged_keys(rule_id: str) -> set[str]:
    keys: set[str] = set()
    async with db_config.conn.execute(
        "SELECT occurrence_key FROM acknowledgments WHERE rule_id = ?",
        (rule_id,)
    ) as cursor:
        async for row in cursor:
            keys.add(row[0])
    return keys


@persistence_guard
async def delete_acknowledgments_for_rule(rule_id: str) -> None:
    await db_config.conn.execute("DELETE FROM acknowledgments WHERE rule_id = ?", (rule_id,))
    await db_config.conn.commit()
    logger.trace(f"删除规则的全部确认记录: rule_id={rule_id}")
