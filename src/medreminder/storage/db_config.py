import json
import os
import sqlite3
from functools import wraps
from pathlib import Path

import aiosqlite

from medreminder.errors import PersistenceFailure
from medreminder.logger import logger


conn: aiosqlite.Connection | None = None

_SQL_DIR = Path(__file__).with_name("sql")


def persistence_guard(func):
    """存储函数装饰器: 未初始化或 sqlite 出错时统一抛出 PersistenceFailure"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        if conn is None:
            raise PersistenceFailure("数据库未初始化，请先调用 init_db()")
        try:
            return await func(*args, **kwargs)
        except (sqlite3.Error, json.JSONDecodeError) as e:
            logger.error(f"存储操作失败: {func.__name__}, error={e}")
            raise PersistenceFailure(f"{func.__name__} 失败: {e}") from e
    return wrapper


async def _run_script(name: str) -> None:
    script = (_SQL_DIR / name).read_text(encoding="utf-8")
    await conn.executescript(script)


async def init_db(db_path: str) -> None:
    db_dir = os.path.dirname(db_path)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)
    global conn
    try:
        conn = await aiosqlite.connect(db_path)

        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
            user_version = row[0]

        if user_version == 0:
            await _run_script("db_init_v1.sql")
            await conn.execute("PRAGMA user_version = 1")

        if user_version < 2:
            await _run_script("db_migrate_v2.sql")
            await conn.execute("PRAGMA user_version = 2")

        if user_version < 3:
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_followup_handles_rule ON followup_handles (rule_id)")
            await conn.execute("PRAGMA user_version = 3")

        # 数据库升级逻辑可以在这里继续添加
        await conn.commit()
    except sqlite3.Error as e:
        raise PersistenceFailure(f"数据库初始化失败: {db_path}, error={e}") from e
    logger.info(f"提醒数据库已就绪: {db_path}")


async def close_db() -> None:
    global conn
    if conn is not None:
        await conn.close()
        conn = None


__all__ = ["conn", "init_db", "close_db", "persistence_guard"]
