"""日志模块

级别支持: TRACE/DEBUG/INFO/WARNING/ERROR/CRITICAL (兼容别名 FATAL -> CRITICAL)

进程入口先调用 setup_logging，其余模块直接 logger.info(...)。
未调用 setup_logging 时(例如测试)，使用 loguru 默认的 stderr 输出。

通知投递记录单独写一份文件(<log>_delivery.log)，便于事后核对 "哪条提醒在什么时候响过"；
投递相关的日志通过 delivery_logger 写入，它会带上 delivery=True 标记。
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Literal, Optional, Union

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL"]

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "{name}:{function}:{line} - {message}"
)

DELIVERY_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {extra[rule_id]} | {extra[occurrence_key]} | {message}"

_LEVEL_ALIAS = {"FATAL": "CRITICAL"}

delivery_logger = logger.bind(delivery=True, rule_id="-", occurrence_key="-")


def _normalize_level(level: Union[str, LogLevel]) -> str:
    return _LEVEL_ALIAS.get(str(level).upper(), str(level).upper())


def _is_delivery(record) -> bool:
    return record["extra"].get("delivery", False)


def _rotating_file(path: Path, *, level: str, retention: str, fmt: str = FILE_FORMAT, **extra) -> dict:
    handler = {
        "sink": path,
        "level": level,
        "format": fmt,
        "rotation": "10 MB",
        "retention": retention,
        "compression": "zip",
        "encoding": "utf-8",
    }
    handler.update(extra)
    return handler


def setup_logging(
    log_level: LogLevel,
    log_file: Union[str, Path],
    console_level: LogLevel = "INFO",
) -> None:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    def sibling(suffix: str) -> Path:
        return log_file.with_name(f"{log_file.stem}_{suffix}{log_file.suffix}")

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": _normalize_level(console_level),
                "format": CONSOLE_FORMAT,
                "colorize": True,
            },
            _rotating_file(log_file, level=_normalize_level(log_level), retention="30 days"),
            _rotating_file(sibling("error"), level="ERROR", retention="90 days"),
            _rotating_file(sibling("delivery"), level="INFO", retention="180 days",
                           fmt=DELIVERY_FORMAT, filter=_is_delivery),
        ]
    )


def rule_logger(rule_id: str, occurrence_key: Optional[str] = None):
    """投递日志用: 绑定 rule_id / occurrence_key"""
    return delivery_logger.bind(rule_id=rule_id, occurrence_key=occurrence_key or "-")


__all__ = ["setup_logging", "logger", "delivery_logger", "rule_logger", "LogLevel"]
