import os
from dotenv import load_dotenv
from medreminder.logger import logger
load_dotenv()

__all__ = [
    "DB_PATH", "LOG_FILE", "LOG_LEVEL", "CONSOLE_LOG_LEVEL",
    "NOTIFICATIONS_ENABLED",
    "RECURRING_HORIZON_DAYS", "FOLLOWUP_HORIZON_MINUTES", "FOLLOWUP_STEP_MINUTES",
    "DISPLAY_LOOKBACK_HOURS", "DISPLAY_LOOKAHEAD_HOURS", "SNOOZE_MINUTES",
    "DELIVERY_POLL_SECONDS", "FOLLOWUP_REFRESH_MINUTES",
    "MAX_TITLE_LENGTH", "MAX_DETAILS_LENGTH", "MIN_INTERVAL_DAYS", "MAX_INTERVAL_DAYS",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning(f"{name} 非法: {raw!r}, 已回退到 {default}")
        return default
    if value < minimum:
        logger.warning(f"{name} 不能小于 {minimum}: {value}, 已回退到 {default}")
        return default
    return value


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning(f"{name} 非法: {raw!r}, 已回退到 {default}")
        return default


# 存储与日志
DB_PATH = os.getenv("DB_PATH", "data/medreminder.db")
LOG_FILE = os.getenv("LOG_FILE", "logs/medreminder.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "TRACE").strip().upper()
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO").strip().upper()

# 通知子系统
# 关闭后调度器不会发出任何通知请求(能力缺失状态，仅在启动时判断一次)
NOTIFICATIONS_ENABLED = _parse_bool("NOTIFICATIONS_ENABLED", True)
DELIVERY_POLL_SECONDS = _parse_float("DELIVERY_POLL_SECONDS", 5.0)
if DELIVERY_POLL_SECONDS <= 0:
    logger.warning(f"DELIVERY_POLL_SECONDS 必须为正数: {DELIVERY_POLL_SECONDS}, 已回退到 5 秒")
    DELIVERY_POLL_SECONDS = 5.0

# 调度窗口
RECURRING_HORIZON_DAYS = _parse_int("RECURRING_HORIZON_DAYS", 365, minimum=1)
FOLLOWUP_HORIZON_MINUTES = _parse_int("FOLLOWUP_HORIZON_MINUTES", 6 * 60, minimum=0)
FOLLOWUP_STEP_MINUTES = _parse_int("FOLLOWUP_STEP_MINUTES", 5, minimum=1)
SNOOZE_MINUTES = _parse_int("SNOOZE_MINUTES", 5, minimum=1)
FOLLOWUP_REFRESH_MINUTES = _parse_int("FOLLOWUP_REFRESH_MINUTES", 15, minimum=1)

# 列表视图窗口
DISPLAY_LOOKBACK_HOURS = _parse_int("DISPLAY_LOOKBACK_HOURS", 6)
DISPLAY_LOOKAHEAD_HOURS = _parse_int("DISPLAY_LOOKAHEAD_HOURS", 24, minimum=1)

# 输入校验
MAX_TITLE_LENGTH = _parse_int("MAX_TITLE_LENGTH", 100, minimum=1)
MAX_DETAILS_LENGTH = _parse_int("MAX_DETAILS_LENGTH", 500)
MIN_INTERVAL_DAYS = _parse_int("MIN_INTERVAL_DAYS", 1, minimum=1)
MAX_INTERVAL_DAYS = _parse_int("MAX_INTERVAL_DAYS", 365, minimum=1)
if MAX_INTERVAL_DAYS < MIN_INTERVAL_DAYS:
    logger.critical(f"MAX_INTERVAL_DAYS({MAX_INTERVAL_DAYS}) 小于 MIN_INTERVAL_DAYS({MIN_INTERVAL_DAYS})")
    exit(0)
