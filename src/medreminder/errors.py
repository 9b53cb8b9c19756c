"""错误类型

只有 ValidationError 与 PersistenceFailure 会穿过核心边界抛给调用方；
SchedulingFailure / StaleHandleFailure 由通知后端抛出，调度器捕获后只记录日志。
"""

__all__ = [
    "ReminderError", "ValidationError", "RuleNotFound",
    "SchedulingFailure", "PersistenceFailure", "StaleHandleFailure",
]


class ReminderError(Exception):
    """所有提醒相关错误的基类"""


class ValidationError(ReminderError):
    """规则输入不合法，发生在任何调度动作之前"""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class RuleNotFound(ValidationError):
    """调用方引用了不存在的规则"""


class SchedulingFailure(ReminderError):
    """通知子系统拒绝了某一次挂载请求(例如权限被收回)"""


class PersistenceFailure(ReminderError):
    """存储读写失败"""


class StaleHandleFailure(ReminderError):
    """取消一个未知或已触发的通知句柄"""

    def __init__(self, handle: str) -> None:
        super().__init__(f"未知或已失效的通知句柄: {handle}")
        self.handle = handle
