"""
一个简单的运行时指标收集类，统计通知的挂载/取消次数、确认次数等，方便排查通知子系统的异常。
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class RuntimeMetrics:
    armed_count: int = 0
    arm_failure_count: int = 0
    cancelled_count: int = 0
    cancel_failure_count: int = 0
    acknowledged_count: int = 0
    delivered_count: int = 0
    last_schedule_at: float | None = None

    def record_armed(self) -> None:
        self.armed_count += 1

    def record_arm_failure(self) -> None:
        self.arm_failure_count += 1

    def record_cancel(self, error: bool = False) -> None:
        if error:
            self.cancel_failure_count += 1
        else:
            self.cancelled_count += 1

    def record_acknowledged(self) -> None:
        self.acknowledged_count += 1

    def record_delivered(self) -> None:
        self.delivered_count += 1

    def record_schedule(self) -> None:
        self.last_schedule_at = time.time()

    def reset(self) -> None:
        self.__init__()

    def snapshot(self) -> dict:
        attempts = self.armed_count + self.arm_failure_count
        failure_rate = 0.0
        if attempts > 0:
            failure_rate = self.arm_failure_count / attempts

        return {
            "armed_count": self.armed_count,
            "arm_failure_count": self.arm_failure_count,
            "arm_failure_rate": round(failure_rate, 4),
            "cancelled_count": self.cancelled_count,
            "cancel_failure_count": self.cancel_failure_count,
            "acknowledged_count": self.acknowledged_count,
            "delivered_count": self.delivered_count,
            "last_schedule_at_epoch": self.last_schedule_at,
            "last_schedule_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_schedule_at))
                if self.last_schedule_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
