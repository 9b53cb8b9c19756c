"""Shared fixtures: a throwaway sqlite database and a recording notification backend."""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

import medreminder.storage.db_config as db_config
from medreminder.core.scheduler import Scheduler
from medreminder.core.service import ReminderService
from medreminder.datamodel import NotificationPayload
from medreminder.errors import SchedulingFailure, StaleHandleFailure
from medreminder.metrics import runtime_metrics
from medreminder.notify.base import NotificationBackend

# Mid-June keeps every test window clear of DST transitions.
NOW = datetime(2024, 6, 12, 8, 0)


class RecordingBackend(NotificationBackend):
    """In-memory backend that records every arm/cancel call in order."""

    def __init__(self, fail_when: Optional[Callable[[int, datetime, NotificationPayload], bool]] = None):
        self.fail_when = fail_when
        self.armed: Dict[str, Tuple[datetime, NotificationPayload]] = {}
        self.arm_calls: List[Tuple[datetime, NotificationPayload]] = []
        self.cancel_calls: List[str] = []
        self.calls: List[Tuple[str, str]] = []

    async def arm(self, instant: datetime, payload: NotificationPayload) -> str:
        index = len(self.arm_calls)
        self.arm_calls.append((instant, payload))
        if self.fail_when is not None and self.fail_when(index, instant, payload):
            raise SchedulingFailure(f"rejected arm #{index}")
        handle = f"h{index}"
        self.armed[handle] = (instant, payload)
        self.calls.append(("arm", handle))
        return handle

    async def cancel(self, handle: str) -> None:
        self.cancel_calls.append(handle)
        self.calls.append(("cancel", handle))
        if self.armed.pop(handle, None) is None:
            raise StaleHandleFailure(handle)

    def handles_for(self, kind) -> List[str]:
        return [h for h, (_, payload) in self.armed.items() if payload.kind == kind]


@pytest.fixture(autouse=True)
def reset_metrics():
    runtime_metrics.reset()
    yield
    runtime_metrics.reset()


@pytest_asyncio.fixture
async def db(tmp_path):
    await db_config.init_db(str(tmp_path / "data" / "test.db"))
    yield db_config.conn
    await db_config.close_db()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def scheduler(backend, clock):
    return Scheduler(backend, horizon_days=2, clock=clock)


@pytest.fixture
def service(db, backend, scheduler, clock):
    return ReminderService(backend, scheduler=scheduler, clock=clock)
