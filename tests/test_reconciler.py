"""Unit tests for Reconciler: acknowledge, unacknowledge, delete cascade, recovery."""

from datetime import datetime

import pytest

from conftest import NOW

import medreminder.storage.ack as ack_storage
import medreminder.storage.handle as handle_storage
import medreminder.storage.pending as pending_storage
import medreminder.storage.rule as rule_storage
from medreminder.core.reconciler import Reconciler
from medreminder.datamodel import Daily, NotificationKind, ReminderRule
from medreminder.errors import PersistenceFailure
from medreminder.utils import occurrence_key

MORNING = datetime(2024, 6, 12, 9, 0)
MORNING_KEY = occurrence_key(MORNING)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def reconciler(scheduler):
    return Reconciler(scheduler)


@pytest.fixture
async def scheduled_rule(db, scheduler):
    rule = ReminderRule(title="Pills", recurrence=Daily(times_of_day=["09:00", "21:00"]))
    await rule_storage.save_rule(rule)
    await scheduler.schedule(rule, NOW)
    return rule


async def _ack_rows(conn) -> int:
    async with conn.execute("SELECT COUNT(*) FROM acknowledgments") as cursor:
        row = await cursor.fetchone()
        return row[0]


# ============================================================================
# acknowledge
# ============================================================================


async def test_acknowledge_cancels_followups(db, backend, reconciler, scheduled_rule):
    followups = await handle_storage.get_followup_handles(scheduled_rule.rule_id, MORNING_KEY)
    assert len(followups) == 72

    cancelled = await reconciler.acknowledge(scheduled_rule.rule_id, MORNING_KEY)

    assert cancelled == 72
    assert backend.cancel_calls == followups
    assert backend.handles_for(NotificationKind.FOLLOWUP) == []
    assert await handle_storage.get_followup_handles(scheduled_rule.rule_id, MORNING_KEY) == []
    assert await ack_storage.is_acknowledged(scheduled_rule.rule_id, MORNING_KEY)
    assert await pending_storage.get_all_pending() == []


async def test_acknowledge_is_idempotent(db, backend, reconciler, scheduled_rule):
    assert await reconciler.acknowledge(scheduled_rule.rule_id, MORNING_KEY) == 72
    calls_after_first = len(backend.cancel_calls)

    assert await reconciler.acknowledge(scheduled_rule.rule_id, MORNING_KEY) == 0

    assert len(backend.cancel_calls) == calls_after_first
    assert await _ack_rows(db) == 1
    assert await ack_storage.get_acknowledged_keys(scheduled_rule.rule_id) == {MORNING_KEY}


async def test_acknowledge_without_followups_still_records(db, backend, reconciler, scheduled_rule):
    evening_key = occurrence_key(datetime(2024, 6, 12, 21, 0))

    assert await reconciler.acknowledge(scheduled_rule.rule_id, evening_key) == 0
    assert backend.cancel_calls == []
    assert await ack_storage.is_acknowledged(scheduled_rule.rule_id, evening_key)


async def test_cancel_happens_before_ack_is_written(db, backend, reconciler, scheduled_rule, monkeypatch):
    async def failing_add(rule_id, key):
        # every follow-up is already cancelled by the time the ack is written
        assert backend.handles_for(NotificationKind.FOLLOWUP) == []
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(ack_storage, "add_acknowledgment", failing_add)

    with pytest.raises(PersistenceFailure):
        await reconciler.acknowledge(scheduled_rule.rule_id, MORNING_KEY)

    monkeypatch.undo()
    assert not await ack_storage.is_acknowledged(scheduled_rule.rule_id, MORNING_KEY)
    pending = await pending_storage.get_all_pending()
    assert len(pending) == 1
    assert pending[0][:2] == (scheduled_rule.rule_id, MORNING_KEY)
    assert len(pending[0][2]) == 72

    # next startup finishes the interrupted acknowledgment
    assert await reconciler.recover_pending() == 1
    assert await ack_storage.is_acknowledged(scheduled_rule.rule_id, MORNING_KEY)
    assert await pending_storage.get_all_pending() == []
    assert await reconciler.recover_pending() == 0


async def test_recover_pending_skips_ack_for_deleted_rule(db, backend, reconciler):
    await pending_storage.save_pending("gone", MORNING_KEY, ["h-old"])

    assert await reconciler.recover_pending() == 1

    assert backend.cancel_calls == ["h-old"]
    assert not await ack_storage.is_acknowledged("gone", MORNING_KEY)
    assert await pending_storage.get_all_pending() == []


# ============================================================================
# unacknowledge
# ============================================================================


async def test_unacknowledge_rearms_followups_inside_horizon(db, reconciler, scheduled_rule):
    await reconciler.acknowledge(scheduled_rule.rule_id, MORNING_KEY)

    handles = await reconciler.unacknowledge(scheduled_rule, MORNING_KEY, NOW)

    assert not await ack_storage.is_acknowledged(scheduled_rule.rule_id, MORNING_KEY)
    assert len(handles) == 72
    assert await handle_storage.get_followup_handles(scheduled_rule.rule_id, MORNING_KEY) == handles


async def test_unacknowledge_old_occurrence_arms_nothing(db, backend, reconciler, scheduled_rule):
    old_key = occurrence_key(datetime(2024, 6, 11, 9, 0))
    await reconciler.acknowledge(scheduled_rule.rule_id, old_key)
    arms_before = len(backend.arm_calls)

    handles = await reconciler.unacknowledge(scheduled_rule, old_key, NOW)

    assert handles == []
    assert len(backend.arm_calls) == arms_before
    assert not await ack_storage.is_acknowledged(scheduled_rule.rule_id, old_key)
    assert await handle_storage.get_followup_handles(scheduled_rule.rule_id, old_key) == []


# ============================================================================
# edit / delete
# ============================================================================


async def test_reschedule_rule_replaces_primary_and_followups(db, backend, reconciler, scheduled_rule):
    issued = set(backend.armed)
    scheduled_rule.recurrence = Daily(times_of_day=["10:00"])

    new_handles = await reconciler.reschedule_rule(scheduled_rule, NOW)

    assert issued <= set(backend.cancel_calls)
    assert len(new_handles) == 2
    sets = await handle_storage.get_followup_sets_for_rule(scheduled_rule.rule_id)
    assert list(sets) == [occurrence_key(datetime(2024, 6, 12, 10, 0))]


async def test_delete_rule_cascades(db, backend, scheduler, reconciler, scheduled_rule):
    rule_id = scheduled_rule.rule_id
    await reconciler.acknowledge(rule_id, occurrence_key(datetime(2024, 6, 12, 21, 0)))
    await scheduler.snooze(scheduled_rule, MORNING_KEY, NOW)
    await pending_storage.save_pending(rule_id, "2024-06-11T07:00:00.000Z", ["h-stale"])
    issued = {f"h{index}" for index in range(len(backend.arm_calls))}

    await reconciler.delete_rule(rule_id)

    assert await handle_storage.get_primary_handles(rule_id) == []
    assert await handle_storage.get_followup_sets_for_rule(rule_id) == {}
    assert await ack_storage.get_acknowledged_keys(rule_id) == set()
    assert await pending_storage.get_all_pending() == []
    assert await rule_storage.get_rule(rule_id) is None
    assert issued <= set(backend.cancel_calls)
    assert "h-stale" in backend.cancel_calls
    assert backend.armed == {}
