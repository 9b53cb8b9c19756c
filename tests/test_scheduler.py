"""Unit tests for Scheduler: primary arming, follow-up bursts, snooze."""

from datetime import datetime, timedelta

from conftest import NOW, RecordingBackend

import medreminder.storage.ack as ack_storage
import medreminder.storage.handle as handle_storage
from medreminder.core.scheduler import Scheduler
from medreminder.datamodel import CustomInstants, Daily, NotificationKind, ReminderRule
from medreminder.metrics import runtime_metrics
from medreminder.notify.base import DisabledNotificationBackend
from medreminder.utils import occurrence_key


def _daily(*times):
    return ReminderRule(title="Pills", recurrence=Daily(times_of_day=list(times)))


# ============================================================================
# schedule
# ============================================================================


async def test_schedule_arms_primary_and_followups(db, backend, scheduler):
    rule = _daily("09:00", "21:00")

    handles = await scheduler.schedule(rule, NOW)

    primaries = [(i, p) for i, p in backend.arm_calls if p.kind == NotificationKind.PRIMARY]
    assert [i for i, _ in primaries] == [
        datetime(2024, 6, 12, 9, 0),
        datetime(2024, 6, 12, 21, 0),
        datetime(2024, 6, 13, 9, 0),
        datetime(2024, 6, 13, 21, 0),
    ]
    assert len(handles) == 4
    assert await handle_storage.get_primary_handles(rule.rule_id) == handles

    # only the 09:00 occurrence is inside the follow-up horizon
    sets = await handle_storage.get_followup_sets_for_rule(rule.rule_id)
    assert list(sets) == [occurrence_key(datetime(2024, 6, 12, 9, 0))]
    followups = [i for i, p in backend.arm_calls if p.kind == NotificationKind.FOLLOWUP]
    assert len(followups) == 72
    assert followups[0] == datetime(2024, 6, 12, 9, 5)
    assert followups[-1] == datetime(2024, 6, 12, 15, 0)


async def test_payload_carries_rule_and_occurrence(db, backend, scheduler):
    rule = ReminderRule(title="Pills", details="Two with water", recurrence=Daily(times_of_day=["09:00"]))

    await scheduler.schedule(rule, NOW)

    _, payload = backend.arm_calls[0]
    assert payload.title == "Reminder: Pills"
    assert payload.body == "Two with water"
    assert payload.rule_id == rule.rule_id
    assert payload.occurrence_key == occurrence_key(datetime(2024, 6, 12, 9, 0))
    assert payload.priority == "high"
    assert payload.hints.category == "TASK_REMINDER"


async def test_recent_past_occurrence_gets_remaining_followups(db, backend, scheduler):
    rule = _daily("07:00")

    handles = await scheduler.schedule(rule, NOW)

    # 07:00 today is past: no primary, but follow-ups after 08:00 are armed
    assert [i for i, p in backend.arm_calls if p.kind == NotificationKind.PRIMARY] == [
        datetime(2024, 6, 13, 7, 0),
        datetime(2024, 6, 14, 7, 0),
    ]
    assert len(handles) == 2
    followups = [i for i, p in backend.arm_calls if p.kind == NotificationKind.FOLLOWUP]
    assert len(followups) == 60
    assert min(followups) == datetime(2024, 6, 12, 8, 5)
    assert all(i > NOW for i in followups)


async def test_acknowledged_occurrence_gets_no_followups(db, backend, scheduler):
    rule = _daily("09:00")
    await ack_storage.add_acknowledgment(rule.rule_id, occurrence_key(datetime(2024, 6, 12, 9, 0)))

    await scheduler.schedule(rule, NOW)

    assert not [p for _, p in backend.arm_calls if p.kind == NotificationKind.FOLLOWUP]
    assert await handle_storage.get_followup_sets_for_rule(rule.rule_id) == {}


async def test_partial_failure_skips_only_failed_occurrence(db, clock):
    backend = RecordingBackend(fail_when=lambda index, instant, payload: index == 1)
    scheduler = Scheduler(backend, horizon_days=2, clock=clock)
    instants = [datetime(2024, 6, 20, 10 + n, 0) for n in range(5)]
    rule = ReminderRule(title="Doctor", recurrence=CustomInstants(instants=instants))

    handles = await scheduler.schedule(rule, NOW)

    assert len(handles) == 4
    assert [i for i, _ in backend.arm_calls] == instants
    armed = sorted(instant for instant, _ in backend.armed.values())
    assert armed == [instants[0], instants[2], instants[3], instants[4]]
    assert await handle_storage.get_primary_handles(rule.rule_id) == handles
    assert runtime_metrics.arm_failure_count == 1
    assert runtime_metrics.armed_count == 4


async def test_failed_primary_skips_its_followups(db, clock):
    backend = RecordingBackend(
        fail_when=lambda index, instant, payload: payload.kind == NotificationKind.PRIMARY
        and instant == datetime(2024, 6, 12, 9, 0)
    )
    scheduler = Scheduler(backend, horizon_days=2, clock=clock)

    handles = await scheduler.schedule(_daily("09:00"), NOW)

    assert len(handles) == 1
    assert not [p for _, p in backend.arm_calls if p.kind == NotificationKind.FOLLOWUP]


async def test_custom_instants_are_armed_past_recurring_horizon(db, backend, scheduler):
    far = NOW + timedelta(days=30)
    rule = ReminderRule(title="Refill", recurrence=CustomInstants(instants=[far, NOW - timedelta(days=1)]))

    handles = await scheduler.schedule(rule, NOW)

    assert len(handles) == 1
    assert backend.arm_calls[0][0] == far


async def test_disabled_backend_skips_all_arming(db, clock):
    scheduler = Scheduler(DisabledNotificationBackend(), clock=clock)
    rule = _daily("09:00")

    assert scheduler.enabled is False
    assert await scheduler.schedule(rule, NOW) == []
    assert await handle_storage.get_primary_handles(rule.rule_id) == []
    assert await scheduler.arm_followups(rule, datetime(2024, 6, 12, 9, 0), NOW) == []
    assert await scheduler.snooze(rule, occurrence_key(NOW), NOW) is None


# ============================================================================
# follow-ups
# ============================================================================


async def test_arm_followups_outside_horizon_returns_empty(db, backend, scheduler):
    rule = _daily("09:00")
    handles = await scheduler.arm_followups(rule, NOW - timedelta(hours=7), NOW)
    assert handles == []
    assert backend.arm_calls == []


async def test_arm_followups_replaces_existing_set(db, backend, scheduler):
    rule = _daily("09:00")
    instant = datetime(2024, 6, 12, 9, 0)

    first = await scheduler.arm_followups(rule, instant, NOW)
    second = await scheduler.arm_followups(rule, instant, NOW)

    assert set(first).isdisjoint(second)
    assert set(backend.cancel_calls) == set(first)
    assert await handle_storage.get_followup_handles(rule.rule_id, occurrence_key(instant)) == second


async def test_top_up_followups_arms_newly_eligible_occurrences(db, backend, scheduler):
    rule = _daily("09:00", "21:00")
    await scheduler.schedule(rule, NOW)

    later = datetime(2024, 6, 12, 16, 0)
    assert await scheduler.top_up_followups(rule, later) == 1
    assert await handle_storage.has_followup_handles(rule.rule_id, occurrence_key(datetime(2024, 6, 12, 21, 0)))
    assert await scheduler.top_up_followups(rule, later) == 0


# ============================================================================
# snooze / cancel / reschedule
# ============================================================================


async def test_snooze_appends_to_followup_set(db, backend, scheduler):
    rule = _daily("09:00")
    key = occurrence_key(datetime(2024, 6, 12, 9, 0))
    followups = await scheduler.arm_followups(rule, datetime(2024, 6, 12, 9, 0), NOW)

    handle = await scheduler.snooze(rule, key, NOW)

    instant, payload = backend.armed[handle]
    assert instant == NOW + timedelta(minutes=5)
    assert payload.kind == NotificationKind.SNOOZE
    assert await handle_storage.get_followup_handles(rule.rule_id, key) == followups + [handle]


async def test_cancel_absorbs_stale_handles(db, backend, scheduler):
    rule = _daily("09:00")
    handles = await scheduler.schedule(rule, NOW)

    cancelled = await scheduler.cancel(handles + ["unknown"])

    assert cancelled == len(handles)
    assert runtime_metrics.cancel_failure_count == 1


async def test_reschedule_cancels_old_handles_first(db, backend, scheduler):
    rule = _daily("09:00")
    old = await scheduler.schedule(rule, NOW)
    rule.recurrence = Daily(times_of_day=["10:00"])

    new = await scheduler.reschedule(rule, old, NOW)

    assert set(old) <= set(backend.cancel_calls)
    assert set(new).isdisjoint(old)
    assert await handle_storage.get_primary_handles(rule.rule_id) == new
