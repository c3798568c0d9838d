import pytest

from pitchup import (
    ActiveHoursConfig, ActiveHoursPolicy, EventBus, InMemoryStore, ManualClock, PromptFired, PromptSchedule,
    Scheduler, SchedulerConfig
)

from conftest import FixedRandom, local_ts


def make_scheduler(clock, fraction=0.5, store=None, on_fire=None, event_bus=None):
    random_source = FixedRandom(fraction)
    return Scheduler(
        user_id="u1",
        clock=clock,
        policy=ActiveHoursPolicy(random_source=random_source),
        config=SchedulerConfig(),
        random_source=random_source,
        store=store,
        event_bus=event_bus,
        on_fire=on_fire
    )


def test_arm_delay_within_bounds_when_eligible(clock, t0):
    scheduler = make_scheduler(clock, fraction=0.5)
    next_fire_at = scheduler.arm()
    assert next_fire_at - t0 == pytest.approx(6300.0)
    assert clock.pending_count() == 1


def test_arm_delay_properties():
    config = SchedulerConfig()
    for fraction in (0.0, 0.25, 0.5, 0.75, 1.0):
        for hour in range(24):
            now = local_ts(hour=hour, minute=20)
            scheduler = make_scheduler(ManualClock(start=now), fraction=fraction)
            delay = scheduler.arm() - now
            candidate = now + config.min_delay_sec + fraction * (config.max_delay_sec - config.min_delay_sec)

            assert delay >= config.min_delay_sec
            if scheduler.policy.is_eligible(candidate):
                assert config.min_delay_sec <= delay <= config.max_delay_sec
            assert scheduler.policy.is_eligible(scheduler.next_fire_at)


def test_arm_clipped_to_next_morning():
    now = local_ts(hour=21)
    scheduler = make_scheduler(ManualClock(start=now), fraction=0.5)
    assert scheduler.arm() == local_ts(day=7, hour=9)


def test_rearm_replaces_outstanding_timer(clock, t0):
    scheduler = make_scheduler(clock)
    first = scheduler.arm(t0)
    scheduler.arm(t0 + 600)
    assert clock.pending_count() == 1

    fired = []
    scheduler.on_fire = fired.append
    clock.advance_to(first)
    assert fired == []


def test_fires_once_and_rearms_from_firing_time(clock, t0):
    fired = []
    bus = EventBus()
    published = []
    bus.subscribe(PromptFired, published.append)
    scheduler = make_scheduler(clock, on_fire=fired.append, event_bus=bus)

    target = scheduler.arm()
    clock.advance_to(target)

    assert len(fired) == 1
    assert fired[0].fired_at == target
    assert fired[0].source == "timer"
    assert published == fired
    assert scheduler.next_fire_at == pytest.approx(target + 6300.0)
    assert clock.pending_count() == 1


def test_schedule_is_persisted(clock):
    store = InMemoryStore()
    scheduler = make_scheduler(clock, store=store)
    next_fire_at = scheduler.arm()

    stored = store.load_schedule("u1")
    assert stored.next_fire_at == next_fire_at
    assert stored.active_hours == (8, 22)
    assert stored.min_interval_sec == 1800.0


def test_check_overdue_fires_exactly_once(clock):
    fired = []
    scheduler = make_scheduler(clock, on_fire=fired.append)
    target = scheduler.arm()

    # Host suspended: the timer never got to run
    clock.set(target + 600)
    assert scheduler.check_overdue() is True
    assert scheduler.check_overdue() is False
    assert scheduler.check_overdue() is False

    clock.advance(1)
    assert len(fired) == 1
    assert fired[0].source == "overdue"
    assert fired[0].scheduled_for == target


def test_check_overdue_before_due(clock, t0):
    scheduler = make_scheduler(clock)
    assert scheduler.check_overdue() is False
    scheduler.arm()
    assert scheduler.check_overdue(t0 + 60) is False


def test_resume_restores_stored_schedule(clock, t0):
    store = InMemoryStore()
    store.upsert_schedule(PromptSchedule("u1", t0 + 900, 1800.0, (8, 22), t0 - 900))

    scheduler = make_scheduler(clock, store=store)
    assert scheduler.resume() == t0 + 900
    assert scheduler.fire_count == 0


def test_resume_fires_overdue_schedule(clock, t0):
    store = InMemoryStore()
    store.upsert_schedule(PromptSchedule("u1", t0 - 60, 1800.0, (8, 22), t0 - 4000))
    fired = []

    scheduler = make_scheduler(clock, store=store, on_fire=fired.append)
    next_fire_at = scheduler.resume()

    assert len(fired) == 1
    assert next_fire_at > t0


def make_scheduler_for_hours(clock, store, start_hour, end_hour):
    random_source = FixedRandom(0.5)
    return Scheduler(
        user_id="u1",
        clock=clock,
        policy=ActiveHoursPolicy(ActiveHoursConfig(start_hour=start_hour, end_hour=end_hour), random_source),
        random_source=random_source,
        store=store
    )


def test_resume_rearms_schedule_outside_new_active_hours(clock, t0):
    store = InMemoryStore()
    store.upsert_schedule(PromptSchedule("u1", local_ts(day=7, hour=8, minute=30), 1800.0, (8, 22), t0 - 900))

    scheduler = make_scheduler_for_hours(clock, store, 9, 22)
    next_fire_at = scheduler.resume()

    assert next_fire_at == pytest.approx(t0 + 6300.0)
    assert scheduler.policy.is_eligible(next_fire_at)
    assert store.load_schedule("u1").active_hours == (9, 22)
    assert scheduler.fire_count == 0
    assert clock.pending_count() == 1


def test_resume_rearms_when_active_hours_changed(clock, t0):
    store = InMemoryStore()
    store.upsert_schedule(PromptSchedule("u1", t0 + 900, 1800.0, (8, 22), t0 - 900))

    scheduler = make_scheduler_for_hours(clock, store, 9, 21)
    assert scheduler.resume() == pytest.approx(t0 + 6300.0)
    assert store.load_schedule("u1").active_hours == (9, 21)


def test_fire_now_rearms(clock, t0):
    fired = []
    scheduler = make_scheduler(clock, on_fire=fired.append)
    scheduler.arm()
    assert scheduler.fire_now() == pytest.approx(t0 + 6300.0)
    assert fired[0].source == "manual"
    assert clock.pending_count() == 1


def test_consumer_failure_still_rearms(clock):
    def broken(event):
        raise RuntimeError("consumer failed")

    scheduler = make_scheduler(clock, on_fire=broken)
    target = scheduler.arm()
    with pytest.raises(RuntimeError):
        clock.advance_to(target)
    assert scheduler.next_fire_at > target


def test_cancel_drops_timer(clock):
    scheduler = make_scheduler(clock)
    scheduler.arm()
    scheduler.cancel()
    assert scheduler.next_fire_at is None
    assert clock.pending_count() == 0
