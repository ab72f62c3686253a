import pytest
from conftest import DAY, NOW, FakeClock, GatedProvider, drill, loan

from gearwatch.errors import SnapshotFetchFailure
from gearwatch.models import RefreshMode, SchedulerConfig
from gearwatch.session import MonitorSession


def _session(provider, timers, **kwargs):
    return MonitorSession(
        provider,
        clock=FakeClock(),
        scheduler_config=SchedulerConfig(interval_seconds=30, invalidation_delay_seconds=0.5),
        timer_factory=timers,
        **kwargs,
    )


def test_subscribe_activates_scheduler_once(provider, timers):
    session = _session(provider, timers)
    try:
        feed = session.subscribe_to_notifications("unread")
        session.subscribe_to_notifications()

        assert session.scheduler.active
        assert provider.calls == 1
        assert [n.id for n in feed] == ["overdue:C1"]
        assert session.get_aggregate_counters().unread_notifications == 1
    finally:
        session.stop()


def test_context_manager_starts_and_stops(provider, timers):
    with _session(provider, timers) as session:
        assert session.status()["active"] is True
        assert session.status()["notifications_available"] is True
    assert session.status()["active"] is False
    assert all(t.cancelled for t in timers.created)


def test_trigger_refresh_modes(provider, timers):
    with _session(provider, timers) as session:
        provider.fail = SnapshotFetchFailure("service down")

        assert session.trigger_refresh(RefreshMode.SILENT) is None
        assert session.trigger_refresh("silent") is None
        with pytest.raises(SnapshotFetchFailure):
            session.trigger_refresh("explicit")
        with pytest.raises(ValueError):
            session.trigger_refresh("loud")


def test_mutation_refresh_picks_up_new_loans(provider, timers):
    with _session(provider, timers) as session:
        feed = session.subscribe_to_notifications("due_soon")
        assert list(feed) == []

        provider.checkouts.append(loan("C2", due=NOW + DAY))
        session.notify_mutation()
        timers.pending(0.5)[0].fire()

        assert [n.id for n in feed] == ["due_soon:C2"]
        assert session.get_aggregate_counters().checked_out_equipment == 2


def test_read_state_operations(provider, timers):
    with _session(provider, timers) as session:
        assert session.mark_read("overdue:C1") is True
        assert session.get_aggregate_counters().unread_notifications == 0
        assert session.mark_unread("overdue:C1") is True
        assert session.mark_all_read() == 1
        assert session.dismiss("overdue:C1") is True
        assert session.dismiss("overdue:C1") is False

        session.notify_focus()
        assert list(session.store.snapshot()) == []


def test_sessions_do_not_share_state(timers):
    first = _session(GatedProvider([drill()], [loan()]), timers)
    second = _session(GatedProvider([drill()], [loan()]), timers)
    with first, second:
        first.mark_read("overdue:C1")

        assert first.store.get("overdue:C1").read is True
        assert second.store.get("overdue:C1").read is False


def test_explicit_refresh_without_start_runs_a_pass(provider, timers):
    session = _session(provider, timers)

    counters = session.trigger_refresh("explicit")
    assert counters.overdue_equipment == 1
    assert provider.calls == 1
    assert session.scheduler.active is False

    provider.fail = SnapshotFetchFailure("down")
    with pytest.raises(SnapshotFetchFailure):
        session.trigger_refresh("explicit")
    assert provider.calls == 2
    assert session.get_aggregate_counters() == counters
