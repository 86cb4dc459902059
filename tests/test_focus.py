"""Tests for the focus session state machine, offline queue and ticker."""
import json
import logging
from datetime import datetime

import pytest

from study_tracker.db import init_db, get_connection
from study_tracker.focus import (
    LONG_BREAK_DURATION, SHORT_BREAK_DURATION, FocusSessionManager, LocalSessionStore,
    OfflineQueue, SessionTicker, SyncError, calculate_final_metrics, calculate_remaining_time, format_time,
    get_break_duration, parse_time, should_take_break,
)
from study_tracker.models import Break, BreakType, FocusPhase, FocusSession, SessionStatus
from study_tracker.store import add_subject
from study_tracker.study_time import local_transport

MINUTE = 60


class FakeClock:
    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SwitchableTransport:
    """Wraps the local endpoint; ``online = False`` simulates a dropped connection."""

    def __init__(self, inner):
        self.inner = inner
        self.online = True
        self.calls = []

    def __call__(self, payload: dict) -> dict:
        self.calls.append(payload["action"])
        if not self.online:
            raise SyncError("connection refused")
        return self.inner(payload)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 9, 0).timestamp())


@pytest.fixture
def subject_id(tmp_db):
    init_db(tmp_db)
    return add_subject(tmp_db, "Computer Networks", 9)


@pytest.fixture
def transport(tmp_db, subject_id):
    return SwitchableTransport(local_transport(tmp_db))


@pytest.fixture
def manager(tmp_db, transport, clock):
    return FocusSessionManager(transport, LocalSessionStore(tmp_db), OfflineQueue(tmp_db), clock=clock)


def make_session(start=0, duration=50, breaks=None, **overrides) -> FocusSession:
    return FocusSession(
        id=1, subject_id=1, phase_type="learning", start_time=start, duration=duration,
        current_phase=FocusPhase(type="learning", start_time=start, duration=duration),
        breaks=breaks or [], **overrides,
    )


# -- pure helpers --

@pytest.mark.parametrize("value", [None, float("nan"), -1, -3600, "12"])
def test_format_time_invalid_is_zero(value):
    assert format_time(value) == "00:00:00"


def test_format_time():
    assert format_time(0) == "00:00:00"
    assert format_time(59.9) == "00:00:59"
    assert format_time(3661) == "01:01:01"
    assert format_time(86399) == "23:59:59"


def test_format_time_round_trip():
    for seconds in list(range(0, 86400, 37)) + [86399]:
        text = format_time(seconds)
        assert format_time(parse_time(text)) == text
        assert parse_time(text) == seconds


@pytest.mark.parametrize("text", ["1:2", "aa:bb:cc", "00:61:00", ""])
def test_parse_time_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_time(text)


def test_break_duration_cadence():
    timely = [Break(start_time=i, end_time=i + 1) for i in range(4)]
    assert get_break_duration(make_session()) == SHORT_BREAK_DURATION
    assert get_break_duration(make_session(breaks=timely[:3])) == SHORT_BREAK_DURATION
    assert get_break_duration(make_session(breaks=timely)) == LONG_BREAK_DURATION
    assert get_break_duration(make_session(breaks=timely * 2)) == LONG_BREAK_DURATION


def test_skipped_breaks_do_not_count_toward_long_break():
    breaks = [Break(start_time=i, end_time=i + 1) for i in range(3)]
    breaks.append(Break(start_time=10, end_time=11, was_timely=False))
    assert get_break_duration(make_session(breaks=breaks)) == SHORT_BREAK_DURATION


def test_should_take_break():
    session = make_session(start=0)
    assert not should_take_break(session, 24 * MINUTE * 1000)
    assert should_take_break(session, 25 * MINUTE * 1000)
    assert not should_take_break(make_session(skip_breaks=True), 60 * MINUTE * 1000)
    assert not should_take_break(make_session(status=SessionStatus.PAUSED), 60 * MINUTE * 1000)
    assert not should_take_break(None, 0)


def test_should_take_break_counts_from_last_break_end():
    ended = make_session(breaks=[Break(start_time=25 * MINUTE * 1000, end_time=30 * MINUTE * 1000)])
    assert not should_take_break(ended, 50 * MINUTE * 1000)
    assert should_take_break(ended, 55 * MINUTE * 1000)
    on_break = make_session(breaks=[Break(start_time=25 * MINUTE * 1000)])
    assert not should_take_break(on_break, 90 * MINUTE * 1000)


def test_remaining_time():
    session = make_session(start=0, duration=50)
    assert calculate_remaining_time(session, 0) == 3000
    assert calculate_remaining_time(session, 600_000) == 2400
    assert calculate_remaining_time(session, 10 ** 9) == 0
    assert calculate_remaining_time(None, 0) == 0


def test_remaining_time_frozen_while_paused():
    session = make_session(start=0, status=SessionStatus.PAUSED, paused_at=600_000, paused_duration=60_000)
    assert calculate_remaining_time(session, 900_000) == 2340


def test_final_metrics_productivity_rounds_half_up():
    # 150 s of a 20 minute plan is exactly 12.5%
    assert calculate_final_metrics(make_session(start=0, duration=20), 150_000).productivity == 13
    assert calculate_final_metrics(make_session(start=0, duration=20), 750_000).productivity == 63


# -- manager transitions --

def test_start(manager, subject_id, tmp_db, clock):
    assert manager.start(subject_id, "learning", 50)
    session = manager.session
    assert session.id is not None
    assert session.status is SessionStatus.ACTIVE
    assert session.start_time == int(clock() * 1000)
    assert session.breaks == []
    assert session.metrics.interruptions == 0
    assert LocalSessionStore(tmp_db).load() == session
    assert session.device_id == LocalSessionStore(tmp_db).get_device_id()


def test_start_fails_without_mutation(manager, transport, subject_id):
    transport.online = False
    assert not manager.start(subject_id, "learning", 50)
    assert manager.session is None
    assert len(manager.queue) == 0


def test_start_rejects_second_session(manager, subject_id):
    assert manager.start(subject_id, "learning", 50)
    assert not manager.start(subject_id, "revision", 25)


@pytest.mark.parametrize("response", [None, {}, {"success": True}, {"focus_session": {"status": "active"}}])
def test_start_with_malformed_response_fails(tmp_db, clock, response):
    init_db(tmp_db)
    manager = FocusSessionManager(lambda payload: response, LocalSessionStore(tmp_db), OfflineQueue(tmp_db), clock=clock)
    assert not manager.start(1, "learning", 50)
    assert manager.session is None
    assert LocalSessionStore(tmp_db).load() is None
    assert len(manager.queue) == 0


def test_pause_with_malformed_response_is_not_applied(manager, transport, subject_id):
    manager.start(subject_id, "learning", 50)
    transport.inner = lambda payload: "ok"
    assert not manager.pause()
    assert manager.session.status is SessionStatus.ACTIVE
    assert manager.session.metrics.interruptions == 0


def test_pause_increments_interruptions(manager, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    clock.advance(10 * MINUTE)
    assert manager.pause()
    assert manager.session.status is SessionStatus.PAUSED
    assert manager.session.paused_at == int(clock() * 1000)
    assert manager.session.metrics.interruptions == 1
    assert not manager.pause()
    assert manager.session.metrics.interruptions == 1


def test_resume_accumulates_paused_time(manager, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    assert not manager.resume()
    manager.pause()
    clock.advance(5 * MINUTE)
    assert manager.resume()
    assert manager.session.status is SessionStatus.ACTIVE
    assert manager.session.paused_at is None
    assert manager.session.paused_duration == 5 * MINUTE * 1000


def test_transitions_without_session_fail(manager):
    assert not manager.pause()
    assert not manager.resume()
    assert not manager.start_break()
    assert not manager.end_break()
    assert not manager.skip_break()
    assert not manager.sync(force=True)
    assert not manager.stop()


def test_pause_offline_is_queued_and_not_applied(manager, transport, subject_id):
    manager.start(subject_id, "learning", 50)
    transport.online = False
    assert not manager.pause()
    assert manager.session.status is SessionStatus.ACTIVE
    assert manager.session.metrics.interruptions == 0
    assert [e["action"] for e in manager.queue.pending()] == ["pause"]


def test_break_cycle(manager, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    clock.advance(25 * MINUTE)
    assert manager.should_take_break()
    assert manager.start_break()
    assert manager.session.current_break.type is BreakType.SHORT
    assert not manager.start_break()
    clock.advance(5 * MINUTE)
    assert manager.end_break()
    assert manager.session.current_break is None
    assert manager.session.metrics.break_time == 5 * MINUTE
    assert not manager.end_break()


def test_skip_break(manager, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    for _ in range(3):
        manager.start_break()
        clock.advance(MINUTE)
        manager.end_break()
    manager.start_break()
    assert manager.skip_break()
    last = manager.session.breaks[-1]
    assert last.was_timely is False
    assert last.end_time is not None
    assert manager.session.metrics.interruptions == 1
    # skipped break does not count towards the long break
    assert get_break_duration(manager.session) == SHORT_BREAK_DURATION
    manager.start_break()
    manager.end_break()
    assert get_break_duration(manager.session) == LONG_BREAK_DURATION
    manager.start_break()
    assert manager.session.current_break.type is BreakType.LONG


def test_stop_computes_final_metrics(manager, subject_id, clock, tmp_db):
    manager.start(subject_id, "learning", 50)
    session_id = manager.session.id
    clock.advance(10 * MINUTE)
    manager.pause()
    clock.advance(5 * MINUTE)
    manager.resume()
    clock.advance(15 * MINUTE)
    manager.start_break()
    clock.advance(5 * MINUTE)
    manager.end_break()
    clock.advance(20 * MINUTE)

    session = manager.session
    assert manager.stop()
    assert manager.session is None
    assert LocalSessionStore(tmp_db).load() is None
    assert session.status is SessionStatus.COMPLETED
    assert session.metrics.total_focus_time == 45 * MINUTE
    assert session.metrics.break_time == 5 * MINUTE
    assert session.metrics.interruptions == 1
    assert session.metrics.productivity == 81

    conn = get_connection(tmp_db)
    row = conn.execute("SELECT * FROM focus_sessions WHERE id = ?", (session_id,)).fetchone()
    activity = conn.execute("SELECT * FROM daily_activities").fetchone()
    conn.close()
    assert row["status"] == "completed"
    assert json.loads(row["metrics"])["total_focus_time"] == 45 * MINUTE
    assert row["paused_duration"] == 5 * MINUTE * 1000
    assert activity["study_time"] == 45


def test_stop_counts_open_break_and_clamps_productivity(manager, subject_id, clock):
    manager.start(subject_id, "learning", 25)
    clock.advance(60 * MINUTE)
    manager.start_break()
    clock.advance(10 * MINUTE)
    session = manager.session
    assert manager.stop()
    assert session.metrics.total_focus_time == 60 * MINUTE
    assert session.metrics.productivity == 100


def test_stop_offline_clears_local_state_and_queues(manager, transport, subject_id, tmp_db, clock):
    manager.start(subject_id, "practice", 30)
    clock.advance(30 * MINUTE)
    transport.online = False
    assert not manager.stop()
    assert manager.session is None
    assert LocalSessionStore(tmp_db).load() is None
    queued = manager.queue.pending()
    assert [e["action"] for e in queued] == ["stop"]
    assert queued[0]["payload"]["metrics"]["total_focus_time"] == 30 * MINUTE

    transport.online = True
    assert manager.reconnect()
    assert len(manager.queue) == 0
    conn = get_connection(tmp_db)
    assert conn.execute("SELECT status FROM focus_sessions").fetchone()["status"] == "completed"
    conn.close()


def test_sync_waits_for_interval(manager, transport, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    assert not manager.sync()
    clock.advance(61)
    assert manager.sync()
    assert transport.calls.count("sync") == 1
    assert manager.sync(force=True)
    assert manager.session.last_sync_time == int(clock() * 1000)


def test_sync_offline_coalesces_queued_snapshots(manager, transport, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    transport.online = False
    assert not manager.sync(force=True)
    clock.advance(61)
    assert not manager.sync()
    pending = manager.queue.pending()
    assert [e["action"] for e in pending] == ["sync"]

    transport.online = True
    clock.advance(61)
    assert manager.sync()
    assert len(manager.queue) == 0


# -- offline queue --

def test_queue_backoff_then_dead_letter(tmp_db, caplog):
    init_db(tmp_db)
    queue = OfflineQueue(tmp_db, max_attempts=3, base_delay=30, max_delay=45)
    calls = []

    def down(payload):
        calls.append(payload)
        raise SyncError("server unavailable")

    queue.enqueue({"action": "pause", "session_id": 1}, now=0)
    assert queue.flush(down, now=0) == 0
    entry = queue.pending()[0]
    assert entry["attempts"] == 1
    assert entry["next_attempt_at"] == 30_000

    queue.flush(down, now=10_000)
    assert len(calls) == 1

    queue.flush(down, now=30_000)
    assert queue.pending()[0]["next_attempt_at"] == 30_000 + 45_000

    with caplog.at_level(logging.ERROR, logger="study_tracker.focus"):
        queue.flush(down, now=80_000)
    assert len(queue) == 0
    dead = queue.dead_letters()
    assert len(dead) == 1
    assert dead[0]["attempts"] == 3
    assert dead[0]["last_error"] == "server unavailable"
    assert "Giving up" in caplog.text


def test_queue_rejected_entries_dead_letter_immediately(tmp_db):
    init_db(tmp_db)
    queue = OfflineQueue(tmp_db)
    delivered = []

    def transport(payload):
        if payload["session_id"] == 1:
            raise SyncError("No session found", retryable=False)
        delivered.append(payload["session_id"])
        return {"success": True}

    queue.enqueue({"action": "pause", "session_id": 1}, now=0)
    queue.enqueue({"action": "pause", "session_id": 2}, now=0)
    assert queue.flush(transport, now=0) == 1
    assert delivered == [2]
    assert len(queue) == 0
    assert queue.dead_letters()[0]["payload"]["session_id"] == 1


def test_queue_replays_in_order_and_stops_at_failure(tmp_db):
    init_db(tmp_db)
    queue = OfflineQueue(tmp_db)
    seen = []

    def transport(payload):
        seen.append(payload["action"])
        if payload["action"] == "resume":
            raise SyncError("timeout")
        return {"success": True}

    for action in ("pause", "resume", "stop"):
        queue.enqueue({"action": action, "session_id": 1}, now=0)
    assert queue.flush(transport, now=0) == 1
    assert seen == ["pause", "resume"]
    assert [e["action"] for e in queue.pending()] == ["resume", "stop"]


# -- restore --

def test_restore_same_day_same_device(manager, subject_id, tmp_db, transport, clock):
    manager.start(subject_id, "learning", 50)
    manager.pause()
    again = FocusSessionManager(transport, LocalSessionStore(tmp_db), OfflineQueue(tmp_db), clock=clock)
    assert again.restore()
    assert again.session == manager.session


def test_restore_discards_other_device(manager, subject_id, tmp_db, transport, clock):
    manager.start(subject_id, "learning", 50)
    store = LocalSessionStore(tmp_db)
    store.set_device_id("someone-elses-phone")
    again = FocusSessionManager(transport, store, OfflineQueue(tmp_db), clock=clock)
    assert not again.restore()
    assert again.session is None
    assert store.load() is None


def test_restore_discards_yesterdays_session(manager, subject_id, tmp_db, transport, clock):
    manager.start(subject_id, "learning", 50)
    clock.advance(24 * 60 * MINUTE)
    again = FocusSessionManager(transport, LocalSessionStore(tmp_db), OfflineQueue(tmp_db), clock=clock)
    assert not again.restore()
    assert LocalSessionStore(tmp_db).load() is None


def test_restore_nothing_saved(manager):
    assert not manager.restore()


# -- ticker --

def test_ticker_drives_display_and_sync(manager, transport, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    ticker = SessionTicker(manager)
    assert ticker.tick() == 3000
    clock.advance(30)
    assert ticker.tick() == 2970
    assert transport.calls.count("sync") == 0
    clock.advance(31)
    ticker.tick()
    assert transport.calls.count("sync") == 1
    clock.advance(1)
    ticker.tick()
    assert transport.calls.count("sync") == 1


def test_ticker_freezes_display_while_paused(manager, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    ticker = SessionTicker(manager)
    clock.advance(10)
    ticker.tick()
    manager.pause()
    clock.advance(120)
    assert ticker.tick() == 2990


def test_ticker_flags_break_due(manager, subject_id, clock):
    manager.start(subject_id, "learning", 50)
    ticker = SessionTicker(manager)
    clock.advance(25 * MINUTE)
    ticker.tick()
    assert ticker.break_due


def test_ticker_without_session(manager):
    assert SessionTicker(manager).tick() == 0


def test_ticker_run_uses_injected_sleep(manager, subject_id, clock):
    manager.start(subject_id, "learning", 1)
    ticker = SessionTicker(manager)
    ticker.run(lambda t: t.display_time != 0 or clock() == manager.session.start_time / 1000,
               sleep=clock.advance)
    assert ticker.display_time == 0
