"""Focus session state machine with breaks and offline sync.

A :class:`FocusSessionManager` owns the focus session held on this device.
Every transition first asks the session endpoint (the ``transport``) and
only mutates local state once the endpoint acknowledged it. Failed calls
are queued in an :class:`OfflineQueue` and replayed later with backoff.

A :class:`SessionTicker` drives the two periodic jobs, the 1 second display
refresh and the 60 second sync, from a single ``tick`` call so the session
only ever has one writer.
"""
import json
import logging
import math
import time
import uuid
from datetime import date, datetime

from study_tracker.db import get_connection, get_setting, set_setting
from study_tracker.models import Break, BreakType, FocusMetrics, FocusPhase, FocusSession, SessionStatus
from study_tracker.progress import round_half_up

logger = logging.getLogger(__name__)

MIN_FOCUS_DURATION = 25 * 60  # seconds
SHORT_BREAK_DURATION = 5 * 60
LONG_BREAK_DURATION = 15 * 60
SESSIONS_BEFORE_LONG_BREAK = 4

DISPLAY_INTERVAL = 1  # seconds
SYNC_INTERVAL = 60

MAX_SYNC_ATTEMPTS = 5
RETRY_BASE_DELAY = 30  # seconds
RETRY_MAX_DELAY = 60 * 60

# Each manual pause or skipped break costs this share of productivity
INTERRUPTION_PENALTY = 0.1


class SyncError(Exception):
    """The session endpoint could not be reached or rejected the request."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


def format_time(seconds) -> str:
    """Render seconds as ``HH:MM:SS``; negative or invalid input shows zero."""
    if not isinstance(seconds, (int, float)) or isinstance(seconds, bool) or math.isnan(seconds):
        return "00:00:00"
    seconds = int(max(0, seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def parse_time(text: str) -> int:
    """Inverse of :func:`format_time`."""
    parts = text.strip().split(":")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Expected HH:MM:SS, got {text!r}")
    hours, minutes, secs = (int(p) for p in parts)
    if minutes > 59 or secs > 59:
        raise ValueError(f"Expected HH:MM:SS, got {text!r}")
    return hours * 3600 + minutes * 60 + secs


def _break_ms(b: Break, now: int) -> int:
    return (b.end_time if b.end_time is not None else now) - b.start_time


def _paused_ms(session: FocusSession, now: int) -> int:
    paused = session.paused_duration
    if session.status is SessionStatus.PAUSED and session.paused_at is not None:
        paused += now - session.paused_at
    return paused


def calculate_remaining_time(session: FocusSession | None, now: int) -> int:
    """Seconds left in the current phase; frozen while paused."""
    if session is None or session.current_phase is None:
        return 0
    phase = session.current_phase
    reference = now
    if session.status is SessionStatus.PAUSED and session.paused_at is not None:
        reference = session.paused_at
    elapsed = (reference - phase.start_time) // 1000
    return max(0, phase.duration * 60 - elapsed - session.paused_duration // 1000)


def should_take_break(session: FocusSession | None, now: int) -> bool:
    if session is None or session.status is not SessionStatus.ACTIVE or session.skip_breaks:
        return False
    if session.breaks:
        last = session.breaks[-1]
        if last.is_open:
            return False
        since = now - last.end_time
    else:
        since = now - session.start_time
    return since >= MIN_FOCUS_DURATION * 1000


def get_break_duration(session: FocusSession) -> int:
    """Break length in seconds: every fourth timely break is a long one."""
    timely = sum(1 for b in session.breaks if b.was_timely)
    if timely > 0 and timely % SESSIONS_BEFORE_LONG_BREAK == 0:
        return LONG_BREAK_DURATION
    return SHORT_BREAK_DURATION


def get_break_type(session: FocusSession) -> BreakType:
    return BreakType.LONG if get_break_duration(session) == LONG_BREAK_DURATION else BreakType.SHORT


def calculate_final_metrics(session: FocusSession, now: int) -> FocusMetrics:
    break_ms = sum(_break_ms(b, now) for b in session.breaks)
    focus_seconds = max(0, (now - session.start_time - _paused_ms(session, now) - break_ms) // 1000)
    planned = session.duration * 60
    productivity = int(round_half_up(
        focus_seconds / planned * (1 - session.metrics.interruptions * INTERRUPTION_PENALTY) * 100
    )) if planned else 0
    return FocusMetrics(
        total_focus_time=focus_seconds,
        break_time=session.metrics.break_time,
        interruptions=session.metrics.interruptions,
        productivity=max(0, min(100, productivity)),
    )


class LocalSessionStore:
    """The session record and device id kept on this device."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def load(self) -> FocusSession | None:
        conn = get_connection(self.db_path)
        row = conn.execute("SELECT payload FROM local_session WHERE id = 1").fetchone()
        conn.close()
        if not row:
            return None
        try:
            return FocusSession.from_dict(json.loads(row["payload"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable local session: %s", e)
            self.clear()
            return None

    def save(self, session: FocusSession) -> None:
        conn = get_connection(self.db_path)
        conn.execute(
            "INSERT INTO local_session (id, payload) VALUES (1, ?) ON CONFLICT(id) DO UPDATE SET payload=excluded.payload",
            (json.dumps(session.to_dict()),),
        )
        conn.commit()
        conn.close()

    def clear(self) -> None:
        conn = get_connection(self.db_path)
        conn.execute("DELETE FROM local_session")
        conn.commit()
        conn.close()

    def get_device_id(self) -> str:
        device_id = get_setting(self.db_path, "device_id")
        if not device_id:
            device_id = str(uuid.uuid4())
            set_setting(self.db_path, "device_id", device_id)
        return device_id

    def set_device_id(self, device_id: str) -> None:
        set_setting(self.db_path, "device_id", device_id)


class OfflineQueue:
    """Persisted FIFO of session requests that still need to reach the endpoint.

    Failed replays are retried with exponential backoff. After
    ``max_attempts`` failures, or on a non-retryable rejection, an entry is
    moved to the dead letter table.
    """

    def __init__(self, db_path: str, max_attempts: int = MAX_SYNC_ATTEMPTS,
                 base_delay: int = RETRY_BASE_DELAY, max_delay: int = RETRY_MAX_DELAY):
        self.db_path = db_path
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def enqueue(self, payload: dict, now: int) -> None:
        action = payload["action"]
        conn = get_connection(self.db_path)
        if action == "sync":
            # Only the latest snapshot of a session is worth replaying
            for row in conn.execute("SELECT id, payload FROM offline_queue WHERE action = 'sync'").fetchall():
                if json.loads(row["payload"]).get("session_id") == payload.get("session_id"):
                    conn.execute("DELETE FROM offline_queue WHERE id = ?", (row["id"],))
        conn.execute(
            "INSERT INTO offline_queue (action, payload, queued_at, attempts, next_attempt_at) VALUES (?, ?, ?, 0, ?)",
            (action, json.dumps(payload), now, now),
        )
        conn.commit()
        conn.close()
        logger.info("Queued %s for later sync", action)

    def pending(self) -> list[dict]:
        conn = get_connection(self.db_path)
        rows = conn.execute("SELECT * FROM offline_queue ORDER BY id").fetchall()
        conn.close()
        return [dict(r, payload=json.loads(r["payload"])) for r in rows]

    def __len__(self) -> int:
        conn = get_connection(self.db_path)
        count = conn.execute("SELECT COUNT(*) FROM offline_queue").fetchone()[0]
        conn.close()
        return count

    def dead_letters(self) -> list[dict]:
        conn = get_connection(self.db_path)
        rows = conn.execute("SELECT * FROM dead_letters ORDER BY id").fetchall()
        conn.close()
        return [dict(r, payload=json.loads(r["payload"])) for r in rows]

    def retry_delay(self, attempts: int) -> int:
        """Backoff in seconds before the next attempt."""
        return min(self.max_delay, self.base_delay * 2 ** (attempts - 1))

    def flush(self, transport, now: int) -> int:
        """Replay due entries in order; returns how many were delivered."""
        delivered = 0
        for entry in self.pending():
            if entry["next_attempt_at"] > now:
                break
            try:
                transport(entry["payload"])
            except SyncError as e:
                self._record_failure(entry, e, now)
                if e.retryable:
                    break
                continue
            self._remove(entry["id"])
            delivered += 1
        if delivered:
            logger.info("Replayed %d queued session change(s)", delivered)
        return delivered

    def _remove(self, entry_id: int) -> None:
        conn = get_connection(self.db_path)
        conn.execute("DELETE FROM offline_queue WHERE id = ?", (entry_id,))
        conn.commit()
        conn.close()

    def _record_failure(self, entry: dict, error: SyncError, now: int) -> None:
        attempts = entry["attempts"] + 1
        conn = get_connection(self.db_path)
        if not error.retryable or attempts >= self.max_attempts:
            conn.execute(
                """INSERT INTO dead_letters (action, payload, queued_at, attempts, last_error, failed_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (entry["action"], json.dumps(entry["payload"]), entry["queued_at"], attempts, str(error), now),
            )
            conn.execute("DELETE FROM offline_queue WHERE id = ?", (entry["id"],))
            logger.error(
                "Giving up on queued %s after %d attempt(s): %s", entry["action"], attempts, error
            )
        else:
            conn.execute(
                "UPDATE offline_queue SET attempts = ?, next_attempt_at = ? WHERE id = ?",
                (attempts, now + self.retry_delay(attempts) * 1000, entry["id"]),
            )
            logger.warning("Replay of queued %s failed (attempt %d): %s", entry["action"], attempts, error)
        conn.commit()
        conn.close()


class FocusSessionManager:
    """Owns the focus session on this device.

    All transitions return ``True`` when applied and ``False`` otherwise;
    they never raise. ``transport`` is a callable taking the request payload
    and returning the endpoint's response, raising :class:`SyncError` on
    failure.
    """

    def __init__(self, transport, store: LocalSessionStore, queue: OfflineQueue, clock=time.time):
        self.transport = transport
        self.store = store
        self.queue = queue
        self.clock = clock
        self.session: FocusSession | None = None

    def now(self) -> int:
        return int(self.clock() * 1000)

    def _send(self, payload: dict, queue_on_failure: bool = True) -> dict | None:
        try:
            response = self.transport(payload)
        except SyncError as e:
            logger.error("Session %s failed: %s", payload["action"], e)
            if queue_on_failure and e.retryable:
                self.queue.enqueue(payload, self.now())
            return None
        if not isinstance(response, dict):
            logger.error("Session %s got an invalid response: %r", payload["action"], response)
            return None
        return response

    def _persist(self) -> None:
        if self.session is None:
            self.store.clear()
        else:
            self.store.save(self.session)

    def _require(self, action: str, *statuses: SessionStatus) -> bool:
        if self.session is None or self.session.id is None:
            logger.warning("Cannot %s: no focus session", action)
            return False
        if statuses and self.session.status not in statuses:
            logger.warning("Cannot %s while session is %s", action, self.session.status.value)
            return False
        return True

    def restore(self) -> bool:
        """Reload the session persisted on this device, if it is still valid."""
        session = self.store.load()
        if session is None:
            return False
        started = datetime.fromtimestamp(session.start_time / 1000).date()
        if started != date.fromtimestamp(self.now() / 1000):
            logger.info("Discarding focus session from %s", started.isoformat())
            self.store.clear()
            return False
        if session.device_id and session.device_id != self.store.get_device_id():
            logger.warning("Discarding focus session owned by device %s", session.device_id)
            self.store.clear()
            return False
        self.session = session
        return True

    def start(self, subject_id: int, phase_type: str, duration: int, skip_breaks: bool = False) -> bool:
        if self.session is not None:
            logger.warning("A focus session is already running")
            return False
        response = self._send({
            "action": "start",
            "subject_id": subject_id,
            "phase_type": phase_type,
            "duration": duration,
            "skip_breaks": skip_breaks,
            "timezone": datetime.now().astimezone().tzname(),
            "device_id": self.store.get_device_id(),
        }, queue_on_failure=False)
        if response is None:
            return False

        remote = response.get("focus_session")
        if not isinstance(remote, dict) or remote.get("id") is None:
            logger.error("Session start got no session id: %r", response)
            return False
        now = self.now()
        self.session = FocusSession(
            id=remote["id"],
            device_id=remote.get("device_id"),
            subject_id=subject_id,
            phase_type=phase_type,
            start_time=now,
            duration=duration,
            current_phase=FocusPhase(type=phase_type, start_time=now, duration=duration),
            skip_breaks=skip_breaks,
            last_sync_time=now,
        )
        if remote.get("device_id"):
            self.store.set_device_id(remote["device_id"])
        self._persist()
        logger.info("Started %s session %s for %d minutes", phase_type, remote["id"], duration)
        return True

    def pause(self) -> bool:
        if not self._require("pause", SessionStatus.ACTIVE):
            return False
        if self._send({"action": "pause", "session_id": self.session.id}) is None:
            return False
        self.session.status = SessionStatus.PAUSED
        self.session.paused_at = self.now()
        self.session.metrics.interruptions += 1
        self._persist()
        return True

    def resume(self) -> bool:
        if not self._require("resume", SessionStatus.PAUSED):
            return False
        if self.session.paused_at is None:
            logger.warning("Cannot resume: pause time unknown")
            return False
        if self._send({"action": "resume", "session_id": self.session.id}) is None:
            return False
        now = self.now()
        self.session.paused_duration += now - self.session.paused_at
        self.session.paused_at = None
        self.session.status = SessionStatus.ACTIVE
        self.session.last_sync_time = now
        self._persist()
        return True

    def start_break(self) -> bool:
        if not self._require("start a break", SessionStatus.ACTIVE):
            return False
        if self.session.current_break is not None:
            logger.warning("Cannot start a break: one is already running")
            return False
        break_type = get_break_type(self.session)
        payload = {"action": "start-break", "session_id": self.session.id, "break_type": break_type.value}
        if self._send(payload) is None:
            return False
        now = self.now()
        self.session.breaks.append(Break(start_time=now, type=break_type, was_timely=True))
        self.session.last_sync_time = now
        self._persist()
        return True

    def _close_break(self, action: str) -> Break | None:
        if not self._require(action, SessionStatus.ACTIVE):
            return None
        current = self.session.current_break
        if current is None:
            logger.warning("Cannot %s: no break in progress", action)
            return None
        payload = {"action": action, "session_id": self.session.id, "break_id": current.start_time}
        if self._send(payload) is None:
            return None
        now = self.now()
        current.end_time = now
        self.session.last_sync_time = now
        return current

    def end_break(self) -> bool:
        closed = self._close_break("end-break")
        if closed is None:
            return False
        self.session.metrics.break_time += (closed.end_time - closed.start_time) // 1000
        self._persist()
        return True

    def skip_break(self) -> bool:
        closed = self._close_break("skip-break")
        if closed is None:
            return False
        closed.was_timely = False
        self.session.metrics.interruptions += 1
        self._persist()
        return True

    def sync(self, force: bool = False) -> bool:
        """Push metrics, breaks and phase; skipped until SYNC_INTERVAL has passed."""
        if self.session is None or self.session.id is None:
            return False
        now = self.now()
        if not force and now - self.session.last_sync_time < SYNC_INTERVAL * 1000:
            return False
        self.queue.flush(self.transport, now)
        session = self.session.to_dict()
        payload = {
            "action": "sync",
            "session_id": self.session.id,
            "status": session["status"],
            "metrics": session["metrics"],
            "breaks": session["breaks"],
            "current_phase": session["current_phase"],
        }
        if self._send(payload) is None:
            return False
        self.session.last_sync_time = now
        self._persist()
        return True

    def reconnect(self) -> bool:
        """Connectivity came back: replay the queue and force a sync."""
        if self.session is None:
            return self.queue.flush(self.transport, self.now()) > 0
        return self.sync(force=True)

    def stop(self) -> bool:
        """End the session. Local state is cleared even if the endpoint fails."""
        if not self._require("stop"):
            return False
        now = self.now()
        metrics = calculate_final_metrics(self.session, now)
        session = self.session.to_dict()
        payload = {
            "action": "stop",
            "session_id": self.session.id,
            "metrics": {
                "total_focus_time": metrics.total_focus_time,
                "break_time": metrics.break_time,
                "interruptions": metrics.interruptions,
                "productivity": metrics.productivity,
            },
            "breaks": session["breaks"],
            "paused_duration": _paused_ms(self.session, now),
        }
        response = self._send(payload)
        self.session.metrics = metrics
        self.session.status = SessionStatus.COMPLETED
        self.session = None
        self._persist()
        if response is None:
            return False
        logger.info(
            "Focus session completed: %s focused, %d%% productivity",
            format_time(metrics.total_focus_time), metrics.productivity,
        )
        return True

    def remaining_time(self) -> int:
        return calculate_remaining_time(self.session, self.now())

    def should_take_break(self) -> bool:
        return should_take_break(self.session, self.now())


class SessionTicker:
    """Runs display refresh and periodic sync for one manager.

    ``tick`` may be called as often as convenient; each job only runs when
    its interval has elapsed.
    """

    def __init__(self, manager: FocusSessionManager, display_interval: int = DISPLAY_INTERVAL,
                 sync_interval: int = SYNC_INTERVAL):
        self.manager = manager
        self.display_interval = display_interval * 1000
        self.sync_interval = sync_interval * 1000
        self.display_time = 0
        self.break_due = False
        self._next_display = 0
        self._next_sync = 0

    def tick(self) -> int:
        now = self.manager.now()
        session = self.manager.session
        if session is None:
            self.display_time = 0
            self.break_due = False
            return self.display_time
        if session.status is SessionStatus.ACTIVE and now >= self._next_display:
            self.display_time = calculate_remaining_time(session, now)
            self.break_due = should_take_break(session, now)
            self._next_display = now + self.display_interval
        if now >= self._next_sync:
            self.manager.sync()
            self._next_sync = now + self.sync_interval
        return self.display_time

    def run(self, should_continue, sleep=time.sleep) -> None:
        """Tick until ``should_continue(ticker)`` returns False."""
        while self.manager.session is not None and should_continue(self):
            self.tick()
            sleep(self.display_interval / 1000)
