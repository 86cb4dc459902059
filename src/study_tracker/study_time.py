"""Focus session endpoint backed by SQLite.

``handle_action`` accepts the same ``{"action": ..., "session_id": ...}``
payloads the focus session manager sends, and answers with
``{"success": True, "focus_session": {...}}``. Rejections raise
:class:`StudyTimeError` with an HTTP-like status code.
"""
import json
import logging
import sqlite3
import uuid
from datetime import date, datetime, timedelta

from study_tracker.db import get_connection

logger = logging.getLogger(__name__)

VALID_PHASES = ("learning", "revision", "practice", "test")


class StudyTimeError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def _session_dict(row) -> dict:
    data = dict(row)
    data["skip_breaks"] = bool(data["skip_breaks"])
    data["breaks"] = json.loads(data["breaks"] or "[]")
    data["metrics"] = json.loads(data["metrics"] or "{}")
    data["current_phase"] = json.loads(data["current_phase"]) if data["current_phase"] else None
    return data


def _get_session(conn, session_id):
    if session_id is None:
        raise StudyTimeError(400, "Missing session id")
    row = conn.execute("SELECT * FROM focus_sessions WHERE id = ?", (session_id,)).fetchone()
    if not row:
        raise StudyTimeError(404, "No session found")
    if row["status"] == "completed":
        raise StudyTimeError(409, "Session already completed")
    return row


def _fetch(conn, session_id) -> dict:
    return _session_dict(conn.execute("SELECT * FROM focus_sessions WHERE id = ?", (session_id,)).fetchone())


def _start(conn, payload: dict) -> dict:
    phase_type = payload.get("phase_type")
    duration = payload.get("duration")
    if phase_type not in VALID_PHASES:
        raise StudyTimeError(400, f"Invalid phase type: {phase_type}")
    if not isinstance(duration, int) or duration <= 0:
        raise StudyTimeError(400, "Duration must be a positive number of minutes")
    device_id = payload.get("device_id") or str(uuid.uuid4())
    now = datetime.now().isoformat()
    cur = conn.execute(
        """INSERT INTO focus_sessions
        (subject_id, phase_type, duration, skip_breaks, timezone, device_id, status, start_time, last_sync)
        VALUES (?, ?, ?, ?, ?, ?, 'active', ?, ?)""",
        (payload.get("subject_id"), phase_type, duration, int(bool(payload.get("skip_breaks"))),
         payload.get("timezone"), device_id, now, now),
    )
    return {"success": True, "focus_session": _fetch(conn, cur.lastrowid)}


def _pause(conn, payload: dict) -> dict:
    row = _get_session(conn, payload.get("session_id"))
    if row["status"] != "active":
        raise StudyTimeError(409, "Session is not active")
    conn.execute(
        "UPDATE focus_sessions SET status = 'paused', paused_at = ? WHERE id = ?",
        (datetime.now().isoformat(), row["id"]),
    )
    return {"success": True, "focus_session": _fetch(conn, row["id"])}


def _resume(conn, payload: dict) -> dict:
    row = _get_session(conn, payload.get("session_id"))
    if row["status"] != "paused":
        raise StudyTimeError(409, "Session is not paused")
    paused = 0
    if row["paused_at"]:
        paused = int((datetime.now() - datetime.fromisoformat(row["paused_at"])).total_seconds() * 1000)
    conn.execute(
        "UPDATE focus_sessions SET status = 'active', paused_at = NULL, paused_duration = ? WHERE id = ?",
        (row["paused_duration"] + paused, row["id"]),
    )
    return {"success": True, "focus_session": _fetch(conn, row["id"])}


def _start_break(conn, payload: dict) -> dict:
    row = _get_session(conn, payload.get("session_id"))
    conn.execute(
        "UPDATE focus_sessions SET break_count = break_count + 1 WHERE id = ?", (row["id"],)
    )
    return {"success": True, "focus_session": _fetch(conn, row["id"])}


def _close_break(conn, payload: dict) -> dict:
    row = _get_session(conn, payload.get("session_id"))
    return {"success": True, "focus_session": _fetch(conn, row["id"])}


def _sync(conn, payload: dict) -> dict:
    row = _get_session(conn, payload.get("session_id"))
    status = payload.get("status", row["status"])
    if status not in ("active", "paused"):
        raise StudyTimeError(400, f"Invalid status: {status}")
    conn.execute(
        """UPDATE focus_sessions SET status = ?, metrics = ?, breaks = ?, current_phase = ?, last_sync = ?
        WHERE id = ?""",
        (status, json.dumps(payload.get("metrics", {})), json.dumps(payload.get("breaks", [])),
         json.dumps(payload.get("current_phase")), datetime.now().isoformat(), row["id"]),
    )
    return {"success": True, "focus_session": _fetch(conn, row["id"])}


def update_streak(conn, today: date) -> int:
    streak = conn.execute("SELECT * FROM study_streak WHERE id = 1").fetchone()
    if not streak:
        conn.execute(
            "INSERT INTO study_streak (id, current_streak, longest_streak, last_study_date) VALUES (1, 1, 1, ?)",
            (today.isoformat(),),
        )
        return 1
    last = date.fromisoformat(streak["last_study_date"]) if streak["last_study_date"] else None
    if last == today:
        return streak["current_streak"]
    current = streak["current_streak"] + 1 if last == today - timedelta(days=1) else 1
    conn.execute(
        "UPDATE study_streak SET current_streak = ?, longest_streak = ?, last_study_date = ? WHERE id = 1",
        (current, max(streak["longest_streak"], current), today.isoformat()),
    )
    return current


def _stop(conn, payload: dict) -> dict:
    row = _get_session(conn, payload.get("session_id"))
    metrics = payload.get("metrics", {})
    conn.execute(
        """UPDATE focus_sessions SET status = 'completed', end_time = ?, paused_at = NULL,
        metrics = ?, breaks = ?, paused_duration = ? WHERE id = ?""",
        (datetime.now().isoformat(), json.dumps(metrics), json.dumps(payload.get("breaks", [])),
         payload.get("paused_duration", row["paused_duration"]), row["id"]),
    )
    today = date.today()
    minutes = round(metrics.get("total_focus_time", 0) / 60)
    conn.execute(
        """INSERT INTO daily_activities (date, study_time) VALUES (?, ?)
        ON CONFLICT(date) DO UPDATE SET study_time = study_time + ?""",
        (today.isoformat(), minutes, minutes),
    )
    current_streak = update_streak(conn, today)
    logger.info("Focus session %s completed: %d minute(s), streak %d", row["id"], minutes, current_streak)
    activity = conn.execute("SELECT * FROM daily_activities WHERE date = ?", (today.isoformat(),)).fetchone()
    return {
        "success": True,
        "focus_session": _fetch(conn, row["id"]),
        "daily_activity": dict(activity),
        "current_streak": current_streak,
    }


ACTIONS = {
    "start": _start,
    "pause": _pause,
    "resume": _resume,
    "start-break": _start_break,
    "end-break": _close_break,
    "skip-break": _close_break,
    "sync": _sync,
    "stop": _stop,
}


def handle_action(db_path: str, payload: dict) -> dict:
    handler = ACTIONS.get(payload.get("action"))
    if handler is None:
        raise StudyTimeError(400, "Invalid action")
    conn = get_connection(db_path)
    try:
        result = handler(conn, payload)
        conn.commit()
        return result
    except StudyTimeError as e:
        conn.rollback()
        logger.warning("Rejected %s: %s", payload.get("action"), e)
        raise
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_active_session(db_path: str) -> dict | None:
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT * FROM focus_sessions WHERE status != 'completed' ORDER BY id DESC LIMIT 1"
    ).fetchone()
    conn.close()
    return _session_dict(row) if row else None


def local_transport(db_path: str):
    """A transport for :class:`~study_tracker.focus.FocusSessionManager` that talks to this database."""
    from study_tracker.focus import SyncError

    def send(payload: dict) -> dict:
        try:
            return handle_action(db_path, payload)
        except StudyTimeError as e:
            raise SyncError(e.message, retryable=e.status >= 500) from e
        except sqlite3.Error as e:
            raise SyncError(str(e)) from e

    return send
