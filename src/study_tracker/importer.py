"""Syllabus import and full data export."""
import json
import logging
from datetime import datetime
from pathlib import Path

import yaml

from study_tracker.db import get_connection
from study_tracker.models import MAX_COUNT
from study_tracker.store import refresh_subject_progress

logger = logging.getLogger(__name__)

TOPIC_COUNTERS = ("revision_count", "practice_count", "test_count")


def _load_document(path: Path):
    suffix = path.suffix.lower()
    text = path.read_text()
    if suffix == ".json":
        return json.loads(text)
    elif suffix in (".yaml", ".yml"):
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path.name}: {e}") from e
    raise ValueError(f"Unsupported syllabus format: {suffix or path.name}")


def _normalize_topic(raw) -> dict:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict) or not str(raw.get("name", "")).strip():
        raise ValueError(f"Invalid topic entry: {raw!r}")
    topic = {
        "name": str(raw["name"]).strip(),
        "important": bool(raw.get("important", False)),
        "learning_status": bool(raw.get("learning_status", False)),
    }
    for counter in TOPIC_COUNTERS:
        topic[counter] = max(0, min(MAX_COUNT, int(raw.get(counter, 0) or 0)))
    topic["last_revised"] = raw.get("last_revised")
    topic["next_revision"] = raw.get("next_revision")
    return topic


def _normalize_chapter(raw) -> dict:
    if not isinstance(raw, dict) or not str(raw.get("name", "")).strip():
        raise ValueError(f"Invalid chapter entry: {raw!r}")
    return {
        "name": str(raw["name"]).strip(),
        "important": bool(raw.get("important", False)),
        "topics": [_normalize_topic(t) for t in raw.get("topics") or []],
    }


def _normalize_test(raw, subject_name: str) -> dict:
    try:
        scored, total = float(raw["marks_scored"]), float(raw["total_marks"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid test entry for {subject_name}: {raw!r}") from e
    if total <= 0 or not 0 <= scored <= total:
        raise ValueError(f"Invalid test marks for {subject_name}: {scored}/{total}")
    return {"marks_scored": scored, "total_marks": total, "created_at": raw.get("created_at")}


def _normalize_subject(raw) -> dict:
    if not isinstance(raw, dict) or not str(raw.get("name", "")).strip():
        raise ValueError(f"Invalid subject entry: {raw!r}")
    weightage = float(raw.get("weightage", 0) or 0)
    if weightage < 0:
        raise ValueError(f"Negative weightage for {raw['name']}")
    return {
        "name": str(raw["name"]).strip(),
        "weightage": weightage,
        "chapters": [_normalize_chapter(c) for c in raw.get("chapters") or []],
        "tests": [_normalize_test(t, raw["name"]) for t in raw.get("tests") or []],
    }


def parse_syllabus(data) -> list[dict]:
    """Validate a syllabus document (a ``subjects`` list, or the list itself)."""
    if isinstance(data, dict):
        data = data.get("subjects")
    if not isinstance(data, list):
        raise ValueError("Syllabus must contain a list of subjects")
    return [_normalize_subject(s) for s in data]


def read_syllabus(file_path: str) -> list[dict]:
    path = Path(file_path)
    if not path.exists():
        raise ValueError(f"File not found: {file_path}")
    return parse_syllabus(_load_document(path))


def import_subjects(db_path: str, subjects: list[dict]) -> dict:
    """Insert parsed subjects. Subjects whose name already exists are skipped."""
    counts = {"subjects": 0, "chapters": 0, "topics": 0, "tests": 0, "skipped": []}
    conn = get_connection(db_path)
    existing = {r["name"].lower() for r in conn.execute("SELECT name FROM subjects").fetchall()}
    position = conn.execute("SELECT COALESCE(MAX(position), -1) FROM subjects").fetchone()[0] + 1
    new_ids = []
    now = datetime.now().isoformat()
    for subject in subjects:
        if subject["name"].lower() in existing:
            logger.warning("Skipping existing subject %s", subject["name"])
            counts["skipped"].append(subject["name"])
            continue
        existing.add(subject["name"].lower())
        cur = conn.execute(
            "INSERT INTO subjects (name, weightage, position, created_at) VALUES (?, ?, ?, ?)",
            (subject["name"], subject["weightage"], position, now),
        )
        subject_id = cur.lastrowid
        new_ids.append(subject_id)
        position += 1
        counts["subjects"] += 1
        for ch_pos, chapter in enumerate(subject["chapters"]):
            cur = conn.execute(
                "INSERT INTO chapters (subject_id, name, important, position) VALUES (?, ?, ?, ?)",
                (subject_id, chapter["name"], int(chapter["important"]), ch_pos),
            )
            chapter_id = cur.lastrowid
            counts["chapters"] += 1
            for t_pos, topic in enumerate(chapter["topics"]):
                conn.execute(
                    """INSERT INTO topics
                    (chapter_id, name, important, learning_status, revision_count, practice_count,
                     test_count, position, last_revised, next_revision)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (chapter_id, topic["name"], int(topic["important"]), int(topic["learning_status"]),
                     topic["revision_count"], topic["practice_count"], topic["test_count"], t_pos,
                     topic["last_revised"], topic["next_revision"]),
                )
                counts["topics"] += 1
        for test in subject["tests"]:
            conn.execute(
                "INSERT INTO tests (subject_id, marks_scored, total_marks, score, created_at) VALUES (?, ?, ?, ?, ?)",
                (subject_id, test["marks_scored"], test["total_marks"],
                 test["marks_scored"] / test["total_marks"] * 100, test["created_at"] or now),
            )
            counts["tests"] += 1
    conn.commit()
    conn.close()

    for subject_id in new_ids:
        refresh_subject_progress(db_path, subject_id)
    logger.info(
        "Imported %d subjects, %d chapters, %d topics",
        counts["subjects"], counts["chapters"], counts["topics"],
    )
    return counts


def import_syllabus(db_path: str, file_path: str) -> dict:
    return import_subjects(db_path, read_syllabus(file_path))


def export_data(db_path: str) -> dict:
    """Everything needed to rebuild the tracker, as JSON-compatible data."""
    conn = get_connection(db_path)
    subjects = []
    for s in conn.execute("SELECT * FROM subjects ORDER BY position, id").fetchall():
        chapters = []
        for c in conn.execute(
            "SELECT * FROM chapters WHERE subject_id = ? ORDER BY position, id", (s["id"],)
        ).fetchall():
            topics = conn.execute(
                "SELECT * FROM topics WHERE chapter_id = ? ORDER BY position, id", (c["id"],)
            ).fetchall()
            chapters.append({
                "name": c["name"],
                "important": bool(c["important"]),
                "topics": [
                    {
                        "name": t["name"],
                        "important": bool(t["important"]),
                        "learning_status": bool(t["learning_status"]),
                        "revision_count": t["revision_count"],
                        "practice_count": t["practice_count"],
                        "test_count": t["test_count"],
                        "last_revised": t["last_revised"],
                        "next_revision": t["next_revision"],
                    }
                    for t in topics
                ],
            })
        tests = conn.execute(
            "SELECT marks_scored, total_marks, created_at FROM tests WHERE subject_id = ? ORDER BY id", (s["id"],)
        ).fetchall()
        subjects.append({
            "name": s["name"],
            "weightage": s["weightage"],
            "overall_progress": s["overall_progress"],
            "foundation_level": s["foundation_level"],
            "expected_marks": s["expected_marks"],
            "chapters": chapters,
            "tests": [dict(t) for t in tests],
        })

    sessions = []
    for row in conn.execute("SELECT * FROM focus_sessions WHERE status = 'completed' ORDER BY id").fetchall():
        session = dict(row)
        session["breaks"] = json.loads(session["breaks"] or "[]")
        session["metrics"] = json.loads(session["metrics"] or "{}")
        session["current_phase"] = json.loads(session["current_phase"]) if session["current_phase"] else None
        sessions.append(session)
    activities = [dict(r) for r in conn.execute("SELECT date, study_time, topics_count, tests_count FROM daily_activities ORDER BY date").fetchall()]
    streak = conn.execute("SELECT current_streak, longest_streak, last_study_date FROM study_streak WHERE id = 1").fetchone()
    settings = {
        r["key"]: r["value"]
        for r in conn.execute("SELECT key, value FROM user_settings WHERE key != 'device_id'").fetchall()
    }
    conn.close()
    return {
        "exported_at": datetime.now().isoformat(),
        "subjects": subjects,
        "focus_sessions": sessions,
        "daily_activities": activities,
        "study_streak": dict(streak) if streak else None,
        "settings": settings,
    }


def export_file(db_path: str, file_path: str) -> dict:
    """Write :func:`export_data` to ``file_path`` as JSON or YAML."""
    path = Path(file_path)
    data = export_data(db_path)
    if path.suffix.lower() in (".yaml", ".yml"):
        path.write_text(yaml.safe_dump(data, sort_keys=False))
    else:
        path.write_text(json.dumps(data, indent=2))
    logger.info("Exported %d subjects to %s", len(data["subjects"]), path)
    return {"filename": path.name, "subjects": len(data["subjects"]), "sessions": len(data["focus_sessions"])}
