"""Subjects, chapters, topics and tests persisted in SQLite."""
import logging
from datetime import date, datetime, timedelta

from study_tracker.db import get_connection
from study_tracker.models import (
    Category, Chapter, FoundationLevel, MAX_COUNT, Subject, Test, Topic,
)
from study_tracker.progress import calculate_chapter_progress, calculate_subject_progress

logger = logging.getLogger(__name__)

# Days until the next revision, indexed by the revision count just reached
REVISION_INTERVALS = {1: 1, 2: 3, 3: 7}


def _topic_from_row(row) -> Topic:
    return Topic(
        id=row["id"],
        name=row["name"],
        important=bool(row["important"]),
        learning_status=bool(row["learning_status"]),
        revision_count=row["revision_count"],
        practice_count=row["practice_count"],
        test_count=row["test_count"],
        position=row["position"],
        last_revised=row["last_revised"],
        next_revision=row["next_revision"],
    )


def _chapter_from_row(row, topics) -> Chapter:
    return Chapter(
        id=row["id"],
        name=row["name"],
        topics=topics,
        important=bool(row["important"]),
        position=row["position"],
        learning_progress=row["learning_progress"],
        revision_progress=row["revision_progress"],
        practice_progress=row["practice_progress"],
        test_progress=row["test_progress"],
        overall_progress=row["overall_progress"],
    )


def _test_from_row(row) -> Test:
    return Test(
        id=row["id"],
        marks_scored=row["marks_scored"],
        total_marks=row["total_marks"],
        created_at=row["created_at"],
    )


def _load_chapters(conn, subject_id: int) -> list[Chapter]:
    chapters = []
    rows = conn.execute(
        "SELECT * FROM chapters WHERE subject_id = ? ORDER BY position, id", (subject_id,)
    ).fetchall()
    for row in rows:
        topics = conn.execute(
            "SELECT * FROM topics WHERE chapter_id = ? ORDER BY position, id", (row["id"],)
        ).fetchall()
        chapters.append(_chapter_from_row(row, [_topic_from_row(t) for t in topics]))
    return chapters


def _subject_from_row(conn, row) -> Subject:
    tests = conn.execute(
        "SELECT * FROM tests WHERE subject_id = ? ORDER BY created_at, id", (row["id"],)
    ).fetchall()
    return Subject(
        id=row["id"],
        name=row["name"],
        weightage=row["weightage"],
        chapters=_load_chapters(conn, row["id"]),
        tests=[_test_from_row(t) for t in tests],
        position=row["position"],
        learning_progress=row["learning_progress"],
        revision_progress=row["revision_progress"],
        practice_progress=row["practice_progress"],
        test_progress=row["test_progress"],
        overall_progress=row["overall_progress"],
        foundation_level=FoundationLevel(row["foundation_level"]),
        expected_marks=row["expected_marks"],
    )


def load_subjects(db_path: str) -> list[Subject]:
    conn = get_connection(db_path)
    rows = conn.execute("SELECT * FROM subjects ORDER BY position, id").fetchall()
    subjects = [_subject_from_row(conn, row) for row in rows]
    conn.close()
    return subjects


def load_subject(db_path: str, subject_id: int) -> Subject | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM subjects WHERE id = ?", (subject_id,)).fetchone()
    subject = _subject_from_row(conn, row) if row else None
    conn.close()
    return subject


def get_topic(db_path: str, topic_id: int) -> Topic | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM topics WHERE id = ?", (topic_id,)).fetchone()
    conn.close()
    return _topic_from_row(row) if row else None


def _next_position(conn, table: str, parent_column: str | None = None, parent_id: int | None = None) -> int:
    if parent_column:
        row = conn.execute(
            f"SELECT COALESCE(MAX(position), -1) FROM {table} WHERE {parent_column} = ?", (parent_id,)
        ).fetchone()
    else:
        row = conn.execute(f"SELECT COALESCE(MAX(position), -1) FROM {table}").fetchone()
    return row[0] + 1


def add_subject(db_path: str, name: str, weightage: float = 0) -> int:
    if not name or not name.strip():
        raise ValueError("Subject name is required")
    if weightage < 0:
        raise ValueError("Weightage cannot be negative")
    conn = get_connection(db_path)
    cur = conn.execute(
        "INSERT INTO subjects (name, weightage, position, created_at) VALUES (?, ?, ?, ?)",
        (name.strip(), weightage, _next_position(conn, "subjects"), datetime.now().isoformat()),
    )
    conn.commit()
    conn.close()
    return cur.lastrowid


def add_chapter(db_path: str, subject_id: int, name: str, important: bool = False) -> int:
    if not name or not name.strip():
        raise ValueError("Chapter name is required")
    conn = get_connection(db_path)
    if not conn.execute("SELECT 1 FROM subjects WHERE id = ?", (subject_id,)).fetchone():
        conn.close()
        raise ValueError(f"Unknown subject: {subject_id}")
    cur = conn.execute(
        "INSERT INTO chapters (subject_id, name, important, position) VALUES (?, ?, ?, ?)",
        (subject_id, name.strip(), int(important), _next_position(conn, "chapters", "subject_id", subject_id)),
    )
    _refresh_subject(conn, subject_id)
    conn.commit()
    conn.close()
    return cur.lastrowid


def add_topic(db_path: str, chapter_id: int, name: str, important: bool = False) -> int:
    if not name or not name.strip():
        raise ValueError("Topic name is required")
    conn = get_connection(db_path)
    chapter = conn.execute("SELECT subject_id FROM chapters WHERE id = ?", (chapter_id,)).fetchone()
    if not chapter:
        conn.close()
        raise ValueError(f"Unknown chapter: {chapter_id}")
    cur = conn.execute(
        "INSERT INTO topics (chapter_id, name, important, position) VALUES (?, ?, ?, ?)",
        (chapter_id, name.strip(), int(important), _next_position(conn, "topics", "chapter_id", chapter_id)),
    )
    _refresh_chapter(conn, chapter_id)
    _refresh_subject(conn, chapter["subject_id"])
    conn.commit()
    conn.close()
    return cur.lastrowid


def add_test(db_path: str, subject_id: int, marks_scored: float, total_marks: float) -> int:
    if total_marks <= 0:
        raise ValueError("Total marks must be positive")
    if marks_scored < 0 or marks_scored > total_marks:
        raise ValueError("Marks scored must be between 0 and total marks")
    conn = get_connection(db_path)
    if not conn.execute("SELECT 1 FROM subjects WHERE id = ?", (subject_id,)).fetchone():
        conn.close()
        raise ValueError(f"Unknown subject: {subject_id}")
    cur = conn.execute(
        "INSERT INTO tests (subject_id, marks_scored, total_marks, score, created_at) VALUES (?, ?, ?, ?, ?)",
        (subject_id, marks_scored, total_marks, marks_scored / total_marks * 100, datetime.now().isoformat()),
    )
    _bump_daily_activity(conn, "tests_count")
    _refresh_subject(conn, subject_id)
    conn.commit()
    conn.close()
    return cur.lastrowid


def set_weightage(db_path: str, subject_id: int, weightage: float) -> None:
    if weightage < 0:
        raise ValueError("Weightage cannot be negative")
    conn = get_connection(db_path)
    conn.execute("UPDATE subjects SET weightage = ? WHERE id = ?", (weightage, subject_id))
    _refresh_subject(conn, subject_id)
    conn.commit()
    conn.close()


def reorder_subjects(db_path: str, subject_ids: list[int]) -> None:
    conn = get_connection(db_path)
    for position, subject_id in enumerate(subject_ids):
        conn.execute("UPDATE subjects SET position = ? WHERE id = ?", (position, subject_id))
    conn.commit()
    conn.close()


def _apply_progress(topic: Topic, category: Category, today: date) -> dict:
    """Column updates for one recorded unit of progress."""
    if category is Category.LEARNING:
        return {"learning_status": 1}
    if category is Category.REVISION:
        count = min(MAX_COUNT, topic.revision_count + 1)
        return {
            "revision_count": count,
            "last_revised": today.isoformat(),
            "next_revision": (today + timedelta(days=REVISION_INTERVALS[count])).isoformat(),
        }
    if category is Category.PRACTICE:
        return {"practice_count": min(MAX_COUNT, topic.practice_count + 1)}
    return {"test_count": min(MAX_COUNT, topic.test_count + 1)}


def record_topic_progress(db_path: str, topic_id: int, category, today: date | None = None) -> Topic:
    """Mark one more unit of ``category`` done on a topic; counters stop at 3."""
    try:
        category = Category(category)
    except ValueError:
        raise ValueError(f"Invalid progress type: {category}") from None
    today = today or date.today()
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT t.*, c.subject_id FROM topics t JOIN chapters c ON t.chapter_id = c.id WHERE t.id = ?",
        (topic_id,),
    ).fetchone()
    if not row:
        conn.close()
        raise ValueError(f"Unknown topic: {topic_id}")

    updates = _apply_progress(_topic_from_row(row), category, today)
    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(f"UPDATE topics SET {assignments} WHERE id = ?", (*updates.values(), topic_id))
    _bump_daily_activity(conn, "topics_count", today)
    _refresh_chapter(conn, row["chapter_id"])
    _refresh_subject(conn, row["subject_id"])
    conn.commit()
    topic = _topic_from_row(conn.execute("SELECT * FROM topics WHERE id = ?", (topic_id,)).fetchone())
    conn.close()
    logger.debug("Recorded %s progress on topic %s", category.value, topic_id)
    return topic


def toggle_learning(db_path: str, topic_id: int) -> Topic:
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT t.*, c.subject_id FROM topics t JOIN chapters c ON t.chapter_id = c.id WHERE t.id = ?",
        (topic_id,),
    ).fetchone()
    if not row:
        conn.close()
        raise ValueError(f"Unknown topic: {topic_id}")
    conn.execute(
        "UPDATE topics SET learning_status = ? WHERE id = ?",
        (0 if row["learning_status"] else 1, topic_id),
    )
    _refresh_chapter(conn, row["chapter_id"])
    _refresh_subject(conn, row["subject_id"])
    conn.commit()
    topic = _topic_from_row(conn.execute("SELECT * FROM topics WHERE id = ?", (topic_id,)).fetchone())
    conn.close()
    return topic


def _bump_daily_activity(conn, column: str, day: date | None = None) -> None:
    day = (day or date.today()).isoformat()
    conn.execute(
        f"INSERT INTO daily_activities (date, {column}) VALUES (?, 1) "
        f"ON CONFLICT(date) DO UPDATE SET {column} = {column} + 1",
        (day,),
    )


def _refresh_chapter(conn, chapter_id: int) -> None:
    topics = conn.execute("SELECT * FROM topics WHERE chapter_id = ?", (chapter_id,)).fetchall()
    chapter = Chapter(id=chapter_id, name="", topics=[_topic_from_row(t) for t in topics])
    progress = calculate_chapter_progress(chapter)
    conn.execute(
        """UPDATE chapters SET learning_progress=?, revision_progress=?, practice_progress=?,
        test_progress=?, overall_progress=? WHERE id=?""",
        (progress["learning"], progress["revision"], progress["practice"],
         progress["test"], progress["overall"], chapter_id),
    )


def _refresh_subject(conn, subject_id: int) -> None:
    row = conn.execute("SELECT * FROM subjects WHERE id = ?", (subject_id,)).fetchone()
    if not row:
        return
    subject = _subject_from_row(conn, row)
    progress = calculate_subject_progress(subject)
    conn.execute(
        """UPDATE subjects SET learning_progress=?, revision_progress=?, practice_progress=?,
        test_progress=?, overall_progress=?, foundation_level=?, expected_marks=? WHERE id=?""",
        (progress["learning"], progress["revision"], progress["practice"], progress["test"],
         progress["overall"], progress["foundation_level"].value, progress["expected_marks"], subject_id),
    )


def refresh_chapter_progress(db_path: str, chapter_id: int) -> None:
    conn = get_connection(db_path)
    _refresh_chapter(conn, chapter_id)
    conn.commit()
    conn.close()


def refresh_subject_progress(db_path: str, subject_id: int) -> None:
    conn = get_connection(db_path)
    for row in conn.execute("SELECT id FROM chapters WHERE subject_id = ?", (subject_id,)).fetchall():
        _refresh_chapter(conn, row["id"])
    _refresh_subject(conn, subject_id)
    conn.commit()
    conn.close()
