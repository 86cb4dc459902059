"""Due revisions and weak subject identification."""
from datetime import date

from study_tracker.db import get_connection


def get_due_revisions(db_path: str, today: date | None = None, limit: int | None = None) -> list[dict]:
    """Topics whose next revision date has arrived, most overdue first."""
    today = today or date.today()
    conn = get_connection(db_path)
    query = """SELECT t.id, t.name, t.revision_count, t.last_revised, t.next_revision,
            c.name as chapter_name, s.id as subject_id, s.name as subject_name
        FROM topics t
        JOIN chapters c ON t.chapter_id = c.id
        JOIN subjects s ON c.subject_id = s.id
        WHERE t.next_revision IS NOT NULL AND t.next_revision <= ?
        ORDER BY t.next_revision, s.position, t.position"""
    params = [today.isoformat()]
    if limit:
        query += " LIMIT ?"
        params.append(limit)
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return [
        {
            "topic_id": r["id"],
            "topic_name": r["name"],
            "chapter_name": r["chapter_name"],
            "subject_id": r["subject_id"],
            "subject_name": r["subject_name"],
            "revision_count": r["revision_count"],
            "last_revised": r["last_revised"],
            "days_overdue": (today - date.fromisoformat(r["next_revision"])).days,
        }
        for r in rows
    ]


def get_weak_subjects(db_path: str, threshold: float = 60.0) -> list[dict]:
    """Subjects whose test average is below threshold (sorted worst first)."""
    conn = get_connection(db_path)
    rows = conn.execute(
        """SELECT s.id, s.name, s.weightage,
            COUNT(t.id) as total,
            AVG(t.score) as average
        FROM tests t
        JOIN subjects s ON t.subject_id = s.id
        GROUP BY s.id
        HAVING AVG(t.score) < ?
        ORDER BY AVG(t.score) ASC, s.weightage DESC""",
        (threshold,),
    ).fetchall()
    conn.close()
    return [
        {
            "subject_id": r["id"],
            "subject_name": r["name"],
            "weightage": r["weightage"],
            "tests_taken": r["total"],
            "average": round(r["average"], 1),
        }
        for r in rows
    ]
