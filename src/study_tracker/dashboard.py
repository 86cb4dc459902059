"""Dashboard aggregation across subjects and study statistics."""
from study_tracker.db import get_connection
from study_tracker.progress import (
    CATEGORIES, calculate_subject_progress, clamp_percentage, round_percentage,
)


def get_readiness_label(score: float) -> str:
    if score >= 80:
        return "READY"
    elif score >= 60:
        return "ON TRACK"
    elif score >= 40:
        return "NEEDS WORK"
    return "NOT READY"


def get_readiness_color(score: float) -> str:
    if score >= 80:
        return "green"
    elif score >= 60:
        return "yellow"
    elif score >= 40:
        return "dark_orange"
    return "red"


def subject_weight(subject) -> float:
    """Exam weightage of a subject, 1 when unset."""
    return subject.weightage if subject.weightage and subject.weightage > 0 else 1


def weighted_average(pairs) -> float:
    """Weighted mean of ``(value, weight)`` pairs, clamped and rounded to 1 decimal."""
    total_weight = 0.0
    weighted_sum = 0.0
    for value, weight in pairs:
        total_weight += weight
        weighted_sum += (value or 0) * weight
    if total_weight == 0:
        return 0.0
    return clamp_percentage(round_percentage(weighted_sum / total_weight))


def calculate_dashboard_progress(subjects) -> dict:
    subjects = list(subjects or [])
    if not subjects:
        result = {c: 0.0 for c in CATEGORIES}
        result["overall"] = 0.0
        result["stats"] = {
            "subjects": {"total": 0, "completed": 0},
            "topics": {"total": 0, "completed": 0},
        }
        return result

    progress = [(calculate_subject_progress(s), subject_weight(s)) for s in subjects]
    result = {
        key: weighted_average((p[key], w) for p, w in progress)
        for key in ("overall",) + CATEGORIES
    }
    # Topic completion follows the learning category
    result["stats"] = {
        "subjects": {
            "total": len(subjects),
            "completed": sum(1 for p, _ in progress if p["overall"] >= 100),
        },
        "topics": {
            "total": sum(p["stats"]["learning"]["total_topics"] for p, _ in progress),
            "completed": sum(p["stats"]["learning"]["completed_topics"] for p, _ in progress),
        },
    }
    return result


def get_study_stats(db_path: str) -> dict:
    conn = get_connection(db_path)
    sessions = conn.execute(
        "SELECT COUNT(*) FROM focus_sessions WHERE status = 'completed'"
    ).fetchone()[0]
    minutes = conn.execute("SELECT COALESCE(SUM(study_time), 0) FROM daily_activities").fetchone()[0]
    tests = conn.execute("SELECT COUNT(*) FROM tests").fetchone()[0]
    streak = conn.execute("SELECT * FROM study_streak WHERE id = 1").fetchone()
    conn.close()
    return {
        "sessions_completed": sessions,
        "focus_minutes": minutes,
        "tests_taken": tests,
        "current_streak": streak["current_streak"] if streak else 0,
        "longest_streak": streak["longest_streak"] if streak else 0,
    }
