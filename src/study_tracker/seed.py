"""Seed the database with the default exam syllabus."""
import json
from pathlib import Path

from study_tracker.db import get_connection, get_setting, set_setting
from study_tracker.importer import import_subjects, parse_syllabus

CONTENT_DIR = Path(__file__).parent / "content"


def is_seeded(db_path: str) -> bool:
    """Check whether the database already holds any subjects."""
    conn = get_connection(db_path)
    count = conn.execute("SELECT COUNT(*) FROM subjects").fetchone()[0]
    conn.close()
    return count > 0


def load_default_syllabus() -> dict:
    return json.loads((CONTENT_DIR / "syllabus.json").read_text())


def seed_syllabus(db_path: str) -> dict:
    """Insert all subjects, chapters and topics from syllabus.json."""
    data = load_default_syllabus()
    if get_setting(db_path, "exam_name") is None:
        set_setting(db_path, "exam_name", data.get("exam", ""))
    return import_subjects(db_path, parse_syllabus(data))


def seed_all(db_path: str) -> None:
    """Seed only an empty database."""
    if is_seeded(db_path):
        return
    seed_syllabus(db_path)
