"""Database initialization and connection management."""
import os
import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = os.environ.get(
    "STUDY_TRACKER_DB", str(Path.home() / ".study_tracker" / "tracker.db")
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS subjects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    weightage REAL NOT NULL DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    learning_progress REAL DEFAULT 0,
    revision_progress REAL DEFAULT 0,
    practice_progress REAL DEFAULT 0,
    test_progress REAL DEFAULT 0,
    overall_progress REAL DEFAULT 0,
    foundation_level TEXT DEFAULT 'Beginner',
    expected_marks INTEGER DEFAULT 0,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS chapters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    important INTEGER DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    learning_progress REAL DEFAULT 0,
    revision_progress REAL DEFAULT 0,
    practice_progress REAL DEFAULT 0,
    test_progress REAL DEFAULT 0,
    overall_progress REAL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS topics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chapter_id INTEGER NOT NULL REFERENCES chapters(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    important INTEGER DEFAULT 0,
    learning_status INTEGER DEFAULT 0,
    revision_count INTEGER DEFAULT 0,
    practice_count INTEGER DEFAULT 0,
    test_count INTEGER DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    last_revised TEXT,
    next_revision TEXT
);

CREATE TABLE IF NOT EXISTS tests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
    marks_scored REAL NOT NULL,
    total_marks REAL NOT NULL,
    score REAL NOT NULL,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS focus_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject_id INTEGER REFERENCES subjects(id) ON DELETE SET NULL,
    phase_type TEXT NOT NULL,
    duration INTEGER NOT NULL,
    skip_breaks INTEGER DEFAULT 0,
    timezone TEXT,
    device_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    start_time TEXT NOT NULL,
    end_time TEXT,
    paused_at TEXT,
    paused_duration INTEGER DEFAULT 0,
    break_count INTEGER DEFAULT 0,
    breaks TEXT DEFAULT '[]',
    metrics TEXT DEFAULT '{}',
    current_phase TEXT,
    last_sync TEXT
);

CREATE TABLE IF NOT EXISTS daily_activities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL UNIQUE,
    study_time INTEGER DEFAULT 0,
    topics_count INTEGER DEFAULT 0,
    tests_count INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS study_streak (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    current_streak INTEGER DEFAULT 0,
    longest_streak INTEGER DEFAULT 0,
    last_study_date TEXT
);

CREATE TABLE IF NOT EXISTS user_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    value TEXT
);

CREATE TABLE IF NOT EXISTS local_session (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    payload TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS offline_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    payload TEXT NOT NULL,
    queued_at INTEGER NOT NULL,
    attempts INTEGER DEFAULT 0,
    next_attempt_at INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS dead_letters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    payload TEXT NOT NULL,
    queued_at INTEGER NOT NULL,
    attempts INTEGER NOT NULL,
    last_error TEXT,
    failed_at INTEGER NOT NULL
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


def get_setting(db_path: str, key: str, default: str = None) -> str | None:
    conn = get_connection(db_path)
    row = conn.execute("SELECT value FROM user_settings WHERE key = ?", (key,)).fetchone()
    conn.close()
    return row["value"] if row else default


def set_setting(db_path: str, key: str, value: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        "INSERT INTO user_settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value=?",
        (key, value, value),
    )
    conn.commit()
    conn.close()
