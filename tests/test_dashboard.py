# tests/test_dashboard.py
import pytest

from study_tracker.dashboard import (
    calculate_dashboard_progress, get_readiness_color, get_readiness_label,
    get_study_stats, subject_weight, weighted_average,
)
from study_tracker.db import init_db
from study_tracker.models import Chapter, Subject, Test, Topic
from study_tracker.store import add_subject, add_test
from study_tracker.study_time import handle_action


def complete_subject(subject_id, weightage) -> Subject:
    topic = Topic(id=subject_id, name="t", learning_status=True,
                  revision_count=3, practice_count=3, test_count=3)
    return Subject(
        id=subject_id, name=f"s{subject_id}", weightage=weightage,
        chapters=[Chapter(id=subject_id, name="c", topics=[topic])],
        tests=[Test(id=subject_id, marks_scored=100, total_marks=100)],
    )


def empty_subject(subject_id, weightage) -> Subject:
    return Subject(id=subject_id, name=f"s{subject_id}", weightage=weightage)


def test_readiness_label():
    assert get_readiness_label(85) == "READY"
    assert get_readiness_label(70) == "ON TRACK"
    assert get_readiness_label(55) == "NEEDS WORK"
    assert get_readiness_label(20) == "NOT READY"


def test_readiness_color():
    assert get_readiness_color(90) == "green"
    assert get_readiness_color(10) == "red"


def test_subject_weight_falls_back_to_one():
    assert subject_weight(empty_subject(1, 0)) == 1
    assert subject_weight(empty_subject(1, -5)) == 1
    assert subject_weight(empty_subject(1, 12)) == 12


def test_weighted_average_no_weight():
    assert weighted_average([]) == 0.0


def test_dashboard_empty():
    progress = calculate_dashboard_progress([])
    assert progress["overall"] == 0.0
    assert progress["learning"] == 0.0
    assert progress["stats"]["subjects"]["total"] == 0
    assert progress["stats"]["topics"] == {"total": 0, "completed": 0}


def test_dashboard_weighted_by_weightage():
    subjects = [empty_subject(1, 10), complete_subject(2, 90)]
    progress = calculate_dashboard_progress(subjects)
    assert progress["overall"] == pytest.approx(90.0)
    assert progress["learning"] == pytest.approx(90.0)
    assert progress["stats"]["subjects"] == {"total": 2, "completed": 1}
    assert progress["stats"]["topics"] == {"total": 1, "completed": 1}


def test_dashboard_unweighted_subjects_count_equally():
    progress = calculate_dashboard_progress([empty_subject(1, 0), complete_subject(2, 0)])
    assert progress["overall"] == 50.0


def test_get_study_stats_empty(tmp_db):
    init_db(tmp_db)
    stats = get_study_stats(tmp_db)
    assert stats == {
        "sessions_completed": 0,
        "focus_minutes": 0,
        "tests_taken": 0,
        "current_streak": 0,
        "longest_streak": 0,
    }


def test_get_study_stats_after_activity(tmp_db):
    init_db(tmp_db)
    subject_id = add_subject(tmp_db, "Algorithms", 8)
    add_test(tmp_db, subject_id, 30, 50)
    started = handle_action(tmp_db, {"action": "start", "subject_id": subject_id,
                                     "phase_type": "learning", "duration": 50})
    handle_action(tmp_db, {"action": "stop", "session_id": started["focus_session"]["id"],
                           "metrics": {"total_focus_time": 1500}})
    stats = get_study_stats(tmp_db)
    assert stats["sessions_completed"] == 1
    assert stats["focus_minutes"] == 25
    assert stats["tests_taken"] == 1
    assert stats["current_streak"] == 1
