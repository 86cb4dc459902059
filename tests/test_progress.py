"""Tests for progress aggregation from topics up to subjects."""
import pytest

from study_tracker.models import Category, Chapter, FoundationLevel, Subject, Test, Topic
from study_tracker.progress import (
    CATEGORIES, calculate_chapter_progress, calculate_completion_stats, calculate_expected_marks,
    calculate_foundation_level, calculate_progress_stats, calculate_subject_progress,
    calculate_test_statistics, calculate_topic_progress, format_percentage, is_topic_completed,
    is_topic_completed_for_category, round_half_up, round_percentage,
)


def done_topic(topic_id=1) -> Topic:
    return Topic(id=topic_id, name=f"Done {topic_id}", learning_status=True,
                 revision_count=3, practice_count=3, test_count=3)


def blank_topic(topic_id=2) -> Topic:
    return Topic(id=topic_id, name=f"Blank {topic_id}")


@pytest.mark.parametrize("counts", [(0, 0, 0), (1, 2, 3), (3, 3, 3), (5, -1, 2)])
@pytest.mark.parametrize("learned", [True, False])
def test_topic_progress_bounds(counts, learned):
    topic = Topic(id=1, name="t", learning_status=learned,
                  revision_count=counts[0], practice_count=counts[1], test_count=counts[2])
    progress = calculate_topic_progress(topic)
    assert set(progress) == set(CATEGORIES)
    assert all(0 <= v <= 100 for v in progress.values())
    assert progress["learning"] in (0.0, 100.0)


def test_topic_progress_thirds():
    progress = calculate_topic_progress(Topic(id=1, name="t", revision_count=1, practice_count=2))
    assert progress["revision"] == pytest.approx(33.333, abs=0.01)
    assert progress["practice"] == pytest.approx(66.667, abs=0.01)
    assert progress["test"] == 0.0


def test_topic_completion_predicates():
    topic = Topic(id=1, name="t", learning_status=True, revision_count=3, practice_count=2)
    assert is_topic_completed_for_category(topic, Category.LEARNING)
    assert is_topic_completed_for_category(topic, "revision")
    assert not is_topic_completed_for_category(topic, Category.PRACTICE)
    assert not is_topic_completed(topic)
    assert is_topic_completed(done_topic())


@pytest.mark.parametrize("category", list(Category))
def test_progress_stats_empty(category):
    stats = calculate_progress_stats([], category)
    assert stats == {"total_topics": 0, "completed_topics": 0, "percentage": 0.0}


def test_progress_stats_rounds_to_one_decimal():
    topics = [Topic(id=1, name="a", revision_count=1), blank_topic(), blank_topic(3)]
    stats = calculate_progress_stats(topics, Category.REVISION)
    assert stats["total_topics"] == 3
    assert stats["completed_topics"] == 0
    assert stats["percentage"] == 11.1


def test_chapter_all_complete():
    chapter = Chapter(id=1, name="c", topics=[done_topic(1), done_topic(2), done_topic(3)])
    progress = calculate_chapter_progress(chapter)
    for key in ("learning", "revision", "practice", "test", "overall"):
        assert progress[key] == 100.0
    assert progress["completed_topics"] == 3


def test_chapter_empty():
    progress = calculate_chapter_progress(Chapter(id=1, name="empty"))
    assert progress["overall"] == 0.0
    assert all(progress[c] == 0.0 for c in CATEGORIES)
    assert progress["total_topics"] == 0


def test_subject_without_chapters_is_beginner():
    progress = calculate_subject_progress(Subject(id=1, name="s", weightage=10))
    assert progress["overall"] == 0.0
    assert all(progress[c] == 0.0 for c in CATEGORIES)
    assert progress["foundation_level"] is FoundationLevel.BEGINNER


def test_subject_half_complete_scenario():
    chapter = Chapter(id=1, name="c", topics=[done_topic(1), blank_topic(2)])
    subject = Subject(id=1, name="s", weightage=20, chapters=[chapter])

    chapter_progress = calculate_chapter_progress(chapter)
    for key in ("learning", "revision", "practice", "test", "overall"):
        assert chapter_progress[key] == 50.0

    progress = calculate_subject_progress(subject)
    assert progress["overall"] == pytest.approx(40.0)
    assert progress["test_average"] == 0.0
    assert progress["expected_marks"] == 0
    assert progress["foundation_level"] is FoundationLevel.MODERATE
    assert progress["total_topics"] == 2
    assert progress["completed_topics"] == 1
    assert progress["stats"]["learning"]["completed_topics"] == 1


def test_subject_chapters_weigh_equally():
    big = Chapter(id=1, name="big", topics=[blank_topic(i) for i in range(1, 10)])
    small = Chapter(id=2, name="small", topics=[done_topic(10)])
    progress = calculate_subject_progress(Subject(id=1, name="s", chapters=[big, small]))
    assert progress["learning"] == 50.0
    assert progress["completed_chapters"] == 1


def test_subject_overall_includes_tests():
    chapter = Chapter(id=1, name="c", topics=[done_topic()])
    subject = Subject(id=1, name="s", weightage=10, chapters=[chapter],
                      tests=[Test(id=1, marks_scored=50, total_marks=100)])
    progress = calculate_subject_progress(subject)
    assert progress["overall"] == pytest.approx(90.0)
    assert progress["test_average"] == 50.0
    assert progress["expected_marks"] == 5


def test_subject_overall_capped_at_100():
    chapter = Chapter(id=1, name="c", topics=[done_topic()])
    subject = Subject(id=1, name="s", chapters=[chapter], tests=[Test(id=1, marks_scored=100, total_marks=100)])
    assert calculate_subject_progress(subject)["overall"] == 100.0


def test_foundation_level_uses_its_own_weighting():
    # overall would be 0.8 * 62.5 = 50, but learning counts 0.4 here
    progress = {"learning": 100, "revision": 50, "practice": 0, "test": 100}
    assert calculate_foundation_level(progress) is FoundationLevel.MODERATE
    assert calculate_foundation_level({"learning": 100, "revision": 100, "practice": 100, "test": 0}) is FoundationLevel.ADVANCED
    assert calculate_foundation_level({}) is FoundationLevel.BEGINNER


def test_expected_marks_rounds_half_up():
    assert calculate_expected_marks(9, 50) == 5
    assert calculate_expected_marks(13, 50) == 7
    assert calculate_expected_marks(None, 80) == 0


def test_rounding_helpers():
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -2
    assert round_percentage(33.36) == pytest.approx(33.4)
    assert format_percentage(123.4) == "100.0%"
    assert format_percentage(12.34) == "12.3%"


def test_test_statistics_trend():
    tests = [
        Test(id=1, marks_scored=40, total_marks=100, created_at="2026-01-01T10:00:00"),
        Test(id=2, marks_scored=60, total_marks=100, created_at="2026-01-08T10:00:00"),
    ]
    stats = calculate_test_statistics(tests)
    assert stats["total_tests"] == 2
    assert stats["average_score"] == 50.0
    assert stats["highest_score"] == 60.0
    assert stats["lowest_score"] == 40.0
    assert stats["recent_score"] == 60.0
    assert stats["trend"] == "up"


def test_test_statistics_empty():
    assert calculate_test_statistics([])["trend"] == "stable"


def test_completion_stats():
    chapter = Chapter(id=1, name="c", topics=[done_topic(1), blank_topic(2)])
    stats = calculate_completion_stats(Subject(id=1, name="s", chapters=[chapter]))
    assert stats["chapters"] == {"total": 1, "completed": 0, "percentage": 0.0}
    assert stats["topics"]["completed"] == 1
    assert stats["topics"]["percentage"] == 50.0
