"""Progress aggregation from topic counters up to subjects.

All functions here are pure: they take already-loaded model objects and
return plain dicts. Empty or partially filled inputs degrade to zeros
instead of raising.
"""
import math

from study_tracker.models import Category, FoundationLevel, MAX_COUNT

CATEGORIES = tuple(c.value for c in Category)

# Overall subject progress: 80% study modes, 20% test scores
MODES_WEIGHT = 0.8
TESTS_WEIGHT = 0.2

# Foundation level weighting, learning counts double
FOUNDATION_WEIGHTS = {
    "learning": 0.4,
    "revision": 0.2,
    "practice": 0.2,
    "test": 0.2,
}

COMPLETED_CHAPTER_THRESHOLD = 90


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_percentage(value: float) -> float:
    return round_half_up(value, 1)


def clamp_percentage(value: float) -> float:
    return max(0.0, min(100.0, value))


def format_percentage(value: float) -> str:
    return f"{round_percentage(clamp_percentage(value))}%"


def _count(value) -> int:
    if not value:
        return 0
    return max(0, min(MAX_COUNT, int(value)))


def _mean(values) -> float:
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


def calculate_topic_progress(topic) -> dict:
    """Per-category progress of a single topic, each in [0, 100]."""
    return {
        "learning": 100.0 if topic.learning_status else 0.0,
        "revision": _count(topic.revision_count) / MAX_COUNT * 100,
        "practice": _count(topic.practice_count) / MAX_COUNT * 100,
        "test": _count(topic.test_count) / MAX_COUNT * 100,
    }


def is_topic_completed_for_category(topic, category: Category) -> bool:
    category = Category(category)
    if category is Category.LEARNING:
        return bool(topic.learning_status)
    if category is Category.REVISION:
        return _count(topic.revision_count) >= MAX_COUNT
    if category is Category.PRACTICE:
        return _count(topic.practice_count) >= MAX_COUNT
    return _count(topic.test_count) >= MAX_COUNT


def is_topic_completed(topic) -> bool:
    return all(is_topic_completed_for_category(topic, c) for c in CATEGORIES)


def calculate_progress_stats(topics, category: Category) -> dict:
    """Completion stats of one category across a list of topics."""
    category = Category(category)
    topics = list(topics or [])
    if not topics:
        return {"total_topics": 0, "completed_topics": 0, "percentage": 0.0}
    completed = sum(1 for t in topics if is_topic_completed_for_category(t, category))
    average = _mean(calculate_topic_progress(t)[category.value] for t in topics)
    return {
        "total_topics": len(topics),
        "completed_topics": completed,
        "percentage": clamp_percentage(round_percentage(average)),
    }


def _empty_progress() -> dict:
    return {c: 0.0 for c in CATEGORIES}


def calculate_chapter_progress(chapter) -> dict:
    """Mean of topic progress per category; overall is the mean of the four."""
    topics = list(chapter.topics or [])
    if not topics:
        result = _empty_progress()
        result.update(overall=0.0, total_topics=0, completed_topics=0)
        return result

    per_topic = [calculate_topic_progress(t) for t in topics]
    result = {c: _mean(p[c] for p in per_topic) for c in CATEGORIES}
    result["overall"] = _mean(result[c] for c in CATEGORIES)
    result["total_topics"] = len(topics)
    result["completed_topics"] = sum(1 for t in topics if is_topic_completed(t))
    return result


def calculate_foundation_level(progress: dict) -> FoundationLevel:
    weighted = sum((progress.get(c) or 0) * w for c, w in FOUNDATION_WEIGHTS.items())
    if weighted >= 80:
        return FoundationLevel.ADVANCED
    if weighted >= 50:
        return FoundationLevel.MODERATE
    return FoundationLevel.BEGINNER


def calculate_test_average(tests) -> float:
    return _mean(t.score for t in tests or [])


def calculate_expected_marks(weightage: float, test_average: float) -> int:
    return int(round_half_up((weightage or 0) * test_average / 100))


def calculate_subject_progress(subject) -> dict:
    """Roll chapters up into subject progress.

    Chapters count equally regardless of topic count. ``overall`` mixes the
    study modes (80%) with the test average (20%), while ``foundation_level``
    uses its own 0.4/0.2/0.2/0.2 weighting of the same four categories.
    """
    chapters = list(subject.chapters or [])
    tests = list(subject.tests or [])
    all_topics = [t for ch in chapters for t in (ch.topics or [])]
    test_average = calculate_test_average(tests)
    stats = {c: calculate_progress_stats(all_topics, c) for c in CATEGORIES}

    if not chapters:
        result = _empty_progress()
        result.update(
            overall=0.0,
            total_chapters=0,
            completed_chapters=0,
            total_topics=0,
            completed_topics=0,
            test_average=test_average,
            expected_marks=calculate_expected_marks(subject.weightage, test_average),
            foundation_level=FoundationLevel.BEGINNER,
            stats=stats,
        )
        return result

    chapter_progress = [calculate_chapter_progress(ch) for ch in chapters]
    result = {c: _mean(p[c] for p in chapter_progress) for c in CATEGORIES}

    modes = _mean(result[c] for c in CATEGORIES) * MODES_WEIGHT
    result["overall"] = min(100.0, modes + test_average * TESTS_WEIGHT)
    result["total_chapters"] = len(chapters)
    result["completed_chapters"] = sum(
        1 for p in chapter_progress if p["overall"] >= COMPLETED_CHAPTER_THRESHOLD
    )
    result["total_topics"] = len(all_topics)
    result["completed_topics"] = sum(p["completed_topics"] for p in chapter_progress)
    result["test_average"] = test_average
    result["expected_marks"] = calculate_expected_marks(subject.weightage, test_average)
    result["foundation_level"] = calculate_foundation_level(result)
    result["stats"] = stats
    return result


def calculate_test_statistics(tests) -> dict:
    tests = list(tests or [])
    if not tests:
        return {
            "total_tests": 0,
            "average_score": 0.0,
            "highest_score": 0.0,
            "lowest_score": 0.0,
            "recent_score": 0.0,
            "trend": "stable",
        }
    ordered = sorted(tests, key=lambda t: t.created_at or "", reverse=True)
    scores = [t.score for t in ordered]
    recent = scores[0]
    previous = scores[1] if len(scores) > 1 else scores[0]
    if recent > previous:
        trend = "up"
    elif recent < previous:
        trend = "down"
    else:
        trend = "stable"
    return {
        "total_tests": len(tests),
        "average_score": _mean(scores),
        "highest_score": max(scores),
        "lowest_score": min(scores),
        "recent_score": recent,
        "trend": trend,
    }


def calculate_completion_stats(subject) -> dict:
    progress = calculate_subject_progress(subject)
    total_chapters = progress["total_chapters"]
    total_topics = progress["total_topics"]
    return {
        "chapters": {
            "total": total_chapters,
            "completed": progress["completed_chapters"],
            "percentage": progress["completed_chapters"] / total_chapters * 100 if total_chapters else 0.0,
        },
        "topics": {
            "total": total_topics,
            "completed": progress["completed_topics"],
            "percentage": progress["completed_topics"] / total_topics * 100 if total_topics else 0.0,
        },
    }
