"""Exam countdown phases and milestones."""
from datetime import date

LEARNING_DEADLINE = 60
REVISION_DEADLINE = 45
PRACTICE_DEADLINE = 30
MOCK_TESTS_START = 30
FINAL_REVISION = 15
QUICK_REVISION = 7

# A milestone counts as passed this many days after its deadline
GRACE_DAYS = 15

MILESTONES = (
    ("Complete Learning Phase", "learning", LEARNING_DEADLINE,
     "Focus on understanding core concepts and completing syllabus"),
    ("First Revision Round", "revision", REVISION_DEADLINE,
     "Revise completed topics and solve basic problems"),
    ("Practice Phase", "practice", PRACTICE_DEADLINE,
     "Focus on problem-solving and previous year questions"),
    ("Mock Tests", "test", MOCK_TESTS_START,
     "Take full-length mock tests and analyze performance"),
)


def days_until(exam_date: date, today: date | None = None) -> int:
    today = today or date.today()
    return (exam_date - today).days


def get_current_phase(days_left: int) -> str:
    if days_left <= QUICK_REVISION:
        return "Final Preparation"
    if days_left <= FINAL_REVISION:
        return "Final Revision"
    if days_left <= PRACTICE_DEADLINE:
        return "Mock Tests"
    if days_left <= REVISION_DEADLINE:
        return "Practice"
    if days_left <= LEARNING_DEADLINE:
        return "Revision"
    return "Learning"


def get_recommendation(progress: dict, days_left: int) -> str:
    if days_left > LEARNING_DEADLINE:
        if progress["learning"] < 50:
            return "Focus on completing the learning phase. You should aim to complete basic concepts first."
        if progress["learning"] < 80:
            return "Good progress on learning! Keep going and start light revision of completed topics."
        return "Excellent learning progress! Start focusing on revision and practice problems."
    if days_left > REVISION_DEADLINE:
        if progress["learning"] < 90:
            return "Warning: Speed up your learning phase. You should be almost done with basics by now."
        if progress["revision"] < 50:
            return "Focus on revision. Aim to revise all completed topics at least once."
        return "Good revision progress! Start incorporating practice problems."
    if days_left > PRACTICE_DEADLINE:
        if progress["revision"] < 70:
            return "Warning: Increase revision pace. Start practice problems for strong topics."
        if progress["practice"] < 30:
            return "Focus on solving more practice problems and previous year questions."
        return "Balance revision with practice. Start preparing for mock tests."
    if days_left > FINAL_REVISION:
        if progress["practice"] < 60:
            return "Focus on solving full-length practice tests and analyzing mistakes."
        if progress["test"] < 40:
            return "Take more mock tests and work on time management."
        return "Good progress! Focus on weak areas identified from mock tests."
    return "Final stretch! Focus on quick revisions and stay confident."


def calculate_countdown(exam_date: date, progress: dict, today: date | None = None) -> dict:
    days_left = days_until(exam_date, today)
    milestones = []
    for label, category, deadline, advice in MILESTONES:
        upcoming = days_left > deadline
        passed = days_left < deadline - GRACE_DAYS
        milestones.append({
            "label": label,
            "days_left": max(0, days_left - deadline),
            "is_upcoming": upcoming,
            "is_passed": passed,
            "is_current": not upcoming and not passed,
            "progress": progress.get(category, 0.0),
            "recommendation": advice,
        })
    return {
        "days_left": days_left,
        "current_phase": get_current_phase(days_left),
        "progress": progress,
        "milestones": milestones,
        "recommendation": get_recommendation(progress, days_left),
    }
