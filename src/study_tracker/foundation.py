"""Exam foundation tiers computed over all subjects."""
from dataclasses import dataclass

from study_tracker.dashboard import subject_weight
from study_tracker.progress import CATEGORIES, calculate_subject_progress, clamp_percentage, round_percentage


@dataclass(frozen=True)
class FoundationTier:
    level: int
    title: str
    description: str
    min_progress: float
    requirements: dict


FOUNDATION_TIERS = (
    FoundationTier(1, "Novice Explorer",
                   "Beginning the journey with basic topic exploration and initial learning.",
                   0, {"learning": 10, "revision": 0, "practice": 0, "test": 0}),
    FoundationTier(2, "Basic Learner",
                   "Building basic understanding of core concepts across subjects.",
                   11, {"learning": 20, "revision": 10, "practice": 5, "test": 0}),
    FoundationTier(3, "Steady Beginner",
                   "Developing consistent learning patterns and topic coverage.",
                   21, {"learning": 35, "revision": 20, "practice": 15, "test": 10}),
    FoundationTier(4, "Foundation Builder",
                   "Mastering core concepts with regular practice and revision.",
                   31, {"learning": 45, "revision": 30, "practice": 25, "test": 20}),
    FoundationTier(5, "Intermediate Practitioner",
                   "Balanced progress across learning, revision, and practice.",
                   41, {"learning": 55, "revision": 45, "practice": 40, "test": 35}),
    FoundationTier(6, "Advanced Learner",
                   "Deep understanding with strong problem-solving abilities.",
                   51, {"learning": 70, "revision": 60, "practice": 55, "test": 50}),
    FoundationTier(7, "Competent Solver",
                   "Proficient in solving complex problems with good test performance.",
                   61, {"learning": 80, "revision": 70, "practice": 65, "test": 60}),
    FoundationTier(8, "Expert Candidate",
                   "Advanced preparation with strong performance across all areas.",
                   71, {"learning": 85, "revision": 80, "practice": 75, "test": 70}),
    FoundationTier(9, "Master Aspirant",
                   "Near complete mastery with excellent test performance.",
                   81, {"learning": 90, "revision": 85, "practice": 85, "test": 80}),
    FoundationTier(10, "Champion",
                   "Complete preparation with outstanding performance.",
                   91, {"learning": 95, "revision": 90, "practice": 90, "test": 85}),
)

STRENGTH_LABELS = {
    "learning": "Strong conceptual learning",
    "revision": "Excellent revision habits",
    "practice": "Strong problem-solving practice",
    "test": "Outstanding test performance",
}

IMPROVEMENT_LABELS = {
    "learning": "Focus on conceptual learning",
    "revision": "Increase revision frequency",
    "practice": "More problem-solving practice needed",
    "test": "Improve test performance",
}

MARGIN = 10


def calculate_overall_metrics(subjects) -> dict:
    """Weightage-weighted progress per category and overall."""
    keys = CATEGORIES + ("overall",)
    subjects = list(subjects or [])
    if not subjects:
        return {k: 0.0 for k in keys}
    progress = [(calculate_subject_progress(s), subject_weight(s)) for s in subjects]
    total_weight = sum(w for _, w in progress)
    return {
        k: round_percentage(sum(p[k] * w for p, w in progress) / total_weight)
        for k in keys
    }


def determine_tier(overall: float) -> FoundationTier:
    current = FOUNDATION_TIERS[0]
    for tier in FOUNDATION_TIERS:
        if overall >= tier.min_progress:
            current = tier
        else:
            break
    return current


def calculate_exam_foundation(subjects) -> dict:
    metrics = calculate_overall_metrics(subjects)
    overall = metrics["overall"]
    current = determine_tier(overall)
    next_tier = FOUNDATION_TIERS[current.level] if current.level < len(FOUNDATION_TIERS) else None

    if next_tier:
        span = next_tier.min_progress - current.min_progress
        to_next = clamp_percentage((overall - current.min_progress) / span * 100)
    else:
        to_next = 100.0

    return {
        "current_level": current,
        "next_level": next_tier,
        "progress_to_next_level": to_next,
        "strengths": [STRENGTH_LABELS[c] for c in CATEGORIES if metrics[c] > overall + MARGIN],
        "areas_to_improve": [IMPROVEMENT_LABELS[c] for c in CATEGORIES if metrics[c] < overall - MARGIN],
        "overall_progress": overall,
        "metrics": metrics,
    }
