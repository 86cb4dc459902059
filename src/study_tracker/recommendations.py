"""Subject recommendations: what to revise, focus on, and start next."""
import json
import math
from dataclasses import dataclass, field, asdict
from enum import Enum

from study_tracker.models import FoundationLevel


class RecommendationType(str, Enum):
    REVISE = "revise"
    PRIORITY = "priority"
    START = "start"


@dataclass(frozen=True)
class WeightageFactors:
    gate: float = 0.4
    progress: float = 0.3
    foundation: float = 0.2
    time: float = 0.1


@dataclass(frozen=True)
class ProgressThresholds:
    revision: float = 40
    practice: float = 80
    test: float = 90


@dataclass(frozen=True)
class RecommendationConfig:
    max_subjects_per_category: int = 2
    progress_thresholds: ProgressThresholds = field(default_factory=ProgressThresholds)
    weightage_factors: WeightageFactors = field(default_factory=WeightageFactors)


DEFAULT_CONFIG = RecommendationConfig()

FOUNDATION_MULTIPLIERS = {
    FoundationLevel.BEGINNER.value: 1.0,
    FoundationLevel.MODERATE.value: 0.7,
    FoundationLevel.ADVANCED.value: 0.4,
}

# Learning target used to report how far a priority subject lags
PRIORITY_TARGET = 60

CATEGORY_INFO = (
    (RecommendationType.REVISE, "Revise", "Subjects ready for revision"),
    (RecommendationType.PRIORITY, "Priority Focus", "Subjects needing immediate attention"),
    (RecommendationType.START, "Start Next", "Recommended subjects to begin"),
)


class RecommendationCache:
    """Memoized subject scores and recommendation results.

    Owned by the caller; nothing is shared between instances. Score keys
    carry every input of the score, so stale entries are never reused.
    """

    def __init__(self):
        self.scores: dict[tuple, float] = {}
        self.results: dict[str, list] = {}

    def clear(self) -> None:
        self.scores.clear()
        self.results.clear()


def get_foundation_multiplier(level) -> float:
    """Less prepared subjects score higher."""
    key = level.value if isinstance(level, FoundationLevel) else level
    return FOUNDATION_MULTIPLIERS.get(key, 1.0)


def get_time_urgency(days_left: float) -> float:
    """Near flat beyond 60 days, ramps up exponentially towards the exam."""
    exponent = (60 - days_left) / 20
    # exp() overflows long before this; the result is capped at 100 anyway
    if exponent > 10:
        return 100.0
    return min(100.0, math.exp(exponent) * 20)


def calculate_subject_score(subject, rec_type: RecommendationType, days_left: int,
                            config: RecommendationConfig = DEFAULT_CONFIG,
                            cache: RecommendationCache | None = None) -> float:
    rec_type = RecommendationType(rec_type)
    key = (
        subject.id, rec_type.value, days_left, subject.weightage,
        subject.learning_progress, subject.revision_progress,
        get_foundation_multiplier(subject.foundation_level),
        json.dumps(asdict(config), sort_keys=True),
    )
    if cache is not None and key in cache.scores:
        return cache.scores[key]

    f = config.weightage_factors
    weightage = subject.weightage or 0
    foundation = get_foundation_multiplier(subject.foundation_level) * f.foundation
    urgency = get_time_urgency(days_left) * f.time

    if rec_type is RecommendationType.REVISE:
        score = weightage * f.gate + (100 - subject.revision_progress) * f.progress + foundation + urgency
    elif rec_type is RecommendationType.PRIORITY:
        score = weightage * f.gate + subject.learning_progress * f.progress + foundation + urgency
    else:
        score = weightage * (f.gate + f.progress) + foundation + urgency

    if cache is not None:
        cache.scores[key] = score
    return score


def _cache_key(subjects, days_left: int, config: RecommendationConfig) -> str:
    return json.dumps({
        "subjects": [
            {
                "id": s.id,
                "progress": s.learning_progress,
                "revision": s.revision_progress,
                "weightage": s.weightage,
                "foundation": get_foundation_multiplier(s.foundation_level),
            }
            for s in subjects
        ],
        "days_left": days_left,
        "config": asdict(config),
    }, sort_keys=True)


def _qualifies(subject, rec_type: RecommendationType, config: RecommendationConfig) -> bool:
    learning = subject.learning_progress
    if rec_type is RecommendationType.REVISE:
        return learning >= config.progress_thresholds.revision
    if rec_type is RecommendationType.PRIORITY:
        return 0 < learning < 100
    return learning == 0


def rank_subjects(subjects, rec_type: RecommendationType, days_left: int,
                  config: RecommendationConfig = DEFAULT_CONFIG,
                  cache: RecommendationCache | None = None) -> list[dict]:
    scored = [
        (calculate_subject_score(s, rec_type, days_left, config, cache), s)
        for s in subjects if _qualifies(s, rec_type, config)
    ]
    # sorted() is stable, so equal scores keep input order
    scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
    return [
        {
            "id": s.id,
            "name": s.name,
            "weightage": s.weightage,
            "progress": s.learning_progress,
            "behind_target": max(0, PRIORITY_TARGET - s.learning_progress)
            if rec_type is RecommendationType.PRIORITY else None,
            "score": score,
        }
        for score, s in scored[:config.max_subjects_per_category]
    ]


def get_recommendations(subjects, days_left: int,
                        config: RecommendationConfig = DEFAULT_CONFIG,
                        cache: RecommendationCache | None = None) -> list[dict]:
    """Rank subjects into the Revise, Priority Focus and Start Next buckets.

    Subjects are read through their cached progress fields
    (``learning_progress``, ``revision_progress``, ``foundation_level``).
    """
    subjects = list(subjects or [])
    key = None
    if cache is not None:
        key = _cache_key(subjects, days_left, config)
        if key in cache.results:
            return cache.results[key]

    result = [
        {
            "type": rec_type,
            "title": title,
            "description": description,
            "subjects": rank_subjects(subjects, rec_type, days_left, config, cache),
        }
        for rec_type, title, description in CATEGORY_INFO
    ]
    if cache is not None:
        cache.results[key] = result
    return result
