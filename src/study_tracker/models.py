"""Data classes for the study tracker domain model."""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

MAX_COUNT = 3


class Category(str, Enum):
    LEARNING = "learning"
    REVISION = "revision"
    PRACTICE = "practice"
    TEST = "test"


class FoundationLevel(str, Enum):
    BEGINNER = "Beginner"
    MODERATE = "Moderate"
    ADVANCED = "Advanced"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class BreakType(str, Enum):
    SHORT = "short"
    LONG = "long"


@dataclass
class Topic:
    id: int
    name: str
    important: bool = False
    learning_status: bool = False
    revision_count: int = 0
    practice_count: int = 0
    test_count: int = 0
    position: int = 0
    last_revised: Optional[str] = None
    next_revision: Optional[str] = None


@dataclass
class Chapter:
    id: int
    name: str
    topics: list[Topic] = field(default_factory=list)
    important: bool = False
    position: int = 0
    learning_progress: float = 0.0
    revision_progress: float = 0.0
    practice_progress: float = 0.0
    test_progress: float = 0.0
    overall_progress: float = 0.0


@dataclass
class Test:
    # not a pytest test class
    __test__ = False

    id: int
    marks_scored: float
    total_marks: float
    created_at: Optional[str] = None

    @property
    def score(self) -> float:
        if not self.total_marks:
            return 0.0
        return self.marks_scored / self.total_marks * 100


@dataclass
class Subject:
    id: int
    name: str
    weightage: float = 0.0
    chapters: list[Chapter] = field(default_factory=list)
    tests: list[Test] = field(default_factory=list)
    position: int = 0
    learning_progress: float = 0.0
    revision_progress: float = 0.0
    practice_progress: float = 0.0
    test_progress: float = 0.0
    overall_progress: float = 0.0
    foundation_level: FoundationLevel = FoundationLevel.BEGINNER
    expected_marks: int = 0


@dataclass
class Break:
    start_time: int
    type: BreakType = BreakType.SHORT
    end_time: Optional[int] = None
    was_timely: bool = True

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass
class FocusMetrics:
    total_focus_time: int = 0
    break_time: int = 0
    interruptions: int = 0
    productivity: int = 0


@dataclass
class FocusPhase:
    type: str
    start_time: int
    duration: int
    is_active: bool = True


@dataclass
class FocusSession:
    """A focus session held on this device. Times are epoch milliseconds."""
    subject_id: int
    phase_type: str
    start_time: int
    duration: int
    current_phase: FocusPhase
    id: Optional[int] = None
    device_id: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    breaks: list[Break] = field(default_factory=list)
    metrics: FocusMetrics = field(default_factory=FocusMetrics)
    skip_breaks: bool = False
    paused_at: Optional[int] = None
    paused_duration: int = 0
    last_sync_time: int = 0

    @property
    def current_break(self) -> Optional[Break]:
        if self.breaks and self.breaks[-1].is_open:
            return self.breaks[-1]
        return None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        for b in data["breaks"]:
            b["type"] = BreakType(b["type"]).value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FocusSession":
        return cls(
            id=data.get("id"),
            device_id=data.get("device_id"),
            subject_id=data["subject_id"],
            phase_type=data["phase_type"],
            start_time=data["start_time"],
            duration=data["duration"],
            status=SessionStatus(data.get("status", "active")),
            current_phase=FocusPhase(**data["current_phase"]),
            breaks=[
                Break(
                    start_time=b["start_time"],
                    type=BreakType(b.get("type", "short")),
                    end_time=b.get("end_time"),
                    was_timely=b.get("was_timely", True),
                )
                for b in data.get("breaks", [])
            ],
            metrics=FocusMetrics(**data.get("metrics", {})),
            skip_breaks=data.get("skip_breaks", False),
            paused_at=data.get("paused_at"),
            paused_duration=data.get("paused_duration", 0),
            last_sync_time=data.get("last_sync_time", 0),
        )
