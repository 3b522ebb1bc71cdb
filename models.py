from __future__ import annotations
import datetime
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class MeasurementKind(str, Enum):
    reps = "reps"
    duration = "duration"


class SessionStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    paused = "paused"
    completed = "completed"
    cancelled = "cancelled"


ACTIVE_STATUSES = {SessionStatus.in_progress, SessionStatus.paused}


class RecordCategory(str, Enum):
    max_weight = "max_weight"
    max_reps = "max_reps"
    max_volume = "max_volume_single_session"
    max_estimated_1rm = "max_estimated_one_rep_max"
    best_duration = "best_duration"


def _dt(value: Optional[str]) -> Optional[datetime.datetime]:
    return datetime.datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class ExerciseDefinition:
    """Static catalog metadata for one exercise."""

    id: str
    name: str
    measurement: MeasurementKind = MeasurementKind.reps
    muscle_groups: frozenset = frozenset()
    equipment: frozenset = frozenset()
    difficulty: str = "beginner"
    rest_seconds: Optional[int] = None

    def __post_init__(self) -> None:
        if self.rest_seconds is not None and self.rest_seconds <= 0:
            raise ValueError(f"rest_seconds for {self.id} must be positive")


@dataclass
class SetValues:
    """Weight/reps or a duration in seconds, depending on the exercise."""

    weight: Optional[float] = None
    reps: Optional[int] = None
    duration: Optional[float] = None

    def validate(self, measurement: MeasurementKind) -> None:
        if measurement == MeasurementKind.reps:
            if self.reps is None or self.reps <= 0:
                raise ValueError("reps must be positive")
            if self.weight is None or self.weight <= 0:
                raise ValueError("weight must be positive")
        else:
            if self.duration is None or self.duration <= 0:
                raise ValueError("duration must be positive")

    def to_dict(self) -> dict:
        return {"weight": self.weight, "reps": self.reps, "duration": self.duration}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SetValues":
        data = data or {}
        return cls(data.get("weight"), data.get("reps"), data.get("duration"))


@dataclass
class SetEntry:
    target: SetValues = field(default_factory=SetValues)
    actual: Optional[SetValues] = None
    completed: bool = False
    completed_at: Optional[datetime.datetime] = None

    def volume(self, measurement: MeasurementKind) -> float:
        if not self.completed or measurement != MeasurementKind.reps:
            return 0.0
        return float(self.actual.weight) * int(self.actual.reps)

    def to_dict(self) -> dict:
        return {
            "target": self.target.to_dict(),
            "actual": self.actual.to_dict() if self.actual else None,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SetEntry":
        actual = data.get("actual")
        return cls(
            target=SetValues.from_dict(data.get("target")),
            actual=SetValues.from_dict(actual) if actual else None,
            completed=bool(data.get("completed")),
            completed_at=_dt(data.get("completed_at")),
        )


@dataclass
class ExerciseEntry:
    """One occurrence of an exercise inside a session.

    The definition fields are copied in at start so a finished session can
    be aggregated without the catalog.
    """

    exercise_id: str
    name: str
    measurement: MeasurementKind = MeasurementKind.reps
    muscle_groups: tuple = ()
    rest_seconds: Optional[int] = None
    sets: list[SetEntry] = field(default_factory=list)

    @classmethod
    def from_definition(
        cls, definition: ExerciseDefinition, targets: list[SetValues]
    ) -> "ExerciseEntry":
        sets = [SetEntry(target=t) for t in targets] or [SetEntry()]
        return cls(
            exercise_id=definition.id,
            name=definition.name,
            measurement=definition.measurement,
            muscle_groups=tuple(sorted(definition.muscle_groups)),
            rest_seconds=definition.rest_seconds,
            sets=sets,
        )

    def completed_sets(self) -> list[SetEntry]:
        return [s for s in self.sets if s.completed]

    def volume(self) -> float:
        return sum(s.volume(self.measurement) for s in self.sets)

    def to_dict(self) -> dict:
        return {
            "exercise_id": self.exercise_id,
            "name": self.name,
            "measurement": self.measurement.value,
            "muscle_groups": list(self.muscle_groups),
            "rest_seconds": self.rest_seconds,
            "sets": [s.to_dict() for s in self.sets],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExerciseEntry":
        return cls(
            exercise_id=data["exercise_id"],
            name=data.get("name", data["exercise_id"]),
            measurement=MeasurementKind(data.get("measurement", "reps")),
            muscle_groups=tuple(data.get("muscle_groups", ())),
            rest_seconds=data.get("rest_seconds"),
            sets=[SetEntry.from_dict(s) for s in data.get("sets", [])],
        )


@dataclass
class DraftExercise:
    exercise_id: str
    sets: list[SetValues] = field(default_factory=list)


@dataclass
class SessionDraft:
    """What to start: an ordered exercise list with planned sets."""

    exercises: list[DraftExercise] = field(default_factory=list)
    template_id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class WorkoutSession:
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    template_id: Optional[str] = None
    name: Optional[str] = None
    status: SessionStatus = SessionStatus.not_started
    exercises: list[ExerciseEntry] = field(default_factory=list)
    active_index: int = 0
    started_at: Optional[datetime.datetime] = None
    ended_at: Optional[datetime.datetime] = None
    paused_seconds: float = 0.0
    paused_at: Optional[datetime.datetime] = None
    duration_seconds: Optional[float] = None
    notes: Optional[str] = None
    rating: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def total_sets(self) -> int:
        return sum(len(e.sets) for e in self.exercises)

    def completed_set_count(self) -> int:
        return sum(len(e.completed_sets()) for e in self.exercises)

    def volume(self) -> float:
        return sum(e.volume() for e in self.exercises)

    def exercise_volume(self, exercise_id: str) -> float:
        """Volume of every entry for ``exercise_id`` (supersets included)."""
        return sum(e.volume() for e in self.exercises if e.exercise_id == exercise_id)

    def elapsed_seconds(self, now: datetime.datetime) -> float:
        """Training time so far, excluding paused intervals."""
        if self.started_at is None:
            return 0.0
        if self.duration_seconds is not None:
            return self.duration_seconds
        paused = self.paused_seconds
        if self.paused_at is not None:
            paused += (now - self.paused_at).total_seconds()
        return max(0.0, (now - self.started_at).total_seconds() - paused)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "name": self.name,
            "status": self.status.value,
            "exercises": [e.to_dict() for e in self.exercises],
            "active_index": self.active_index,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "paused_seconds": self.paused_seconds,
            "duration_seconds": self.duration_seconds,
            "notes": self.notes,
            "rating": self.rating,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkoutSession":
        return cls(
            id=data["id"],
            template_id=data.get("template_id"),
            name=data.get("name"),
            status=SessionStatus(data.get("status", "completed")),
            exercises=[ExerciseEntry.from_dict(e) for e in data.get("exercises", [])],
            active_index=int(data.get("active_index", 0)),
            started_at=_dt(data.get("started_at")),
            ended_at=_dt(data.get("ended_at")),
            paused_seconds=float(data.get("paused_seconds") or 0.0),
            duration_seconds=data.get("duration_seconds"),
            notes=data.get("notes"),
            rating=data.get("rating"),
        )


@dataclass(frozen=True)
class PersonalRecord:
    exercise_id: str
    category: RecordCategory
    value: float
    session_id: str
    achieved_at: datetime.datetime

    @property
    def key(self) -> tuple[str, RecordCategory]:
        return (self.exercise_id, self.category)

    def to_dict(self) -> dict:
        return {
            "exercise_id": self.exercise_id,
            "category": self.category.value,
            "value": round(self.value, 2),
            "session_id": self.session_id,
            "achieved_at": self.achieved_at.isoformat(),
        }


@dataclass
class WorkoutStats:
    total_sessions: int = 0
    total_volume: float = 0.0
    total_sets: int = 0
    total_reps: int = 0
    total_set_duration_seconds: float = 0.0
    average_duration_seconds: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    volume_by_muscle_group: dict[str, float] = field(default_factory=dict)
    recent_records: list[PersonalRecord] = field(default_factory=list)

    def copy(self) -> WorkoutStats:
        return replace(
            self,
            volume_by_muscle_group=dict(self.volume_by_muscle_group),
            recent_records=list(self.recent_records),
        )

    def to_dict(self) -> dict:
        return {
            "total_sessions": self.total_sessions,
            "total_volume": round(self.total_volume, 2),
            "total_sets": self.total_sets,
            "total_reps": self.total_reps,
            "total_set_duration_seconds": round(self.total_set_duration_seconds, 2),
            "average_duration_seconds": round(self.average_duration_seconds, 2),
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "volume_by_muscle_group": {
                k: round(v, 2) for k, v in self.volume_by_muscle_group.items()
            },
            "recent_records": [r.to_dict() for r in self.recent_records],
        }
