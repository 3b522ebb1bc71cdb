from __future__ import annotations
import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Union

from errors import (
    ConflictError,
    InvalidReferenceError,
    InvalidStateError,
    PersistenceError,
    SessionIndexError,
)
from models import (
    ExerciseEntry,
    PersonalRecord,
    SessionDraft,
    SessionStatus,
    SetEntry,
    SetValues,
    WorkoutSession,
    WorkoutStats,
)
from records_service import PersonalRecordService, RecordTable
from rest_timer import RestTimer, TimerContext, TimerExpired, TimerStatus
from settings_schema import Preferences
from stats_service import StatisticsService

logger = logging.getLogger(__name__)


def local_now() -> datetime.datetime:
    """Current wall-clock time in the device's local zone."""
    return datetime.datetime.now().astimezone()


@dataclass(frozen=True)
class StartTimerIntent:
    duration: float
    context: TimerContext


@dataclass(frozen=True)
class NewRecordIntent:
    record: PersonalRecord


Intent = Union[StartTimerIntent, NewRecordIntent]


@dataclass
class LogSetResult:
    exercise_index: int
    set_index: int
    entry: SetEntry
    intents: List[Intent] = field(default_factory=list)

    @property
    def records(self) -> List[PersonalRecord]:
        return [i.record for i in self.intents if isinstance(i, NewRecordIntent)]

    @property
    def timer_started(self) -> Optional[StartTimerIntent]:
        for intent in self.intents:
            if isinstance(intent, StartTimerIntent):
                return intent
        return None


@dataclass
class CompletionResult:
    session: WorkoutSession
    records: List[PersonalRecord]
    stats: WorkoutStats


class SessionService:
    """Owns the single active workout session and its rest timer.

    Every command checks its preconditions before touching state, so a
    raised error leaves the session as it was. Storage is written after the
    in-memory change; a storage failure raises ``PersistenceError`` carrying
    the in-memory result.
    """

    def __init__(
        self,
        catalog,
        preferences: Preferences | None = None,
        history: Iterable[WorkoutSession] = (),
        records: Iterable[PersonalRecord] = (),
        stats: StatisticsService | None = None,
        history_repo=None,
        record_repo=None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.catalog = catalog
        self.preferences = preferences or Preferences()
        self.history: List[WorkoutSession] = list(history)
        self.records: RecordTable = PersonalRecordService.build_table(records)
        self.statistics = stats or StatisticsService()
        self.history_repo = history_repo
        self.record_repo = record_repo
        self.clock = clock or local_now
        self.session: WorkoutSession | None = None
        self._records_at_start: RecordTable = dict(self.records)
        self.timer = self._new_timer()
        self._timer_was_running = False

    @classmethod
    def from_storage(
        cls,
        catalog,
        history_repo,
        record_repo,
        preferences_repo=None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> "SessionService":
        prefs = preferences_repo.load_preferences() if preferences_repo else None
        return cls(
            catalog,
            preferences=prefs,
            history=history_repo.load_history(),
            records=record_repo.load_records(),
            history_repo=history_repo,
            record_repo=record_repo,
            clock=clock,
        )

    def _new_timer(self) -> RestTimer:
        return RestTimer(
            max_duration=self.preferences.max_rest_time_seconds,
            sound_enabled=self.preferences.timer_sound_enabled,
            vibration_enabled=self.preferences.vibration_enabled,
        )

    def update_preferences(self, preferences: Preferences) -> None:
        self.preferences = preferences
        self.timer.max_duration = preferences.max_rest_time_seconds
        self.timer.sound_enabled = preferences.timer_sound_enabled
        self.timer.vibration_enabled = preferences.vibration_enabled

    # ------------------------------------------------------------------
    # guards
    # ------------------------------------------------------------------
    def _require(self, *statuses: SessionStatus) -> WorkoutSession:
        if self.session is None:
            raise InvalidStateError("no active session")
        if self.session.status not in statuses:
            raise InvalidStateError(
                f"operation not allowed while session is {self.session.status.value}"
            )
        return self.session

    def _require_active(self) -> WorkoutSession:
        return self._require(SessionStatus.in_progress, SessionStatus.paused)

    @staticmethod
    def _exercise(session: WorkoutSession, index: int) -> ExerciseEntry:
        if not 0 <= index < len(session.exercises):
            raise SessionIndexError(f"exercise index {index} out of range")
        return session.exercises[index]

    @classmethod
    def _set(cls, session: WorkoutSession, exercise_index: int, set_index: int) -> SetEntry:
        entry = cls._exercise(session, exercise_index)
        if not 0 <= set_index < len(entry.sets):
            raise SessionIndexError(f"set index {set_index} out of range")
        return entry.sets[set_index]

    def _persist(self, writes, result) -> None:
        errors = []
        for write in writes:
            try:
                write()
            except (PersistenceError, OSError) as e:
                logger.error("failed to persist workout data: %s", e)
                errors.append(e)
        if errors:
            raise PersistenceError(
                "; ".join(str(e) for e in errors), result=result
            ) from errors[0]

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def start(self, draft: SessionDraft) -> WorkoutSession:
        if self.session is not None:
            raise ConflictError(f"session {self.session.id} is already active")
        if not draft.exercises:
            raise ValueError("session needs at least one exercise")
        entries = []
        for item in draft.exercises:
            definition = self.catalog.lookup(item.exercise_id)
            if definition is None:
                raise InvalidReferenceError(item.exercise_id)
            targets = [SetValues(t.weight, t.reps, t.duration) for t in item.sets]
            entries.append(ExerciseEntry.from_definition(definition, targets))
        session = WorkoutSession(
            template_id=draft.template_id,
            name=draft.name,
            status=SessionStatus.in_progress,
            exercises=entries,
            active_index=0,
            started_at=self.clock(),
        )
        self.session = session
        self._records_at_start = dict(self.records)
        self.timer = self._new_timer()
        self._timer_was_running = False
        logger.info("started session %s with %d exercises", session.id, len(entries))
        return session

    def pause(self) -> None:
        session = self._require(SessionStatus.in_progress)
        now = self.clock()
        session.paused_at = now
        session.status = SessionStatus.paused
        self._timer_was_running = self.timer.status == TimerStatus.running
        if self._timer_was_running:
            self.timer.pause(now)
        logger.info("paused session %s", session.id)

    def resume(self) -> None:
        session = self._require(SessionStatus.paused)
        now = self.clock()
        session.paused_seconds += (now - session.paused_at).total_seconds()
        session.paused_at = None
        session.status = SessionStatus.in_progress
        if self._timer_was_running and self.timer.status == TimerStatus.paused:
            self.timer.resume(now)
        self._timer_was_running = False
        logger.info("resumed session %s", session.id)

    def complete_workout(
        self, notes: str | None = None, rating: int | None = None
    ) -> CompletionResult:
        session = self._require_active()
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        now = self.clock()
        if session.paused_at is not None:
            session.paused_seconds += (now - session.paused_at).total_seconds()
            session.paused_at = None
        session.duration_seconds = max(
            0.0, (now - session.started_at).total_seconds() - session.paused_seconds
        )
        session.status = SessionStatus.completed
        session.ended_at = now
        session.notes = notes
        session.rating = rating
        self.timer.stop()
        self._timer_was_running = False
        self.session = None
        self.history.append(session)

        records = PersonalRecordService.evaluate_session(self.records, session)
        self.records = PersonalRecordService.apply(self.records, records)
        for rec in records:
            logger.info(
                "new %s record for %s: %.2f", rec.category.value, rec.exercise_id, rec.value
            )
        result = CompletionResult(session, records, self.stats())
        logger.info(
            "completed session %s: %.0fs, volume %.1f",
            session.id,
            session.duration_seconds,
            session.volume(),
        )
        writes = []
        if self.history_repo is not None:
            writes.append(lambda: self.history_repo.append_to_history(session))
        if self.record_repo is not None and records:
            writes.append(lambda: self.record_repo.save_records(records))
        self._persist(writes, result)
        return result

    def cancel_workout(self) -> WorkoutSession:
        session = self._require_active()
        now = self.clock()
        if session.paused_at is not None:
            session.paused_seconds += (now - session.paused_at).total_seconds()
            session.paused_at = None
        session.status = SessionStatus.cancelled
        session.ended_at = now
        self.timer.stop()
        self._timer_was_running = False
        self.session = None
        logger.info("cancelled session %s", session.id)
        # records logged live during a cancelled session do not count
        if self.records != self._records_at_start:
            self.records = self._records_at_start
            if self.record_repo is not None:
                restored = list(self.records.values())
                self._persist([lambda: self.record_repo.replace_records(restored)], session)
        return session

    # ------------------------------------------------------------------
    # sets
    # ------------------------------------------------------------------
    def _replay_records(self, session: WorkoutSession) -> RecordTable:
        """Rebuild the live table from the start-of-session snapshot and the sets as they stand."""
        previous = self.records
        replayed = PersonalRecordService.evaluate_sets(self._records_at_start, session)
        self.records = PersonalRecordService.apply(self._records_at_start, replayed)
        return previous

    def log_set(
        self, exercise_index: int, set_index: int, values: SetValues
    ) -> LogSetResult:
        """Record the actual values of a set.

        Logging a set that is already completed corrects it: the record table
        is replayed from the start of the session so a value that no set holds
        any longer stops being a record.
        """
        session = self._require(SessionStatus.in_progress)
        entry = self._exercise(session, exercise_index)
        item = self._set(session, exercise_index, set_index)
        values.validate(entry.measurement)
        now = self.clock()
        correction = item.completed

        duration = None
        remaining = session.total_sets() - session.completed_set_count()
        if not correction:
            remaining -= 1
        if self.preferences.auto_start_timer and remaining > 0:
            duration = self.preferences.rest_seconds_for(entry.exercise_id, entry.rest_seconds)
            if duration <= 0:
                raise ValueError(f"rest duration for {entry.exercise_id} must be positive")

        item.actual = SetValues(values.weight, values.reps, values.duration)
        item.completed = True
        item.completed_at = now
        result = LogSetResult(exercise_index, set_index, item)

        if correction:
            previous = self._replay_records(session)
            records = [
                rec
                for key, rec in self.records.items()
                if previous.get(key) != rec and rec.achieved_at == now
            ]
        else:
            previous = self.records
            records = PersonalRecordService.evaluate_set(
                self.records, entry.exercise_id, entry.measurement, item.actual, session.id, now
            )
            self.records = PersonalRecordService.apply(self.records, records)
        for rec in records:
            logger.info(
                "new %s record for %s: %.2f", rec.category.value, rec.exercise_id, rec.value
            )
            result.intents.append(NewRecordIntent(rec))

        if duration is not None:
            context = TimerContext(exercise_index, set_index)
            self.timer.start(duration, now, context, replace=True)
            result.intents.append(StartTimerIntent(self.timer.duration, context))

        if self.record_repo is not None:
            if correction and self.records != previous:
                table = list(self.records.values())
                self._persist([lambda: self.record_repo.replace_records(table)], result)
            elif records:
                self._persist([lambda: self.record_repo.save_records(records)], result)
        return result

    def add_set(self, exercise_index: int, target: SetValues | None = None) -> int:
        """Append a planned set, repeating the last set's target by default."""
        session = self._require(SessionStatus.in_progress)
        entry = self._exercise(session, exercise_index)
        base = target or entry.sets[-1].target
        entry.sets.append(SetEntry(target=SetValues(base.weight, base.reps, base.duration)))
        return len(entry.sets) - 1

    def remove_set(self, exercise_index: int, set_index: int) -> None:
        session = self._require(SessionStatus.in_progress)
        entry = self._exercise(session, exercise_index)
        item = self._set(session, exercise_index, set_index)
        if len(entry.sets) == 1:
            raise SessionIndexError("cannot remove the only set of an exercise")
        del entry.sets[set_index]
        if not item.completed:
            return
        previous = self._replay_records(session)
        if self.record_repo is not None and self.records != previous:
            table = list(self.records.values())
            self._persist([lambda: self.record_repo.replace_records(table)], None)

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------
    def next_exercise(self) -> int:
        session = self._require_active()
        session.active_index = min(session.active_index + 1, len(session.exercises) - 1)
        return session.active_index

    def previous_exercise(self) -> int:
        session = self._require_active()
        session.active_index = max(session.active_index - 1, 0)
        return session.active_index

    def go_to_exercise(self, index: int) -> int:
        session = self._require_active()
        self._exercise(session, index)
        session.active_index = index
        return index

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def progress(self) -> float:
        if self.session is None:
            return 0.0
        total = self.session.total_sets()
        return self.session.completed_set_count() / total if total else 0.0

    def volume(self) -> float:
        return self.session.volume() if self.session is not None else 0.0

    def elapsed_seconds(self) -> float:
        if self.session is None:
            return 0.0
        return self.session.elapsed_seconds(self.clock())

    def active_exercise(self) -> ExerciseEntry:
        session = self._require_active()
        return session.exercises[session.active_index]

    def stats(self, today: datetime.date | None = None) -> WorkoutStats:
        today = today or self.clock().date()
        return self.statistics.compute(self.history, self.records.values(), today)

    # ------------------------------------------------------------------
    # rest timer
    # ------------------------------------------------------------------
    def start_timer(
        self, duration: float | None = None, replace: bool = False
    ) -> dict:
        session = self._require(SessionStatus.in_progress)
        entry = session.exercises[session.active_index]
        if duration is None:
            duration = self.preferences.rest_seconds_for(entry.exercise_id, entry.rest_seconds)
        context = TimerContext(session.active_index, len(entry.completed_sets()))
        now = self.clock()
        self.timer.start(duration, now, context, replace=replace)
        return self.timer.snapshot(now)

    def pause_timer(self) -> dict:
        self._require(SessionStatus.in_progress)
        now = self.clock()
        self.timer.pause(now)
        return self.timer.snapshot(now)

    def resume_timer(self) -> dict:
        self._require(SessionStatus.in_progress)
        now = self.clock()
        self.timer.resume(now)
        return self.timer.snapshot(now)

    def adjust_timer(self, delta_seconds: float) -> dict:
        self._require_active()
        now = self.clock()
        self.timer.adjust(delta_seconds, now)
        return self.timer.snapshot(now)

    def stop_timer(self) -> dict:
        self._require_active()
        self.timer.stop()
        self._timer_was_running = False
        return self.timer.snapshot(self.clock())

    def tick(self, now: datetime.datetime | None = None) -> Optional[TimerExpired]:
        if self.session is None:
            return None
        return self.timer.tick(now or self.clock())

    def timer_state(self) -> dict:
        return self.timer.snapshot(self.clock())
