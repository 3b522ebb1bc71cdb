from __future__ import annotations
import datetime
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from models import (
    MeasurementKind,
    PersonalRecord,
    RecordCategory,
    SetValues,
    WorkoutSession,
)
from tools import MathTools

logger = logging.getLogger(__name__)

RecordTable = Dict[Tuple[str, RecordCategory], PersonalRecord]


class PersonalRecordService:
    """Decide which record categories a set or a session improves.

    All evaluation methods are pure: they read the record table and return
    the new entries. ``apply`` produces the updated table. A value must be
    strictly greater than the live record to replace it.
    """

    @staticmethod
    def _candidates(
        measurement: MeasurementKind, values: SetValues
    ) -> List[Tuple[RecordCategory, float]]:
        if measurement == MeasurementKind.duration:
            return [(RecordCategory.best_duration, float(values.duration))]
        result = [
            (RecordCategory.max_weight, float(values.weight)),
            (RecordCategory.max_reps, float(values.reps)),
        ]
        est = MathTools.reliable_1rm(float(values.weight), int(values.reps))
        if est is not None:
            result.append((RecordCategory.max_estimated_1rm, est))
        return result

    @staticmethod
    def _improves(
        table: RecordTable, exercise_id: str, category: RecordCategory, value: float
    ) -> bool:
        current = table.get((exercise_id, category))
        return current is None or value > current.value

    @classmethod
    def evaluate_set(
        cls,
        table: RecordTable,
        exercise_id: str,
        measurement: MeasurementKind,
        values: SetValues,
        session_id: str,
        achieved_at: datetime.datetime,
    ) -> List[PersonalRecord]:
        """Return record entries improved by one completed set."""
        records = []
        for category, value in cls._candidates(measurement, values):
            if cls._improves(table, exercise_id, category, value):
                records.append(
                    PersonalRecord(exercise_id, category, value, session_id, achieved_at)
                )
        return records

    @classmethod
    def evaluate_sets(
        cls, table: RecordTable, session: WorkoutSession
    ) -> List[PersonalRecord]:
        """Replay a session's completed sets in the order they were logged.

        Each set is checked against a working copy of the table, so only the
        first set to reach a value holds it. Session volume is not checked.
        """
        logged = [
            (item.completed_at, ex_index, set_index, entry, item)
            for ex_index, entry in enumerate(session.exercises)
            for set_index, item in enumerate(entry.sets)
            if item.completed and item.actual is not None
        ]
        logged.sort(key=lambda t: (t[0] or session.started_at, t[1], t[2]))
        working = dict(table)
        found: RecordTable = {}
        for completed_at, _, _, entry, item in logged:
            for rec in cls.evaluate_set(
                working,
                entry.exercise_id,
                entry.measurement,
                item.actual,
                session.id,
                completed_at,
            ):
                working[rec.key] = rec
                found[rec.key] = rec
        return list(found.values())

    @classmethod
    def evaluate_session(
        cls, table: RecordTable, session: WorkoutSession
    ) -> List[PersonalRecord]:
        """Sweep a finished session.

        Completed sets are replayed with ``evaluate_sets``, then the
        per-exercise session volume is checked. Sets already applied while
        logging do not show up again because equal values are not records.
        """
        found: RecordTable = {rec.key: rec for rec in cls.evaluate_sets(table, session)}
        working = cls.apply(table, found.values())
        achieved_at = session.ended_at or session.started_at
        seen = set()
        for entry in session.exercises:
            if entry.measurement != MeasurementKind.reps or entry.exercise_id in seen:
                continue
            seen.add(entry.exercise_id)
            volume = session.exercise_volume(entry.exercise_id)
            if volume <= 0:
                continue
            if cls._improves(working, entry.exercise_id, RecordCategory.max_volume, volume):
                rec = PersonalRecord(
                    entry.exercise_id,
                    RecordCategory.max_volume,
                    volume,
                    session.id,
                    achieved_at,
                )
                working[rec.key] = rec
                found[rec.key] = rec
        return list(found.values())

    @staticmethod
    def apply(table: RecordTable, records: Iterable[PersonalRecord]) -> RecordTable:
        """Return a new table with ``records`` replacing their predecessors."""
        updated = dict(table)
        for rec in records:
            updated[rec.key] = rec
        return updated

    @staticmethod
    def recent(table: RecordTable, limit: int = 5) -> List[PersonalRecord]:
        return sorted(
            table.values(), key=lambda r: (r.achieved_at, r.exercise_id), reverse=True
        )[:limit]

    @staticmethod
    def for_exercise(table: RecordTable, exercise_id: str) -> Dict[str, float]:
        return {
            rec.category.value: rec.value
            for (ex_id, _), rec in table.items()
            if ex_id == exercise_id
        }

    @staticmethod
    def build_table(records: Iterable[PersonalRecord]) -> RecordTable:
        table: RecordTable = {}
        for rec in records:
            current: Optional[PersonalRecord] = table.get(rec.key)
            if current is None or rec.value > current.value:
                table[rec.key] = rec
        return table
