import sqlite3
import csv
import datetime
import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from config import YamlConfig
from errors import PersistenceError
from models import (
    ExerciseDefinition,
    ExerciseEntry,
    MeasurementKind,
    PersonalRecord,
    RecordCategory,
    SessionStatus,
    SetEntry,
    SetValues,
    WorkoutSession,
)
from settings_schema import Preferences, validate_settings

logger = logging.getLogger(__name__)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "workouts": (
            """CREATE TABLE workouts (
                    id TEXT PRIMARY KEY,
                    seq INTEGER NOT NULL,
                    template_id TEXT,
                    name TEXT,
                    status TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    paused_seconds REAL NOT NULL DEFAULT 0,
                    duration_seconds REAL,
                    notes TEXT,
                    rating INTEGER
                );""",
            [
                "id",
                "seq",
                "template_id",
                "name",
                "status",
                "start_time",
                "end_time",
                "paused_seconds",
                "duration_seconds",
                "notes",
                "rating",
            ],
        ),
        "session_exercises": (
            """CREATE TABLE session_exercises (
                    workout_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    exercise_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    measurement TEXT NOT NULL,
                    muscle_groups TEXT NOT NULL,
                    rest_seconds INTEGER,
                    PRIMARY KEY (workout_id, position),
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE CASCADE
                );""",
            [
                "workout_id",
                "position",
                "exercise_id",
                "name",
                "measurement",
                "muscle_groups",
                "rest_seconds",
            ],
        ),
        "session_sets": (
            """CREATE TABLE session_sets (
                    workout_id TEXT NOT NULL,
                    exercise_position INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    target_weight REAL,
                    target_reps INTEGER,
                    target_duration REAL,
                    weight REAL,
                    reps INTEGER,
                    duration REAL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    completed_at TEXT,
                    PRIMARY KEY (workout_id, exercise_position, position),
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE CASCADE
                );""",
            [
                "workout_id",
                "exercise_position",
                "position",
                "target_weight",
                "target_reps",
                "target_duration",
                "weight",
                "reps",
                "duration",
                "completed",
                "completed_at",
            ],
        ),
        "personal_records": (
            """CREATE TABLE personal_records (
                    exercise_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    value REAL NOT NULL,
                    workout_id TEXT NOT NULL,
                    achieved_at TEXT NOT NULL,
                    PRIMARY KEY (exercise_id, category)
                );""",
            ["exercise_id", "category", "value", "workout_id", "achieved_at"],
        ),
        "exercise_catalog": (
            """CREATE TABLE exercise_catalog (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    measurement TEXT NOT NULL DEFAULT 'reps',
                    muscle_groups TEXT NOT NULL DEFAULT '',
                    equipment TEXT NOT NULL DEFAULT '',
                    difficulty TEXT NOT NULL DEFAULT 'beginner',
                    rest_seconds INTEGER
                );""",
            [
                "id",
                "name",
                "measurement",
                "muscle_groups",
                "equipment",
                "difficulty",
                "rest_seconds",
            ],
        ),
    }

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open {self._db_path}: {e}") from e
        try:
            connection.execute("PRAGMA foreign_keys=on;")
            yield connection
            connection.commit()
        except sqlite3.Error as e:
            connection.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        logger.info("migrating table %s", table)
        conn.execute("PRAGMA foreign_keys=off;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;")
        conn.execute(f"DROP TABLE {table}_old;")
        conn.execute("PRAGMA foreign_keys=on;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


def _iso(ts: Optional[datetime.datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


def _parse(ts: Optional[str]) -> Optional[datetime.datetime]:
    return datetime.datetime.fromisoformat(ts) if ts else None


class WorkoutHistoryRepository(BaseRepository):
    """Append-only storage of finished sessions."""

    def append_to_history(self, session: WorkoutSession) -> None:
        if session.status != SessionStatus.completed:
            raise ValueError("only completed sessions belong in history")
        with self._connection() as conn:
            seq = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM workouts;").fetchone()[0]
            conn.execute(
                "INSERT INTO workouts (id, seq, template_id, name, status, start_time, end_time, "
                "paused_seconds, duration_seconds, notes, rating) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    session.id,
                    seq,
                    session.template_id,
                    session.name,
                    session.status.value,
                    _iso(session.started_at),
                    _iso(session.ended_at),
                    session.paused_seconds,
                    session.duration_seconds,
                    session.notes,
                    session.rating,
                ),
            )
            for pos, entry in enumerate(session.exercises):
                conn.execute(
                    "INSERT INTO session_exercises (workout_id, position, exercise_id, name, "
                    "measurement, muscle_groups, rest_seconds) VALUES (?, ?, ?, ?, ?, ?, ?);",
                    (
                        session.id,
                        pos,
                        entry.exercise_id,
                        entry.name,
                        entry.measurement.value,
                        "|".join(entry.muscle_groups),
                        entry.rest_seconds,
                    ),
                )
                for set_pos, item in enumerate(entry.sets):
                    actual = item.actual or SetValues()
                    conn.execute(
                        "INSERT INTO session_sets (workout_id, exercise_position, position, "
                        "target_weight, target_reps, target_duration, weight, reps, duration, "
                        "completed, completed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                        (
                            session.id,
                            pos,
                            set_pos,
                            item.target.weight,
                            item.target.reps,
                            item.target.duration,
                            actual.weight,
                            actual.reps,
                            actual.duration,
                            1 if item.completed else 0,
                            _iso(item.completed_at),
                        ),
                    )
        logger.debug("stored session %s", session.id)

    def load_history(self) -> List[WorkoutSession]:
        workouts = self.fetch_all(
            "SELECT id, template_id, name, status, start_time, end_time, paused_seconds, "
            "duration_seconds, notes, rating FROM workouts ORDER BY seq;"
        )
        exercises: Dict[str, List[ExerciseEntry]] = {}
        for wid, _pos, ex_id, name, measurement, groups, rest in self.fetch_all(
            "SELECT workout_id, position, exercise_id, name, measurement, muscle_groups, "
            "rest_seconds FROM session_exercises ORDER BY workout_id, position;"
        ):
            exercises.setdefault(wid, []).append(
                ExerciseEntry(
                    exercise_id=ex_id,
                    name=name,
                    measurement=MeasurementKind(measurement),
                    muscle_groups=tuple(g for g in groups.split("|") if g),
                    rest_seconds=rest,
                )
            )
        for row in self.fetch_all(
            "SELECT workout_id, exercise_position, target_weight, target_reps, target_duration, "
            "weight, reps, duration, completed, completed_at FROM session_sets "
            "ORDER BY workout_id, exercise_position, position;"
        ):
            wid, ex_pos, t_w, t_r, t_d, w, r, d, completed, completed_at = row
            exercises[wid][ex_pos].sets.append(
                SetEntry(
                    target=SetValues(t_w, t_r, t_d),
                    actual=SetValues(w, r, d) if completed else None,
                    completed=bool(completed),
                    completed_at=_parse(completed_at),
                )
            )
        history = []
        for wid, tid, name, status, start, end, paused, duration, notes, rating in workouts:
            history.append(
                WorkoutSession(
                    id=wid,
                    template_id=tid,
                    name=name,
                    status=SessionStatus(status),
                    exercises=exercises.get(wid, []),
                    started_at=_parse(start),
                    ended_at=_parse(end),
                    paused_seconds=float(paused),
                    duration_seconds=duration,
                    notes=notes,
                    rating=rating,
                )
            )
        return history

    def count(self) -> int:
        return int(self.fetch_all("SELECT COUNT(*) FROM workouts;")[0][0])

    def export_json(self) -> str:
        return json.dumps([s.to_dict() for s in self.load_history()], indent=2)

    def delete_all(self) -> None:
        self._delete_all("session_sets")
        self._delete_all("session_exercises")
        self._delete_all("workouts")


class PersonalRecordRepository(BaseRepository):
    """Live record per (exercise, category). Superseded values are overwritten."""

    @staticmethod
    def _upsert(conn: sqlite3.Connection, records: Iterable[PersonalRecord]) -> None:
        for rec in records:
            conn.execute(
                "INSERT INTO personal_records (exercise_id, category, value, workout_id, achieved_at) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(exercise_id, category) DO UPDATE SET value=excluded.value, "
                "workout_id=excluded.workout_id, achieved_at=excluded.achieved_at;",
                (
                    rec.exercise_id,
                    rec.category.value,
                    rec.value,
                    rec.session_id,
                    rec.achieved_at.isoformat(),
                ),
            )

    def save_records(self, records: Iterable[PersonalRecord]) -> None:
        with self._connection() as conn:
            self._upsert(conn, records)

    def replace_records(self, records: Iterable[PersonalRecord]) -> None:
        """Swap the whole table, e.g. after a cancelled session is rolled back."""
        with self._connection() as conn:
            conn.execute("DELETE FROM personal_records;")
            self._upsert(conn, records)

    def load_records(self) -> List[PersonalRecord]:
        rows = self.fetch_all(
            "SELECT exercise_id, category, value, workout_id, achieved_at "
            "FROM personal_records ORDER BY exercise_id, category;"
        )
        return [
            PersonalRecord(ex_id, RecordCategory(cat), float(val), wid, _parse(achieved))
            for ex_id, cat, val, wid, achieved in rows
        ]

    def delete_all(self) -> None:
        self._delete_all("personal_records")


class ExerciseCatalogRepository(BaseRepository):
    """SQLite-backed exercise catalog used as the lookup collaborator."""

    @staticmethod
    def _row_to_definition(row: Tuple) -> ExerciseDefinition:
        ex_id, name, measurement, groups, equipment, difficulty, rest = row
        return ExerciseDefinition(
            id=ex_id,
            name=name,
            measurement=MeasurementKind(measurement),
            muscle_groups=frozenset(g for g in groups.split("|") if g),
            equipment=frozenset(e for e in equipment.split("|") if e),
            difficulty=difficulty,
            rest_seconds=rest,
        )

    def add(self, definition: ExerciseDefinition) -> None:
        self.execute(
            "INSERT INTO exercise_catalog (id, name, measurement, muscle_groups, equipment, difficulty, rest_seconds) "
            "VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name=excluded.name, measurement=excluded.measurement, "
            "muscle_groups=excluded.muscle_groups, equipment=excluded.equipment, "
            "difficulty=excluded.difficulty, rest_seconds=excluded.rest_seconds;",
            (
                definition.id,
                definition.name,
                definition.measurement.value,
                "|".join(sorted(definition.muscle_groups)),
                "|".join(sorted(definition.equipment)),
                definition.difficulty,
                definition.rest_seconds,
            ),
        )

    def lookup(self, exercise_id: str) -> Optional[ExerciseDefinition]:
        rows = self.fetch_all(
            "SELECT id, name, measurement, muscle_groups, equipment, difficulty, rest_seconds "
            "FROM exercise_catalog WHERE id = ?;",
            (exercise_id,),
        )
        return self._row_to_definition(rows[0]) if rows else None

    def fetch_all_definitions(self) -> List[ExerciseDefinition]:
        rows = self.fetch_all(
            "SELECT id, name, measurement, muscle_groups, equipment, difficulty, rest_seconds "
            "FROM exercise_catalog ORDER BY name;"
        )
        return [self._row_to_definition(r) for r in rows]

    def import_csv(self, csv_path: str) -> int:
        """Import ``id,name,measurement,muscle_groups,equipment,difficulty,rest_seconds`` rows.

        Every row is validated before anything is written.
        """
        definitions = []
        with open(csv_path, newline="", encoding="utf-8") as csvfile:
            reader = csv.DictReader(csvfile)
            for line, row in enumerate(reader, start=2):
                rest = row.get("rest_seconds") or None
                try:
                    definitions.append(
                        ExerciseDefinition(
                            id=row["id"],
                            name=row.get("name") or row["id"],
                            measurement=MeasurementKind(row.get("measurement") or "reps"),
                            muscle_groups=frozenset(
                                g for g in (row.get("muscle_groups") or "").split("|") if g
                            ),
                            equipment=frozenset(
                                e for e in (row.get("equipment") or "").split("|") if e
                            ),
                            difficulty=row.get("difficulty") or "beginner",
                            rest_seconds=int(rest) if rest else None,
                        )
                    )
                except (KeyError, ValueError) as e:
                    raise ValueError(f"{csv_path}:{line}: invalid catalog row: {e}") from e
        for definition in definitions:
            self.add(definition)
        return len(definitions)


class PreferencesRepository:
    """Preferences stored in a YAML file."""

    def __init__(self, yaml_path: str = "settings.yaml") -> None:
        self._yaml = YamlConfig(yaml_path)

    def load_preferences(self) -> Preferences:
        try:
            data = self._yaml.load()
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"cannot read preferences: {e}") from e
        return validate_settings(data)

    def save_preferences(self, preferences: Preferences) -> None:
        try:
            self._yaml.save(preferences.model_dump())
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"cannot write preferences: {e}") from e
