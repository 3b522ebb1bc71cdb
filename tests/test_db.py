import os
import sys
import datetime
import json
import sqlite3
import tempfile
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
sys.path.append(os.path.dirname(__file__))
from db import (
    ExerciseCatalogRepository,
    PersonalRecordRepository,
    WorkoutHistoryRepository,
)
from errors import PersistenceError
from models import (
    DraftExercise,
    ExerciseDefinition,
    MeasurementKind,
    RecordCategory,
    SessionDraft,
    SetValues,
)
from session_service import SessionService
from fake_clock import FakeClock


class RepositoryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "workout.db")
        self.catalog = ExerciseCatalogRepository(self.db_path)
        self.history = WorkoutHistoryRepository(self.db_path)
        self.records = PersonalRecordRepository(self.db_path)
        self.catalog.add(
            ExerciseDefinition(
                "bench",
                "Bench Press",
                muscle_groups=frozenset({"chest", "triceps"}),
                equipment=frozenset({"barbell"}),
                rest_seconds=120,
            )
        )
        self.catalog.add(
            ExerciseDefinition("plank", "Plank", MeasurementKind.duration, frozenset({"core"}))
        )
        self.clock = FakeClock()

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _engine(self) -> SessionService:
        return SessionService.from_storage(
            self.catalog, self.history, self.records, clock=self.clock
        )

    def _run_session(self, engine: SessionService) -> None:
        engine.start(
            SessionDraft(
                [
                    DraftExercise("bench", [SetValues(100.0, 10), SetValues(100.0, 8)]),
                    DraftExercise("plank", [SetValues(duration=60.0)]),
                ],
                name="Push",
            )
        )
        engine.log_set(0, 0, SetValues(100.0, 10))
        engine.log_set(1, 0, SetValues(duration=75.0))
        self.clock.advance(1800)
        engine.complete_workout("good", 5)

    def test_catalog_lookup(self) -> None:
        definition = self.catalog.lookup("bench")
        self.assertEqual(definition.muscle_groups, frozenset({"chest", "triceps"}))
        self.assertEqual(definition.equipment, frozenset({"barbell"}))
        self.assertEqual(definition.rest_seconds, 120)
        self.assertIsNone(self.catalog.lookup("missing"))
        self.assertEqual(
            [d.id for d in self.catalog.fetch_all_definitions()], ["bench", "plank"]
        )

    def test_catalog_import_csv(self) -> None:
        csv_path = os.path.join(self.tmpdir.name, "catalog.csv")
        with open(csv_path, "w", encoding="utf-8") as f:
            f.write("id,name,measurement,muscle_groups,equipment,difficulty,rest_seconds\n")
            f.write("squat,Back Squat,reps,legs|glutes,barbell,intermediate,180\n")
            f.write("hang,Dead Hang,duration,forearms,,beginner,\n")
        self.assertEqual(self.catalog.import_csv(csv_path), 2)
        squat = self.catalog.lookup("squat")
        self.assertEqual(squat.muscle_groups, frozenset({"legs", "glutes"}))
        self.assertEqual(squat.rest_seconds, 180)
        self.assertEqual(self.catalog.lookup("hang").measurement, MeasurementKind.duration)

    def test_catalog_import_rejects_bad_rest(self) -> None:
        csv_path = os.path.join(self.tmpdir.name, "bad.csv")
        with open(csv_path, "w", encoding="utf-8") as f:
            f.write("id,name,measurement,muscle_groups,equipment,difficulty,rest_seconds\n")
            f.write("squat,Back Squat,reps,legs,barbell,intermediate,180\n")
            f.write("row,Row,reps,back,,beginner,-30\n")
        with self.assertRaises(ValueError) as ctx:
            self.catalog.import_csv(csv_path)
        self.assertIn(":3:", str(ctx.exception))
        self.assertIsNone(self.catalog.lookup("squat"))
        self.assertIsNone(self.catalog.lookup("row"))

    def test_history_survives_reload(self) -> None:
        self._run_session(self._engine())
        loaded = self.history.load_history()
        self.assertEqual(len(loaded), 1)
        session = loaded[0]
        self.assertEqual(session.name, "Push")
        self.assertEqual(session.rating, 5)
        self.assertEqual(session.duration_seconds, 1800.0)
        self.assertEqual(session.started_at, self.clock.now - datetime.timedelta(seconds=1800))
        self.assertEqual(len(session.exercises[0].sets), 2)
        self.assertIsNone(session.exercises[0].sets[1].actual)
        self.assertEqual(session.exercises[1].sets[0].actual.duration, 75.0)
        self.assertEqual(session.volume(), 1000.0)

        engine = self._engine()
        self.assertEqual(engine.stats().total_volume, 1000.0)
        self.assertEqual(engine.stats().volume_by_muscle_group, {"chest": 500.0, "triceps": 500.0})

    def test_records_persisted(self) -> None:
        self._run_session(self._engine())
        stored = {(r.exercise_id, r.category): r.value for r in self.records.load_records()}
        self.assertEqual(stored[("bench", RecordCategory.max_weight)], 100.0)
        self.assertEqual(stored[("bench", RecordCategory.max_volume)], 1000.0)
        self.assertEqual(stored[("plank", RecordCategory.best_duration)], 75.0)

        engine = self._engine()
        engine.start(SessionDraft([DraftExercise("bench", [SetValues(105.0, 5)] * 2)]))
        engine.log_set(0, 0, SetValues(105.0, 5))
        engine.cancel_workout()
        stored = {(r.exercise_id, r.category): r.value for r in self.records.load_records()}
        self.assertEqual(stored[("bench", RecordCategory.max_weight)], 100.0)

    def test_only_completed_sessions_stored(self) -> None:
        engine = self._engine()
        engine.start(SessionDraft([DraftExercise("bench")]))
        session = engine.cancel_workout()
        with self.assertRaises(ValueError):
            self.history.append_to_history(session)
        self.assertEqual(self.history.count(), 0)

    def test_export_json(self) -> None:
        self._run_session(self._engine())
        data = json.loads(self.history.export_json())
        self.assertEqual(data[0]["status"], "completed")
        self.assertEqual(data[0]["exercises"][0]["exercise_id"], "bench")

    def test_storage_errors_wrapped(self) -> None:
        with self.assertRaises(PersistenceError):
            self.history.fetch_all("SELECT * FROM missing_table;")

    def test_schema_migration_keeps_rows(self) -> None:
        path = os.path.join(self.tmpdir.name, "old.db")
        conn = sqlite3.connect(path)
        conn.execute(
            "CREATE TABLE exercise_catalog (id TEXT PRIMARY KEY, name TEXT NOT NULL);"
        )
        conn.execute("INSERT INTO exercise_catalog VALUES ('row', 'Rowing');")
        conn.commit()
        conn.close()
        repo = ExerciseCatalogRepository(path)
        definition = repo.lookup("row")
        self.assertEqual(definition.name, "Rowing")
        self.assertEqual(definition.measurement, MeasurementKind.reps)


if __name__ == "__main__":
    unittest.main()
