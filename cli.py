import argparse
import datetime
import json
import logging
import shutil

from db import (
    ExerciseCatalogRepository,
    PersonalRecordRepository,
    PreferencesRepository,
    WorkoutHistoryRepository,
)
from models import DraftExercise, ExerciseDefinition, SessionDraft, SetValues
from session_service import SessionService
from tools import WeightConverter


def _engine(db_path: str, yaml_path: str) -> SessionService:
    return SessionService.from_storage(
        ExerciseCatalogRepository(db_path),
        WorkoutHistoryRepository(db_path),
        PersonalRecordRepository(db_path),
        PreferencesRepository(yaml_path),
    )


def show_stats(db_path: str, yaml_path: str) -> None:
    engine = _engine(db_path, yaml_path)
    print(json.dumps(engine.stats().to_dict(), indent=2))


def show_history(db_path: str) -> None:
    for session in WorkoutHistoryRepository(db_path).load_history():
        print(
            f"{session.started_at:%Y-%m-%d %H:%M}  {session.name or session.id}  "
            f"{len(session.exercises)} exercises  volume {session.volume():.1f}"
        )


def show_records(db_path: str) -> None:
    for rec in PersonalRecordRepository(db_path).load_records():
        print(f"{rec.exercise_id:<20} {rec.category.value:<28} {rec.value:>8.2f}")


def export_history(db_path: str, out_path: str) -> None:
    data = WorkoutHistoryRepository(db_path).export_json()
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(data)


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def import_catalog(csv_path: str, db_path: str) -> int:
    return ExerciseCatalogRepository(db_path).import_csv(csv_path)


def demo_data(db_path: str, yaml_path: str) -> None:
    """Populate the database with a demo session if empty."""
    catalog = ExerciseCatalogRepository(db_path)
    if WorkoutHistoryRepository(db_path).count():
        print("Database already contains workouts")
        return
    catalog.add(
        ExerciseDefinition(
            "bench_press",
            "Bench Press",
            muscle_groups=frozenset({"chest", "triceps"}),
            equipment=frozenset({"barbell"}),
        )
    )
    engine = _engine(db_path, yaml_path)
    engine.start(
        SessionDraft(
            [DraftExercise("bench_press", [SetValues(100.0, 5), SetValues(105.0, 5)])],
            name="Demo session",
        )
    )
    engine.log_set(0, 0, SetValues(100.0, 5))
    engine.log_set(0, 1, SetValues(105.0, 5))
    engine.complete_workout("Demo", 4)
    print("Demo data inserted")


def main() -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    stats = sub.add_parser("stats")
    stats.add_argument("--db", default="workout.db")
    stats.add_argument("--yaml", default="settings.yaml")

    hist = sub.add_parser("history")
    hist.add_argument("--db", default="workout.db")

    recs = sub.add_parser("records")
    recs.add_argument("--db", default="workout.db")

    exp = sub.add_parser("export")
    exp.add_argument("--db", default="workout.db")
    exp.add_argument(
        "--out", default=f"history_{datetime.date.today().isoformat()}.json"
    )

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="workout.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="workout.db")

    imp = sub.add_parser("import-catalog")
    imp.add_argument("--csv", required=True)
    imp.add_argument("--db", default="workout.db")

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default="workout.db")
    demo.add_argument("--yaml", default="settings.yaml")

    conv = sub.add_parser("convert")
    conv.add_argument("--weight", type=float, required=True)
    conv.add_argument("--unit", choices=["kg", "lb"], required=True)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "stats":
        show_stats(args.db, args.yaml)
    elif args.cmd == "history":
        show_history(args.db)
    elif args.cmd == "records":
        show_records(args.db)
    elif args.cmd == "export":
        export_history(args.db, args.out)
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)
    elif args.cmd == "import-catalog":
        print(f"Imported {import_catalog(args.csv, args.db)} exercises")
    elif args.cmd == "demo":
        demo_data(args.db, args.yaml)
    elif args.cmd == "convert":
        if args.unit == "kg":
            print(f"{args.weight} kg = {WeightConverter.kg_to_lb(args.weight)} lb")
        else:
            print(f"{args.weight} lb = {WeightConverter.lb_to_kg(args.weight)} kg")


if __name__ == "__main__":
    main()
