import logging
from typing import List, Optional

from fastapi import APIRouter, Body, FastAPI, HTTPException
from pydantic import BaseModel, Field

from config import APP_VERSION
from db import (
    ExerciseCatalogRepository,
    PersonalRecordRepository,
    PreferencesRepository,
    WorkoutHistoryRepository,
)
from errors import (
    ConflictError,
    InvalidReferenceError,
    InvalidStateError,
    PersistenceError,
    SessionIndexError,
    WorkoutError,
)
from models import (
    DraftExercise,
    ExerciseDefinition,
    MeasurementKind,
    SessionDraft,
    SetValues,
)
from session_service import SessionService
from settings_schema import Preferences

logger = logging.getLogger(__name__)


class SetBody(BaseModel):
    weight: Optional[float] = None
    reps: Optional[int] = None
    duration: Optional[float] = None

    def to_values(self) -> SetValues:
        return SetValues(self.weight, self.reps, self.duration)


class DraftExerciseBody(BaseModel):
    exercise_id: str
    sets: List[SetBody] = Field(default_factory=list)


class DraftBody(BaseModel):
    exercises: List[DraftExerciseBody]
    template_id: Optional[str] = None
    name: Optional[str] = None


class ExerciseBody(BaseModel):
    id: str
    name: str
    measurement: MeasurementKind = MeasurementKind.reps
    muscle_groups: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)
    difficulty: str = "beginner"
    rest_seconds: Optional[int] = Field(None, gt=0)


class GymAPI:
    """Provides REST endpoints for live workout logging."""

    def __init__(
        self,
        db_path: str = "workout.db",
        yaml_path: str = "settings.yaml",
        clock=None,
    ) -> None:
        self.db_path = db_path
        self.catalog = ExerciseCatalogRepository(db_path)
        self.history = WorkoutHistoryRepository(db_path)
        self.records = PersonalRecordRepository(db_path)
        self.preferences = PreferencesRepository(yaml_path)
        self.engine = SessionService.from_storage(
            self.catalog,
            self.history,
            self.records,
            self.preferences,
            clock=clock,
        )
        self.app = FastAPI(title="Workout Session API", version=APP_VERSION)
        self._setup_routes()

    @staticmethod
    def _http_error(exc: Exception, result: Optional[dict] = None) -> HTTPException:
        if isinstance(exc, (ConflictError, InvalidStateError)):
            return HTTPException(status_code=409, detail=str(exc))
        if isinstance(exc, (SessionIndexError, InvalidReferenceError)):
            return HTTPException(status_code=404, detail=str(exc))
        if isinstance(exc, PersistenceError):
            logger.error("storage failure: %s", exc)
            # the change is kept in memory; the body tells the caller what to retry
            detail = str(exc) if result is None else {"error": str(exc), "result": result}
            return HTTPException(status_code=503, detail=detail)
        return HTTPException(status_code=400, detail=str(exc))

    def _log_payload(self, result) -> dict:
        timer = result.timer_started
        return {
            "records": [r.to_dict() for r in result.records],
            "timer_started": timer.duration if timer else None,
            "progress": round(self.engine.progress(), 4),
            "volume": round(self.engine.volume(), 2),
        }

    @staticmethod
    def _completion_payload(result) -> dict:
        return {
            "id": result.session.id,
            "duration_seconds": round(result.session.duration_seconds, 2),
            "volume": round(result.session.volume(), 2),
            "records": [r.to_dict() for r in result.records],
            "stats": result.stats.to_dict(),
        }

    def _session_payload(self) -> dict:
        session = self.engine.session
        if session is None:
            return {"session": None}
        return {
            "session": session.to_dict(),
            "progress": round(self.engine.progress(), 4),
            "volume": round(self.engine.volume(), 2),
            "elapsed_seconds": round(self.engine.elapsed_seconds(), 2),
            "timer": self.engine.timer_state(),
        }

    def _setup_routes(self) -> None:
        sessions_router = APIRouter(prefix="/sessions", tags=["Sessions"])
        timer_router = APIRouter(prefix="/timer", tags=["Rest Timer"])
        exercises_router = APIRouter(prefix="/exercises", tags=["Exercises"])

        @self.app.get("/health")
        def health():
            """Return API and database connection status."""
            try:
                self.history.count()
                return {"status": "ok", "version": APP_VERSION}
            except PersistenceError as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @exercises_router.post("")
        def add_exercise(body: ExerciseBody):
            self.catalog.add(
                ExerciseDefinition(
                    id=body.id,
                    name=body.name,
                    measurement=body.measurement,
                    muscle_groups=frozenset(body.muscle_groups),
                    equipment=frozenset(body.equipment),
                    difficulty=body.difficulty,
                    rest_seconds=body.rest_seconds,
                )
            )
            return {"id": body.id}

        @exercises_router.get("/{exercise_id}")
        def get_exercise(exercise_id: str):
            definition = self.catalog.lookup(exercise_id)
            if definition is None:
                raise HTTPException(status_code=404, detail="exercise not found")
            return {
                "id": definition.id,
                "name": definition.name,
                "measurement": definition.measurement.value,
                "muscle_groups": sorted(definition.muscle_groups),
                "equipment": sorted(definition.equipment),
                "difficulty": definition.difficulty,
                "rest_seconds": definition.rest_seconds,
            }

        @sessions_router.post("")
        def start_session(body: DraftBody):
            draft = SessionDraft(
                exercises=[
                    DraftExercise(e.exercise_id, [s.to_values() for s in e.sets])
                    for e in body.exercises
                ],
                template_id=body.template_id,
                name=body.name,
            )
            try:
                session = self.engine.start(draft)
            except (WorkoutError, ValueError) as e:
                raise self._http_error(e)
            return {"id": session.id}

        @sessions_router.get("/active")
        def active_session():
            return self._session_payload()

        @sessions_router.post("/active/pause")
        def pause_session():
            try:
                self.engine.pause()
            except WorkoutError as e:
                raise self._http_error(e)
            return self._session_payload()

        @sessions_router.post("/active/resume")
        def resume_session():
            try:
                self.engine.resume()
            except WorkoutError as e:
                raise self._http_error(e)
            return self._session_payload()

        @sessions_router.post("/active/exercises/{exercise_index}/sets/{set_index}/log")
        def log_set(exercise_index: int, set_index: int, body: SetBody):
            try:
                result = self.engine.log_set(exercise_index, set_index, body.to_values())
            except PersistenceError as e:
                raise self._http_error(e, self._log_payload(e.result))
            except (WorkoutError, ValueError) as e:
                raise self._http_error(e)
            return self._log_payload(result)

        @sessions_router.post("/active/exercises/{exercise_index}/sets")
        def add_set(exercise_index: int, body: Optional[SetBody] = Body(None)):
            try:
                index = self.engine.add_set(
                    exercise_index, body.to_values() if body else None
                )
            except WorkoutError as e:
                raise self._http_error(e)
            return {"index": index}

        @sessions_router.delete("/active/exercises/{exercise_index}/sets/{set_index}")
        def remove_set(exercise_index: int, set_index: int):
            try:
                self.engine.remove_set(exercise_index, set_index)
            except WorkoutError as e:
                raise self._http_error(e)
            return {"status": "deleted"}

        @sessions_router.post("/active/next")
        def next_exercise():
            try:
                return {"active_index": self.engine.next_exercise()}
            except WorkoutError as e:
                raise self._http_error(e)

        @sessions_router.post("/active/previous")
        def previous_exercise():
            try:
                return {"active_index": self.engine.previous_exercise()}
            except WorkoutError as e:
                raise self._http_error(e)

        @sessions_router.post("/active/goto/{index}")
        def go_to_exercise(index: int):
            try:
                return {"active_index": self.engine.go_to_exercise(index)}
            except WorkoutError as e:
                raise self._http_error(e)

        @sessions_router.post("/active/complete")
        def complete_session(notes: Optional[str] = None, rating: Optional[int] = None):
            try:
                result = self.engine.complete_workout(notes, rating)
            except PersistenceError as e:
                payload = self._completion_payload(e.result) if e.result is not None else None
                raise self._http_error(e, payload)
            except (WorkoutError, ValueError) as e:
                raise self._http_error(e)
            return self._completion_payload(result)

        @sessions_router.post("/active/cancel")
        def cancel_session():
            try:
                session = self.engine.cancel_workout()
            except WorkoutError as e:
                raise self._http_error(e)
            return {"id": session.id, "status": session.status.value}

        @sessions_router.get("/history")
        def list_history():
            return [s.to_dict() for s in self.engine.history]

        @timer_router.get("")
        def timer_state():
            return self.engine.timer_state()

        @timer_router.post("/start")
        def start_timer(duration: Optional[float] = None, replace: bool = False):
            try:
                return self.engine.start_timer(duration, replace)
            except (WorkoutError, ValueError) as e:
                raise self._http_error(e)

        @timer_router.post("/pause")
        def pause_timer():
            try:
                return self.engine.pause_timer()
            except WorkoutError as e:
                raise self._http_error(e)

        @timer_router.post("/resume")
        def resume_timer():
            try:
                return self.engine.resume_timer()
            except WorkoutError as e:
                raise self._http_error(e)

        @timer_router.post("/adjust")
        def adjust_timer(delta: float):
            try:
                return self.engine.adjust_timer(delta)
            except WorkoutError as e:
                raise self._http_error(e)

        @timer_router.post("/stop")
        def stop_timer():
            try:
                return self.engine.stop_timer()
            except WorkoutError as e:
                raise self._http_error(e)

        @timer_router.post("/tick")
        def tick_timer():
            event = self.engine.tick()
            state = self.engine.timer_state()
            state["expired"] = event is not None
            if event is not None:
                state["sound"] = event.sound
                state["vibrate"] = event.vibrate
            return state

        @self.app.get("/stats")
        def stats():
            return self.engine.stats().to_dict()

        @self.app.get("/stats/exercises")
        def exercise_summary():
            return self.engine.statistics.exercise_summary(self.engine.history)

        @self.app.get("/records")
        def list_records():
            return [r.to_dict() for r in self.engine.records.values()]

        @self.app.get("/preferences")
        def get_preferences():
            return self.engine.preferences.model_dump()

        @self.app.put("/preferences")
        def update_preferences(body: Preferences):
            self.engine.update_preferences(body)
            try:
                self.preferences.save_preferences(body)
            except PersistenceError as e:
                raise self._http_error(e)
            return body.model_dump()

        self.app.include_router(sessions_router)
        self.app.include_router(timer_router)
        self.app.include_router(exercises_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(GymAPI().app)
