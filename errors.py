class WorkoutError(Exception):
    """Base class for errors raised by the workout engine."""


class ConflictError(WorkoutError):
    """Raised when a second active session or timer would be created."""


class InvalidStateError(WorkoutError):
    """Raised when a transition is not legal from the current status."""


class SessionIndexError(WorkoutError, IndexError):
    """Raised for out-of-range exercise or set references."""


class InvalidReferenceError(WorkoutError):
    """Raised when a session references an unknown exercise id."""

    def __init__(self, exercise_id: str) -> None:
        super().__init__(f"unknown exercise: {exercise_id}")
        self.exercise_id = exercise_id


class PersistenceError(WorkoutError):
    """Raised when storage fails. In-memory state is kept.

    ``result`` holds whatever the failed operation had already produced in
    memory so callers can still use it and retry the write later.
    """

    def __init__(self, message: str, result=None) -> None:
        super().__init__(message)
        self.result = result
