from typing import Dict, Iterable, List, Optional

from models import ExerciseDefinition


class ExerciseCatalog:
    """Read-only in-memory exercise lookup keyed by exercise id."""

    def __init__(self, definitions: Iterable[ExerciseDefinition] = ()) -> None:
        self._items: Dict[str, ExerciseDefinition] = {d.id: d for d in definitions}

    def lookup(self, exercise_id: str) -> Optional[ExerciseDefinition]:
        return self._items.get(exercise_id)

    def fetch_all(self) -> List[ExerciseDefinition]:
        return sorted(self._items.values(), key=lambda d: d.name)

    def __len__(self) -> int:
        return len(self._items)
