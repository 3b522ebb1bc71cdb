from typing import Dict, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator


class Preferences(BaseModel):
    default_rest_time_seconds: int = Field(90, gt=0)
    max_rest_time_seconds: int = Field(3600, gt=0)
    auto_start_timer: bool = True
    timer_sound_enabled: bool = True
    vibration_enabled: bool = True
    rest_overrides: Dict[str, int] = Field(default_factory=dict)
    weight_unit: Literal["kg", "lb"] = "kg"

    @model_validator(mode="after")
    def _check_rest_bounds(self) -> "Preferences":
        if self.default_rest_time_seconds > self.max_rest_time_seconds:
            raise ValueError("default rest time exceeds the maximum")
        for exercise_id, seconds in self.rest_overrides.items():
            if not 0 < seconds <= self.max_rest_time_seconds:
                raise ValueError(f"invalid rest override for {exercise_id}")
        return self

    def rest_seconds_for(self, exercise_id: str, fallback: int | None = None) -> int:
        if exercise_id in self.rest_overrides:
            return self.rest_overrides[exercise_id]
        if fallback is not None and fallback > 0:
            return fallback
        return self.default_rest_time_seconds


def validate_settings(data: dict) -> Preferences:
    try:
        return Preferences(**data)
    except ValidationError as e:
        raise ValueError(str(e))
