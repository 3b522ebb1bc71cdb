class MathTools:
    """Provides essential mathematical utilities for workout calculations."""

    ONE_RM_DIVISOR: float = 30.0
    ONE_RM_REP_CUTOFF: int = 15

    @staticmethod
    def clamp(value: float, min_value: float, max_value: float) -> float:
        """Clamp ``value`` to the inclusive range [min_value, max_value]."""
        if min_value > max_value:
            raise ValueError("min_value must not exceed max_value")
        return max(min_value, min(value, max_value))

    @classmethod
    def epley_1rm(cls, weight: float, reps: int) -> float:
        """Return the estimated one-rep max using the Epley formula."""
        if reps < 0:
            raise ValueError("reps must be non-negative")
        return weight * (1 + reps / cls.ONE_RM_DIVISOR)

    @classmethod
    def reliable_1rm(cls, weight: float, reps: int) -> float | None:
        """Return the estimate, or ``None`` above the rep cutoff."""
        if reps > cls.ONE_RM_REP_CUTOFF:
            return None
        return cls.epley_1rm(weight, reps)

    @staticmethod
    def volume(sets: list[tuple[int, float]]) -> float:
        """Compute training volume as the sum of reps times weight."""
        vol = 0.0
        for reps, weight in sets:
            vol += reps * weight
        return vol

    @staticmethod
    def even_split(value: float, keys) -> dict[str, float]:
        """Distribute ``value`` equally over ``keys``."""
        keys = sorted(set(keys))
        if not keys:
            return {}
        share = value / len(keys)
        return {k: share for k in keys}


class WeightConverter:
    """Utility for converting between kg and lb."""

    KG_TO_LB = 2.20462

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / WeightConverter.KG_TO_LB, 2)
