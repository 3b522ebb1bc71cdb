from __future__ import annotations
import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models import (
    MeasurementKind,
    PersonalRecord,
    SessionStatus,
    WorkoutSession,
    WorkoutStats,
)
from tools import MathTools


class StatisticsService:
    """Compute workout statistics from completed session history.

    Results are always a full recomputation. ``compute`` memoizes on the
    history length and last session id, so any append invalidates it.
    Every call hands out its own copy of the memoized result.
    """

    def __init__(self, recent_limit: int = 5) -> None:
        self.recent_limit = recent_limit
        self._cache: dict[tuple, WorkoutStats] = {}

    def clear_cache(self) -> None:
        """Clear any cached statistics."""
        self._cache.clear()

    @staticmethod
    def _completed(history: Iterable[WorkoutSession]) -> List[WorkoutSession]:
        return [s for s in history if s.status == SessionStatus.completed]

    @staticmethod
    def _local_date(ts: datetime.datetime) -> datetime.date:
        """Calendar day in the zone the timestamp was captured in."""
        return ts.date()

    def active_days(self, history: Iterable[WorkoutSession]) -> List[datetime.date]:
        days = {
            self._local_date(s.started_at)
            for s in self._completed(history)
            if s.started_at is not None
        }
        return sorted(days)

    @staticmethod
    def streaks(
        days: Sequence[datetime.date], today: datetime.date
    ) -> Tuple[int, int]:
        """Return ``(current, longest)`` runs of consecutive active days.

        The current run may end today or yesterday.
        """
        if not days:
            return 0, 0
        longest = run = 1
        for prev, nxt in zip(days, days[1:]):
            if (nxt - prev).days == 1:
                run += 1
            else:
                run = 1
            longest = max(longest, run)
        if (today - days[-1]).days > 1:
            return 0, longest
        current = 1
        for prev, nxt in zip(reversed(days[:-1]), reversed(days[1:])):
            if (nxt - prev).days != 1:
                break
            current += 1
        return current, longest

    def weekly_streak(
        self, history: Iterable[WorkoutSession], today: datetime.date
    ) -> dict[str, int]:
        """Return current and best runs of consecutive ISO weeks."""
        weeks = sorted({d - datetime.timedelta(days=d.weekday()) for d in self.active_days(history)})
        if not weeks:
            return {"current": 0, "best": 0}
        best = cur = 1
        for prev, nxt in zip(weeks, weeks[1:]):
            cur = cur + 1 if (nxt - prev).days == 7 else 1
            best = max(best, cur)
        this_week = today - datetime.timedelta(days=today.weekday())
        if (this_week - weeks[-1]).days > 7:
            return {"current": 0, "best": best}
        current = 1
        for prev, nxt in zip(reversed(weeks[:-1]), reversed(weeks[1:])):
            if (nxt - prev).days != 7:
                break
            current += 1
        return {"current": current, "best": best}

    @staticmethod
    def volume_by_muscle_group(history: Iterable[WorkoutSession]) -> Dict[str, float]:
        """Split each set's volume equally across its muscle groups."""
        totals: Dict[str, float] = {}
        for session in history:
            for entry in session.exercises:
                for item in entry.completed_sets():
                    vol = item.volume(entry.measurement)
                    if vol <= 0:
                        continue
                    for group, share in MathTools.even_split(vol, entry.muscle_groups).items():
                        totals[group] = totals.get(group, 0.0) + share
        return dict(sorted(totals.items()))

    def exercise_summary(self, history: Iterable[WorkoutSession]) -> List[Dict[str, float]]:
        stats: Dict[str, Dict[str, float]] = {}
        for session in self._completed(history):
            for entry in session.exercises:
                item = stats.setdefault(
                    entry.exercise_id,
                    {"volume": 0.0, "sets": 0, "max_1rm": 0.0, "duration": 0.0},
                )
                for s in entry.completed_sets():
                    item["sets"] += 1
                    if entry.measurement == MeasurementKind.duration:
                        item["duration"] += float(s.actual.duration)
                        continue
                    item["volume"] += s.volume(entry.measurement)
                    est = MathTools.reliable_1rm(float(s.actual.weight), int(s.actual.reps))
                    if est is not None and est > item["max_1rm"]:
                        item["max_1rm"] = est
        result = []
        for ex_id, data in stats.items():
            result.append(
                {
                    "exercise": ex_id,
                    "volume": round(data["volume"], 2),
                    "sets": int(data["sets"]),
                    "max_1rm": round(data["max_1rm"], 2),
                    "duration": round(data["duration"], 2),
                }
            )
        return sorted(result, key=lambda x: x["exercise"])

    def compute(
        self,
        history: Sequence[WorkoutSession],
        records: Iterable[PersonalRecord] = (),
        today: Optional[datetime.date] = None,
    ) -> WorkoutStats:
        today = today or datetime.date.today()
        records = tuple(records)
        key = (len(history), history[-1].id if history else None, today, records)
        cached = self._cache.get(key)
        if cached is not None:
            return cached.copy()
        self._cache.clear()

        sessions = self._completed(history)
        stats = WorkoutStats(total_sessions=len(sessions))
        durations = []
        for session in sessions:
            stats.total_volume += session.volume()
            if session.duration_seconds is not None:
                durations.append(session.duration_seconds)
            for entry in session.exercises:
                for item in entry.completed_sets():
                    stats.total_sets += 1
                    if entry.measurement == MeasurementKind.duration:
                        stats.total_set_duration_seconds += float(item.actual.duration)
                    else:
                        stats.total_reps += int(item.actual.reps)
        if durations:
            stats.average_duration_seconds = sum(durations) / len(durations)
        stats.current_streak, stats.longest_streak = self.streaks(
            self.active_days(sessions), today
        )
        stats.volume_by_muscle_group = self.volume_by_muscle_group(sessions)
        stats.recent_records = sorted(
            records, key=lambda r: (r.achieved_at, r.exercise_id), reverse=True
        )[: self.recent_limit]
        self._cache[key] = stats
        return stats.copy()
