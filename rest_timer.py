from __future__ import annotations
import datetime
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import ConflictError, InvalidStateError
from tools import MathTools

logger = logging.getLogger(__name__)


class TimerStatus(str, Enum):
    idle = "idle"
    running = "running"
    paused = "paused"
    expired = "expired"


@dataclass(frozen=True)
class TimerContext:
    """Which set the rest belongs to. Display/logging only."""

    exercise_index: int
    set_index: int


@dataclass(frozen=True)
class TimerExpired:
    """One-shot signal emitted by ``tick`` when the countdown reaches zero."""

    context: Optional[TimerContext]
    expired_at: datetime.datetime
    sound: bool = True
    vibrate: bool = True


class RestTimer:
    """Countdown between sets.

    Remaining time is always derived from timestamps:
    ``duration - (now - started_at - paused_total)``. Ticks only compare that
    value against zero, so late, missing or repeated ticks give the same
    result as regular ones.
    """

    def __init__(
        self,
        max_duration: int = 3600,
        sound_enabled: bool = True,
        vibration_enabled: bool = True,
    ) -> None:
        self.max_duration = max_duration
        self.sound_enabled = sound_enabled
        self.vibration_enabled = vibration_enabled
        self._reset()

    def _reset(self) -> None:
        self.status = TimerStatus.idle
        self.duration = 0.0
        self.started_at: Optional[datetime.datetime] = None
        self.paused_total = 0.0
        self.paused_at: Optional[datetime.datetime] = None
        self.remaining_at_pause: Optional[float] = None
        self.context: Optional[TimerContext] = None

    @property
    def is_active(self) -> bool:
        return self.status in (TimerStatus.running, TimerStatus.paused)

    def _elapsed(self, now: datetime.datetime) -> float:
        if self.started_at is None:
            return 0.0
        paused = self.paused_total
        if self.paused_at is not None:
            paused += (now - self.paused_at).total_seconds()
        return (now - self.started_at).total_seconds() - paused

    def remaining(self, now: datetime.datetime) -> float:
        if self.status == TimerStatus.paused:
            return self.remaining_at_pause
        if self.status == TimerStatus.running:
            return max(0.0, self.duration - self._elapsed(now))
        return 0.0

    def start(
        self,
        duration: float,
        now: datetime.datetime,
        context: Optional[TimerContext] = None,
        replace: bool = False,
    ) -> None:
        """Start a countdown of ``duration`` seconds.

        A running or paused timer for another context is only replaced when
        ``replace`` is set; otherwise ``ConflictError`` is raised and the
        current timer keeps going.
        """
        if duration <= 0:
            raise ValueError("duration must be positive")
        if self.is_active and context != self.context and not replace:
            raise ConflictError("a rest timer is already running for another set")
        self._reset()
        self.status = TimerStatus.running
        self.duration = float(MathTools.clamp(duration, 0, self.max_duration))
        self.started_at = now
        self.context = context
        logger.debug("rest timer started: %.0fs for %s", self.duration, context)

    def pause(self, now: datetime.datetime) -> None:
        if self.status != TimerStatus.running:
            raise InvalidStateError(f"cannot pause a {self.status.value} timer")
        self.remaining_at_pause = self.remaining(now)
        self.paused_at = now
        self.status = TimerStatus.paused

    def resume(self, now: datetime.datetime) -> None:
        if self.status != TimerStatus.paused:
            raise InvalidStateError(f"cannot resume a {self.status.value} timer")
        self.paused_total += (now - self.paused_at).total_seconds()
        self.paused_at = None
        self.remaining_at_pause = None
        self.status = TimerStatus.running

    def adjust(self, delta_seconds: float, now: datetime.datetime) -> float:
        """Add or remove rest time. Returns the new remaining time."""
        if not self.is_active:
            return self.remaining(now)
        elapsed = self._elapsed(now)
        self.duration = MathTools.clamp(
            self.duration + delta_seconds, elapsed, elapsed + self.max_duration
        )
        if self.status == TimerStatus.paused:
            self.remaining_at_pause = self.duration - elapsed
        return self.remaining(now)

    def stop(self) -> None:
        self._reset()

    def tick(self, now: datetime.datetime) -> Optional[TimerExpired]:
        if self.status != TimerStatus.running or self.remaining(now) > 0:
            return None
        self.status = TimerStatus.expired
        logger.debug("rest timer expired for %s", self.context)
        return TimerExpired(
            context=self.context,
            expired_at=now,
            sound=self.sound_enabled,
            vibrate=self.vibration_enabled,
        )

    def snapshot(self, now: datetime.datetime) -> dict:
        return {
            "status": self.status.value,
            "duration": round(self.duration, 2),
            "remaining": round(self.remaining(now), 2),
            "exercise_index": self.context.exercise_index if self.context else None,
            "set_index": self.context.set_index if self.context else None,
        }
