import datetime

LOCAL = datetime.timezone(datetime.timedelta(hours=2))


class FakeClock:
    """Controllable clock for the engine and timer."""

    def __init__(self, start: datetime.datetime | None = None) -> None:
        self.now = start or datetime.datetime(2024, 3, 4, 18, 0, tzinfo=LOCAL)

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float = 0, days: int = 0) -> datetime.datetime:
        self.now += datetime.timedelta(seconds=seconds, days=days)
        return self.now
