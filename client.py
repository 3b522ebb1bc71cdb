import requests
from typing import Optional


class WorkoutClient:
    """Simple REST client for the workout session API."""

    def __init__(self, base_url: str = "http://localhost:8000") -> None:
        self.base_url = base_url.rstrip("/")

    def start_session(self, exercises: list[dict], name: Optional[str] = None) -> str:
        resp = requests.post(
            f"{self.base_url}/sessions", json={"exercises": exercises, "name": name}
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def active_session(self) -> dict:
        resp = requests.get(f"{self.base_url}/sessions/active")
        resp.raise_for_status()
        return resp.json()

    def log_set(
        self,
        exercise_index: int,
        set_index: int,
        weight: Optional[float] = None,
        reps: Optional[int] = None,
        duration: Optional[float] = None,
    ) -> dict:
        resp = requests.post(
            f"{self.base_url}/sessions/active/exercises/{exercise_index}/sets/{set_index}/log",
            json={"weight": weight, "reps": reps, "duration": duration},
        )
        resp.raise_for_status()
        return resp.json()

    def complete(self, notes: Optional[str] = None, rating: Optional[int] = None) -> dict:
        params = {k: v for k, v in {"notes": notes, "rating": rating}.items() if v is not None}
        resp = requests.post(f"{self.base_url}/sessions/active/complete", params=params)
        resp.raise_for_status()
        return resp.json()

    def cancel(self) -> dict:
        resp = requests.post(f"{self.base_url}/sessions/active/cancel")
        resp.raise_for_status()
        return resp.json()

    def tick(self) -> dict:
        resp = requests.post(f"{self.base_url}/timer/tick")
        resp.raise_for_status()
        return resp.json()

    def stats(self) -> dict:
        resp = requests.get(f"{self.base_url}/stats")
        resp.raise_for_status()
        return resp.json()
