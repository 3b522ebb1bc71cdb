import os
import sys
import tempfile
import unittest
from unittest import mock
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
sys.path.append(os.path.dirname(__file__))
from errors import PersistenceError
from rest_api import GymAPI
from fake_clock import FakeClock


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "test_workout.db")
        self.yaml_path = os.path.join(self.tmpdir.name, "test_settings.yaml")
        self.clock = FakeClock()
        self.api = GymAPI(db_path=self.db_path, yaml_path=self.yaml_path, clock=self.clock)
        self.client = TestClient(self.api.app)
        for body in (
            {"id": "bench", "name": "Bench Press", "muscle_groups": ["chest", "triceps"]},
            {"id": "plank", "name": "Plank", "measurement": "duration", "muscle_groups": ["core"]},
        ):
            response = self.client.post("/exercises", json=body)
            self.assertEqual(response.status_code, 200)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _start(self, sets: int = 2) -> str:
        response = self.client.post(
            "/sessions",
            json={
                "exercises": [
                    {"exercise_id": "bench", "sets": [{"weight": 100.0, "reps": 10}] * sets},
                    {"exercise_id": "plank", "sets": [{"duration": 60}]},
                ],
                "name": "Push",
            },
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["id"]

    def test_health_and_exercise_lookup(self) -> None:
        self.assertEqual(self.client.get("/health").json()["status"], "ok")
        response = self.client.get("/exercises/bench")
        self.assertEqual(response.json()["muscle_groups"], ["chest", "triceps"])
        self.assertEqual(self.client.get("/exercises/nope").status_code, 404)

    def test_full_workflow(self) -> None:
        session_id = self._start()
        response = self.client.get("/sessions/active")
        self.assertEqual(response.json()["session"]["id"], session_id)
        self.assertEqual(response.json()["progress"], 0.0)

        response = self.client.post(
            "/sessions/active/exercises/0/sets/0/log", json={"weight": 110.0, "reps": 10}
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()
        categories = {r["category"]: r["value"] for r in data["records"]}
        self.assertEqual(categories["max_weight"], 110.0)
        self.assertEqual(categories["max_estimated_one_rep_max"], 146.67)
        self.assertEqual(data["timer_started"], 90.0)
        self.assertEqual(data["volume"], 1100.0)

        self.clock.advance(90)
        tick = self.client.post("/timer/tick").json()
        self.assertTrue(tick["expired"])
        self.assertEqual(tick["status"], "expired")
        self.assertFalse(self.client.post("/timer/tick").json()["expired"])

        self.assertEqual(self.client.post("/sessions/active/next").json(), {"active_index": 1})
        self.client.post("/sessions/active/exercises/1/sets/0/log", json={"duration": 75})
        self.clock.advance(1200)

        response = self.client.post("/sessions/active/complete", params={"rating": 4})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["id"], session_id)
        self.assertEqual(data["volume"], 1100.0)
        self.assertEqual(data["stats"]["total_sessions"], 1)
        self.assertEqual(data["stats"]["current_streak"], 1)

        self.assertEqual(self.client.get("/sessions/active").json(), {"session": None})
        self.assertEqual(len(self.client.get("/sessions/history").json()), 1)
        self.assertEqual(self.client.get("/stats").json()["total_volume"], 1100.0)
        summary = self.client.get("/stats/exercises").json()
        self.assertEqual([s["exercise"] for s in summary], ["bench", "plank"])
        records = self.client.get("/records").json()
        self.assertIn("best_duration", {r["category"] for r in records})

        # history is reloaded from storage by a fresh API instance
        fresh = GymAPI(db_path=self.db_path, yaml_path=self.yaml_path, clock=self.clock)
        self.assertEqual(len(fresh.engine.history), 1)
        self.assertEqual(len(fresh.engine.records), len(records))

    def test_error_mapping(self) -> None:
        response = self.client.post(
            "/sessions", json={"exercises": [{"exercise_id": "unknown"}]}
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(self.client.post("/sessions/active/pause").status_code, 409)

        self._start(sets=1)
        response = self.client.post("/sessions", json={"exercises": [{"exercise_id": "bench"}]})
        self.assertEqual(response.status_code, 409)
        response = self.client.delete("/sessions/active/exercises/0/sets/0")
        self.assertEqual(response.status_code, 404)
        response = self.client.post(
            "/sessions/active/exercises/5/sets/0/log", json={"weight": 100.0, "reps": 5}
        )
        self.assertEqual(response.status_code, 404)
        response = self.client.post(
            "/sessions/active/exercises/0/sets/0/log", json={"weight": -1, "reps": 5}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.post("/sessions/active/goto/3").status_code, 404)
        self.assertEqual(self.client.post("/sessions/active/resume").status_code, 409)

    def test_set_editing_and_cancel(self) -> None:
        self._start(sets=1)
        response = self.client.post("/sessions/active/exercises/0/sets")
        self.assertEqual(response.json(), {"index": 1})
        response = self.client.post(
            "/sessions/active/exercises/0/sets", json={"weight": 80.0, "reps": 12}
        )
        self.assertEqual(response.json(), {"index": 2})
        response = self.client.delete("/sessions/active/exercises/0/sets/1")
        self.assertEqual(response.json(), {"status": "deleted"})
        session = self.client.get("/sessions/active").json()["session"]
        self.assertEqual([s["target"]["weight"] for s in session["exercises"][0]["sets"]], [100.0, 80.0])

        response = self.client.post("/sessions/active/cancel")
        self.assertEqual(response.json()["status"], "cancelled")
        self.assertEqual(self.client.get("/sessions/history").json(), [])
        self.assertEqual(self.client.get("/stats").json()["total_sessions"], 0)

    def test_pause_and_timer_endpoints(self) -> None:
        self._start()
        state = self.client.post("/timer/start", params={"duration": 60}).json()
        self.assertEqual(state["status"], "running")
        self.clock.advance(10)
        self.assertEqual(self.client.post("/timer/adjust", params={"delta": -20}).json()["remaining"], 30.0)
        self.assertEqual(self.client.post("/timer/pause").json()["status"], "paused")
        self.assertEqual(self.client.post("/timer/pause").status_code, 409)
        self.assertEqual(self.client.post("/timer/resume").json()["status"], "running")

        self.assertEqual(self.client.post("/sessions/active/pause").json()["timer"]["status"], "paused")
        self.clock.advance(600)
        self.assertEqual(self.client.post("/sessions/active/resume").json()["timer"]["remaining"], 30.0)
        self.assertEqual(self.client.post("/timer/stop").json()["status"], "idle")

    def test_preferences(self) -> None:
        prefs = self.client.get("/preferences").json()
        self.assertEqual(prefs["default_rest_time_seconds"], 90)
        prefs["default_rest_time_seconds"] = 45
        prefs["auto_start_timer"] = True
        response = self.client.put("/preferences", json=prefs)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(os.path.exists(self.yaml_path))

        self._start()
        data = self.client.post(
            "/sessions/active/exercises/0/sets/0/log", json={"weight": 100.0, "reps": 10}
        ).json()
        self.assertEqual(data["timer_started"], 45.0)

        bad = dict(prefs, default_rest_time_seconds=0)
        self.assertEqual(self.client.put("/preferences", json=bad).status_code, 422)

    def test_storage_failure_returns_503_with_result(self) -> None:
        self._start()

        def fail(*args, **kwargs):
            raise PersistenceError("disk full")

        with mock.patch.object(self.api.engine.record_repo, "save_records", side_effect=fail):
            response = self.client.post(
                "/sessions/active/exercises/0/sets/0/log", json={"weight": 110.0, "reps": 10}
            )
        self.assertEqual(response.status_code, 503)
        detail = response.json()["detail"]
        self.assertEqual(detail["error"], "disk full")
        self.assertEqual(len(detail["result"]["records"]), 3)
        session = self.client.get("/sessions/active").json()["session"]
        self.assertTrue(session["exercises"][0]["sets"][0]["completed"])

        with mock.patch.object(self.api.engine.history_repo, "append_to_history", side_effect=fail):
            response = self.client.post("/sessions/active/complete")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["detail"]["result"]["volume"], 1100.0)
        self.assertEqual(len(self.client.get("/sessions/history").json()), 1)

    def test_exercise_rest_must_be_positive(self) -> None:
        response = self.client.post(
            "/exercises", json={"id": "row", "name": "Row", "rest_seconds": -30}
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.client.get("/exercises/row").status_code, 404)

    def test_stop_timer_without_session(self) -> None:
        self.assertEqual(self.client.post("/timer/stop").status_code, 409)


if __name__ == "__main__":
    unittest.main()
