"""
HTTP API tests
"""

import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest
from fastapi.testclient import TestClient

from refractcalc.logging_conf import REQUEST_ID, ContextFilter
from refractcalc.main import app
from refractcalc.models.lens import AstigmaticPrescription

client = TestClient(app)

TRUTH = AstigmaticPrescription(-2, -1, 30)


def readings(angles):
    return [{"angle": a, "power": TRUTH.interpolate(a)} for a in angles]


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_request_id_is_echoed():
    response = client.get("/", headers={"X-Request-ID": "abc"})
    assert response.headers["X-Request-ID"] == "abc"


def test_requests_are_logged_with_their_id(caplog):
    with caplog.at_level(logging.INFO, logger="refractcalc.main"):
        client.get("/health", headers={"X-Request-ID": "req-42"})

    records = [r for r in caplog.records if r.name == "refractcalc.main"]
    assert records[-1].request_id == "req-42"
    assert "GET /health -> 200" in records[-1].getMessage()


def test_log_records_carry_the_request_id():
    record = logging.LogRecord("refractcalc", logging.INFO, __file__, 1, "message", None, None)
    token = REQUEST_ID.set("abc")
    try:
        ContextFilter().filter(record)
    finally:
        REQUEST_ID.reset(token)

    assert record.request_id == "abc"
    assert record.session_id == "-"


class TestSessions:

    def setup_method(self):
        response = client.post("/sessions/", json={"device": {"angle_step": 20}})
        assert response.status_code == 201
        self.status = response.json()
        self.url = f"/sessions/{self.status['session_id']}"

    def feed(self, angles):
        return [client.post(f"{self.url}/samples", json=r).json() for r in readings(angles)]

    def test_new_session(self):
        assert self.status["required_to_complete"] == 9
        assert self.status["current_bucket"] is None
        assert self.status["working_meridian"] is None
        assert self.status["rough_alignment"] is True
        assert not self.status["done"]

    def test_full_test(self):
        results = self.feed(range(0, 100, 10))

        assert all(r["accepted"] for r in results[:-1])
        assert not results[-1]["accepted"]
        assert results[-1]["status"]["done"]

        fit = client.post(f"{self.url}/fit").json()
        rounded = fit["rounded"]
        assert (rounded["sphere"], rounded["cylinder"], rounded["axis"]) == pytest.approx((-2, -1, 30))
        assert fit["debug"][0].startswith("Fitted:")

    def test_acceptance(self):
        self.feed(range(0, 90, 10))

        response = client.post(f"{self.url}/acceptance", json={
            "current": {"sphere": -1, "cylinder": -1, "axis": 30}, "usage": "near", "age": 45,
        })

        assert response.status_code == 200
        assert response.json()["accepted"]["add"] == pytest.approx(1.25)

    def test_working_meridian_and_fails(self):
        status = client.post(f"{self.url}/meridian", json={"angle": 40}).json()
        assert status["current_bucket"] == 40
        assert status["current_power"] == 1.0

        status = client.post(f"{self.url}/fails").json()
        assert status["fails"] == 1

    def test_save_and_clear(self):
        self.feed([0, 20])
        client.post(f"{self.url}/save")

        state = client.get(f"{self.url}/state").json()
        assert len(state["buckets"]) == 2
        assert len(state["raw_results"]) == 1

        status = client.post(f"{self.url}/clear").json()
        assert status["angles_tested"] == 0

    def test_resume_from_exported_state(self):
        self.feed([0, 20, 40])
        state = client.get(f"{self.url}/state").json()

        response = client.post("/sessions/", json={"state": state})

        assert response.status_code == 201
        assert response.json()["angles_tested"] == 3
        assert response.json()["session_id"] != self.status["session_id"]

    def test_nan_sample_is_rejected(self):
        response = client.post(f"{self.url}/samples", content='{"angle": 10, "power": NaN}',
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_infinite_sample_is_rejected(self):
        response = client.post(f"{self.url}/samples", content='{"angle": 10, "power": Infinity}',
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_sensor_angle_moves_the_meridian(self):
        for _ in range(3):
            status = client.post(f"{self.url}/sensor", json={"angle": 40}).json()

        assert status["current_bucket"] == 40
        assert status["angle_spread"] == pytest.approx(0)

    def test_infinite_sensor_angle_is_rejected(self):
        response = client.post(f"{self.url}/sensor", content='{"angle": -Infinity}',
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_delete(self):
        assert client.delete(self.url).status_code == 204
        assert client.get(self.url).status_code == 404
        assert client.delete(self.url).status_code == 404


def test_unknown_session():
    assert client.post("/sessions/nope/samples", json={"angle": 0, "power": 1}).status_code == 404


def test_invalid_device():
    response = client.post("/sessions/", json={"device": {"angle_min": 90, "angle_max": 90}})
    assert response.status_code == 400


class TestCalculate:

    def test_batch_prescription_with_outlier(self):
        meridians = readings(range(0, 180, 15))
        meridians[6]["power"] = 3.0

        response = client.post("/calculate/prescription", json={"meridians": meridians})

        assert response.status_code == 200
        body = response.json()
        assert [m["angle"] for m in body["outliers"]] == [90]
        rounded = body["rounded"]
        assert (rounded["sphere"], rounded["cylinder"], rounded["axis"]) == pytest.approx((-2, -1, 30))
        assert body["quality_of_fit"] == pytest.approx(0.10)
        assert body["details"][0].startswith("Your best correction is")

    def test_batch_without_outlier_removal(self):
        meridians = readings(range(0, 180, 15))
        meridians[6]["power"] = 3.0

        body = client.post("/calculate/prescription", json={"meridians": meridians, "remove_outliers": False}).json()

        assert body["outliers"] == []

    def test_empty_batch(self):
        assert client.post("/calculate/prescription", json={"meridians": []}).status_code == 400

    def test_infinite_power_in_batch(self):
        response = client.post("/calculate/prescription", content='{"meridians": [{"angle": 0, "power": Infinity}]}',
                               headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_unsupported_step(self):
        response = client.post("/calculate/prescription", json={"meridians": readings([0]), "step": 0.3})
        assert response.status_code == 422

    def test_acceptance(self):
        response = client.post("/calculate/acceptance", json={
            "current": {"sphere": -1}, "new": {"sphere": -3}, "usage": "far", "age": 25,
        })

        assert response.status_code == 200
        assert response.json()["sphere"] == pytest.approx(-2.75)

    def test_add_power(self):
        body = client.get("/calculate/add-power", params={"age": 45, "reading_distance_m": 0.4}).json()
        assert body["add_by_age"] == 1.5
        assert body["add_for_distance"] == 1.5

        body = client.get("/calculate/add-power", params={"age": 30}).json()
        assert body["add_by_age"] == 0
        assert body["add_for_distance"] is None

    def test_policies(self):
        body = client.get("/calculate/policies").json()
        assert "standard" in body["outliers"]
        assert "quality_of_fit" in body["rounding"]
