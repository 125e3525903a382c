"""
Tests: FastAPI routes over a scripted pipeline.

Run with:
    pytest assessment_validator/tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from assessment_validator.api import create_app
from assessment_validator.api.websocket import RunProgressBus

from conftest import UNIT, FakeLLM, met_json, status_json


@pytest.fixture
def client():
    return TestClient(create_app())


@pytest.fixture
def pipeline(make_pipeline, monkeypatch):
    pipeline = make_pipeline(FakeLLM(met_json()))
    monkeypatch.setattr("assessment_validator.api.routes.get_pipeline", lambda: pipeline)
    return pipeline


def _body(documents, **overrides):
    body = {
        "unit_identifier": UNIT,
        "org_identifier": "ORG",
        "documents": [d.model_dump(mode="json") for d in documents],
    }
    body.update(overrides)
    return body


def _start(client, pipeline, documents, **overrides) -> str:
    response = client.post("/api/runs", json=_body(documents, **overrides))
    assert response.status_code == 200
    run_id = response.json()["run_id"]
    pipeline.wait(run_id, timeout=10)
    return run_id


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestRuns:
    def test_start_and_poll(self, client, pipeline, documents):
        run_id = _start(client, pipeline, documents)

        progress = client.get(f"/api/runs/{run_id}/progress").json()
        assert progress == {"completed_count": 5, "total_count": 5, "status": "Completed"}

        results = client.get(f"/api/runs/{run_id}/results").json()
        assert [r["requirement_id"] for r in results] == ["ke-1", "ke-2", "pe-10", "epc-20", "ac-30"]
        assert results[0]["status"] == "Met"

        report = client.get(f"/api/runs/{run_id}/report").json()
        assert report["success_rate"] == 1.0
        assert report["status_counts"]["Met"] == 5

        listed = client.get("/api/runs").json()
        assert [r["run_id"] for r in listed] == [run_id]

    def test_category_passed_through(self, client, pipeline, documents):
        run_id = _start(client, pipeline, documents, category="pe")
        results = client.get(f"/api/runs/{run_id}/results").json()
        assert [r["requirement_id"] for r in results] == ["pe-10"]

    def test_empty_documents_rejected(self, client, pipeline):
        response = client.post("/api/runs", json=_body([]))
        assert response.status_code == 422

    def test_unknown_run_is_404(self, client, pipeline):
        for path in ("progress", "results", "report"):
            assert client.get(f"/api/runs/RUN-404/{path}").status_code == 404
        assert client.post("/api/runs/RUN-404/cancel").status_code == 404


class TestRevalidate:
    def test_revalidate_replaces_result(self, client, pipeline, documents):
        pipeline.caller.llm.replies = [status_json("Not Met")]
        run_id = _start(client, pipeline, documents)

        pipeline.caller.llm.replies = [met_json()]
        response = client.post(f"/api/runs/{run_id}/requirements/epc-20/revalidate")
        assert response.status_code == 200
        assert response.json()["status"] == "Met"

        results = client.get(f"/api/runs/{run_id}/results").json()
        assert len(results) == 5
        assert [r["status"] for r in results if r["requirement_id"] == "epc-20"] == ["Met"]

    def test_unknown_requirement_is_404(self, client, pipeline, documents):
        run_id = _start(client, pipeline, documents)
        response = client.post(f"/api/runs/{run_id}/requirements/ke-999/revalidate")
        assert response.status_code == 404


class TestCancel:
    def test_cancel_finished_run_reports_progress(self, client, pipeline, documents):
        run_id = _start(client, pipeline, documents)
        response = client.post(f"/api/runs/{run_id}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "Completed"


class TestWebSocket:
    def test_late_joiner_replays_history(self, client, make_pipeline, documents):
        pipeline = make_pipeline(FakeLLM(met_json()), progress=RunProgressBus.get())
        run_id = pipeline.start_run(UNIT, "ORG", documents, category_filter="ke")

        with client.websocket_connect(f"/api/runs/ws/{run_id}") as ws:
            events = [ws.receive_json() for _ in range(5)]

        assert [e["event"] for e in events] == [
            "requirement_start",
            "requirement_end",
            "requirement_start",
            "requirement_end",
            "run_end",
        ]
        assert events[-1]["status"] == "Completed"
        RunProgressBus.get().clear(run_id)

    def test_revalidation_announces_new_run_status(self, make_pipeline, documents):
        bus = RunProgressBus.get()
        llm = FakeLLM(met_json())
        pipeline = make_pipeline(llm, progress=bus)
        run_id = pipeline.start_run(UNIT, "ORG", documents, category_filter="ke")

        llm.replies = ["Plain prose, no verdict."]
        pipeline.revalidate_requirement(run_id, "ke-2")

        run_ends = [e["status"] for e in bus.history(run_id) if e["event"] == "run_end"]
        assert run_ends == ["Completed", "PartiallyFailed"]
        bus.clear(run_id)
