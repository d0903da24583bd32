from __future__ import annotations

import json
from concurrent.futures import Executor, Future

import pytest
from fastapi.testclient import TestClient

from quillstream.application.container import ServiceContainer
from quillstream.application.services.generation_pipeline import PipelineOutcome
from quillstream.application.services.job_service import JobOrchestrator
from quillstream.core.config import AppPaths
from quillstream.domain.models.job import JobCosts, JobResult
from quillstream.web.app import create_app

OWNER = {"X-Owner-Id": "user-1"}


class _InlineExecutor(Executor):
    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        future.set_result(fn(*args, **kwargs))
        return future


class _StaticPipeline:
    def run(self, job, reporter) -> PipelineOutcome:
        reporter.update("generating_post", 50, "Writing")
        return PipelineOutcome(
            result=JobResult(text="Ship the agent, then measure it.", word_count=7, hashtags=["#AI"]),
            costs=JobCosts(generation=0.02, asset=0.04),
        )


class _FakeEmbedder:
    model_name = "fake-embedding"

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [[1.0, 0.0, 0.0] for _ in texts]

    def estimate_cost(self, texts: list[str]) -> float:
        return 0.0001 * len(texts)


class _MemoryStore:
    def __init__(self) -> None:
        self.points = []

    def ensure_collection(self, collection: str) -> None:
        return None

    def upsert(self, collection: str, points) -> None:
        self.points.extend(points)

    def delete_by_filter(self, collection: str, filters: dict) -> None:
        self.points = [p for p in self.points if not _matches(p.payload, filters)]

    def search(self, collection: str, *, query_vector, limit: int, filters=None) -> list[dict]:
        hits = [
            {"id": p.point_id, "score": 0.9, "payload": p.payload}
            for p in self.points
            if _matches(p.payload, filters or {})
        ]
        return hits[:limit]


def _matches(payload: dict, filters: dict) -> bool:
    return all(payload.get(k) == v for k, v in filters.items())


class _TestContainer(ServiceContainer):
    def __init__(self, paths: AppPaths) -> None:
        super().__init__(paths)
        self.store = _MemoryStore()

    def embedder(self):
        return _FakeEmbedder()

    def vector_store(self):
        return self.store

    def orchestrator(self) -> JobOrchestrator:
        return self._once(
            "orchestrator",
            lambda: JobOrchestrator(
                job_repo=self.job_repo(),
                trend_pipeline=_StaticPipeline(),
                idea_pipeline=_StaticPipeline(),
                executor=_InlineExecutor(),
            ),
        )


@pytest.fixture()
def client_and_container(app_paths: AppPaths):
    container = _TestContainer(app_paths)
    app = create_app(app_paths, services=container)
    with TestClient(app) as client:
        yield client, container


def _sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_health_and_project_init(client_and_container, app_paths: AppPaths) -> None:
    client, _ = client_and_container

    r = client.get("/api/health")

    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert app_paths.db_path.exists()


def test_trend_job_lifecycle(client_and_container) -> None:
    client, _ = client_and_container

    r = client.post("/api/jobs/from-trend", json={"contextId": "trend_42"}, headers=OWNER)
    assert r.status_code == 200
    payload = r.json()
    assert payload["success"] is True
    assert payload["message"] == "Post generation started"
    job_id = payload["jobId"]

    job = client.get(f"/api/jobs/{job_id}", headers=OWNER).json()
    assert job["status"] == "completed"
    assert job["contextId"] == "trend_42"
    assert job["result"]["hashtags"] == ["#AI"]
    assert job["totalCost"] == pytest.approx(0.06)
    assert job["progress"]["percentage"] == 100

    listing = client.get("/api/jobs", headers=OWNER).json()
    assert listing["count"] == 1
    assert listing["jobs"][0]["id"] == job_id


def test_job_events_stream_ends_with_terminal_state(client_and_container) -> None:
    client, _ = client_and_container
    job_id = client.post("/api/jobs/from-idea", json={"sessionId": "s1", "ideaId": "idea1"}, headers=OWNER).json()[
        "jobId"
    ]

    r = client.get(f"/api/jobs/{job_id}/events?poll_interval=0.01", headers=OWNER)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(r.text)
    assert [name for name, _ in events] == ["job", "completed", "done"]
    assert events[0][1]["event_seq"] == 1
    assert events[0][1]["ideaId"] == "idea1"
    assert events[1][1] == {"jobId": job_id, "error": None}


def test_job_requests_are_validated(client_and_container) -> None:
    client, _ = client_and_container

    assert client.post("/api/jobs/from-trend", json={}, headers=OWNER).status_code == 400
    assert client.post("/api/jobs/from-idea", json={"sessionId": "s1"}, headers=OWNER).status_code == 400
    assert client.post("/api/jobs/from-trend", json={"contextId": "trend_1"}).status_code == 400
    assert client.get("/api/jobs", headers=OWNER).json()["count"] == 0


def test_jobs_are_scoped_to_owner(client_and_container) -> None:
    client, _ = client_and_container
    job_id = client.post("/api/jobs/from-trend", json={"contextId": "trend_1"}, headers=OWNER).json()["jobId"]
    other = {"X-Owner-Id": "user-2"}

    assert client.get(f"/api/jobs/{job_id}", headers=other).status_code == 404
    assert client.get(f"/api/jobs/{job_id}/events", headers=other).status_code == 404
    assert client.get("/api/jobs/missing", headers=OWNER).status_code == 404


def test_rag_index_status_search_and_remove(client_and_container) -> None:
    client, container = client_and_container
    container.importer().import_newsletters(
        "user-1",
        [
            {
                "id": "n1",
                "subject": "Issue 12",
                "from": {"name": "The Batch", "email": "batch@example.com"},
                "receivedAt": "2024-05-01T08:00:00Z",
                "body": "Agent evaluations moved from research to the board agenda this week.",
            }
        ],
    )

    status = client.get("/api/rag/status", headers=OWNER).json()
    assert status["ready"] is False
    assert client.get("/api/rag/unindexed", headers=OWNER).json()["count"] == 1

    indexed = client.post("/api/rag/index", json={}, headers=OWNER).json()
    assert indexed["successCount"] == 1
    assert indexed["totalChunks"] >= 1

    status = client.get("/api/rag/status", headers=OWNER).json()
    assert status["ready"] is True
    assert status["percentIndexed"] == 100.0

    found = client.post("/api/rag/search", json={"query": "agent evaluations", "minScore": 0.5}, headers=OWNER).json()
    assert found["totalChunks"] >= 1
    assert found["chunks"][0]["newsletterId"] == "n1"
    assert found["citations"][0]["citation"] == 'The Batch - "Issue 12"'
    assert found["promptContext"].startswith("[Source 1] From: The Batch <batch@example.com>")

    removed = client.delete("/api/rag/newsletters/n1", headers=OWNER).json()
    assert removed["removedChunks"] == indexed["totalChunks"]
    assert client.post("/api/rag/search", json={"query": "agent"}, headers=OWNER).json()["totalChunks"] == 0


def test_rag_errors_map_to_http_status(client_and_container) -> None:
    client, _ = client_and_container

    assert client.post("/api/rag/search", json={"query": "  "}, headers=OWNER).status_code == 400
    assert client.post("/api/rag/index", json={"newsletterId": "missing"}, headers=OWNER).status_code == 404
    assert client.get("/api/ideas/missing", headers=OWNER).status_code == 404
    assert client.post("/api/ideas", headers=OWNER).status_code == 400


def test_costs_endpoint_reports_ledger(client_and_container) -> None:
    client, container = client_and_container
    container.cost_accountant().log_image("user-1", model="dall-e-3", quality="hd")

    payload = client.get("/api/costs", headers=OWNER).json()

    assert payload["totalCalls"] == 1
    assert payload["totalCost"] == pytest.approx(0.08)
    assert payload["breakdown"] == {"imageGeneration": pytest.approx(0.08)}
    assert payload["entries"][0]["operation"] == "linkedin-image-generation"
