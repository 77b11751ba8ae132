"""Tests for the HTTP API (FastAPI TestClient, deferred continuations)."""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from lexspine.api.app import create_app
from lexspine.execution.engine import ChunkedJobEngine
from lexspine.execution.worker import DeferredScheduler
from lexspine.handlers import default_registry
from lexspine.resolution import AnnotationStore
from lexspine.resolution.models import Unresolved

JOBS = "/api/v1/jobs"
HEALTH = "/api/v1/health"


@pytest.fixture()
def scheduler() -> DeferredScheduler:
    return DeferredScheduler()


@pytest.fixture()
def make_client(conn, settings, scheduler):
    """Client factory; ``overrides`` are applied to the test settings."""
    clients: list[TestClient] = []

    def build(**overrides) -> TestClient:
        tuned = settings.model_copy(update={"chunk_size": 4, **overrides})
        engine = ChunkedJobEngine(conn, default_registry(tuned), settings=tuned, scheduler=scheduler, worker_id="api")
        client = TestClient(create_app(tuned, engine=engine))
        client.__enter__()
        clients.append(client)
        return client

    yield build
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture()
def client(make_client) -> Generator[TestClient, None, None]:
    yield make_client()


@pytest.fixture()
def started(client, make_dictionary) -> dict:
    response = client.post(
        JOBS,
        json={"kind": "dictionary-import", "source": {"source_text": make_dictionary(10), "source_name": "api"}},
    )
    assert response.status_code == 202
    return response.json()


# ── Start ────────────────────────────────────────────────────────────────


class TestStartJob:
    def test_accepted(self, started, scheduler):
        assert started["totalUnits"] == 10
        assert [task.job_id for task in scheduler.pending] == [started["jobId"]]

    def test_invalid_payload_is_problem(self, client):
        response = client.post(JOBS, json={"kind": "dictionary-import", "source": {"format": "asterisk"}})

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("application/problem+json")
        body = response.json()
        assert body["title"] == "Invalid request"
        assert body["instance"] == JOBS
        assert body["errors"][0]["code"] == "VALIDATION_FAILED"
        assert body["errors"][0]["field"] == "source"

    def test_unknown_kind(self, client):
        response = client.post(JOBS, json={"kind": "translate", "source": {}})
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "kind"

    def test_malformed_body(self, client):
        response = client.post(JOBS, json={"kind": "dictionary-import"})
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "source"

    def test_trigger_rate_limit_ignores_declared_caller(self, make_client):
        client = make_client(trigger_rate_limit=1)
        body = {"kind": "dictionary-import", "source": {"source_text": "*casa*, S. f. - Habitação."}}
        assert client.post(JOBS, json=body, headers={"X-Caller-Id": "alice"}).status_code == 202

        limited = client.post(JOBS, json=body, headers={"X-Caller-Id": "bob"})

        assert limited.status_code == 429
        assert int(limited.headers["Retry-After"]) >= 1
        assert limited.json()["title"] == "Too many requests"


# ── Continue ─────────────────────────────────────────────────────────────


class TestContinueJob:
    def test_chunks_until_completed(self, client, started):
        job_id = started["jobId"]
        outcomes = []
        for from_index in (0, 4, 8):
            response = client.post(f"{JOBS}/{job_id}/continue", json={"fromIndex": from_index})
            assert response.status_code == 202
            outcomes.append(response.json()["outcome"])

        assert outcomes == ["continued", "continued", "completed"]
        assert client.get(f"{JOBS}/{job_id}").json()["status"] == "completed"

    def test_stale_index_is_noop(self, client, started):
        job_id = started["jobId"]
        client.post(f"{JOBS}/{job_id}/continue", json={"fromIndex": 0})

        response = client.post(f"{JOBS}/{job_id}/continue", json={"fromIndex": 0})

        assert response.status_code == 202
        assert response.json()["outcome"] == "noop"
        assert response.json()["cursor"] == 4

    def test_future_index_conflicts(self, client, started):
        response = client.post(f"{JOBS}/{started['jobId']}/continue", json={"fromIndex": 8})
        assert response.status_code == 409
        assert response.json()["title"] == "Job conflict"

    def test_negative_index_rejected(self, client, started):
        response = client.post(f"{JOBS}/{started['jobId']}/continue", json={"fromIndex": -1})
        assert response.status_code == 400

    def test_unknown_job(self, client):
        response = client.post(f"{JOBS}/nope/continue", json={"fromIndex": 0})
        assert response.status_code == 404
        assert response.json()["title"] == "Job not found"


# ── Cancel ───────────────────────────────────────────────────────────────


class TestCancelJob:
    def test_cancel_then_next_chunk_stops(self, client, started):
        job_id = started["jobId"]
        client.post(f"{JOBS}/{job_id}/continue", json={"fromIndex": 0})

        response = client.post(
            f"{JOBS}/{job_id}/cancel",
            json={"reason": "wrong dictionary"},
            headers={"X-Caller-Id": "alice"},
        )
        assert response.status_code == 200
        assert response.json() == {"jobId": job_id, "status": "running", "cancelRequested": True}

        report = client.post(f"{JOBS}/{job_id}/continue", json={"fromIndex": 4}).json()
        assert report["outcome"] == "cancelled"

        job = client.get(f"{JOBS}/{job_id}").json()
        assert job["status"] == "cancelled"
        assert job["processed_count"] == 4
        assert job["cancelled_by"] == "alice"
        assert job["cancel_reason"] == "wrong dictionary"

    def test_short_reason(self, client, started):
        response = client.post(f"{JOBS}/{started['jobId']}/cancel", json={"reason": "no"})
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "reason"

    def test_cancel_rate_limit(self, client, started):
        url = f"{JOBS}/{started['jobId']}/cancel"
        statuses = [client.post(url, json={"reason": "try again"}).status_code for _ in range(6)]
        assert statuses == [200] * 5 + [429]

    def test_rotating_caller_id_shares_one_limit(self, client, started):
        url = f"{JOBS}/{started['jobId']}/cancel"
        statuses = [
            client.post(url, json={"reason": "try again"}, headers={"X-Caller-Id": f"caller-{i}"}).status_code
            for i in range(20)
        ]
        assert statuses == [200] * 5 + [429] * 15
        assert client.get(f"{JOBS}/{started['jobId']}").json()["cancelled_by"] == "caller-0"

    def test_api_key_is_the_rate_limit_identity(self, make_client, make_dictionary):
        client = make_client(api_key="s3cret", cancel_rate_limit=1)
        headers = {"X-API-Key": "s3cret"}
        job_id = client.post(
            JOBS, json={"kind": "dictionary-import", "source": {"source_text": make_dictionary(3)}}, headers=headers
        ).json()["jobId"]
        url = f"{JOBS}/{job_id}/cancel"

        first = client.post(url, json={"reason": "try again"}, headers={**headers, "X-Caller-Id": "a"})
        second = client.post(url, json={"reason": "try again"}, headers={**headers, "X-Caller-Id": "b"})

        assert first.status_code == 200
        assert second.status_code == 429
        assert "api-key:" in second.json()["detail"]
        assert "s3cret" not in second.json()["detail"]


# ── Emergency stop and reprocessing ──────────────────────────────────────


class TestKillSwitch:
    def test_inactive_by_default(self, client):
        assert client.get(f"{JOBS}/kill-switch").json() == {"active": False}

    def test_stop_cancels_and_refuses(self, client, started, make_dictionary):
        response = client.post(
            f"{JOBS}/kill-switch",
            json={"reason": "classifier quota exhausted", "ttlMinutes": 10},
            headers={"X-Caller-Id": "ops"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["active"] is True
        assert body["setBy"] == "ops"
        assert body["cancelled"] == [started["jobId"]]
        assert body["stopping"] == []

        job = client.get(f"{JOBS}/{started['jobId']}").json()
        assert job["status"] == "cancelled"
        assert job["cancel_reason"] == "emergency stop: classifier quota exhausted"

        refused = client.post(JOBS, json={"kind": "dictionary-import", "source": {"source_text": make_dictionary(2)}})
        assert refused.status_code == 503
        assert refused.json()["title"] == "Emergency stop active"
        assert 590 <= int(refused.headers["Retry-After"]) <= 600

        assert client.get(f"{JOBS}/kill-switch").json()["reason"] == "classifier quota exhausted"

    def test_clear(self, client, make_dictionary):
        client.post(f"{JOBS}/kill-switch", json={"reason": "maintenance window"})

        assert client.delete(f"{JOBS}/kill-switch").json() == {"active": False, "cleared": True}
        assert client.delete(f"{JOBS}/kill-switch").json() == {"active": False, "cleared": False}
        response = client.post(JOBS, json={"kind": "dictionary-import", "source": {"source_text": make_dictionary(2)}})
        assert response.status_code == 202

    def test_short_reason(self, client):
        response = client.post(f"{JOBS}/kill-switch", json={"reason": "x"})
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "reason"
        assert client.get(f"{JOBS}/kill-switch").json() == {"active": False}


class TestReprocess:
    @pytest.fixture()
    def unresolved(self, conn):
        store = AnnotationStore(conn)
        store.upsert("forro", "s9", 0, "xote", Unresolved("xote"), sentence="xote da saudade")
        store.upsert("forro", "s9", 2, "saudade", Unresolved("saudade"), sentence="xote da saudade")
        conn.commit()

    def test_dry_run(self, client, unresolved, scheduler):
        response = client.post(f"{JOBS}/reprocess-unclassified", json={"corpus": "forro", "dryRun": True})

        assert response.status_code == 200
        assert response.json() == {"corpus": "forro", "candidates": 2, "jobId": None, "totalUnits": 0}
        assert not scheduler.pending

    def test_starts_annotation_job(self, client, unresolved, scheduler):
        response = client.post(f"{JOBS}/reprocess-unclassified", json={"corpus": "forro"})

        assert response.status_code == 202
        body = response.json()
        assert body["candidates"] == 2
        assert body["totalUnits"] == 2
        assert [task.job_id for task in scheduler.pending] == [body["jobId"]]
        assert client.get(f"{JOBS}/{body['jobId']}").json()["kind"] == "corpus-annotate"

    def test_bad_confidence(self, client):
        response = client.post(f"{JOBS}/reprocess-unclassified", json={"belowConfidence": 2})
        assert response.status_code == 400


# ── Reads ────────────────────────────────────────────────────────────────


class TestReads:
    def test_get_job(self, client, started):
        job = client.get(f"{JOBS}/{started['jobId']}").json()
        assert job["kind"] == "dictionary-import"
        assert job["total_units"] == 10
        assert job["metadata"]["source"] == "api"

    def test_list_with_filters(self, client, started):
        assert client.get(JOBS).json()["count"] == 1
        assert client.get(JOBS, params={"status": "running"}).json()["items"][0]["id"] == started["jobId"]
        assert client.get(JOBS, params={"kind": "corpus-annotate"}).json()["count"] == 0

    def test_bad_filter(self, client):
        response = client.get(JOBS, params={"status": "sleeping"})
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "status"

    def test_events(self, client, started):
        body = client.get(f"{JOBS}/{started['jobId']}/events").json()
        assert body["jobId"] == started["jobId"]
        assert [e["event_type"] for e in body["items"]][:2] == ["created", "started"]

    def test_events_unknown_job(self, client):
        assert client.get(f"{JOBS}/nope/events").status_code == 404


# ── Health, auth, request ids ────────────────────────────────────────────


class TestPlatform:
    def test_health(self, client):
        response = client.get(HEALTH)
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_unhealthy_is_503(self, client, conn):
        conn.close()
        response = client.get(HEALTH)
        assert response.status_code == 503
        assert response.json()["checks"]["database"]["status"] == "unhealthy"

    def test_api_key_required(self, make_client):
        client = make_client(api_key="s3cret")

        denied = client.get(JOBS)
        assert denied.status_code == 401
        assert denied.json()["title"] == "Unauthorized"

        assert client.get(JOBS, headers={"X-API-Key": "s3cret"}).status_code == 200
        assert client.get(HEALTH).status_code == 200

    def test_request_id_echoed(self, client):
        assert client.get(HEALTH, headers={"X-Request-ID": "req-42"}).headers["X-Request-ID"] == "req-42"
        assert client.get(HEALTH).headers["X-Request-ID"]
