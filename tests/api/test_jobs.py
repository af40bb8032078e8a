"""Tests for the jobs endpoints."""

API = "/api/v1"


def _push(client, **body):
    body.setdefault("type", "backup_run")
    resp = client.post(f"{API}/jobs", json=body)
    assert resp.status_code == 202
    return resp.json()["data"]["id"]


class TestPush:
    """POST /jobs."""

    def test_accepted(self, client, store):
        resp = client.post(f"{API}/jobs", json={"type": "backup_run", "payload": {"backup_job_id": "bj-1"}})
        assert resp.status_code == 202
        data = resp.json()["data"]
        assert data["status"] == "pending"

        job = store.queue.get_job(data["id"])
        assert job.payload == {"backup_job_id": "bj-1"}
        assert job.queue == "default"
        assert job.created_by == "api"

    def test_identical_bodies_make_two_jobs(self, client):
        assert _push(client) != _push(client)

    def test_validation(self, client):
        resp = client.post(f"{API}/jobs", json={"type": "", "max_attempts": 0})
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "VALIDATION"
        assert {e["field"] for e in body["errors"]} == {"body.type", "body.max_attempts"}


class TestRead:
    """GET endpoints."""

    def test_get(self, client):
        job_id = _push(client, queue="restore", max_attempts=5)
        data = client.get(f"{API}/jobs/{job_id}").json()["data"]
        assert data["id"] == job_id
        assert data["queue"] == "restore"
        assert data["max_attempts"] == 5
        assert data["progress"] == 0

    def test_get_unknown(self, client):
        resp = client.get(f"{API}/jobs/missing")
        assert resp.status_code == 404
        body = resp.json()
        assert body["code"] == "NOT_FOUND"
        assert body["instance"] == f"{API}/jobs/missing"
        assert "X-Request-ID" in resp.headers

    def test_list_filters_and_pages(self, client, store):
        _push(client)
        _push(client)
        running = _push(client, queue="restore")
        store.queue.claim("restore")

        page = client.get(f"{API}/jobs", params={"limit": 1}).json()
        assert page["page"] == {"total": 3, "limit": 1, "offset": 0, "has_more": True}
        assert len(page["data"]) == 1

        by_status = client.get(f"{API}/jobs", params={"status": "running"}).json()
        assert [j["id"] for j in by_status["data"]] == [running]

        by_queue = client.get(f"{API}/jobs", params={"queue": "default"}).json()
        assert by_queue["page"]["total"] == 2

    def test_list_bad_status(self, client):
        assert client.get(f"{API}/jobs", params={"status": "exploded"}).status_code == 422

    def test_stats(self, client):
        _push(client)
        data = client.get(f"{API}/jobs/stats").json()["data"]
        assert data["pending"] == 1
        assert data["total"] == 1

    def test_progress_projection(self, client):
        job_id = _push(client)
        data = client.get(f"{API}/jobs/{job_id}/progress").json()["data"]
        assert data["status"] == "pending"
        assert data["progress"] == 0


class TestCancelAndRetry:
    """State-changing endpoints."""

    def test_cancel(self, client):
        job_id = _push(client)
        resp = client.post(f"{API}/jobs/{job_id}/cancel")
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "cancelled"
        assert client.post(f"{API}/jobs/{job_id}/cancel").status_code == 409

    def test_retry_failed(self, client, store):
        job_id = _push(client, max_attempts=2)
        store.queue.claim()
        store.queue.fail(job_id, "agent offline")

        resp = client.post(f"{API}/jobs/{job_id}/retry")
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "pending"

    def test_retry_exhausted(self, client, store):
        job_id = _push(client, max_attempts=1)
        store.queue.claim()
        store.queue.fail(job_id, "agent offline")
        resp = client.post(f"{API}/jobs/{job_id}/retry")
        assert resp.status_code == 409
        assert "1/1" in resp.json()["title"]

    def test_retry_pending(self, client):
        job_id = _push(client)
        assert client.post(f"{API}/jobs/{job_id}/retry").status_code == 409
