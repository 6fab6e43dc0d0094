import pytest
from fastapi.testclient import TestClient

from proofly import deps
from proofly.main import app
from proofly.routes.auth import make_jwt
from proofly.services.kv_store import JOBS, REMOTE_SIGNING_REQUESTS, MemoryKeyValueStore
from proofly.services.rate_limiter import SlidingWindowRateLimiter
from proofly.services.tiers import StaticTierProvider
from proofly.services.usage_policy import UsagePolicyEngine

from conftest import FakeNotifier

JOB = {
    "clientName": "Jane Doe",
    "clientPhone": "555-010-1234",
    "serviceType": "Gutter cleaning",
    "address": "12 Elm St",
}


@pytest.fixture()
def env():
    state = {
        "store": MemoryKeyValueStore(),
        "limiter": SlidingWindowRateLimiter(),
        "notifier": FakeNotifier(),
        "tiers": StaticTierProvider({"worker-1": "free", "pro-1": "professional"}),
    }
    app.dependency_overrides[deps.get_store] = lambda: state["store"]
    app.dependency_overrides[deps.get_db] = lambda: None
    app.dependency_overrides[deps.get_notifier] = lambda: state["notifier"]
    app.dependency_overrides[deps.get_rate_limiter] = lambda: state["limiter"]
    app.dependency_overrides[deps.get_policy_engine] = lambda: UsagePolicyEngine(state["tiers"], state["limiter"])
    yield state
    app.dependency_overrides.clear()


@pytest.fixture()
def client(env):
    return TestClient(app)


def auth(user_id="worker-1"):
    return {"Authorization": f"Bearer {make_jwt(user_id)}"}


def create_job(client, user_id="worker-1", **overrides):
    r = client.post("/api/jobs", json={**JOB, **overrides}, headers=auth(user_id))
    assert r.status_code == 200, r.text
    return r.json()["job"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_login_and_me(client):
    r = client.post("/api/auth/login", json={"username": "worker", "password": "worker123"})
    assert r.status_code == 200
    token = r.json()["token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json() == {"user": {"id": "worker"}}

    bad = client.post("/api/auth/login", json={"username": "worker", "password": "nope"})
    assert bad.status_code == 401


def test_jobs_require_auth(client):
    assert client.get("/api/jobs").status_code == 401
    assert client.get("/api/jobs", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_create_job_and_missing_fields(client):
    job = create_job(client)
    assert job["status"] == "created"
    assert job["statusText"] == "Created"

    r = client.post("/api/jobs", json={"clientName": "Jane"}, headers=auth())
    assert r.status_code == 422
    assert "Address is required" in r.json()["fields"]


def test_free_tier_job_limit(client):
    for _ in range(20):
        create_job(client)

    r = client.post("/api/jobs", json=JOB, headers=auth())
    assert r.status_code == 402
    detail = r.json()["detail"]
    assert detail["allowed"] is False
    assert detail["limit"] == 20
    assert detail["upgradeAdvisory"]["urgency"] == "high"

    # unlimited tier is unaffected
    for _ in range(25):
        create_job(client, user_id="pro-1")


def test_photo_rate_limit_returns_429(client):
    job = create_job(client)
    url = f"/api/jobs/{job['id']}/photos"
    codes = [client.post(url, json={"uri": f"file:///p{i}.jpg", "type": "before"}, headers=auth()).status_code
             for i in range(6)]
    assert codes == [200] * 5 + [429]

    r = client.get(f"/api/jobs/{job['id']}", headers=auth())
    assert r.json()["status"] == "in_progress"
    assert len(r.json()["photos"]) == 5


def test_jobs_are_private_to_their_owner(client):
    job = create_job(client)
    assert client.get(f"/api/jobs/{job['id']}", headers=auth("pro-1")).status_code == 404
    assert client.get("/api/jobs/missing", headers=auth()).status_code == 404


def test_remote_review_flow(client, env):
    job = create_job(client)
    r = client.post(f"/api/jobs/{job['id']}/remote-signing",
                    json={"contactMethod": "email", "address": "client@example.com"}, headers=auth())
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    token = body["reviewUrl"].rsplit("/", 1)[1]
    assert env["notifier"].sent[0][:2] == ("email", "client@example.com")

    job_view = client.get(f"/api/jobs/{job['id']}", headers=auth()).json()
    assert job_view["status"] == "pending_remote_signature"

    opened = client.get(f"/review/{token}")
    assert opened.status_code == 200
    assert opened.json()["request"]["status"] == "viewed"
    assert "secureToken" not in opened.json()["request"]
    assert opened.json()["job"]["clientName"] == "Jane Doe"

    approved = client.post(f"/review/{token}/approve",
                           json={"signatureData": "<blob>", "clientSignedName": "Jane Doe"})
    assert approved.status_code == 200
    assert approved.json()["request"]["status"] == "approved"

    job_view = client.get(f"/api/jobs/{job['id']}", headers=auth()).json()
    assert job_view["status"] == "completed"
    assert job_view["clientSignedName"] == "Jane Doe"

    again = client.post(f"/review/{token}/reject")
    assert again.status_code == 409


def test_invalid_contact_is_422(client):
    job = create_job(client)
    r = client.post(f"/api/jobs/{job['id']}/remote-signing",
                    json={"contactMethod": "sms", "address": "555"}, headers=auth())
    assert r.status_code == 422


def test_unknown_review_token_is_404(client):
    assert client.get("/review/not-a-token").status_code == 404
    assert client.post("/review/not-a-token/approve").status_code == 404


def test_notification_failure_is_502_but_request_is_kept(client, env):
    env["notifier"].fail = True
    job = create_job(client)

    r = client.post(f"/api/jobs/{job['id']}/remote-signing",
                    json={"contactMethod": "sms", "address": "5550109999"}, headers=auth())

    assert r.status_code == 502
    body = r.json()
    assert body["success"] is False
    assert body["requestId"]
    pending = client.get("/api/remote-signing/pending", headers=auth()).json()
    assert [p["id"] for p in pending] == [body["requestId"]]
    assert client.get("/api/remote-signing/pending", headers=auth("pro-1")).json() == []


def test_usage_endpoints(client):
    create_job(client)
    usage = client.get("/api/usage", headers=auth()).json()
    assert usage["tier"] == "free"
    assert usage["jobsUsed"] == "1/20 jobs"

    check = client.post("/api/usage/check", json={"action": "generate_professional_pdf"}, headers=auth()).json()
    assert check["allowed"] is False

    tiers = {t["id"]: t for t in client.get("/api/tiers").json()}
    assert tiers["free"]["maxJobs"] == 20
    assert tiers["business"]["photoRate"]["perDay"] is None


def test_maintenance_outbox_and_cleanup(client):
    job = create_job(client)
    client.post(f"/api/jobs/{job['id']}/remote-signing",
                json={"contactMethod": "email", "address": "client@example.com"}, headers=auth())

    # no remote datastore configured, so the mirror insert is queued
    outbox = client.get("/api/maintenance/outbox", headers=auth()).json()
    assert outbox["pending"] == 1
    assert client.post("/api/maintenance/flush-outbox", headers=auth()).json() == {"flushed": 0, "pending": 1}

    assert client.post("/api/maintenance/cleanup-expired", headers=auth()).json() == {"expired": 0}
    assert client.post("/api/maintenance/cleanup-expired").status_code == 401


def test_failed_notification_still_queues_the_mirror_insert(client, env):
    env["notifier"].fail = True
    job = create_job(client)

    r = client.post(f"/api/jobs/{job['id']}/remote-signing",
                    json={"contactMethod": "sms", "address": "5550109999"}, headers=auth())
    assert r.status_code == 502

    outbox = client.get("/api/maintenance/outbox", headers=auth()).json()
    assert outbox["pending"] == 1
    assert outbox["items"][0]["key"] == r.json()["requestId"]


def test_expired_review_link_queues_the_expiry_update(client, env):
    job = create_job(client)
    body = client.post(f"/api/jobs/{job['id']}/remote-signing",
                       json={"contactMethod": "email", "address": "client@example.com"}, headers=auth()).json()
    token = body["reviewUrl"].rsplit("/", 1)[1]

    def backdate(requests):
        for r in requests:
            r["expiresAt"] = "2020-01-01T00:00:00+00:00"
        return requests

    env["store"].update(REMOTE_SIGNING_REQUESTS, backdate, default=[])

    assert client.get(f"/review/{token}").status_code == 404

    items = client.get("/api/maintenance/outbox", headers=auth()).json()["items"]
    assert [(i["op"], i["doc"]["status"]) for i in items] == [("insert", "pending"), ("update", "expired")]


def test_rejected_photos_do_not_use_up_the_rate_budget(client):
    job = create_job(client)
    url = f"/api/jobs/{job['id']}/photos"

    for _ in range(5):
        assert client.post(url, json={"uri": "", "type": "before"}, headers=auth()).status_code == 422

    r = client.post(url, json={"uri": "file:///p1.jpg", "type": "before"}, headers=auth())
    assert r.status_code == 200, r.text
    assert len(r.json()["job"]["photos"]) == 1


def test_full_job_is_refused_with_402(client, env):
    job = create_job(client)

    def fill(jobs):
        for j in jobs:
            j["photos"] = [{"id": f"p{i}", "uri": "x", "type": "during", "timestamp": "t"} for i in range(25)]
        return jobs

    env["store"].update(JOBS, fill, default=[])

    r = client.post(f"/api/jobs/{job['id']}/photos", json={"uri": "file:///p.jpg"}, headers=auth())
    assert r.status_code == 402
    assert r.json()["detail"]["limit"] == 25
    assert env["limiter"].daily_count("worker-1") == 0
