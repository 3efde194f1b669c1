import pytest
from fastapi.testclient import TestClient

from interviewhub.config import Settings
from interviewhub.main import create_app

ALICE = {"Authorization": "Bearer tok-alice"}
BOB = {"Authorization": "Bearer tok-bob"}


@pytest.fixture()
def backend(remote):
    remote.user = None
    remote.sessions = {
        "tok-alice": {"id": "u1", "email": "alice@example.com"},
        "tok-bob": {"id": "u2", "email": "bob@example.com"},
    }
    return remote


@pytest.fixture()
def api_clock(clock):
    return clock


@pytest.fixture()
def client(backend, api_clock):
    app = create_app(settings=Settings(log_level="WARNING"), remote=backend, clock=api_clock)
    with TestClient(app) as c:
        yield c


def test_health_and_version(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["cache_entries"] == 0
    assert "x-request-id" in r.headers

    v = client.get("/version").json()
    assert v["service_version"]


def test_metrics_exposed(client):
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "ih_http_requests_total" in r.text


def test_feed_is_cached_between_requests(client, backend):
    backend.add_experience(user_id="u1")

    first = client.get("/api/v1/experiences").json()
    second = client.get("/api/v1/experiences").json()

    assert [e["id"] for e in first["items"]] == ["exp-1"]
    assert second == first
    assert first["is_stale"] is False
    assert backend.count("query", "interview_experiences") == 1


def test_stale_feed_is_flagged(client, backend, api_clock):
    backend.add_experience(user_id="u1")
    client.get("/api/v1/experiences")
    api_clock.advance(31)

    body = client.get("/api/v1/experiences").json()
    assert body["is_stale"] is True
    assert [e["id"] for e in body["items"]] == ["exp-1"]


def test_feed_failure_is_a_message_not_a_crash(client, backend):
    backend.fail_ops.add("query")
    r = client.get("/api/v1/experiences")
    assert r.status_code == 200
    assert r.json()["items"] == []
    assert r.json()["message"] == "Error loading experiences"


def test_create_requires_auth(client):
    r = client.post("/api/v1/experiences", json={"heading": "h", "content": "c"})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHENTICATED"


def test_create_shows_up_in_cached_feed(client, backend):
    client.get("/api/v1/experiences")

    r = client.post(
        "/api/v1/experiences",
        json={"heading": "Onsite", "content": "3 rounds", "mode": "offline", "selected": True},
        headers=ALICE,
    )
    assert r.status_code == 201
    created = r.json()
    assert created["user_id"] == "u1"

    feed = client.get("/api/v1/experiences").json()["items"]
    assert [e["id"] for e in feed] == [created["id"]]
    assert backend.count("query", "interview_experiences") == 1


def test_create_validates_body(client):
    r = client.post("/api/v1/experiences", json={"heading": "", "content": "c"}, headers=ALICE)
    assert r.status_code == 422


def test_experience_detail_and_not_found(client, backend):
    backend.add_experience(user_id="u1", heading="hello")

    assert client.get("/api/v1/experiences/exp-1").json()["heading"] == "hello"

    r = client.get("/api/v1/experiences/nope")
    assert r.status_code == 404
    assert r.json()["error"] == {
        "code": "NOT_FOUND",
        "message": "Experience not found",
        "hint": None,
    }


def test_only_the_author_can_delete(client, backend):
    backend.add_experience(user_id="u1")
    client.get("/api/v1/experiences")

    r = client.delete("/api/v1/experiences/exp-1", headers=BOB)
    assert r.status_code == 403
    assert [e["id"] for e in client.get("/api/v1/experiences").json()["items"]] == ["exp-1"]

    r = client.delete("/api/v1/experiences/exp-1", headers=ALICE)
    assert r.status_code == 204
    assert client.get("/api/v1/experiences").json()["items"] == []
    assert backend.tables["interview_experiences"] == []


def test_like_toggle_and_count(client, backend):
    backend.add_experience(user_id="u1")

    assert client.post("/api/v1/experiences/exp-1/like", headers=BOB).json() == {
        "experience_id": "exp-1",
        "liked": True,
    }
    assert client.get("/api/v1/experiences/exp-1/likes").json()["count"] == 1

    assert client.post("/api/v1/experiences/exp-1/like", headers=BOB).json()["liked"] is False
    assert client.get("/api/v1/experiences/exp-1/likes").json()["count"] == 0


def test_like_requires_auth(client, backend):
    backend.add_experience(user_id="u1")
    assert client.post("/api/v1/experiences/exp-1/like").status_code == 401


def test_user_experiences(client, backend):
    backend.add_experience(user_id="u1")
    backend.add_experience(user_id="u2")

    items = client.get("/api/v1/users/u2/experiences").json()["items"]
    assert [e["user_id"] for e in items] == ["u2"]


def test_own_profile_is_created_on_first_access(client, backend):
    r = client.get("/api/v1/profiles/u1", headers=ALICE)
    assert r.status_code == 200
    assert r.json()["email"] == "alice@example.com"
    assert backend.tables["profiles"][0]["id"] == "u1"


def test_unknown_profile_is_404(client):
    r = client.get("/api/v1/profiles/u9", headers=ALICE)
    assert r.status_code == 404
    assert r.json()["error"]["message"] == "User not found"


def test_profile_failure_is_502(client, backend):
    backend.fail_ops.add("query")
    r = client.get("/api/v1/profiles/u1", headers=ALICE)
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "UPSTREAM_ERROR"


def test_update_profile(client, backend):
    backend.add_profile(id="u1", name="A")
    r = client.put("/api/v1/profile", json={"name": "Alice", "linkedin": "in/alice"}, headers=ALICE)
    assert r.status_code == 200
    assert r.json()["name"] == "Alice"
    assert client.get("/api/v1/profiles/u1").json()["linkedin"] == "in/alice"


def test_avatar_upload(client, backend):
    backend.add_profile(id="u1", name="A")
    r = client.post(
        "/api/v1/profile/avatar?filename=me.png",
        content=b"\x89PNG",
        headers={**ALICE, "Content-Type": "image/png"},
    )
    assert r.status_code == 200
    assert r.json()["avatar_url"] == "https://cdn.test/avatars/u1/avatar.png"


def test_avatar_rejects_non_images(client, backend):
    r = client.post(
        "/api/v1/profile/avatar?filename=notes.txt",
        content=b"hello",
        headers={**ALICE, "Content-Type": "text/plain"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_UPLOAD"


def test_dashboard(client, backend):
    assert client.get("/api/v1/dashboard").status_code == 401

    backend.add_profile(id="u1", name="A")
    backend.add_experience(user_id="u1")
    backend.add_experience(user_id="u2")
    body = client.get("/api/v1/dashboard", headers=ALICE).json()

    assert body["profile"]["name"] == "A"
    assert len(body["experiences"]) == 2
    assert [e["user_id"] for e in body["user_experiences"]] == ["u1"]


def test_logout_clears_cache(client, backend):
    backend.add_profile(id="u1", name="A")
    client.get("/api/v1/dashboard", headers=ALICE)
    assert client.get("/health").json()["cache_entries"] == 3

    assert client.post("/api/v1/logout", headers=ALICE).status_code == 204
    assert client.get("/health").json()["cache_entries"] == 0


def test_malformed_backend_row_is_a_message(client, backend):
    backend.tables["interview_experiences"].append({"id": "bad", "user_id": "u1"})
    r = client.get("/api/v1/experiences")
    assert r.status_code == 200
    assert r.json()["items"] == []
    assert r.json()["message"] == "Error loading experiences"


def test_like_fails_cleanly_when_liked_set_unreadable(client, backend):
    backend.add_experience(user_id="u1")
    backend.fail_ops.add("query")
    r = client.post("/api/v1/experiences/exp-1/like", headers=BOB)
    assert r.status_code == 502
    assert r.json()["error"]["message"] == "Could not update like"
    assert backend.tables["likes"] == []


def test_caller_request_id_is_echoed(client):
    r = client.get("/health", headers={"x-request-id": "trace-123"})
    assert r.headers["x-request-id"] == "trace-123"
