"""
HTTP tests for the FastAPI app (main.create_app) via TestClient.

Each test gets a fresh app bound to its own in-memory storage. The client
keeps cookies between requests, so a test behaves like one browser session
unless it clears the jar.
"""

from fastapi.testclient import TestClient

from main import SESSION_COOKIE, create_app
from shorty.manager.service import ShortyService
from shorty.storage.errors import PipelineFullError
from shorty.storage.storage import Storage

BASE_URL = "http://localhost:8080"


def _code(short_url: str) -> str:
    return short_url.rsplit("/", 1)[1]


def test_ping(client):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.text == "ping - pong"


def test_text_shorten_sets_cookie_and_dedupes(client):
    first = client.post("/", content="https://ya.ru")
    assert first.status_code == 201
    assert first.text.startswith(BASE_URL + "/")
    assert SESSION_COOKIE in first.cookies

    second = client.post("/", content="https://ya.ru")
    assert second.status_code == 409
    assert second.text == first.text


def test_text_shorten_rejects_bad_input(client):
    assert client.post("/", content="").status_code == 400
    response = client.post("/", content="not a url")
    assert response.status_code == 400
    assert "Invalid URL format" in response.text


def test_json_shorten(client):
    response = client.post("/api/shorten", json={"url": "https://a.example"})
    assert response.status_code == 201
    result = response.json()["result"]
    assert response.headers["location"] == result

    again = client.post("/api/shorten", json={"url": "https://a.example"})
    assert again.status_code == 409
    assert again.json()["result"] == result


def test_json_shorten_invalid_url(client):
    response = client.post("/api/shorten", json={"url": "ftp://a.example"})
    assert response.status_code == 400
    assert "Invalid URL format" in response.json()["detail"]
    assert client.post("/api/shorten", json={}).status_code == 422


def test_batch_shorten(client):
    response = client.post(
        "/api/shorten/batch",
        json=[
            {"correlation_id": "1", "original_url": "https://a.example"},
            {"correlation_id": "2", "original_url": "nope"},
            {"original_url": "https://b.example"},
        ],
    )
    assert response.status_code == 201
    ok, bad, shapeless = response.json()
    assert ok["correlation_id"] == "1" and ok["short_url"].startswith(BASE_URL + "/")
    assert ok["conflict"] is False and "error" not in ok
    assert bad["correlation_id"] == "2" and "Invalid URL format" in bad["error"]
    assert "correlation_id" in shapeless["error"]


def test_redirect_and_not_found(client):
    short_url = client.post("/", content="https://redirect.example/path").text
    response = client.get(f"/{_code(short_url)}", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "https://redirect.example/path"
    assert client.get("/nosuch", follow_redirects=False).status_code == 404


def test_user_urls_require_session(client):
    assert client.get("/api/user/urls").status_code == 401
    assert client.request("DELETE", "/api/user/urls", json=["abc"]).status_code == 401


def test_user_urls_listing(client):
    client.post("/api/shorten", json={"url": "https://x.example"})
    assert client.cookies.get(SESSION_COOKIE)
    client.post("/api/shorten", json={"url": "https://y.example"})
    response = client.get("/api/user/urls")
    assert response.status_code == 200
    assert [item["original_url"] for item in response.json()] == ["https://x.example", "https://y.example"]


def test_user_urls_empty_is_no_content(client):
    client.post("/api/shorten", json={"url": "https://x.example"})
    code = _code(client.get("/api/user/urls").json()[0]["short_url"])
    client.request("DELETE", "/api/user/urls", json=[code])
    client.app.state.service.pipeline.join()
    assert client.get("/api/user/urls").status_code == 204


def test_delete_then_gone(client):
    short_url = client.post("/", content="https://gone.example").text
    response = client.request("DELETE", "/api/user/urls", json=[_code(short_url)])
    assert response.status_code == 202
    client.app.state.service.pipeline.join()
    assert client.get(f"/{_code(short_url)}", follow_redirects=False).status_code == 410


def test_delete_of_foreign_code_is_ignored(client):
    short_url = client.post("/", content="https://mine.example").text
    client.cookies.clear()
    client.post("/", content="https://other.example")
    assert client.request("DELETE", "/api/user/urls", json=[_code(short_url)]).status_code == 202
    client.app.state.service.pipeline.join()
    assert client.get(f"/{_code(short_url)}", follow_redirects=False).status_code == 307


def test_delete_when_pipeline_full(client, monkeypatch):
    client.post("/", content="https://a.example")

    def full(owner_id, codes):
        raise PipelineFullError(0)

    monkeypatch.setattr(client.app.state.service, "delete", full)
    response = client.request("DELETE", "/api/user/urls", json=["abc123"])
    assert response.status_code == 503
    assert response.headers["retry-after"] == "1"


def test_stats_for_trusted_address(storage):
    app = create_app(ShortyService(storage, BASE_URL), trusted_subnet="10.0.0.0/24")
    with TestClient(app) as c:
        c.post("/", content="https://a.example")
        c.post("/", content="https://b.example")
        response = c.get("/api/internal/stats", headers={"X-Real-IP": "10.0.0.7"})
    assert response.status_code == 200
    assert response.json() == {"urls": 2, "users": 1}


def test_stats_forbidden_outside_trusted_subnet(storage):
    app = create_app(ShortyService(storage, BASE_URL), trusted_subnet="10.0.0.0/24")
    with TestClient(app) as c:
        assert c.get("/api/internal/stats", headers={"X-Real-IP": "192.168.1.5"}).status_code == 403
        assert c.get("/api/internal/stats", headers={"X-Real-IP": "not-an-ip"}).status_code == 403
        assert c.get("/api/internal/stats").status_code == 403


def test_stats_forbidden_without_trusted_subnet(storage):
    with TestClient(create_app(ShortyService(storage, BASE_URL), trusted_subnet="")) as c:
        response = c.get("/api/internal/stats", headers={"X-Real-IP": "127.0.0.1"})
    assert response.status_code == 403
    assert response.text == "Forbidden"


def test_exhausted_codes_map_to_503(scripted):
    storage = Storage(generator=scripted("abc123", "abc123"), max_attempts=2)
    storage.save(1, "abc123", "https://taken.example")
    with TestClient(create_app(ShortyService(storage, BASE_URL))) as c:
        response = c.post("/api/shorten", json={"url": "https://new.example"})
    assert response.status_code == 503
    assert "2 attempts" in response.text
