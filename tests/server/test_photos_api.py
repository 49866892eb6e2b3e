"""API tests with TestClient: health, API key, check, upload, list, get, download, delete."""

import hashlib
import uuid

import pytest
from fastapi.testclient import TestClient

from photosync.server.db.session import get_db, get_session
from photosync.server.main import app

TAKEN = "2024-06-15T10:30:00Z"


@pytest.fixture
def client(tmp_path, monkeypatch):
    """TestClient for the FastAPI app. Use as context manager so lifespan runs (init_db).
    Storage goes to tmp_path so each test sees only its own files."""
    monkeypatch.setenv("PHOTOSYNC_STORAGE_BASE_PATH", str(tmp_path))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth(api_key):
    return {"X-API-Key": api_key}


def _body() -> bytes:
    return b"\x89PNG" + uuid.uuid4().bytes


def _upload(client: TestClient, auth, body: bytes, filename: str = "IMG_0001.jpg", **params):
    return client.post(
        "/api/photos/upload",
        params={"filename": filename, "date_taken": TAKEN, **params},
        content=body,
        headers=auth,
    )


def test_health(client: TestClient) -> None:
    """GET /health and /api/health need no key and report healthy."""
    for path in ("/health", "/api/health"):
        r = client.get(path)
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data


def test_security_headers(client: TestClient, auth) -> None:
    r = client.get("/health")
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "no-referrer"
    assert "Cache-Control" not in r.headers
    r = client.get("/api/photos", headers=auth)
    assert r.headers["Cache-Control"] == "no-store"


def test_requires_api_key(client: TestClient) -> None:
    """Every photo route rejects a missing or wrong key with 401."""
    r = client.post("/api/photos/check", json={"hashes": []})
    assert r.status_code == 401
    assert r.json()["detail"] == "API key is required."
    r = client.get("/api/photos", headers={"X-API-Key": "wrong"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid API key."
    r = client.post("/api/photos/upload", params={"filename": "a.jpg"}, content=b"x")
    assert r.status_code == 401


def test_rejects_all_when_key_not_configured(client: TestClient, monkeypatch, auth) -> None:
    monkeypatch.setenv("PHOTOSYNC_API_KEY", "")
    r = client.get("/api/photos", headers=auth)
    assert r.status_code == 401


def test_check_round_trip(client: TestClient, auth) -> None:
    """With A stored, checking {A, B, C} returns existing [A] and missing [B, C]."""
    a, b, c = _body(), _body(), _body()
    assert _upload(client, auth, a).status_code == 200
    fa, fb, fc = (hashlib.sha256(x).hexdigest() for x in (a, b, c))
    r = client.post("/api/photos/check", json={"hashes": [fa, fb, fc.upper()]}, headers=auth)
    assert r.status_code == 200
    assert r.json() == {"existing": [fa], "missing": [fb, fc]}


def test_check_rejects_malformed(client: TestClient, auth) -> None:
    r = client.post("/api/photos/check", json={"hashes": ["abc"]}, headers=auth)
    assert r.status_code == 400


def test_check_rejects_too_many(client: TestClient, auth, monkeypatch) -> None:
    monkeypatch.setenv("PHOTOSYNC_MAX_CHECK_HASHES", "2")
    hashes = [hashlib.sha256(_body()).hexdigest() for _ in range(3)]
    r = client.post("/api/photos/check", json={"hashes": hashes}, headers=auth)
    assert r.status_code == 400
    assert "Maximum 2" in r.json()["detail"]


def test_upload_new_then_duplicate(client: TestClient, auth) -> None:
    """Same bytes under another name: same record, flagged duplicate, no second file."""
    body = _body()
    r = _upload(client, auth, body, "beach.jpg")
    assert r.status_code == 200
    first = r.json()
    assert first["is_duplicate"] is False
    assert first["stored_path"] == "2024/06/beach.jpg"

    r = _upload(client, auth, body, "beach-copy.jpg")
    assert r.status_code == 200
    second = r.json()
    assert second["is_duplicate"] is True
    assert second["id"] == first["id"]
    assert second["stored_path"] == first["stored_path"]


def test_upload_known_hash_short_circuits(client: TestClient, auth) -> None:
    """A claimed fingerprint already stored returns the duplicate without needing the body."""
    body = _body()
    first = _upload(client, auth, body).json()
    r = _upload(client, auth, b"", hash=f"sha256:{hashlib.sha256(body).hexdigest()}")
    assert r.status_code == 200
    assert r.json()["id"] == first["id"]
    assert r.json()["is_duplicate"] is True


def test_upload_hash_mismatch(client: TestClient, auth) -> None:
    r = _upload(client, auth, _body(), hash=hashlib.sha256(b"other").hexdigest())
    assert r.status_code == 400
    assert "does not match" in r.json()["detail"]


def test_upload_same_name_different_content(client: TestClient, auth) -> None:
    """Distinct content with the same name gets a suffixed path; nothing is overwritten."""
    r1 = _upload(client, auth, _body(), "dup.jpg").json()
    r2 = _upload(client, auth, _body(), "dup.jpg").json()
    assert r1["stored_path"] == "2024/06/dup.jpg"
    assert r2["stored_path"] == "2024/06/dup_001.jpg"
    assert r1["id"] != r2["id"]


def test_upload_filename_cannot_escape_root(client: TestClient, auth, tmp_path) -> None:
    r = _upload(client, auth, _body(), "../../../evil.jpg")
    assert r.status_code == 200
    assert r.json()["stored_path"] == "2024/06/evil.jpg"
    assert (tmp_path / "2024" / "06" / "evil.jpg").is_file()


def test_upload_rejects_bad_extension(client: TestClient, auth) -> None:
    r = _upload(client, auth, _body(), "script.sh")
    assert r.status_code == 400
    assert "not allowed" in r.json()["detail"]


def test_upload_rejects_empty_body(client: TestClient, auth) -> None:
    r = _upload(client, auth, b"")
    assert r.status_code == 400


def test_upload_requires_filename(client: TestClient, auth) -> None:
    r = client.post("/api/photos/upload", content=b"x", headers=auth)
    assert r.status_code == 422


def test_upload_too_large(client: TestClient, auth, monkeypatch) -> None:
    monkeypatch.setenv("PHOTOSYNC_MAX_FILE_SIZE_MB", "1")
    r = _upload(client, auth, b"x" * (1024 * 1024 + 1))
    assert r.status_code == 413
    assert "1MB" in r.json()["detail"]


def test_upload_removes_file_when_commit_fails(tmp_path, monkeypatch, auth) -> None:
    """A record that never commits leaves no placed file behind."""
    monkeypatch.setenv("PHOTOSYNC_STORAGE_BASE_PATH", str(tmp_path))

    async def locked_db():
        async with get_session() as session:
            async def refuse_commit():
                raise RuntimeError("database is locked")

            session.commit = refuse_commit
            yield session

    app.dependency_overrides[get_db] = locked_db
    try:
        with TestClient(app, raise_server_exceptions=False) as c:
            r = _upload(c, auth, _body(), "locked.jpg")
    finally:
        app.dependency_overrides.pop(get_db, None)
    assert r.status_code == 500
    assert [p for p in tmp_path.rglob("*") if p.is_file()] == []


def test_api_docs_are_not_served(client: TestClient, auth) -> None:
    for path in ("/docs", "/redoc", "/openapi.json"):
        assert client.get(path).status_code == 404
        assert client.get(path, headers=auth).status_code == 404


def test_upload_date_taken_defaults_to_now(client: TestClient, auth) -> None:
    r = client.post("/api/photos/upload", params={"filename": "now.jpg"}, content=_body(), headers=auth)
    assert r.status_code == 200
    year, month, _ = r.json()["stored_path"].split("/")
    assert len(year) == 4 and len(month) == 2


def test_get_download_and_delete(client: TestClient, auth) -> None:
    body = _body()
    photo_id = _upload(client, auth, body, "keep.jpg").json()["id"]

    r = client.get(f"/api/photos/{photo_id}", headers=auth)
    assert r.status_code == 200
    data = r.json()
    assert data["original_filename"] == "keep.jpg"
    assert data["fingerprint"] == hashlib.sha256(body).hexdigest()
    assert data["file_size"] == len(body)

    r = client.get(f"/api/photos/{photo_id}/file", headers=auth)
    assert r.status_code == 200
    assert r.content == body

    r = client.delete(f"/api/photos/{photo_id}", headers=auth)
    assert r.status_code == 204
    assert client.get(f"/api/photos/{photo_id}", headers=auth).status_code == 404
    assert client.get(f"/api/photos/{photo_id}/file", headers=auth).status_code == 404
    assert client.delete(f"/api/photos/{photo_id}", headers=auth).status_code == 404


def test_get_unknown_photo(client: TestClient, auth) -> None:
    assert client.get(f"/api/photos/{uuid.uuid4()}", headers=auth).status_code == 404


def test_list_clamps_paging(client: TestClient, auth) -> None:
    """take is clamped to 1..100 and skip to >= 0."""
    _upload(client, auth, _body())
    r = client.get("/api/photos", params={"skip": -5, "take": 1000}, headers=auth)
    assert r.status_code == 200
    data = r.json()
    assert data["skip"] == 0
    assert data["take"] == 100
    assert data["total_count"] >= 1
    assert 1 <= len(data["photos"]) <= 100

    r = client.get("/api/photos", params={"take": 0}, headers=auth)
    assert r.json()["take"] == 1
    assert len(r.json()["photos"]) == 1


def test_quota_key_prefers_api_key_over_address(api_key) -> None:
    """Two devices behind one address with different keys get separate quotas; the raw key is never used."""
    from starlette.requests import Request

    from photosync.server.limiter import quota_key

    def request(headers):
        scope = {
            "type": "http",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": ("10.0.0.5", 5000),
        }
        return Request(scope)

    with_key = quota_key(request({"X-API-Key": api_key}))
    other = quota_key(request({"X-API-Key": api_key + "-other"}))
    assert with_key.startswith("key:") and api_key not in with_key
    assert with_key != other
    assert quota_key(request({})) == "10.0.0.5"
