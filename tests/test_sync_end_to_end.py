"""End-to-end: PhotoSyncAPI and the orchestrator against the FastAPI app in-process."""

import hashlib
import io
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from photosync.client.api.client import PhotoSyncAPI
from photosync.client.sync.engine import sync_batch
from photosync.client.sync.models import BatchState, PhotoDescriptor, SyncOptions
from photosync.server.main import app

TAKEN = datetime(2021, 12, 24, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def api(tmp_path, monkeypatch, api_key):
    """PhotoSyncAPI whose httpx.Client is a TestClient bound to the app."""
    monkeypatch.setenv("PHOTOSYNC_STORAGE_BASE_PATH", str(tmp_path / "server"))
    with patch("photosync.client.api.client.httpx.Client", side_effect=lambda **kwargs: TestClient(app)):
        yield PhotoSyncAPI(base_url="http://testserver", api_key=api_key)


def _photo(name: str, body: bytes) -> PhotoDescriptor:
    return PhotoDescriptor(local_id=name, filename=name, captured_at=TAKEN, open=lambda: io.BytesIO(body))


def test_sync_skips_content_already_on_server(api: PhotoSyncAPI, tmp_path) -> None:
    """One of three photos is already stored: two uploads, three completed, one record each."""
    bodies = {name: uuid.uuid4().bytes for name in ("one.jpg", "two.jpg", "three.jpg")}
    pre = api.upload_photo(bodies["two.jpg"], "two.jpg", TAKEN)
    assert pre["is_duplicate"] is False

    batch = [_photo(name, body) for name, body in bodies.items()]
    report = sync_batch(api, batch, options=SyncOptions(backoff_base=0, backoff_max=0))

    assert report.state is BatchState.COMPLETED
    assert (report.progress.completed, report.progress.failed) == (3, 0)
    assert report.skipped == ["two.jpg"]
    assert set(report.uploaded) == {"one.jpg", "three.jpg"}
    assert sorted(p.name for p in (tmp_path / "server" / "2021" / "12").iterdir()) == [
        "one.jpg", "three.jpg", "two.jpg",
    ]

    fps = [hashlib.sha256(b).hexdigest() for b in bodies.values()]
    assert sorted(api.check_hashes(fps)["existing"]) == sorted(fps)


def test_resync_uploads_nothing(api: PhotoSyncAPI) -> None:
    batch = [_photo("again.jpg", uuid.uuid4().bytes)]
    first = sync_batch(api, batch)
    second = sync_batch(api, batch)
    assert set(first.uploaded) == {"again.jpg"}
    assert second.uploaded == {}
    assert second.skipped == ["again.jpg"]


def test_same_content_two_names_one_record(api: PhotoSyncAPI) -> None:
    """Identical bytes sent directly twice: the second response is flagged duplicate."""
    body = uuid.uuid4().bytes
    a = api.upload_photo(body, "a.jpg", TAKEN)
    b = api.upload_photo(body, "b.jpg", TAKEN, fingerprint=hashlib.sha256(body).hexdigest())
    assert a["id"] == b["id"]
    assert [a["is_duplicate"], b["is_duplicate"]].count(True) >= 1
    api.delete_photo(a["id"])
    api.delete_photo(a["id"])
