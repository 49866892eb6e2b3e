"""Tests for client config: base URL, sync options, API key store, CLI scan."""

import json
from unittest.mock import patch

import pytest

from photosync.client import config
from photosync.client.auth.credentials import ApiKeyStore
from photosync.client.main import main, scan_folder
from photosync.client.sync.models import SyncOptions


@pytest.fixture
def cfg_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("PHOTOSYNC_CONFIG_DIR", str(tmp_path))
    monkeypatch.delenv("PHOTOSYNC_BASE_URL", raising=False)
    return tmp_path


def test_config_path_uses_override(cfg_dir) -> None:
    assert config.get_config_path() == cfg_dir / "config.json"
    assert config.get_sync_state_path() == cfg_dir / "sync_state.json"


def test_base_url_default_saved_and_env(cfg_dir, monkeypatch) -> None:
    """Default, then the saved value, then the env var wins."""
    assert config.get_base_url() == config.DEFAULT_BASE_URL
    config.set_base_url("http://nas:8080/")
    assert config.get_base_url() == "http://nas:8080"
    monkeypatch.setenv("PHOTOSYNC_BASE_URL", "https://photos.example/")
    assert config.get_base_url() == "https://photos.example"


def test_sync_options_round_trip(cfg_dir) -> None:
    assert config.get_sync_options() == SyncOptions()
    config.set_sync_options(SyncOptions(max_retries=5, max_concurrent_uploads=2))
    opts = config.get_sync_options()
    assert opts.max_retries == 5
    assert opts.max_concurrent_uploads == 2
    assert opts.check_batch_size == 500


def test_invalid_sync_options_fall_back(cfg_dir) -> None:
    config.get_config_path().write_text(json.dumps({"sync": {"max_retries": -1, "bogus": 1}}), encoding="utf-8")
    assert config.get_sync_options() == SyncOptions()


def test_corrupt_config_reads_defaults(cfg_dir) -> None:
    config.get_config_path().write_text("not json", encoding="utf-8")
    assert config.get_base_url() == config.DEFAULT_BASE_URL
    config.set_base_url("http://x")
    assert config.get_base_url() == "http://x"


def test_api_key_env_takes_precedence(monkeypatch) -> None:
    monkeypatch.setenv("PHOTOSYNC_API_KEY", "from-env")
    with patch("photosync.client.auth.credentials.keyring.get_password") as get_password:
        assert ApiKeyStore().get() == "from-env"
        get_password.assert_not_called()


def test_api_key_from_keyring(monkeypatch) -> None:
    monkeypatch.delenv("PHOTOSYNC_API_KEY", raising=False)
    with patch("photosync.client.auth.credentials.keyring.get_password", return_value="stored"):
        assert ApiKeyStore().get() == "stored"
    with patch("photosync.client.auth.credentials.keyring.get_password", side_effect=RuntimeError("no backend")):
        assert ApiKeyStore().get() is None


def test_api_key_set_rejects_empty() -> None:
    with pytest.raises(ValueError):
        ApiKeyStore().set("  ")


def test_scan_folder_finds_images_only(tmp_path) -> None:
    (tmp_path / "a.jpg").write_bytes(b"a")
    (tmp_path / "notes.txt").write_text("x")
    (tmp_path / ".hidden.jpg").write_bytes(b"h")
    sub = tmp_path / "2023"
    sub.mkdir()
    (sub / "b.HEIC").write_bytes(b"b")
    names = [d.filename for d in scan_folder(tmp_path)]
    assert names == ["b.HEIC", "a.jpg"]
    assert [d.filename for d in scan_folder(tmp_path, recursive=False)] == ["a.jpg"]


def test_cli_rejects_missing_folder(cfg_dir, tmp_path) -> None:
    assert main([str(tmp_path / "nope")]) == 2


def test_cli_nothing_to_sync(cfg_dir, tmp_path, capsys) -> None:
    photos = tmp_path / "photos"
    photos.mkdir()
    assert main([str(photos), "--api-key", "k"]) == 0
    assert "Nothing to sync" in capsys.readouterr().out
