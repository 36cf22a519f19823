"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from mail_replica.config.settings import AppSettings, load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's environment and .env out of these tests."""
    monkeypatch.chdir(tmp_path)
    for name in [
        "REPLICA_GMAIL__CREDENTIALS_FILE",
        "REPLICA_GMAIL__QUERY",
        "REPLICA_STORAGE__ROOT_DIR",
        "REPLICA_SYNC__BATCH_SIZE",
        "REPLICA_SYNC__DEFAULT_LIMIT",
    ]:
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path: Path) -> None:
    settings = AppSettings()
    assert settings.gmail is None
    assert settings.sync.batch_size == 8
    assert settings.sync.page_size == 100
    assert settings.sync.default_limit == 50
    assert settings.storage.sqlite_path == (tmp_path / "data" / "replica.sqlite3").resolve()
    assert settings.logging.json_logs is True


def test_nested_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    creds = tmp_path / "client.json"
    creds.write_text("{}", encoding="utf-8")
    monkeypatch.setenv("REPLICA_GMAIL__CREDENTIALS_FILE", str(creds))
    monkeypatch.setenv("REPLICA_GMAIL__QUERY", "   ")
    monkeypatch.setenv("REPLICA_SYNC__BATCH_SIZE", "16")
    monkeypatch.setenv("REPLICA_STORAGE__ROOT_DIR", str(tmp_path / "store"))

    settings = load_settings()

    assert settings.gmail is not None
    assert settings.gmail.credentials_file == creds
    assert settings.gmail.query is None
    assert settings.gmail.user_id == "me"
    assert settings.sync.batch_size == 16
    assert settings.storage.sqlite_path == (tmp_path / "store" / "replica.sqlite3").resolve()


def test_env_file(tmp_path: Path) -> None:
    env_file = tmp_path / "custom.env"
    env_file.write_text("REPLICA_SYNC__DEFAULT_LIMIT=0\n", encoding="utf-8")
    assert load_settings(env_file=env_file).sync.default_limit == 0


def test_missing_credentials_file_is_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("REPLICA_GMAIL__CREDENTIALS_FILE", str(tmp_path / "nope.json"))
    with pytest.raises(ValidationError):
        load_settings()


def test_batch_size_bounds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REPLICA_SYNC__BATCH_SIZE", "0")
    with pytest.raises(ValidationError):
        load_settings()
