import importlib
import json

import pytest

from constants import get_default_settings, redact_postgres_dsn, sanitize_postgres_dsn
from main import apply_env_overrides, load_settings, save_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "DATABASE_URL",
        "DB_CONNECTION_STRING",
        "SECRET_KEY",
        "PORT",
        "RELAY_PORT",
        "RELAY_STORE_BACKEND",
        "RELAY_CORS_ORIGINS",
        "RELAY_END_CALLS_ON_DISCONNECT",
        "RELAY_CALL_RING_TIMEOUT",
        "RELAY_PERSISTENCE_MODE",
        "RELAY_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_missing_file_gives_defaults(tmp_path):
    assert load_settings(tmp_path / "nope.json") == get_default_settings()


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "server_config.json"
    path.write_text(json.dumps({"port": 6000, "store_backend": "memory"}), encoding="utf-8")

    settings = load_settings(path)
    assert settings["port"] == 6000
    assert settings["store_backend"] == "memory"
    assert settings["end_calls_on_disconnect"] is True


def test_invalid_json_is_backed_up(tmp_path):
    path = tmp_path / "server_config.json"
    path.write_text("{not json", encoding="utf-8")

    settings = load_settings(path)
    assert settings == get_default_settings()
    assert not path.exists()
    assert len(list(tmp_path.glob("server_config.json.bad-*"))) == 1


def test_save_settings_omits_secrets(tmp_path):
    path = tmp_path / "conf" / "server_config.json"
    settings = get_default_settings()
    settings["secret_key"] = "s3cret"
    save_settings(path, settings)

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert "secret_key" not in saved
    assert "database_url" not in saved
    assert saved["port"] == settings["port"]


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", " postgresql://u:p@db:5432/<relay> ")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("RELAY_STORE_BACKEND", "Memory")
    monkeypatch.setenv("RELAY_END_CALLS_ON_DISCONNECT", "off")
    monkeypatch.setenv("RELAY_CALL_RING_TIMEOUT", "45")
    monkeypatch.setenv("RELAY_PERSISTENCE_MODE", "inline")
    monkeypatch.setenv("RELAY_LOG_LEVEL", "debug")

    settings = get_default_settings()
    apply_env_overrides(settings)

    assert settings["database_url"] == "postgresql://u:p@db:5432/relay"
    assert settings["port"] == 8080
    assert settings["store_backend"] == "memory"
    assert settings["end_calls_on_disconnect"] is False
    assert settings["call_ring_timeout_seconds"] == 45
    assert settings["persistence_mode"] == "inline"
    assert settings["log_level"] == "DEBUG"


def test_unparseable_env_values_are_ignored(monkeypatch):
    monkeypatch.setenv("PORT", "eighty")
    monkeypatch.setenv("RELAY_END_CALLS_ON_DISCONNECT", "maybe")

    settings = get_default_settings()
    apply_env_overrides(settings)
    assert settings["port"] == 5000
    assert settings["end_calls_on_disconnect"] is True


def test_dsn_helpers():
    assert sanitize_postgres_dsn("'postgresql://<user>:<pw>@h/db'") == "postgresql://user:pw@h/db"
    assert redact_postgres_dsn("postgresql://user:pw@h:5432/db") == "postgresql://user:***@h:5432/db"
    assert sanitize_postgres_dsn(None) is None


def test_gunicorn_conf_reads_bind_and_loglevel_only(monkeypatch):
    import gunicorn_conf

    monkeypatch.setenv("RELAY_BIND", "127.0.0.1:8000")
    monkeypatch.setenv("RELAY_GUNICORN_LOGLEVEL", "debug")
    monkeypatch.setenv("RELAY_GUNICORN_WORKERS", "4")
    conf = importlib.reload(gunicorn_conf)

    assert conf.bind == "127.0.0.1:8000"
    assert conf.loglevel == "debug"
    assert conf.workers == 1
    assert conf.worker_class == "eventlet"
