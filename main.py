#!/usr/bin/env python3
"""main.py

Call relay server entrypoint.

``server_config.json`` is a *plaintext* JSON settings file layered over
``constants.get_default_settings()``. Keep secrets out of it where possible
and prefer environment variables (``DATABASE_URL``, ``DB_CONNECTION_STRING``,
``SECRET_KEY``); ``--init-config`` writes a template without them.
"""

from __future__ import annotations

import argparse
from datetime import datetime
import json
import logging
import os
import sys
from pathlib import Path

from constants import CONFIG_FILE, get_default_settings, sanitize_postgres_dsn
from server_init import run_web_server

# Never written to server_config.json by --init-config.
_SECRET_KEYS = ("secret_key", "database_url")


def configure_logging(settings: dict) -> None:
    """Configure file + stdout logging."""
    log_level_str = str(settings.get("log_level", "INFO")).upper()
    log_format = settings.get(
        "log_format",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    log_file_path = settings.get("log_file_path", "logs/server.log")

    log_dir = os.path.dirname(log_file_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    log_level = getattr(logging, log_level_str, logging.INFO)
    logging.basicConfig(level=log_level, format=log_format, filename=log_file_path, filemode="a")
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(logging.Formatter(log_format))
    logging.getLogger().addHandler(stream)
    logging.info("Logging configured (level=%s)", log_level_str)


def load_settings(path: Path) -> dict:
    """Load settings from JSON on top of the defaults. Returns defaults if missing."""
    settings = get_default_settings()
    if not path.exists():
        return settings

    try:
        with path.open("r", encoding="utf-8") as fp:
            loaded = json.load(fp)
        if not isinstance(loaded, dict):
            raise ValueError("top-level JSON value must be an object")
    except (OSError, ValueError) as exc:
        logging.warning("⚠️  Could not parse %s as JSON: %s", path, exc)
        # Keep the broken file around for inspection instead of silently
        # overwriting it on the next --init-config.
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        bad_path = path.with_suffix(path.suffix + f".bad-{ts}")
        try:
            path.rename(bad_path)
            logging.warning("⚠️  Backed up invalid settings file to: %s", bad_path)
        except OSError as e2:
            logging.warning("⚠️  Could not back up invalid settings file: %s", e2)
        logging.warning("⚠️  Falling back to defaults (run with --init-config to rewrite config).")
        return settings

    settings.update(loaded)
    return settings


def save_settings(path: Path, settings: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Secrets stay in env vars, never in server_config.json.
    to_save = {k: v for k, v in settings.items() if k not in _SECRET_KEYS}
    with path.open("w", encoding="utf-8") as fp:
        json.dump(to_save, fp, indent=2)


def apply_env_overrides(settings: dict) -> None:
    """Apply env overrides for secrets and runtime deployment."""

    def _bool_env(*names: str) -> bool | None:
        for n in names:
            v = os.getenv(n)
            if v is None:
                continue
            v = v.strip().lower()
            if v in ("1", "true", "yes", "y", "on"):
                return True
            if v in ("0", "false", "no", "n", "off"):
                return False
        return None

    def _str_env(*names: str) -> str | None:
        for n in names:
            v = os.getenv(n)
            if v is not None and v.strip() != "":
                return v.strip()
        return None

    def _int_env(*names: str) -> int | None:
        v = _str_env(*names)
        if v is None:
            return None
        try:
            return int(v)
        except ValueError:
            return None

    # Prefer DB env vars for safety.
    db = os.getenv("DB_CONNECTION_STRING") or os.getenv("DATABASE_URL")
    if db:
        settings["database_url"] = str(sanitize_postgres_dsn(db))

    secret = os.getenv("SECRET_KEY")
    if secret:
        settings["secret_key"] = secret

    port = _int_env("RELAY_PORT", "PORT")
    if port:
        settings["port"] = port

    backend = _str_env("RELAY_STORE_BACKEND")
    if backend:
        settings["store_backend"] = backend.lower()

    cors = _str_env("RELAY_CORS_ORIGINS")
    if cors:
        settings["cors_origins"] = cors

    end_calls = _bool_env("RELAY_END_CALLS_ON_DISCONNECT")
    if end_calls is not None:
        settings["end_calls_on_disconnect"] = end_calls

    ring_timeout = _int_env("RELAY_CALL_RING_TIMEOUT")
    if ring_timeout is not None:
        settings["call_ring_timeout_seconds"] = max(0, ring_timeout)

    persistence = _str_env("RELAY_PERSISTENCE_MODE")
    if persistence:
        settings["persistence_mode"] = persistence.lower()

    log_level = _str_env("RELAY_LOG_LEVEL")
    if log_level:
        settings["log_level"] = log_level.upper()


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Call relay server")
    p.add_argument("--init-config", action="store_true", help="write a config template and exit")
    p.add_argument(
        "--config",
        default=os.environ.get("RELAY_CONFIG") or CONFIG_FILE,
        help="path to server config JSON",
    )
    return p.parse_args()


def main() -> None:
    args = parse_args()
    settings_path = Path(args.config)

    settings = load_settings(settings_path)

    if args.init_config:
        save_settings(settings_path, settings)
        print(f"✅ Saved settings to {settings_path}")
        return

    apply_env_overrides(settings)
    configure_logging(settings)

    run_web_server(settings, settings_file=settings_path)


if __name__ == "__main__":
    main()
