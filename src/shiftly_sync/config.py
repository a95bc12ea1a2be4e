"""Application configuration — loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"

FRESHNESS_CHECKS = ("count", "checksum")


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Local (fallback) store
    PROJECT_ROOT: Path = _PROJECT_ROOT
    LOCAL_DATABASE_PATH: Path = Path(
        os.getenv(
            "LOCAL_DATABASE_PATH",
            str(_PROJECT_ROOT / "data" / "shiftly_local.db"),
        )
    )
    BACKUP_PATH: Path = Path(
        os.getenv("DATABASE_BACKUP_PATH", str(_PROJECT_ROOT / "data" / "backups"))
    )

    # Primary (networked) store, settings.json overrides .env
    PRIMARY_DB_HOST: str = _runtime.get(
        "primary_db_host",
        os.getenv("PRIMARY_DB_HOST", "localhost"),
    )
    PRIMARY_DB_PORT: int = int(_runtime.get(
        "primary_db_port",
        os.getenv("PRIMARY_DB_PORT", "3306"),
    ))
    PRIMARY_DB_NAME: str = _runtime.get(
        "primary_db_name",
        os.getenv("PRIMARY_DB_NAME", "shiftly"),
    )
    PRIMARY_DB_USER: str = _runtime.get(
        "primary_db_user",
        os.getenv("PRIMARY_DB_USER", "shiftly"),
    )
    # Never persisted to settings.json
    PRIMARY_DB_PASSWORD: str = os.getenv("PRIMARY_DB_PASSWORD", "")
    PRIMARY_LOGIN_TIMEOUT: int = int(_runtime.get(
        "primary_login_timeout",
        os.getenv("PRIMARY_LOGIN_TIMEOUT", "5"),
    ))

    # Background sync (seconds), persisted in settings.json
    REACHABILITY_INTERVAL_SECONDS: int = int(_runtime.get(
        "reachability_interval_seconds",
        os.getenv("REACHABILITY_INTERVAL_SECONDS", "30"),
    ))
    DRAIN_INTERVAL_SECONDS: int = int(_runtime.get(
        "drain_interval_seconds",
        os.getenv("DRAIN_INTERVAL_SECONDS", "300"),
    ))
    SHUTDOWN_TIMEOUT_SECONDS: int = int(
        os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "10")
    )

    # Sync engine
    SYNC_BATCH_SIZE: int = int(_runtime.get(
        "sync_batch_size",
        os.getenv("SYNC_BATCH_SIZE", "100"),
    ))
    FRESHNESS_CHECK: str = _runtime.get(
        "freshness_check",
        os.getenv("FRESHNESS_CHECK", "count"),
    )

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "")

    @classmethod
    def primary_connection_params(cls) -> dict:
        """Keyword arguments for the primary store driver."""
        return {
            "host": cls.PRIMARY_DB_HOST,
            "port": cls.PRIMARY_DB_PORT,
            "database": cls.PRIMARY_DB_NAME,
            "user": cls.PRIMARY_DB_USER,
            "password": cls.PRIMARY_DB_PASSWORD,
        }

    @classmethod
    def update_primary_settings(cls, host: str, port: int, database: str,
                                user: str, login_timeout: int = None):
        """Update primary store location at runtime and persist.

        The password is deliberately left out; it only comes from the
        environment.
        """
        cls.PRIMARY_DB_HOST = host
        cls.PRIMARY_DB_PORT = int(port)
        cls.PRIMARY_DB_NAME = database
        cls.PRIMARY_DB_USER = user
        if login_timeout is not None:
            cls.PRIMARY_LOGIN_TIMEOUT = max(int(login_timeout), 1)

        settings = _load_settings()
        settings["primary_db_host"] = host
        settings["primary_db_port"] = int(port)
        settings["primary_db_name"] = database
        settings["primary_db_user"] = user
        settings["primary_login_timeout"] = cls.PRIMARY_LOGIN_TIMEOUT
        _save_settings(settings)

    @classmethod
    def update_sync_intervals(cls, reachability: int, drain: int):
        """Update background task intervals (in seconds) and persist."""
        cls.REACHABILITY_INTERVAL_SECONDS = max(int(reachability), 1)
        cls.DRAIN_INTERVAL_SECONDS = max(int(drain), 1)

        settings = _load_settings()
        settings["reachability_interval_seconds"] = (
            cls.REACHABILITY_INTERVAL_SECONDS
        )
        settings["drain_interval_seconds"] = cls.DRAIN_INTERVAL_SECONDS
        _save_settings(settings)

    @classmethod
    def update_sync_engine_settings(cls, batch_size: int,
                                    freshness_check: str):
        """Update bulk-copy tuning and persist."""
        if freshness_check not in FRESHNESS_CHECKS:
            raise ValueError(
                f"freshness_check must be one of {FRESHNESS_CHECKS}, "
                f"got {freshness_check!r}"
            )
        cls.SYNC_BATCH_SIZE = max(int(batch_size), 1)
        cls.FRESHNESS_CHECK = freshness_check

        settings = _load_settings()
        settings["sync_batch_size"] = cls.SYNC_BATCH_SIZE
        settings["freshness_check"] = freshness_check
        _save_settings(settings)
