# backend/stocksync/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

from .validation import ValidationError


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Local store: SQLite file next to the process by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stocksync.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Remote authoritative store
    REMOTE_STORE_URL = os.environ.get("REMOTE_STORE_URL", "http://127.0.0.1:5001")
    REMOTE_HEALTH_PATH = os.environ.get("REMOTE_HEALTH_PATH", "/health")
    REMOTE_TIMEOUT_SECONDS = float(os.environ.get("REMOTE_TIMEOUT_SECONDS", "10"))

    # Reconciliation
    SYNC_INTERVAL_SECONDS = float(os.environ.get("SYNC_INTERVAL_SECONDS", "60"))
    SYNC_MAX_ATTEMPTS = int(os.environ.get("SYNC_MAX_ATTEMPTS", "4"))
    SYNC_BACKOFF_BASE_SECONDS = float(os.environ.get("SYNC_BACKOFF_BASE_SECONDS", "2"))
    SYNC_BACKOFF_MAX_SECONDS = float(os.environ.get("SYNC_BACKOFF_MAX_SECONDS", "300"))
    SYNC_MAX_CONCURRENCY = int(os.environ.get("SYNC_MAX_CONCURRENCY", "4"))

    # Connectivity
    NETWORK_DEBOUNCE_SECONDS = float(os.environ.get("NETWORK_DEBOUNCE_SECONDS", "3"))
    NETWORK_PROBE_INTERVAL_SECONDS = float(os.environ.get("NETWORK_PROBE_INTERVAL_SECONDS", "5"))

    # Alerts badge horizon (days)
    ALERT_EXPIRY_HORIZON_DAYS = int(os.environ.get("ALERT_EXPIRY_HORIZON_DAYS", "30"))


@dataclass(frozen=True)
class SyncSettings:
    """
    Settings the sync core needs, detached from Flask.

    WHY: The core must run (and be tested) without an application context,
    and several independent cores may live in one process.
    """
    remote_timeout: float = 10.0
    sync_interval: float = 60.0
    max_attempts: int = 4
    backoff_base: float = 2.0
    backoff_max: float = 300.0
    max_concurrency: int = 4
    debounce: float = 3.0
    probe_interval: float = 5.0
    expiry_horizon_days: int = 30

    def __post_init__(self):
        if self.sync_interval < 1:
            raise ValidationError("sync_interval must be at least 1 second")
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be >= 1")
        if self.max_concurrency < 1:
            raise ValidationError("max_concurrency must be >= 1")
        if self.remote_timeout <= 0:
            raise ValidationError("remote_timeout must be > 0")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValidationError("backoff must be >= 0")
        if self.debounce < 0:
            raise ValidationError("debounce must be >= 0")
        if self.expiry_horizon_days < 0:
            raise ValidationError("expiry_horizon_days must be >= 0")

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "SyncSettings":
        defaults = cls()
        return cls(
            remote_timeout=float(config.get("REMOTE_TIMEOUT_SECONDS", defaults.remote_timeout)),
            sync_interval=float(config.get("SYNC_INTERVAL_SECONDS", defaults.sync_interval)),
            max_attempts=int(config.get("SYNC_MAX_ATTEMPTS", defaults.max_attempts)),
            backoff_base=float(config.get("SYNC_BACKOFF_BASE_SECONDS", defaults.backoff_base)),
            backoff_max=float(config.get("SYNC_BACKOFF_MAX_SECONDS", defaults.backoff_max)),
            max_concurrency=int(config.get("SYNC_MAX_CONCURRENCY", defaults.max_concurrency)),
            debounce=float(config.get("NETWORK_DEBOUNCE_SECONDS", defaults.debounce)),
            probe_interval=float(config.get("NETWORK_PROBE_INTERVAL_SECONDS", defaults.probe_interval)),
            expiry_horizon_days=int(config.get("ALERT_EXPIRY_HORIZON_DAYS", defaults.expiry_horizon_days)),
        )
