"""Configuration constants for the Venus web service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

STORE_BACKENDS: Tuple[str, ...] = ("sqlite", "memory", "file")
WITHDRAW_POLICIES: Tuple[str, ...] = ("penalty", "cap")

SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SESSION_COOKIE_NAME = "authToken"
SESSION_LIFETIME = timedelta(days=7)
SESSION_MAX_AGE = int(os.environ.get("SESSION_MAX_AGE", int(SESSION_LIFETIME.total_seconds())))
COOKIE_SECURE = os.environ.get("COOKIE_SECURE", "false").lower() == "true"
API_PREFIX = os.environ.get("API_PREFIX", "/api")
CLIENT_URL = os.environ.get("CLIENT_URL", "")

STORE_BACKEND = os.environ.get("VENUS_STORE", "sqlite")
SQLITE_FILE_NAME = os.environ.get("VENUS_SQLITE", "venus.db")
DATA_FILE_NAME = os.environ.get("VENUS_DATA_FILE", "venus-data.json")
LOG_FILE_NAME = os.environ.get("VENUS_LOG_FILE", "")

WITHDRAW_POLICY = os.environ.get("VENUS_WITHDRAW_POLICY", "penalty")
PENALTY_RATE = Decimal(os.environ.get("VENUS_PENALTY_RATE", "0.10"))
FREE_EMERGENCY_BREAKS = int(os.environ.get("VENUS_FREE_BREAKS", "1"))
EMERGENCY_CAP = int(os.environ.get("VENUS_EMERGENCY_CAP", "3"))

MAX_LOGIN_ATTEMPTS = int(os.environ.get("VENUS_MAX_LOGIN_ATTEMPTS", "5"))
LOGIN_LOCKOUT_MINUTES = int(os.environ.get("VENUS_LOGIN_LOCKOUT_MINUTES", "15"))
PASSWORD_ITERATIONS = int(os.environ.get("VENUS_PASSWORD_ITERATIONS", "260000"))


@dataclass(frozen=True)
class Settings:
    """Everything :func:`venus.webapp.application.create_app` needs to wire the service."""

    session_secret: str = SESSION_SECRET
    session_max_age: int = SESSION_MAX_AGE
    cookie_secure: bool = COOKIE_SECURE
    api_prefix: str = API_PREFIX
    client_url: str = CLIENT_URL
    store_backend: str = STORE_BACKEND
    sqlite_file: str = SQLITE_FILE_NAME
    data_file: str = DATA_FILE_NAME
    log_file: str = LOG_FILE_NAME
    withdraw_policy: str = WITHDRAW_POLICY
    penalty_rate: Decimal = PENALTY_RATE
    free_breaks: int = FREE_EMERGENCY_BREAKS
    emergency_cap: int = EMERGENCY_CAP
    max_login_attempts: int = MAX_LOGIN_ATTEMPTS
    lockout_minutes: int = LOGIN_LOCKOUT_MINUTES
    password_iterations: int = PASSWORD_ITERATIONS

    def __post_init__(self) -> None:
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(f"VENUS_STORE must be one of {', '.join(STORE_BACKENDS)}.")
        if self.withdraw_policy not in WITHDRAW_POLICIES:
            raise ValueError(f"VENUS_WITHDRAW_POLICY must be one of {', '.join(WITHDRAW_POLICIES)}.")

    @property
    def log_path(self) -> Optional[Path]:
        return Path(self.log_file) if self.log_file else None


__all__ = [
    "API_PREFIX",
    "CLIENT_URL",
    "COOKIE_SECURE",
    "DATA_FILE_NAME",
    "EMERGENCY_CAP",
    "FREE_EMERGENCY_BREAKS",
    "LOG_FILE_NAME",
    "LOGIN_LOCKOUT_MINUTES",
    "MAX_LOGIN_ATTEMPTS",
    "PASSWORD_ITERATIONS",
    "PENALTY_RATE",
    "SESSION_COOKIE_NAME",
    "SESSION_LIFETIME",
    "SESSION_MAX_AGE",
    "SESSION_SECRET",
    "SQLITE_FILE_NAME",
    "STORE_BACKEND",
    "STORE_BACKENDS",
    "Settings",
    "WITHDRAW_POLICIES",
    "WITHDRAW_POLICY",
]
