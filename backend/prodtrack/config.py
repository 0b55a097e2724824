# backend/prodtrack/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance by default; any SQLAlchemy URL works
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///prodtrack.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Zones are numbered 1..PRODUCTION_ZONE_COUNT
    PRODUCTION_ZONE_COUNT = int(os.environ.get("PRODUCTION_ZONE_COUNT", "23"))

    # Testing mode: lets a sender complete a transfer without the OTP handshake
    ALLOW_OTP_BYPASS = _env_flag("ALLOW_OTP_BYPASS")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
