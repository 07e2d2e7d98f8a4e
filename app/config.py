"""
Configuration loader.

- Reads env vars (.env supported by deploy)
- Provides strongly-typed Settings
- Holds storage backend choice & checkout timing knobs
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional


def _get(name: str, default: Optional[str] = None) -> str:
    v = os.environ.get(name, default)
    if v is None:
        raise RuntimeError(f"Missing required env: {name}")
    return v


@dataclass(frozen=True)
class Settings:
    SECRET_KEY: str

    # Durable tier
    STORAGE_BACKEND: str         # file | redis | memory
    STATE_DIR: str
    REDIS_URL: str

    # Order source tokens
    TOKEN_TTL_SECONDS: int
    RECENT_TOKENS_MAX: int
    RECENT_TOKENS_MAX_AGE_SECONDS: int

    # Buy-now selection / reset protocol
    SELECTION_MAX_AGE_SECONDS: int
    RESET_LOCK_MS: int
    RESET_MARKER_MS: int
    RESET_GRACE_MS: int

    # Confirmation page
    VERIFY_DELAY_MS: int
    VERIFY_DELAY_UNKNOWN_MS: int

    # Logging
    LOG_DIR: str
    LOG_TO_FILES: bool

    # Server
    MAX_TABS: int


def _to_bool(s: str | None, default: bool = False) -> bool:
    if s is None:
        return default
    return s.strip().lower() in {"1", "true", "yes", "on"}


def _int(o: dict, name: str, default: int) -> int:
    return int(o.get(name, os.environ.get(name, default)))


def load_settings(override: dict | None = None) -> Settings:
    o = override or {}
    return Settings(
        SECRET_KEY=o.get("SECRET_KEY", _get("SECRET_KEY", "change-me")),

        STORAGE_BACKEND=o.get("STORAGE_BACKEND", _get("STORAGE_BACKEND", "file")),
        STATE_DIR=o.get("STATE_DIR", _get("STATE_DIR", "state")),
        REDIS_URL=o.get("REDIS_URL", os.environ.get("REDIS_URL", "redis://localhost:6379/0")),

        TOKEN_TTL_SECONDS=_int(o, "TOKEN_TTL_SECONDS", 30 * 60),
        RECENT_TOKENS_MAX=_int(o, "RECENT_TOKENS_MAX", 10),
        RECENT_TOKENS_MAX_AGE_SECONDS=_int(o, "RECENT_TOKENS_MAX_AGE_SECONDS", 60 * 60),

        SELECTION_MAX_AGE_SECONDS=_int(o, "SELECTION_MAX_AGE_SECONDS", 30 * 60),
        RESET_LOCK_MS=_int(o, "RESET_LOCK_MS", 3000),
        RESET_MARKER_MS=_int(o, "RESET_MARKER_MS", 3000),
        RESET_GRACE_MS=_int(o, "RESET_GRACE_MS", 500),

        VERIFY_DELAY_MS=_int(o, "VERIFY_DELAY_MS", 250),
        VERIFY_DELAY_UNKNOWN_MS=_int(o, "VERIFY_DELAY_UNKNOWN_MS", 350),

        LOG_DIR=o.get("LOG_DIR", os.environ.get("LOG_DIR", "logs")),
        LOG_TO_FILES=_to_bool(o.get("LOG_TO_FILES", os.environ.get("LOG_TO_FILES")), True),

        MAX_TABS=_int(o, "MAX_TABS", 1000),
    )
