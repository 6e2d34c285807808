"""Centralized configuration for the bill sync engine.

All settings live here so they can be overridden by environment variables or a
``.env`` file without touching source code.

**Profile system:** Set ``TEXLEG_PROFILE=dev`` (default) or ``TEXLEG_PROFILE=prod``
to get sensible defaults for each environment.  Any individual ``TEXLEG_*`` var
still overrides the profile value.

Usage::

    from texleg_sync.config import SESSION_CODE, load_settings

    settings = load_settings()
    settings.batch_size  # 5 in dev, 20 in prod
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace

from dotenv import load_dotenv

# Load .env from current working directory (project root when running the CLI / uvicorn)
load_dotenv()

LOGGER = logging.getLogger(__name__)

# ── Profile: one knob for the whole environment ──────────────────────────────
# "dev" = small batches with short delays, "prod" = polite production defaults.
# Individual vars always override the profile.

PROFILE: str = os.getenv("TEXLEG_PROFILE", "dev").lower().strip()

_PROFILE_DEFAULTS: dict[str, dict[str, str]] = {
    "dev": {
        "TEXLEG_BATCH_SIZE": "5",
        "TEXLEG_ITEM_DELAY": "0.25",
        "TEXLEG_FETCH_FULL_TEXT": "1",
        "TEXLEG_CORS_ORIGINS": "*",
    },
    "prod": {
        "TEXLEG_BATCH_SIZE": "20",
        "TEXLEG_ITEM_DELAY": "0.5",
        "TEXLEG_FETCH_FULL_TEXT": "1",
        "TEXLEG_CORS_ORIGINS": "",  # empty → must be explicitly set
    },
}

if PROFILE not in _PROFILE_DEFAULTS:
    LOGGER.warning("Unknown TEXLEG_PROFILE=%r, falling back to 'dev'.", PROFILE)
    PROFILE = "dev"

_defaults = _PROFILE_DEFAULTS[PROFILE]


def _env(key: str, fallback: str = "") -> str:
    """Read an env var, falling back to profile default then *fallback*."""
    return os.getenv(key, _defaults.get(key, fallback))


def _parse_bill_types(raw: str) -> tuple[str, ...]:
    return tuple(t.strip().upper() for t in raw.split(",") if t.strip())


def _parse_bounds(raw: str) -> dict[str, int]:
    """Parse ``"HB=5000,SB=3000"`` into ``{"HB": 5000, "SB": 3000}``."""
    bounds: dict[str, int] = {}
    for part in raw.split(","):
        if "=" not in part:
            continue
        key, _, value = part.partition("=")
        try:
            bounds[key.strip().upper()] = int(value.strip())
        except ValueError:
            LOGGER.warning("Ignoring malformed TEXLEG_MAX_BILL_NUMBERS entry %r", part)
    return bounds


# ── Legislative session ──────────────────────────────────────────────────────
# 89th Legislature, Regular Session (2025).
SESSION_CODE: str = _env("TEXLEG_SESSION_CODE", "89R").strip()
SESSION_NAME: str = _env("TEXLEG_SESSION_NAME", "89th Regular Session").strip()
BILL_TYPES: tuple[str, ...] = _parse_bill_types(_env("TEXLEG_BILL_TYPES", "HB,SB"))

# ── Remote source ────────────────────────────────────────────────────────────
FTP_HOST: str = _env("TEXLEG_FTP_HOST", "ftp.legis.state.tx.us").strip()
FTP_TIMEOUT: float = float(_env("TEXLEG_FTP_TIMEOUT", "30"))
# Close and reopen the FTP control connection after this many idle seconds
FTP_IDLE_TIMEOUT: float = float(_env("TEXLEG_FTP_IDLE_TIMEOUT", "60"))
HTTP_TIMEOUT: float = float(_env("TEXLEG_HTTP_TIMEOUT", "20"))
USER_AGENT: str = _env("TEXLEG_USER_AGENT", "texleg-sync bill sync bot (research)").strip()
BUCKET_SIZE: int = int(_env("TEXLEG_BUCKET_SIZE", "99"))
FETCH_FULL_TEXT: bool = _env("TEXLEG_FETCH_FULL_TEXT") == "1"
MAX_BILL_NUMBERS: dict[str, int] = _parse_bounds(_env("TEXLEG_MAX_BILL_NUMBERS"))

# ── Batch tuning ─────────────────────────────────────────────────────────────
BATCH_SIZE: int = int(_env("TEXLEG_BATCH_SIZE", "5"))
ITEM_DELAY: float = float(_env("TEXLEG_ITEM_DELAY", "0.5"))
# Soft wall-clock budget for one batch; the host may kill us shortly after.
TIME_BUDGET: float = float(_env("TEXLEG_TIME_BUDGET", "50"))
SYNC_ENABLED: bool = _env("TEXLEG_SYNC_ENABLED", "1") == "1"

# ── Storage ──────────────────────────────────────────────────────────────────
DATABASE_URL: str = _env("TEXLEG_DATABASE_URL", "sqlite:///cache/texleg_sync.db").strip()

# ── Security / network ──────────────────────────────────────────────────────
CORS_ORIGINS: str = _env("TEXLEG_CORS_ORIGINS").strip()
API_KEY: str = _env("TEXLEG_API_KEY").strip()

# ── Production guard: warn if the trigger API is unprotected ─────────────────
if PROFILE == "prod" and not API_KEY:
    LOGGER.warning(
        "TEXLEG_PROFILE=prod but TEXLEG_API_KEY is empty. Sync trigger endpoints are unprotected."
    )


@dataclass(frozen=True)
class SyncSettings:
    """Everything the sync engine needs, in one injectable object."""

    session_code: str = SESSION_CODE
    session_name: str = SESSION_NAME
    bill_types: tuple[str, ...] = BILL_TYPES
    batch_size: int = BATCH_SIZE
    item_delay: float = ITEM_DELAY
    time_budget: float = TIME_BUDGET
    bucket_size: int = BUCKET_SIZE
    ftp_host: str = FTP_HOST
    ftp_timeout: float = FTP_TIMEOUT
    ftp_idle_timeout: float = FTP_IDLE_TIMEOUT
    http_timeout: float = HTTP_TIMEOUT
    user_agent: str = USER_AGENT
    fetch_full_text: bool = FETCH_FULL_TEXT
    max_bill_numbers: dict[str, int] = field(default_factory=lambda: dict(MAX_BILL_NUMBERS))
    sync_enabled: bool = SYNC_ENABLED
    database_url: str = DATABASE_URL


def load_settings(**overrides) -> SyncSettings:
    """Return the env-derived settings, optionally with field overrides.

    ``load_settings(batch_size=5, item_delay=0)`` is the usual test form.
    """
    settings = SyncSettings()
    if overrides:
        settings = replace(settings, **overrides)
    if settings.batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {settings.batch_size}")
    if not settings.bill_types:
        raise ValueError("at least one bill type must be configured")
    return settings
