"""Configuration for Sideout."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# Database
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(__file__).parent / 'sideout.db'}",
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Public links (share link for signup, cancellation link for players)
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
SHARE_PATH_PREFIX = os.getenv("SHARE_PATH_PREFIX", "s").strip("/")
CANCEL_PATH_PREFIX = os.getenv("CANCEL_PATH_PREFIX", "cancel").strip("/")

# Change events are POSTed here after each successful registration change (optional)
EVENT_RELAY_URL = os.getenv("EVENT_RELAY_URL", "")
EVENT_RELAY_SECRET = os.getenv("EVENT_RELAY_SECRET", "")

# Waitlist priority: trailing window for "recent" attendance
RECENT_ATTENDANCE_WEEKS = _parse_int(os.getenv("RECENT_ATTENDANCE_WEEKS", "4"), 4)

# Web auth (JWT secret, initial admin bootstrap)
JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-use-long-random-string")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = _parse_int(os.getenv("JWT_EXPIRE_DAYS", "7"), 7)
INITIAL_ADMIN_USERNAME = os.getenv("INITIAL_ADMIN_USERNAME", "admin")
INITIAL_ADMIN_PASSWORD = os.getenv("INITIAL_ADMIN_PASSWORD", "")  # Set to bootstrap first admin
LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "5/minute")  # Per client address
