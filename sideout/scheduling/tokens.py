"""Share and cancellation tokens: unguessable capability strings for public links."""
from __future__ import annotations

import re
import secrets
import string
from typing import Any

from nanoid import generate

SHARE_TOKEN_LENGTH = 21
SHARE_TOKEN_ALPHABET = string.ascii_letters + string.digits + "_-"
CANCELLATION_TOKEN_LENGTH = 32

_SHARE_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{21}$")


def generate_share_token() -> str:
    """21-character URL-safe nanoid (A-Z, a-z, 0-9, _, -)."""
    return generate(SHARE_TOKEN_ALPHABET, size=SHARE_TOKEN_LENGTH)


def is_valid_share_token(token: Any) -> bool:
    return isinstance(token, str) and bool(_SHARE_TOKEN_RE.match(token))


def generate_cancellation_token() -> str:
    # 32 random bytes encode to 43 url-safe chars; keep the first 32
    return secrets.token_urlsafe(CANCELLATION_TOKEN_LENGTH)[:CANCELLATION_TOKEN_LENGTH]


def verify_cancellation_token(token: Any) -> bool:
    return isinstance(token, str) and len(token) == CANCELLATION_TOKEN_LENGTH
