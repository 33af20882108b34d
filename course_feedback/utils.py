"""Utility functions for sanitization, code generation and time handling."""

import secrets
import string
from datetime import datetime, timezone
from typing import Optional

import bleach

BASE36_ALPHABET = string.digits + string.ascii_lowercase
ACCESS_CODE_ALPHABET = string.ascii_uppercase + string.digits
ACCESS_CODE_LENGTH = 8


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_base36(number: int) -> str:
    """Render a non-negative integer in lowercase base 36."""
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def normalize_access_code(code: str) -> str:
    return (code or "").strip().upper()


def generate_access_code(length: int = ACCESS_CODE_LENGTH) -> str:
    """Generate a random access code for a new session."""
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(length))


def sanitize_answer_text(text: str) -> str:
    """Sanitize a free-text answer.

    Participants submit plain text only, so all HTML is stripped.
    """
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()
