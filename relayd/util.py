from __future__ import annotations

import os

from .constants import IDENTITY_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def identity_key(value: str) -> str:
    """Registry key for an identity: case-insensitive."""
    return value.strip().lower()


def normalize_identity(value, *, max_chars: int = IDENTITY_MAX_CHARS) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars and len(s) > int(max_chars):
        return None

    # Identities end up in log lines; reject embedded newlines and NUL.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    return s


def short_id(value, *, prefix: int = 10) -> str:
    if not isinstance(value, str) or not value:
        return "-"
    return value if len(value) <= prefix else value[:prefix] + "..."
