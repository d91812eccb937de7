"""Helper utilities for the DB2 backup tool."""
from __future__ import annotations

import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

_TOKEN_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def session_timestamp(dt: Optional[datetime] = None) -> str:
    """Return a sortable timestamp with millisecond resolution.

    ``20240131_235959123`` sorts lexically in chronological order.
    """

    dt = dt or datetime.now()
    return dt.strftime("%Y%m%d_%H%M%S") + f"{dt.microsecond // 1000:03d}"


def unique_token(length: int = 6) -> str:
    """Return an upper-case alphanumeric token unique to this invocation.

    Random bits are mixed with the process id so that two processes started in
    the same millisecond still get different tokens.
    """

    value = uuid.uuid4().int ^ os.getpid()
    chars = []
    base = len(_TOKEN_ALPHABET)
    for _ in range(length):
        value, index = divmod(value, base)
        chars.append(_TOKEN_ALPHABET[index])
    return "".join(chars)


def ensure_directory(path: Path) -> Path:
    """Create *path* if it does not exist and return it."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            if unit == "B":
                return f"{int(value)}{unit}"
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{size}B"  # pragma: no cover - loop always returns


def mask_sensitive(value: str, secrets: Iterable[Optional[str]]) -> str:
    """Replace occurrences of secret values in *value* with '***'."""

    masked = value
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, "***")
    return masked


__all__ = [
    "ensure_directory",
    "human_size",
    "mask_sensitive",
    "session_timestamp",
    "unique_token",
]
