"""Hashing utilities."""

from __future__ import annotations

import hashlib


def sha256_bytes(data: bytes) -> str:
    """Return hex digest for bytes input."""
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    """Return hex digest for a UTF-8 string."""
    return sha256_bytes(text.encode("utf-8"))


def short_hash(*parts: str, length: int = 16) -> str:
    """Join parts with ':' and return a truncated sha256 digest."""
    return sha256_text(":".join(parts))[:length]
