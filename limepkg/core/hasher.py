"""Content hashing helpers for package payloads."""

from __future__ import annotations

import hashlib


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def digests_match(expected: str, actual: str) -> bool:
    """Case-insensitive hex digest comparison; ``sha256:`` prefixes are ignored."""
    return (
        expected.removeprefix("sha256:").lower()
        == actual.removeprefix("sha256:").lower()
    )
