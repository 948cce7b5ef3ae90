"""Content hashing for change detection."""

from __future__ import annotations

import hashlib


def compute_hash(text: str) -> str:
    """Return the SHA-256 hex digest of *text*."""
    return hashlib.sha256(text.encode()).hexdigest()
