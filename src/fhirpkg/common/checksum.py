"""SHA-1 checksums as published in npm-style registry listings (``dist.shasum``)."""

from __future__ import annotations

import hashlib
from typing import Optional


def sha_sum(data: bytes) -> str:
    """Return the lower-case hex SHA-1 digest of ``data``."""
    return hashlib.sha1(data).hexdigest()


def matches(data: bytes, expected: Optional[str]) -> bool:
    """True if ``expected`` is present and equals the digest of ``data``.

    A missing digest never matches.
    """
    if not expected:
        return False
    return sha_sum(data) == expected
