"""Fixed-size digests over canonical order records."""

from __future__ import annotations

import hashlib
from typing import Final

from .canonical import canonical_bytes, canonicalize
from .schemas import CanonicalOrderRecord

DIGEST_SIZE: Final[int] = 32


def digest(record: CanonicalOrderRecord) -> bytes:
    """Return the 32-byte SHA-256 digest signed for ``record``."""

    return hashlib.sha256(canonical_bytes(record)).digest()


def digest_hex(record: CanonicalOrderRecord) -> str:
    """Return :func:`digest` as lowercase hex."""

    return digest(record).hex()


def order_digest(order: object) -> bytes:
    """Canonicalize ``order`` and return its digest."""

    return digest(canonicalize(order))
