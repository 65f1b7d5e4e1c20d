"""Raw share-token generation and one-way hashing."""

from __future__ import annotations

import base64
import hashlib
import secrets

__all__ = ["generate_raw_token", "hash_identifier", "hash_token"]

DEFAULT_TOKEN_BYTES = 32


def generate_raw_token(num_bytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """URL-safe random token; 32 bytes → 256 bits, 43 characters."""
    if num_bytes < DEFAULT_TOKEN_BYTES:
        msg = f"share tokens need at least {DEFAULT_TOKEN_BYTES} bytes of entropy"
        raise ValueError(msg)
    return secrets.token_urlsafe(num_bytes)


def _sha256_b64url(value: str) -> str:
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def hash_token(raw_token: str) -> str:
    """Storage key for a raw token: unpadded base64url SHA-256."""
    return _sha256_b64url(raw_token)


def hash_identifier(value: str | None) -> str | None:
    """One-way hash for client IP / user agent; never stored in clear."""
    if not value:
        return None
    return _sha256_b64url(value)
