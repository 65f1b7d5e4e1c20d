"""Share-token error taxonomy."""

from __future__ import annotations

__all__ = ["ShareError", "ShareValidationError", "StorageError"]


class ShareError(Exception):
    """Base class for share-token failures."""


class ShareValidationError(ShareError):
    """Malformed input. Nothing was written."""


class StorageError(ShareError):
    """Backend unavailable or the unit of work failed to commit.

    The whole revoke-then-insert unit was rolled back; callers may retry it.
    """
