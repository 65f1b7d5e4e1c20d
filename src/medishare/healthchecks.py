"""Health-check probes for downstream dependencies."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any

__all__ = ["check_postgres"]

logger = logging.getLogger(__name__)

_TIMEOUT = 2  # seconds, fast-fail for readiness


def _sync_check_postgres(dsn: str) -> bool:
    """Blocking probe: the share_tokens table must be queryable."""
    import psycopg

    conn: psycopg.Connection[Any] = psycopg.connect(dsn, connect_timeout=_TIMEOUT)
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM share_tokens LIMIT 1")
    finally:
        conn.close()
    return True


async def check_postgres(dsn: str) -> bool:
    """Probe PostgreSQL off the event loop. Returns False on any failure."""
    if not dsn:
        return False
    try:
        return await asyncio.to_thread(partial(_sync_check_postgres, dsn))
    except Exception:
        logger.warning("Postgres health-check failed", exc_info=True)
        return False
