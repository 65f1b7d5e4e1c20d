"""Append-only access log for share-token resolutions."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Protocol

import psycopg

from medishare.errors import StorageError
from medishare.sharing.models import AccessLogEntry

__all__ = ["AccessLogProtocol", "InMemoryAccessLog", "PostgresAccessLog"]


class AccessLogProtocol(Protocol):
    """Entries are appended, never updated or deleted."""

    def append(self, entry: AccessLogEntry) -> None: ...

    def entries_for_token(self, share_token_id: str, limit: int = 100) -> list[AccessLogEntry]:
        """Newest first."""
        ...


class InMemoryAccessLog:
    def __init__(self) -> None:
        self._entries: list[AccessLogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: AccessLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries_for_token(self, share_token_id: str, limit: int = 100) -> list[AccessLogEntry]:
        with self._lock:
            matching = [e for e in self._entries if e.share_token_id == share_token_id]
        return list(reversed(matching))[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PostgresAccessLog:
    """Access log rows in ``share_access_logs``."""

    def __init__(self, connect: Callable[[], psycopg.Connection[Any]]) -> None:
        self._connect = connect

    def append(self, entry: AccessLogEntry) -> None:
        try:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO share_access_logs
                        (share_token_id, accessed_at, ip_hash, user_agent_hash)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (entry.share_token_id, entry.accessed_at, entry.ip_hash, entry.user_agent_hash),
                )
        except psycopg.Error as exc:
            msg = "access log unavailable"
            raise StorageError(msg) from exc

    def entries_for_token(self, share_token_id: str, limit: int = 100) -> list[AccessLogEntry]:
        try:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(
                    "SELECT share_token_id, accessed_at, ip_hash, user_agent_hash "
                    "FROM share_access_logs WHERE share_token_id = %s "
                    "ORDER BY accessed_at DESC, id DESC LIMIT %s",
                    (share_token_id, limit),
                )
                rows = cur.fetchall()
        except psycopg.Error as exc:
            msg = "access log unavailable"
            raise StorageError(msg) from exc
        return [
            AccessLogEntry(
                share_token_id=r[0],
                accessed_at=r[1],
                ip_hash=r[2],
                user_agent_hash=r[3],
            )
            for r in rows
        ]
