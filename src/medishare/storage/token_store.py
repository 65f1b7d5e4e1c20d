"""Share-token store: protocol + implementations.

All mutation goes through ``insert`` and ``revoke_active_for_patient``.
``serialized(patient_id)`` groups both into one unit: its writes commit
together on a clean exit and are discarded if the block raises. Units for
the same patient never interleave.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timedelta
from typing import Any, Protocol

import psycopg

from medishare.errors import StorageError
from medishare.sharing.clock import Clock, utcnow
from medishare.sharing.models import ShareToken

__all__ = [
    "InMemoryTokenStore",
    "PostgresTokenStore",
    "TokenStoreProtocol",
    "TokenWriter",
]

DEFAULT_PATIENT_HISTORY = 20


class TokenWriter(Protocol):
    """Write side of one serialized unit for a single patient."""

    def insert(self, token: ShareToken) -> None: ...

    def revoke_active_for_patient(self, patient_id: str, now: datetime) -> int:
        """Set ``revoked_at = now`` on every active token. Returns the count."""
        ...


class TokenStoreProtocol(Protocol):
    """Minimal contract for share-token persistence."""

    def get(self, token_hash: str) -> ShareToken | None: ...

    def insert(self, token: ShareToken) -> None: ...

    def revoke_active_for_patient(self, patient_id: str, now: datetime) -> int: ...

    def serialized(self, patient_id: str) -> AbstractContextManager[TokenWriter]:
        """Exclusive, all-or-nothing unit of work for one patient."""
        ...

    def tokens_for_patient(self, patient_id: str, limit: int = 20) -> list[ShareToken]:
        """Newest first; revoked and expired tokens included."""
        ...


def _check_patient(bound: str, patient_id: str) -> None:
    if patient_id != bound:
        msg = f"unit of work is bound to another patient ({patient_id!r})"
        raise ValueError(msg)


# ── In-memory implementation (dev / tests) ──────────────


class _MemoryUnit:
    """Stages writes; the owning store applies them on commit."""

    def __init__(self, store: InMemoryTokenStore, patient_id: str) -> None:
        self._store = store
        self.patient_id = patient_id
        self.revocations: dict[str, ShareToken] = {}
        self.inserts: list[ShareToken] = []

    def insert(self, token: ShareToken) -> None:
        _check_patient(self.patient_id, token.patient_id)
        if token.revoked_at is not None:
            msg = "new share tokens must not be pre-revoked"
            raise ValueError(msg)
        if self._store.get(token.token_hash) is not None or any(
            t.token_hash == token.token_hash for t in self.inserts
        ):
            msg = "token hash already exists"
            raise StorageError(msg)
        self.inserts.append(token)

    def revoke_active_for_patient(self, patient_id: str, now: datetime) -> int:
        _check_patient(self.patient_id, patient_id)
        count = 0
        for token in self._store.tokens_for_patient(patient_id, limit=self._store.history_limit):
            if token.token_hash not in self.revocations and token.is_active(now):
                self.revocations[token.token_hash] = token.revoked(now)
                count += 1
        staged: list[ShareToken] = []
        for token in self.inserts:
            if token.is_active(now):
                token = token.revoked(now)
                count += 1
            staged.append(token)
        self.inserts = staged
        return count


class InMemoryTokenStore:
    """Process-local token store.

    Lookup is a dict keyed by ``token_hash``; each patient's history list
    keeps only the ``history_limit`` most recent tokens. Tokens pushed out
    of that list stay resolvable through the lookup index. With a
    ``retention`` set, those retired tokens are pruned once they have been
    revoked or expired for longer than ``retention``. Locks are
    ``threading`` locks, so this store is correct for one process only.
    Never run it behind more than one instance.
    """

    def __init__(
        self,
        history_limit: int = DEFAULT_PATIENT_HISTORY,
        *,
        retention: timedelta | None = None,
        clock: Clock = utcnow,
    ) -> None:
        if history_limit < 1:
            msg = "history_limit must be positive"
            raise ValueError(msg)
        if retention is not None and retention <= timedelta(0):
            msg = "retention must be positive"
            raise ValueError(msg)
        self.history_limit = history_limit
        self.retention = retention
        self._clock = clock
        self._by_hash: dict[str, ShareToken] = {}
        self._by_patient: dict[str, deque[str]] = {}
        # Hashes evicted from a patient's history, oldest eviction first
        self._retired: deque[str] = deque()
        self._index_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._patient_locks: dict[str, threading.Lock] = {}

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._by_hash)

    def _patient_lock(self, patient_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._patient_locks.setdefault(patient_id, threading.Lock())

    def get(self, token_hash: str) -> ShareToken | None:
        with self._index_lock:
            return self._by_hash.get(token_hash)

    def tokens_for_patient(self, patient_id: str, limit: int = 20) -> list[ShareToken]:
        with self._index_lock:
            hashes = list(self._by_patient.get(patient_id, ()))[:limit]
            return [self._by_hash[h] for h in hashes]

    def insert(self, token: ShareToken) -> None:
        with self.serialized(token.patient_id) as unit:
            unit.insert(token)

    def revoke_active_for_patient(self, patient_id: str, now: datetime) -> int:
        with self.serialized(patient_id) as unit:
            return unit.revoke_active_for_patient(patient_id, now)

    @contextmanager
    def serialized(self, patient_id: str) -> Iterator[_MemoryUnit]:
        with self._patient_lock(patient_id):
            unit = _MemoryUnit(self, patient_id)
            yield unit
            self._commit(unit)

    def _commit(self, unit: _MemoryUnit) -> None:
        with self._index_lock:
            for token_hash, token in unit.revocations.items():
                if token_hash in self._by_hash:
                    self._by_hash[token_hash] = token
            history = self._by_patient.setdefault(unit.patient_id, deque())
            for token in unit.inserts:
                self._by_hash[token.token_hash] = token
                history.appendleft(token.token_hash)
            while len(history) > self.history_limit:
                self._retired.append(history.pop())
            if self.retention is not None:
                self._prune_retired(self._clock() - self.retention)

    def _prune_retired(self, cutoff: datetime) -> None:
        """Drop retired tokens that ended before ``cutoff``. Caller holds the index lock.

        Stops at the first retired token still inside the retention window;
        it is retried on a later commit.
        """
        while self._retired:
            token = self._by_hash.get(self._retired[0])
            if token is not None and _ended_at(token) > cutoff:
                break
            self._retired.popleft()
            if token is not None:
                del self._by_hash[token.token_hash]


def _ended_at(token: ShareToken) -> datetime:
    if token.revoked_at is not None:
        return min(token.revoked_at, token.expires_at)
    return token.expires_at


# ── PostgreSQL implementation ────────────────────────────

_COLUMNS = "id, patient_id, facility_id, token_hash, issued_at, expires_at, revoked_at"


def _row_to_token(row: tuple[Any, ...]) -> ShareToken:
    return ShareToken(
        id=row[0],
        patient_id=row[1],
        facility_id=row[2],
        token_hash=row[3],
        issued_at=row[4],
        expires_at=row[5],
        revoked_at=row[6],
    )


class _PostgresUnit:
    def __init__(self, conn: psycopg.Connection[Any], patient_id: str) -> None:
        self._conn = conn
        self.patient_id = patient_id

    def insert(self, token: ShareToken) -> None:
        _check_patient(self.patient_id, token.patient_id)
        with self._conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO share_tokens ({_COLUMNS}) "  # noqa: S608
                "VALUES (%s, %s, %s, %s, %s, %s, %s)",
                (
                    token.id,
                    token.patient_id,
                    token.facility_id,
                    token.token_hash,
                    token.issued_at,
                    token.expires_at,
                    token.revoked_at,
                ),
            )

    def revoke_active_for_patient(self, patient_id: str, now: datetime) -> int:
        _check_patient(self.patient_id, patient_id)
        with self._conn.cursor() as cur:
            cur.execute(
                """
                UPDATE share_tokens
                   SET revoked_at = %s
                 WHERE patient_id = %s
                   AND revoked_at IS NULL
                   AND expires_at > %s
                """,
                (now, patient_id, now),
            )
            return max(cur.rowcount, 0)


class PostgresTokenStore:
    """Durable token store.

    Every unit of work gets its own connection from ``connect``; a
    serialized unit holds a transaction-scoped advisory lock on the patient
    id, which also covers the "no rows yet" case row locks cannot.
    """

    def __init__(self, connect: Callable[[], psycopg.Connection[Any]]) -> None:
        self._connect = connect

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection[Any]]:
        try:
            conn = self._connect()
        except psycopg.Error as exc:
            msg = "token store unavailable"
            raise StorageError(msg) from exc
        try:
            yield conn
        except psycopg.Error as exc:
            msg = "token store operation failed"
            raise StorageError(msg) from exc
        finally:
            conn.close()

    def get(self, token_hash: str) -> ShareToken | None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM share_tokens WHERE token_hash = %s",  # noqa: S608
                    (token_hash,),
                )
                row = cur.fetchone()
        return _row_to_token(row) if row else None

    def tokens_for_patient(self, patient_id: str, limit: int = 20) -> list[ShareToken]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM share_tokens "  # noqa: S608
                    "WHERE patient_id = %s ORDER BY issued_at DESC LIMIT %s",
                    (patient_id, limit),
                )
                rows = cur.fetchall()
        return [_row_to_token(r) for r in rows]

    def insert(self, token: ShareToken) -> None:
        with self.serialized(token.patient_id) as unit:
            unit.insert(token)

    def revoke_active_for_patient(self, patient_id: str, now: datetime) -> int:
        with self.serialized(patient_id) as unit:
            return unit.revoke_active_for_patient(patient_id, now)

    @contextmanager
    def serialized(self, patient_id: str) -> Iterator[_PostgresUnit]:
        with self._connection() as conn, conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))",
                    (patient_id,),
                )
            yield _PostgresUnit(conn, patient_id)
