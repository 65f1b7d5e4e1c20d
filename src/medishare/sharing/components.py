"""Wires stores, issuer, revocation and gate from settings."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from medishare.sharing.clock import utcnow
from medishare.sharing.gate import AccessGate
from medishare.sharing.issuer import TokenIssuer
from medishare.sharing.revocation import RevocationManager
from medishare.storage.access_log import InMemoryAccessLog, PostgresAccessLog
from medishare.storage.profiles import (
    InMemoryIntakeFormStore,
    InMemoryPatientProfileStore,
    PostgresIntakeFormStore,
    PostgresPatientProfileStore,
)
from medishare.storage.records import InMemoryRecordStore, PostgresRecordStore
from medishare.storage.token_store import InMemoryTokenStore, PostgresTokenStore

if TYPE_CHECKING:
    import psycopg

    from medishare.settings import Settings
    from medishare.sharing.clock import Clock
    from medishare.storage.access_log import AccessLogProtocol
    from medishare.storage.profiles import IntakeFormStoreProtocol, PatientProfileStoreProtocol
    from medishare.storage.records import RecordStoreProtocol
    from medishare.storage.token_store import TokenStoreProtocol

__all__ = ["ShareComponents", "build_components", "in_memory_components", "postgres_components"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShareComponents:
    store: TokenStoreProtocol
    access_log: AccessLogProtocol
    records: RecordStoreProtocol
    intake_forms: IntakeFormStoreProtocol
    profiles: PatientProfileStoreProtocol
    revocations: RevocationManager
    issuer: TokenIssuer
    gate: AccessGate


@dataclass(frozen=True)
class _Stores:
    tokens: TokenStoreProtocol
    access_log: AccessLogProtocol
    records: RecordStoreProtocol
    intake_forms: IntakeFormStoreProtocol
    profiles: PatientProfileStoreProtocol


def _assemble(settings: Settings, stores: _Stores, clock: Clock) -> ShareComponents:
    revocations = RevocationManager(stores.tokens, clock=clock)
    issuer = TokenIssuer(
        stores.tokens,
        revocations,
        ttl=timedelta(seconds=settings.share_token_ttl_seconds),
        token_bytes=settings.share_token_bytes,
        clock=clock,
    )
    gate = AccessGate(
        stores.tokens,
        stores.access_log,
        stores.records,
        intake_forms=stores.intake_forms,
        profiles=stores.profiles,
        min_token_length=settings.share_token_min_length,
        record_limit=settings.resolve_record_limit,
        collapse_expired=settings.collapse_expired,
        clock=clock,
    )
    return ShareComponents(
        store=stores.tokens,
        access_log=stores.access_log,
        records=stores.records,
        intake_forms=stores.intake_forms,
        profiles=stores.profiles,
        revocations=revocations,
        issuer=issuer,
        gate=gate,
    )


def in_memory_components(
    settings: Settings,
    *,
    records: RecordStoreProtocol | None = None,
    intake_forms: IntakeFormStoreProtocol | None = None,
    profiles: PatientProfileStoreProtocol | None = None,
    clock: Clock = utcnow,
) -> ShareComponents:
    """Single-process stores; state is lost on restart."""
    retention = settings.share_token_retention_seconds
    tokens = InMemoryTokenStore(
        history_limit=settings.patient_token_history,
        retention=timedelta(seconds=retention) if retention > 0 else None,
        clock=clock,
    )
    stores = _Stores(
        tokens=tokens,
        access_log=InMemoryAccessLog(),
        records=records if records is not None else InMemoryRecordStore(),
        intake_forms=intake_forms if intake_forms is not None else InMemoryIntakeFormStore(),
        profiles=profiles if profiles is not None else InMemoryPatientProfileStore(),
    )
    return _assemble(settings, stores, clock)


def postgres_components(
    settings: Settings,
    connect: Callable[[], psycopg.Connection[Any]],
    *,
    clock: Clock = utcnow,
) -> ShareComponents:
    stores = _Stores(
        tokens=PostgresTokenStore(connect),
        access_log=PostgresAccessLog(connect),
        records=PostgresRecordStore(connect),
        intake_forms=PostgresIntakeFormStore(connect),
        profiles=PostgresPatientProfileStore(connect),
    )
    return _assemble(settings, stores, clock)


def build_components(settings: Settings) -> ShareComponents | None:
    """Pick the backend once, at startup.

    Returns None when neither a DSN nor in-memory mode is configured; the
    share endpoints then answer 503.
    """
    if settings.pg_dsn:
        from medishare.storage.postgres import connection_factory, ensure_schema, get_connection

        conn = get_connection(settings.pg_dsn)
        try:
            ensure_schema(conn)
        finally:
            conn.close()
        logger.info("Share tokens: PostgreSQL backend")
        return postgres_components(settings, connection_factory(settings.pg_dsn))

    if settings.use_in_memory_store:
        logger.warning(
            "Share tokens: in-memory backend (single process only, not safe behind "
            "multiple instances)"
        )
        return in_memory_components(settings)

    logger.error("Share tokens: no storage configured (set MEDISHARE_PG_DSN)")
    return None
