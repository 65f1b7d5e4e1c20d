"""PostgreSQL connection management and schema."""

from __future__ import annotations

from typing import Any

import psycopg

__all__ = ["SCHEMA", "connection_factory", "ensure_schema", "get_connection"]

SCHEMA = """
CREATE TABLE IF NOT EXISTS share_tokens (
    id          TEXT PRIMARY KEY,
    patient_id  TEXT NOT NULL,
    facility_id TEXT,
    token_hash  TEXT NOT NULL UNIQUE,
    issued_at   TIMESTAMPTZ NOT NULL,
    expires_at  TIMESTAMPTZ NOT NULL,
    revoked_at  TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS share_tokens_patient_active_idx
    ON share_tokens (patient_id, expires_at)
    WHERE revoked_at IS NULL;

CREATE TABLE IF NOT EXISTS share_access_logs (
    id              BIGSERIAL PRIMARY KEY,
    share_token_id  TEXT NOT NULL REFERENCES share_tokens (id),
    accessed_at     TIMESTAMPTZ NOT NULL,
    ip_hash         TEXT,
    user_agent_hash TEXT
);

CREATE TABLE IF NOT EXISTS prescription_records (
    id               TEXT PRIMARY KEY,
    patient_id       TEXT NOT NULL,
    record_type      TEXT NOT NULL,
    created_at       TIMESTAMPTZ NOT NULL,
    chief_complaint  TEXT,
    doctor_diagnosis TEXT,
    note_doctor_said TEXT,
    meds             JSONB NOT NULL DEFAULT '[]'::jsonb,
    gemini_summary   TEXT,
    raw_text         TEXT
);
CREATE INDEX IF NOT EXISTS prescription_records_patient_created_idx
    ON prescription_records (patient_id, created_at DESC);

CREATE TABLE IF NOT EXISTS facilities (
    id   TEXT PRIMARY KEY,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS intake_forms (
    id               TEXT PRIMARY KEY,
    patient_id       TEXT NOT NULL,
    facility_id      TEXT REFERENCES facilities (id),
    created_at       TIMESTAMPTZ NOT NULL,
    chief_complaint  TEXT NOT NULL,
    onset_text       TEXT,
    course           TEXT NOT NULL,
    course_note      TEXT,
    adherence        TEXT NOT NULL,
    adherence_reason TEXT,
    adverse_events   TEXT,
    allergies        TEXT
);
CREATE INDEX IF NOT EXISTS intake_forms_patient_created_idx
    ON intake_forms (patient_id, created_at DESC);

CREATE TABLE IF NOT EXISTS patients (
    id                TEXT PRIMARY KEY,
    birth_date        DATE,
    blood_type        TEXT,
    height_cm         DOUBLE PRECISION,
    weight_kg         DOUBLE PRECISION,
    allergies         TEXT,
    emergency_contact TEXT
);
"""


def get_connection(dsn: str) -> psycopg.Connection[Any]:
    """Create a new PostgreSQL connection."""
    return psycopg.connect(dsn, autocommit=False)


def connection_factory(dsn: str) -> Any:
    """Zero-arg callable opening a fresh connection per unit of work."""

    def _connect() -> psycopg.Connection[Any]:
        return get_connection(dsn)

    return _connect


def ensure_schema(conn: psycopg.Connection[Any]) -> None:
    with conn.cursor() as cur:
        cur.execute(SCHEMA)
    conn.commit()
