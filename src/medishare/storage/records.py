"""Read side of the patient's prescription records.

Records are written by the OCR/extraction pipeline elsewhere; the share
path only ever needs "most recent N for a patient".
"""

from __future__ import annotations

import json
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import psycopg

from medishare.errors import StorageError

__all__ = [
    "InMemoryRecordStore",
    "MedItem",
    "PostgresRecordStore",
    "PrescriptionRecord",
    "RecordStoreProtocol",
]

# Per-patient records kept by the in-memory store
MEMORY_RECORDS_PER_PATIENT = 50


@dataclass(frozen=True)
class MedItem:
    name_raw: str
    needs_verification: bool = False


@dataclass(frozen=True)
class PrescriptionRecord:
    patient_id: str
    record_type: str  # "prescription" | "dispensing_record"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    chief_complaint: str | None = None
    doctor_diagnosis: str | None = None
    note_doctor_said: str | None = None
    meds: tuple[MedItem, ...] = ()
    gemini_summary: str | None = None
    raw_text: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_view(self) -> dict[str, Any]:
        """Clinician-facing shape, camelCase like the rest of the web client."""
        return {
            "id": self.id,
            "recordType": self.record_type,
            "createdAt": self.created_at.isoformat(),
            "chiefComplaint": self.chief_complaint,
            "doctorDiagnosis": self.doctor_diagnosis,
            "noteDoctorSaid": self.note_doctor_said,
            "meds": [
                {"nameRaw": m.name_raw, "needsVerification": m.needs_verification}
                for m in self.meds
            ],
            "geminiSummary": self.gemini_summary,
            "rawText": self.raw_text,
        }


class RecordStoreProtocol(Protocol):
    def recent_for_patient(self, patient_id: str, limit: int) -> list[PrescriptionRecord]:
        """At most ``limit`` records, newest first."""
        ...


class InMemoryRecordStore:
    """Process-local records, newest first, capped per patient."""

    def __init__(self, per_patient: int = MEMORY_RECORDS_PER_PATIENT) -> None:
        self._per_patient = per_patient
        self._records: dict[str, list[PrescriptionRecord]] = {}
        self._lock = threading.Lock()

    def add(self, record: PrescriptionRecord) -> None:
        with self._lock:
            existing = self._records.get(record.patient_id, [])
            merged = sorted([record, *existing], key=lambda r: r.created_at, reverse=True)
            self._records[record.patient_id] = merged[: self._per_patient]

    def recent_for_patient(self, patient_id: str, limit: int) -> list[PrescriptionRecord]:
        with self._lock:
            return list(self._records.get(patient_id, [])[:limit])


def _parse_meds(value: Any) -> tuple[MedItem, ...]:
    items = json.loads(value) if isinstance(value, str) else (value or [])
    return tuple(
        MedItem(
            name_raw=str(m.get("nameRaw", "")),
            needs_verification=bool(m.get("needsVerification", False)),
        )
        for m in items
    )


class PostgresRecordStore:
    def __init__(self, connect: Callable[[], psycopg.Connection[Any]]) -> None:
        self._connect = connect

    def recent_for_patient(self, patient_id: str, limit: int) -> list[PrescriptionRecord]:
        try:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, patient_id, record_type, created_at, chief_complaint,
                           doctor_diagnosis, note_doctor_said, meds, gemini_summary, raw_text
                      FROM prescription_records
                     WHERE patient_id = %s
                     ORDER BY created_at DESC
                     LIMIT %s
                    """,
                    (patient_id, limit),
                )
                rows = cur.fetchall()
        except psycopg.Error as exc:
            msg = "record store unavailable"
            raise StorageError(msg) from exc

        return [
            PrescriptionRecord(
                id=r[0],
                patient_id=r[1],
                record_type=r[2],
                created_at=r[3],
                chief_complaint=r[4],
                doctor_diagnosis=r[5],
                note_doctor_said=r[6],
                meds=_parse_meds(r[7]),
                gemini_summary=r[8],
                raw_text=r[9],
            )
            for r in rows
        ]
