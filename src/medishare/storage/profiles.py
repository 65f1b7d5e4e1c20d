"""Patient-supplied context shown next to the records: intake form and profile.

Both are optional on the clinician view. A patient who never filled in the
questionnaire or the profile resolves with ``null`` for that section.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Protocol

import psycopg

from medishare.errors import StorageError

__all__ = [
    "InMemoryIntakeFormStore",
    "InMemoryPatientProfileStore",
    "IntakeForm",
    "IntakeFormStoreProtocol",
    "PatientProfile",
    "PatientProfileStoreProtocol",
    "PostgresIntakeFormStore",
    "PostgresPatientProfileStore",
    "age_on",
]

_COURSE_LABELS = {
    "improving": "Improving",
    "worsening": "Worsening",
    "no_change": "No change",
}

_ADHERENCE_LABELS = {
    "yes": "Took as prescribed",
    "partial": "Mostly as prescribed",
    "no": "Could not take as prescribed",
}


def _with_note(label: str, note: str | None) -> str:
    return f"{label} - {note}" if note else label


@dataclass(frozen=True)
class IntakeForm:
    """Pre-visit questionnaire; only the latest one per patient is shown."""

    patient_id: str
    chief_complaint: str
    course: str  # "improving" | "worsening" | "no_change"
    adherence: str  # "yes" | "partial" | "no" | "not_applicable"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    hospital_name: str | None = None
    onset_text: str | None = None
    course_note: str | None = None
    adherence_reason: str | None = None
    adverse_events: str | None = None
    allergies: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_view(self) -> dict[str, Any]:
        return {
            "hospitalName": self.hospital_name or "Unspecified",
            "chiefComplaint": self.chief_complaint,
            "symptomStart": self.onset_text or "Not provided",
            "symptomProgress": _with_note(
                _COURSE_LABELS.get(self.course, "Unknown"), self.course_note
            ),
            "symptomDetail": self.course_note,
            "medicationCompliance": _with_note(
                _ADHERENCE_LABELS.get(self.adherence, "Not applicable"),
                self.adherence_reason,
            ),
            "sideEffects": self.adverse_events or "None",
            "allergies": self.allergies or "None",
            "patientNotes": "",
        }


def age_on(birth_date: date, today: date) -> int:
    """Whole years, counting the birthday itself as reached."""
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


@dataclass(frozen=True)
class PatientProfile:
    patient_id: str
    birth_date: date | None = None
    blood_type: str | None = None
    height_cm: float | None = None
    weight_kg: float | None = None
    allergies: str | None = None
    emergency_contact: str | None = None

    def to_view(self, today: date) -> dict[str, Any]:
        """Clinician-facing shape; the birth date itself is not exposed."""
        return {
            "age": age_on(self.birth_date, today) if self.birth_date else None,
            "bloodType": self.blood_type,
            "height": self.height_cm,
            "weight": self.weight_kg,
            "allergies": self.allergies,
            "emergencyContact": self.emergency_contact,
        }


class IntakeFormStoreProtocol(Protocol):
    def latest_for_patient(self, patient_id: str) -> IntakeForm | None: ...


class PatientProfileStoreProtocol(Protocol):
    def get(self, patient_id: str) -> PatientProfile | None: ...


# ── In-memory implementations ───────────────────────────


class InMemoryIntakeFormStore:
    """Keeps only the newest form per patient."""

    def __init__(self) -> None:
        self._latest: dict[str, IntakeForm] = {}
        self._lock = threading.Lock()

    def add(self, form: IntakeForm) -> None:
        with self._lock:
            current = self._latest.get(form.patient_id)
            if current is None or form.created_at >= current.created_at:
                self._latest[form.patient_id] = form

    def latest_for_patient(self, patient_id: str) -> IntakeForm | None:
        with self._lock:
            return self._latest.get(patient_id)


class InMemoryPatientProfileStore:
    def __init__(self) -> None:
        self._profiles: dict[str, PatientProfile] = {}
        self._lock = threading.Lock()

    def put(self, profile: PatientProfile) -> None:
        with self._lock:
            self._profiles[profile.patient_id] = profile

    def get(self, patient_id: str) -> PatientProfile | None:
        with self._lock:
            return self._profiles.get(patient_id)


# ── PostgreSQL implementations ──────────────────────────


class _PostgresReader:
    def __init__(self, connect: Callable[[], psycopg.Connection[Any]]) -> None:
        self._connect = connect

    def _fetchone(self, sql: str, params: tuple[Any, ...], what: str) -> tuple[Any, ...] | None:
        try:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()
        except psycopg.Error as exc:
            msg = f"{what} store unavailable"
            raise StorageError(msg) from exc


class PostgresIntakeFormStore(_PostgresReader):
    def latest_for_patient(self, patient_id: str) -> IntakeForm | None:
        row = self._fetchone(
            """
            SELECT i.id, i.patient_id, i.chief_complaint, i.course, i.adherence,
                   i.created_at, f.name, i.onset_text, i.course_note,
                   i.adherence_reason, i.adverse_events, i.allergies
              FROM intake_forms i
              LEFT JOIN facilities f ON f.id = i.facility_id
             WHERE i.patient_id = %s
             ORDER BY i.created_at DESC
             LIMIT 1
            """,
            (patient_id,),
            "intake form",
        )
        if row is None:
            return None
        return IntakeForm(
            id=row[0],
            patient_id=row[1],
            chief_complaint=row[2],
            course=row[3],
            adherence=row[4],
            created_at=row[5],
            hospital_name=row[6],
            onset_text=row[7],
            course_note=row[8],
            adherence_reason=row[9],
            adverse_events=row[10],
            allergies=row[11],
        )


class PostgresPatientProfileStore(_PostgresReader):
    def get(self, patient_id: str) -> PatientProfile | None:
        row = self._fetchone(
            """
            SELECT id, birth_date, blood_type, height_cm, weight_kg,
                   allergies, emergency_contact
              FROM patients
             WHERE id = %s
            """,
            (patient_id,),
            "patient profile",
        )
        if row is None:
            return None
        return PatientProfile(
            patient_id=row[0],
            birth_date=row[1],
            blood_type=row[2],
            height_cm=row[3],
            weight_kg=row[4],
            allergies=row[5],
            emergency_contact=row[6],
        )
