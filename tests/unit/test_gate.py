"""Tests for AccessGate: classification, idempotency, access log."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

import pytest

from medishare.errors import StorageError
from medishare.settings import Settings
from medishare.sharing.components import ShareComponents, in_memory_components
from medishare.sharing.crypto import generate_raw_token, hash_token
from medishare.sharing.gate import AccessGate
from medishare.sharing.models import ResolveOutcome, ShareToken
from medishare.storage.access_log import InMemoryAccessLog
from medishare.storage.profiles import (
    InMemoryIntakeFormStore,
    InMemoryPatientProfileStore,
    IntakeForm,
    PatientProfile,
)
from medishare.storage.records import InMemoryRecordStore, PrescriptionRecord
from medishare.storage.token_store import InMemoryTokenStore


class _CountingStore(InMemoryTokenStore):
    def __init__(self) -> None:
        super().__init__()
        self.lookups = 0

    def get(self, token_hash: str) -> ShareToken | None:
        self.lookups += 1
        return super().get(token_hash)


class TestResolveClassification:
    def test_unknown_token_not_found(self, components: ShareComponents) -> None:
        result = components.gate.resolve(generate_raw_token())
        assert result.outcome is ResolveOutcome.NOT_FOUND
        assert result.patient_id is None
        assert result.records == []

    def test_revoked_token_indistinguishable_from_unknown(
        self, components: ShareComponents, patient_id: str
    ) -> None:
        issued = components.issuer.issue(patient_id)
        components.revocations.revoke_active_for_patient(patient_id)

        revoked = components.gate.resolve(issued.token)
        unknown = components.gate.resolve(generate_raw_token())
        assert revoked == unknown

    def test_valid_until_expiry_then_expired(
        self, components: ShareComponents, patient_id: str, clock: Any
    ) -> None:
        issued = components.issuer.issue(patient_id)

        clock.now = issued.expires_at - timedelta(microseconds=1)
        assert components.gate.resolve(issued.token).ok
        clock.now = issued.expires_at
        assert components.gate.resolve(issued.token).outcome is ResolveOutcome.EXPIRED
        clock.advance(3600)
        assert components.gate.resolve(issued.token).outcome is ResolveOutcome.EXPIRED

    @pytest.mark.parametrize("raw", ["", "ab", "123456789"])
    def test_short_token_malformed_without_lookup(self, raw: str) -> None:
        store = _CountingStore()
        gate = AccessGate(store, InMemoryAccessLog(), InMemoryRecordStore())

        assert gate.resolve(raw).outcome is ResolveOutcome.MALFORMED
        assert store.lookups == 0

    def test_ten_characters_reaches_storage(self) -> None:
        store = _CountingStore()
        gate = AccessGate(store, InMemoryAccessLog(), InMemoryRecordStore())

        assert gate.resolve("0123456789").outcome is ResolveOutcome.NOT_FOUND
        assert store.lookups == 1

    def test_collapse_expired_reports_not_found(
        self, record_store: InMemoryRecordStore, patient_id: str, clock: Any
    ) -> None:
        settings = Settings(collapse_expired=True)
        components = in_memory_components(settings, records=record_store, clock=clock)
        issued = components.issuer.issue(patient_id)
        clock.advance(600)

        assert components.gate.resolve(issued.token).outcome is ResolveOutcome.NOT_FOUND

    def test_expired_token_stays_expired_after_history_rolls_over(
        self, components: ShareComponents, patient_id: str, clock: Any
    ) -> None:
        first = components.issuer.issue(patient_id)
        clock.advance(601)
        assert components.gate.resolve(first.token).outcome is ResolveOutcome.EXPIRED

        for _ in range(20):
            components.issuer.issue(patient_id)

        assert components.gate.resolve(first.token).outcome is ResolveOutcome.EXPIRED


class TestResolveSuccess:
    def test_bounded_newest_first_records(
        self, components: ShareComponents, patient_id: str
    ) -> None:
        issued = components.issuer.issue(patient_id)
        result = components.gate.resolve(issued.token)

        assert result.ok
        assert result.patient_id == patient_id
        assert len(result.records) == 20
        ids = [r["id"] for r in result.records]
        assert ids[0] == "REC-24"
        assert ids[-1] == "REC-05"
        created = [datetime.fromisoformat(r["createdAt"]) for r in result.records]
        assert created == sorted(created, reverse=True)
        assert "REC-OTHER" not in ids

    def test_record_view_shape(self, components: ShareComponents, patient_id: str) -> None:
        issued = components.issuer.issue(patient_id)
        record = components.gate.resolve(issued.token).records[0]
        assert set(record) == {
            "id",
            "recordType",
            "createdAt",
            "chiefComplaint",
            "doctorDiagnosis",
            "noteDoctorSaid",
            "meds",
            "geminiSummary",
            "rawText",
        }
        assert record["meds"] == [{"nameRaw": "med-24", "needsVerification": True}]

    def test_repeat_resolves_log_each_access_and_leave_token_alone(
        self, components: ShareComponents, patient_id: str, clock: Any
    ) -> None:
        issued = components.issuer.issue(patient_id)
        before = components.store.get(hash_token(issued.token))

        first = components.gate.resolve(issued.token, ip="203.0.113.7", user_agent="Safari")
        clock.advance(60)
        second = components.gate.resolve(issued.token, ip="203.0.113.7", user_agent="Safari")

        assert first.ok and second.ok
        assert first.records == second.records
        assert components.store.get(hash_token(issued.token)) == before

        entries = components.access_log.entries_for_token(issued.token_id)
        assert len(entries) == 2
        assert entries[0].accessed_at == clock()
        assert entries[0].ip_hash == hash_token("203.0.113.7")
        assert entries[0].user_agent_hash == hash_token("Safari")

    def test_failures_do_not_log_access(
        self, components: ShareComponents, patient_id: str, clock: Any
    ) -> None:
        issued = components.issuer.issue(patient_id)
        clock.advance(700)
        components.gate.resolve(issued.token)
        components.gate.resolve(generate_raw_token())
        components.gate.resolve("x")

        assert components.access_log.entries_for_token(issued.token_id) == []

    def test_missing_client_details_stay_empty(
        self, components: ShareComponents, patient_id: str
    ) -> None:
        issued = components.issuer.issue(patient_id)
        components.gate.resolve(issued.token)
        entry = components.access_log.entries_for_token(issued.token_id)[0]
        assert entry.ip_hash is None
        assert entry.user_agent_hash is None


class TestReissueScenario:
    def test_reissue_then_expire(self, components: ShareComponents, patient_id: str, clock: Any) -> None:
        t0 = clock()
        token_a = components.issuer.issue(patient_id)
        assert token_a.expires_at == t0 + timedelta(seconds=600)

        clock.now = t0 + timedelta(seconds=10)
        token_b = components.issuer.issue(patient_id)

        clock.now = t0 + timedelta(seconds=15)
        assert components.gate.resolve(token_a.token).outcome is ResolveOutcome.NOT_FOUND
        assert components.gate.resolve(token_b.token).ok

        clock.now = t0 + timedelta(seconds=611)
        assert components.gate.resolve(token_b.token).outcome is ResolveOutcome.EXPIRED


class _UnavailableRecords:
    def recent_for_patient(self, patient_id: str, limit: int) -> list[PrescriptionRecord]:
        raise StorageError("record store unavailable")


class TestResolveReadFailure:
    def test_record_failure_leaves_no_access_entry(self, patient_id: str, clock: Any) -> None:
        components = in_memory_components(Settings(), records=_UnavailableRecords(), clock=clock)
        issued = components.issuer.issue(patient_id)

        with pytest.raises(StorageError):
            components.gate.resolve(issued.token)

        assert components.access_log.entries_for_token(issued.token_id) == []


class TestPatientContext:
    def test_absent_questionnaire_and_profile_are_none(
        self, components: ShareComponents, patient_id: str
    ) -> None:
        issued = components.issuer.issue(patient_id)
        result = components.gate.resolve(issued.token)

        assert result.ok
        assert result.questionnaire is None
        assert result.patient is None

    def test_latest_questionnaire_and_profile_are_attached(
        self, record_store: InMemoryRecordStore, patient_id: str, clock: Any
    ) -> None:
        forms = InMemoryIntakeFormStore()
        forms.add(
            IntakeForm(
                patient_id=patient_id,
                chief_complaint="old complaint",
                course="no_change",
                adherence="yes",
                created_at=clock() - timedelta(days=30),
            )
        )
        forms.add(
            IntakeForm(
                patient_id=patient_id,
                chief_complaint="dizziness",
                course="improving",
                adherence="no",
                adherence_reason="nausea",
                created_at=clock() - timedelta(days=1),
                hospital_name="Riverside Clinic",
            )
        )
        profiles = InMemoryPatientProfileStore()
        profiles.put(PatientProfile(patient_id, birth_date=date(1980, 3, 15), blood_type="AB+"))
        components = in_memory_components(
            Settings(), records=record_store, intake_forms=forms, profiles=profiles, clock=clock
        )

        result = components.gate.resolve(components.issuer.issue(patient_id).token)

        assert result.questionnaire is not None
        assert result.questionnaire["chiefComplaint"] == "dizziness"
        assert result.questionnaire["hospitalName"] == "Riverside Clinic"
        assert result.questionnaire["medicationCompliance"] == "Could not take as prescribed - nausea"
        assert result.patient == {
            "age": 46,
            "bloodType": "AB+",
            "height": None,
            "weight": None,
            "allergies": None,
            "emergencyContact": None,
        }

    def test_other_patients_context_is_not_shown(
        self, record_store: InMemoryRecordStore, patient_id: str, clock: Any
    ) -> None:
        profiles = InMemoryPatientProfileStore()
        profiles.put(PatientProfile("someone-else", blood_type="O+"))
        components = in_memory_components(
            Settings(), records=record_store, profiles=profiles, clock=clock
        )

        result = components.gate.resolve(components.issuer.issue(patient_id).token)
        assert result.patient is None
