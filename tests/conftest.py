"""Shared fixtures for unit and integration tests."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from medishare.settings import Settings
from medishare.sharing.components import ShareComponents, in_memory_components
from medishare.storage.records import InMemoryRecordStore, MedItem, PrescriptionRecord

T0 = datetime(2026, 3, 15, 9, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock; call it to read the time."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def patient_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture()
def facility_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture()
def session_secret() -> str:
    return "test-session-secret-do-not-use-in-production"


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        pg_dsn="",
        use_in_memory_store=True,
        auth_enabled=False,
        environment="dev",
    )


@pytest.fixture()
def record_store(patient_id: str) -> InMemoryRecordStore:
    """25 records for ``patient_id``, one hour apart, plus one for someone else."""
    store = InMemoryRecordStore()
    for i in range(25):
        store.add(
            PrescriptionRecord(
                id=f"REC-{i:02d}",
                patient_id=patient_id,
                record_type="prescription",
                created_at=T0 - timedelta(hours=25 - i),
                chief_complaint="headache" if i % 2 else None,
                meds=(MedItem(name_raw=f"med-{i}", needs_verification=i % 3 == 0),),
            )
        )
    store.add(
        PrescriptionRecord(
            id="REC-OTHER",
            patient_id=str(uuid.uuid4()),
            record_type="dispensing_record",
            created_at=T0,
        )
    )
    return store


@pytest.fixture()
def components(
    test_settings: Settings, record_store: InMemoryRecordStore, clock: FakeClock
) -> ShareComponents:
    return in_memory_components(test_settings, records=record_store, clock=clock)
