"""Share-token endpoints: patient issue / revoke, clinician resolve."""

from __future__ import annotations

import asyncio
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from medishare.api.routes import health
from medishare.sharing.issuer import validate_uuid
from medishare.sharing.models import ResolveOutcome
from medishare.signing.hmac import verify_session

if TYPE_CHECKING:
    from medishare.sharing.components import ShareComponents

router = APIRouter()

__all__ = ["SESSION_HEADER", "router"]

SESSION_HEADER = "x-patient-session"

_FAILURES: dict[ResolveOutcome, tuple[int, str]] = {
    ResolveOutcome.MALFORMED: (status.HTTP_400_BAD_REQUEST, "Invalid share token"),
    ResolveOutcome.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Share token not found"),
    ResolveOutcome.EXPIRED: (status.HTTP_410_GONE, "Share token expired"),
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ShareTokenIn(_CamelModel):
    patient_id: str = Field(alias="patientId", min_length=1)
    facility_id: str | None = Field(default=None, alias="facilityId")


class ShareTokenOut(_CamelModel):
    """The raw token appears here once and nowhere else."""

    token: str
    expires_at: datetime = Field(alias="expiresAt")


class RevokeIn(_CamelModel):
    patient_id: str = Field(alias="patientId", min_length=1)


class RevokeOut(BaseModel):
    revoked: int


class SharedRecordsOut(_CamelModel):
    patient_id: str = Field(alias="patientId")
    records: list[dict[str, Any]]
    questionnaire: dict[str, Any] | None = None
    patient: dict[str, Any] | None = None


def _components(request: Request) -> ShareComponents:
    components = getattr(request.app.state, "share", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Share storage not configured (set MEDISHARE_PG_DSN)",
        )
    return components  # type: ignore[no-any-return]


def _require_patient_session(request: Request, patient_id: str) -> None:
    """Session layer signs the canonical patient id; reject anything else."""
    settings = request.app.state.settings
    if not settings.auth_enabled:
        return
    signature = request.headers.get(SESSION_HEADER, "")
    if not verify_session(patient_id, settings.session_secret, signature):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")


@router.post(
    "/api/share-tokens",
    response_model=ShareTokenOut,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a short-lived share token for a clinician visit",
    operation_id="issue_share_token",
)
async def issue_share_token(body: ShareTokenIn, request: Request) -> ShareTokenOut:
    """Revokes the patient's previous token and returns a new raw token once."""
    components = _components(request)
    patient_id = validate_uuid(body.patient_id, "patientId")
    _require_patient_session(request, patient_id)

    issued = await asyncio.to_thread(
        partial(components.issuer.issue, patient_id, body.facility_id)
    )
    health.record_token_issued()
    health.record_revocations(issued.revoked_count)
    return ShareTokenOut(token=issued.token, expires_at=issued.expires_at)


@router.delete(
    "/api/share-tokens",
    response_model=RevokeOut,
    summary="Revoke the patient's active share token",
    operation_id="revoke_share_tokens",
)
async def revoke_share_tokens(body: RevokeIn, request: Request) -> RevokeOut:
    """Proactive revocation, e.g. on patient logout."""
    components = _components(request)
    patient_id = validate_uuid(body.patient_id, "patientId")
    _require_patient_session(request, patient_id)

    revoked = await asyncio.to_thread(
        partial(components.revocations.revoke_active_for_patient, patient_id)
    )
    health.record_revocations(revoked)
    return RevokeOut(revoked=revoked)


@router.get(
    "/share/{token}",
    response_model=SharedRecordsOut,
    summary="Clinician view of a patient's recent records",
    operation_id="resolve_share_token",
)
async def resolve_share_token(token: str, request: Request) -> SharedRecordsOut:
    """No login: the token is the capability."""
    components = _components(request)
    result = await asyncio.to_thread(
        partial(
            components.gate.resolve,
            token,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    )
    health.record_resolution(result.outcome.value)

    if not result.ok:
        status_code, detail = _FAILURES[result.outcome]
        raise HTTPException(status_code=status_code, detail=detail)

    return SharedRecordsOut(
        patient_id=result.patient_id or "",
        records=result.records,
        questionnaire=result.questionnaire,
        patient=result.patient,
    )
