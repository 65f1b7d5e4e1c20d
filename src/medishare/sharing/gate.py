"""Access gate: the clinician's unauthenticated read path."""

from __future__ import annotations

from typing import TYPE_CHECKING

from medishare.logging import get_logger
from medishare.sharing.clock import utcnow
from medishare.sharing.crypto import hash_identifier, hash_token
from medishare.sharing.models import AccessLogEntry, ResolveOutcome, ResolveResult, TokenStatus

if TYPE_CHECKING:
    from medishare.sharing.clock import Clock
    from medishare.storage.access_log import AccessLogProtocol
    from medishare.storage.profiles import IntakeFormStoreProtocol, PatientProfileStoreProtocol
    from medishare.storage.records import RecordStoreProtocol
    from medishare.storage.token_store import TokenStoreProtocol

__all__ = ["AccessGate", "DEFAULT_MIN_TOKEN_LENGTH", "DEFAULT_RECORD_LIMIT"]

DEFAULT_MIN_TOKEN_LENGTH = 10
DEFAULT_RECORD_LIMIT = 20

log = get_logger(component="access_gate")


class AccessGate:
    """Resolves raw tokens into a bounded, newest-first record view.

    Resolution never writes to the token. A valid token resolves as many
    times as the clinician reopens the page until it expires; each success
    appends one access-log entry. The latest intake form and the patient
    profile ride along when their stores are wired, and are ``None``
    otherwise.
    """

    def __init__(
        self,
        store: TokenStoreProtocol,
        access_log: AccessLogProtocol,
        records: RecordStoreProtocol,
        *,
        intake_forms: IntakeFormStoreProtocol | None = None,
        profiles: PatientProfileStoreProtocol | None = None,
        min_token_length: int = DEFAULT_MIN_TOKEN_LENGTH,
        record_limit: int = DEFAULT_RECORD_LIMIT,
        collapse_expired: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._access_log = access_log
        self._records = records
        self._intake_forms = intake_forms
        self._profiles = profiles
        self._min_token_length = min_token_length
        self._record_limit = record_limit
        self._collapse_expired = collapse_expired
        self._clock = clock

    def resolve(
        self,
        raw_token: str,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> ResolveResult:
        """Classify ``raw_token`` and, when valid, return the patient's records.

        Order: too short → MALFORMED (no lookup); unknown or revoked →
        NOT_FOUND; ``expires_at <= now`` → EXPIRED; otherwise OK. The access
        is logged only after every read for the view has succeeded.
        """
        if not raw_token or len(raw_token) < self._min_token_length:
            return ResolveResult(ResolveOutcome.MALFORMED)

        token = self._store.get(hash_token(raw_token))
        if token is None:
            return ResolveResult(ResolveOutcome.NOT_FOUND)

        now = self._clock()
        status = token.status(now)
        if status is TokenStatus.REVOKED:
            log.info("share_token_revoked_lookup", token_id=token.id)
            return ResolveResult(ResolveOutcome.NOT_FOUND)
        if status is TokenStatus.EXPIRED:
            log.info("share_token_expired_lookup", token_id=token.id)
            if self._collapse_expired:
                return ResolveResult(ResolveOutcome.NOT_FOUND)
            return ResolveResult(ResolveOutcome.EXPIRED)

        records = self._records.recent_for_patient(token.patient_id, self._record_limit)
        form = None
        if self._intake_forms is not None:
            form = self._intake_forms.latest_for_patient(token.patient_id)
        profile = None
        if self._profiles is not None:
            profile = self._profiles.get(token.patient_id)

        self._access_log.append(
            AccessLogEntry(
                share_token_id=token.id,
                accessed_at=now,
                ip_hash=hash_identifier(ip),
                user_agent_hash=hash_identifier(user_agent),
            )
        )
        log.info(
            "share_token_resolved",
            token_id=token.id,
            patient_id=token.patient_id,
            record_count=len(records),
        )
        return ResolveResult(
            ResolveOutcome.OK,
            patient_id=token.patient_id,
            records=[r.to_view() for r in records[: self._record_limit]],
            questionnaire=form.to_view() if form else None,
            patient=profile.to_view(now.date()) if profile else None,
        )
