"""Token issuer: mint, revoke-then-insert, hand the raw token back once."""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from medishare.errors import ShareValidationError
from medishare.logging import get_logger
from medishare.sharing.clock import utcnow
from medishare.sharing.crypto import DEFAULT_TOKEN_BYTES, generate_raw_token, hash_token
from medishare.sharing.models import IssuedToken, ShareToken

if TYPE_CHECKING:
    from medishare.sharing.clock import Clock
    from medishare.sharing.revocation import RevocationManager
    from medishare.storage.token_store import TokenStoreProtocol

__all__ = ["DEFAULT_TTL", "TokenIssuer", "validate_uuid"]

DEFAULT_TTL = timedelta(minutes=10)

log = get_logger(component="issuer")


def validate_uuid(value: str | None, field_name: str) -> str:
    """Return the canonical lowercase form, or raise ``ShareValidationError``."""
    if not isinstance(value, str) or not value:
        msg = f"{field_name} is required"
        raise ShareValidationError(msg)
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        msg = f"{field_name} must be a UUID"
        raise ShareValidationError(msg) from None
    # uuid.UUID also accepts braces / urn: prefixes / no hyphens; ids here are canonical only
    if str(parsed) != value.lower():
        msg = f"{field_name} must be a UUID"
        raise ShareValidationError(msg)
    return str(parsed)


class TokenIssuer:
    """Issues short-lived share tokens.

    The revoke and the insert run inside one ``serialized`` unit, so two
    concurrent issues for the same patient cannot both leave a token active,
    and a failed insert leaves the previous token untouched.
    """

    def __init__(
        self,
        store: TokenStoreProtocol,
        revocations: RevocationManager,
        *,
        ttl: timedelta = DEFAULT_TTL,
        token_bytes: int = DEFAULT_TOKEN_BYTES,
        clock: Clock = utcnow,
    ) -> None:
        if ttl <= timedelta(0):
            msg = "ttl must be positive"
            raise ValueError(msg)
        self._store = store
        self._revocations = revocations
        self._ttl = ttl
        self._token_bytes = token_bytes
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, patient_id: str, facility_id: str | None = None) -> IssuedToken:
        """Mint a token for ``patient_id``, revoking any still-active one.

        Raises:
            ShareValidationError: malformed ids; nothing written.
            StorageError: the unit did not commit; the caller may retry the
                whole call (which revokes whatever this call would have).
        """
        patient_id = validate_uuid(patient_id, "patientId")
        if facility_id is not None:
            facility_id = validate_uuid(facility_id, "facilityId")

        raw_token = generate_raw_token(self._token_bytes)
        with self._store.serialized(patient_id) as unit:
            revoked = self._revocations.revoke_active_for_patient(patient_id, writer=unit)
            issued_at = self._clock()
            token = ShareToken(
                patient_id=patient_id,
                facility_id=facility_id,
                token_hash=hash_token(raw_token),
                issued_at=issued_at,
                expires_at=issued_at + self._ttl,
            )
            unit.insert(token)

        log.info(
            "share_token_issued",
            patient_id=patient_id,
            facility_id=facility_id,
            token_id=token.id,
            revoked_count=revoked,
            expires_at=token.expires_at.isoformat(),
        )
        return IssuedToken(
            token=raw_token,
            expires_at=token.expires_at,
            token_id=token.id,
            revoked_count=revoked,
        )
