"""Revocation: keeps at most one active share token per patient."""

from __future__ import annotations

from typing import TYPE_CHECKING

from medishare.logging import get_logger
from medishare.sharing.clock import utcnow

if TYPE_CHECKING:
    from medishare.sharing.clock import Clock
    from medishare.storage.token_store import TokenStoreProtocol, TokenWriter

__all__ = ["RevocationManager"]

log = get_logger(component="revocation")


class RevocationManager:
    """Writes ``revoked_at`` on a patient's active tokens.

    Expiry needs no active component: it is a read-time comparison in the
    access gate. Revocation is the only write a stored token ever receives.
    """

    def __init__(self, store: TokenStoreProtocol, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    def revoke_active_for_patient(
        self,
        patient_id: str,
        *,
        writer: TokenWriter | None = None,
    ) -> int:
        """Revoke every active token for ``patient_id``.

        Args:
            patient_id: Owning patient.
            writer: An open unit from ``TokenStore.serialized`` (the issuer's
                revoke-then-insert). Without one, a unit is opened here, e.g.
                for logout.

        Returns:
            Number of tokens revoked.
        """
        now = self._clock()
        if writer is not None:
            count = writer.revoke_active_for_patient(patient_id, now)
        else:
            with self._store.serialized(patient_id) as unit:
                count = unit.revoke_active_for_patient(patient_id, now)

        if count:
            log.info("share_tokens_revoked", patient_id=patient_id, count=count)
        return count
