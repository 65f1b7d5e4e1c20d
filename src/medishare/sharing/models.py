"""Share-token domain types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

__all__ = [
    "AccessLogEntry",
    "IssuedToken",
    "ResolveOutcome",
    "ResolveResult",
    "ShareToken",
    "TokenStatus",
]


class TokenStatus(StrEnum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ResolveOutcome(StrEnum):
    """What a clinician's resolve attempt produced.

    Revoked tokens are reported as ``NOT_FOUND``; there is no public
    "revoked" outcome.
    """

    OK = "ok"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ShareToken:
    """Stored capability record. Only ``token_hash`` identifies the secret."""

    patient_id: str
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    facility_id: str | None = None
    revoked_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def status(self, now: datetime) -> TokenStatus:
        if self.revoked_at is not None:
            return TokenStatus.REVOKED
        if self.expires_at <= now:
            return TokenStatus.EXPIRED
        return TokenStatus.ACTIVE

    def is_active(self, now: datetime) -> bool:
        return self.status(now) is TokenStatus.ACTIVE

    def revoked(self, at: datetime) -> ShareToken:
        """Copy with ``revoked_at`` set; an existing revocation is kept."""
        if self.revoked_at is not None:
            return self
        return replace(self, revoked_at=at)


@dataclass(frozen=True)
class AccessLogEntry:
    """One successful resolution. Client identifiers are hashed."""

    share_token_id: str
    accessed_at: datetime
    ip_hash: str | None = None
    user_agent_hash: str | None = None


@dataclass(frozen=True)
class IssuedToken:
    """Returned once by the issuer; the raw token is not retrievable later."""

    token: str = field(repr=False)
    expires_at: datetime
    token_id: str
    revoked_count: int = 0


@dataclass(frozen=True)
class ResolveResult:
    outcome: ResolveOutcome
    patient_id: str | None = None
    records: list[dict[str, Any]] = field(default_factory=list)
    questionnaire: dict[str, Any] | None = None
    patient: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is ResolveOutcome.OK
