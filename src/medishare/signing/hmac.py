"""HMAC-SHA256 signatures for the patient session header.

The identity layer (out of this service) signs ``{"patient_id": ...}`` with
the shared session secret and sends the hex digest as ``x-patient-session``.
"""

from __future__ import annotations

import hashlib
import hmac as hmac_mod
from typing import Any

from medishare.signing.canonical import canonicalise

__all__ = ["sign_payload", "sign_session", "verify_session", "verify_signature"]


def sign_payload(payload: dict[str, Any], secret: str) -> str:
    """Sign a payload with HMAC-SHA256 and return the hex digest."""
    canonical = canonicalise(payload)
    return hmac_mod.new(secret.encode(), canonical.encode(), hashlib.sha256).hexdigest()


def verify_signature(payload: dict[str, Any], secret: str, signature: str) -> bool:
    if not signature or not secret:
        return False
    return hmac_mod.compare_digest(sign_payload(payload, secret), signature)


def sign_session(patient_id: str, secret: str) -> str:
    return sign_payload({"patient_id": patient_id}, secret)


def verify_session(patient_id: str, secret: str, signature: str) -> bool:
    """True when ``signature`` was issued for exactly this patient."""
    return verify_signature({"patient_id": patient_id}, secret, signature)
