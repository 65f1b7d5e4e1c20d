"""Tests for session signing."""

from __future__ import annotations

from medishare.signing.canonical import canonicalise
from medishare.signing.hmac import sign_payload, sign_session, verify_session, verify_signature


class TestCanonicalise:
    def test_sorted_keys(self) -> None:
        assert canonicalise({"z": 1, "a": 2}) == '{"a":2,"z":1}'

    def test_none_values_dropped(self) -> None:
        assert canonicalise({"patient_id": "p", "facility_id": None}) == '{"patient_id":"p"}'


class TestSignatures:
    def test_sign_and_verify(self) -> None:
        payload = {"patient_id": "P1"}
        sig = sign_payload(payload, "secret")
        assert verify_signature(payload, "secret", sig)

    def test_wrong_secret_fails(self) -> None:
        sig = sign_payload({"patient_id": "P1"}, "secret-a")
        assert not verify_signature({"patient_id": "P1"}, "secret-b", sig)

    def test_empty_secret_never_verifies(self) -> None:
        sig = sign_payload({"patient_id": "P1"}, "")
        assert not verify_signature({"patient_id": "P1"}, "", sig)

    def test_session_bound_to_patient(self, session_secret: str) -> None:
        sig = sign_session("P1", session_secret)
        assert verify_session("P1", session_secret, sig)
        assert not verify_session("P2", session_secret, sig)

    def test_missing_signature_fails(self, session_secret: str) -> None:
        assert not verify_session("P1", session_secret, "")

    def test_signature_is_hex_string(self) -> None:
        sig = sign_session("P1", "s")
        assert len(sig) == 64
        assert all(c in "0123456789abcdef" for c in sig)
