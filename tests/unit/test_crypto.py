"""Tests for raw token generation and hashing."""

from __future__ import annotations

import re

import pytest

from medishare.sharing.crypto import generate_raw_token, hash_identifier, hash_token

_URL_SAFE = re.compile(r"^[A-Za-z0-9_-]+$")


class TestGenerateRawToken:
    def test_url_safe_alphabet(self) -> None:
        assert _URL_SAFE.match(generate_raw_token())

    def test_256_bits_encodes_to_43_chars(self) -> None:
        assert len(generate_raw_token(32)) == 43

    def test_rejects_short_entropy(self) -> None:
        with pytest.raises(ValueError, match="entropy"):
            generate_raw_token(16)

    def test_tokens_do_not_repeat(self) -> None:
        tokens = {generate_raw_token() for _ in range(500)}
        assert len(tokens) == 500


class TestHashToken:
    def test_deterministic(self) -> None:
        raw = generate_raw_token()
        assert hash_token(raw) == hash_token(raw)

    def test_distinct_tokens_distinct_hashes(self) -> None:
        hashes = {hash_token(generate_raw_token()) for _ in range(500)}
        assert len(hashes) == 500

    def test_known_vector(self) -> None:
        # base64url(sha256("abc")) without padding
        assert hash_token("abc") == "ungWv48Bz-pBQUDeXa4iI7ADYaOWF3qctBD_YfIAFa0"

    def test_hash_is_not_the_token(self) -> None:
        raw = generate_raw_token()
        assert hash_token(raw) != raw
        assert _URL_SAFE.match(hash_token(raw))


class TestHashIdentifier:
    def test_none_and_empty_stay_none(self) -> None:
        assert hash_identifier(None) is None
        assert hash_identifier("") is None

    def test_ip_is_hashed(self) -> None:
        hashed = hash_identifier("203.0.113.7")
        assert hashed is not None
        assert "203.0.113.7" not in hashed
        assert hashed == hash_token("203.0.113.7")
