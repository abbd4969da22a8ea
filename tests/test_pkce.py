"""Tests for PKCE helpers."""

import base64
import hashlib

from tokenshare.pkce import code_challenge_from_verifier, generate_pkce_pair


def test_verifier_is_unpadded_base64url_of_32_bytes():
    pair = generate_pkce_pair()
    assert len(pair.code_verifier) == 43
    assert "=" not in pair.code_verifier
    assert "+" not in pair.code_verifier and "/" not in pair.code_verifier


def test_challenge_is_sha256_of_verifier():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    expected = base64.urlsafe_b64encode(
        hashlib.sha256(verifier.encode()).digest()
    ).decode().rstrip("=")
    assert code_challenge_from_verifier(verifier) == expected
    # RFC 7636 appendix B
    assert expected == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_pairs_are_fresh():
    assert generate_pkce_pair().code_verifier != generate_pkce_pair().code_verifier
