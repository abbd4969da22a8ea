"""PKCE (RFC 7636) verifier/challenge generation for the device flow."""

import base64
import hashlib
import secrets
from dataclasses import dataclass

CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCEPair:
    code_verifier: str
    code_challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """32 random bytes, base64url without padding (43 characters)."""
    return _b64url(secrets.token_bytes(32))


def code_challenge_from_verifier(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce_pair() -> PKCEPair:
    """Fresh verifier and matching S256 challenge. Never persist the verifier."""
    verifier = generate_code_verifier()
    return PKCEPair(verifier, code_challenge_from_verifier(verifier))
