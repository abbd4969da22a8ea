"""The OAuth credential record persisted to disk and shared between processes.

Expiry is stored as ``expiry_date`` in epoch milliseconds, the same shape
other device-flow CLIs write to their ``oauth_creds.json``.
"""

import time
from dataclasses import dataclass, asdict
from typing import Any, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class OAuthCredentials:
    """An access token plus whatever is needed to renew it."""

    access_token: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    token_type: str = "Bearer"
    expiry_date: Optional[int] = None
    resource_url: Optional[str] = None

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def is_valid(self, buffer_ms: int = 0, at_ms: Optional[int] = None) -> bool:
        """True if the token stays usable for at least ``buffer_ms``.

        A record without an expiry date is never considered valid, since
        nothing tells us whether the server still accepts it.
        """
        if self.expiry_date is None:
            return False
        current = now_ms() if at_ms is None else at_ms
        return current < self.expiry_date - buffer_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the credential file, dropping absent fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Any) -> "OAuthCredentials":
        """Build a record from parsed JSON.

        Raises:
            ValueError: ``data`` is not an object or has no access token.
        """
        if not isinstance(data, dict):
            raise ValueError("credential data must be a JSON object")
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("credential data has no access_token")

        expiry = data.get("expiry_date")
        if expiry is not None and not isinstance(expiry, (int, float)):
            raise ValueError("expiry_date must be a number of milliseconds")

        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            token_type=data.get("token_type") or "Bearer",
            expiry_date=int(expiry) if expiry is not None else None,
            resource_url=data.get("resource_url") or None,
        )
