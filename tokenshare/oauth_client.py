"""HTTP client for the OAuth device-authorization and token endpoints.

The client holds no credential state. Each call builds a form-encoded
request, sends it with httpx, and turns the response into a typed result
or raises ``ProtocolError``. Transport failures propagate as
``httpx.TransportError`` so callers can tell them apart from server
rejections.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from .auth_store import CredentialStore
from .config import AuthSettings
from .credentials import OAuthCredentials, now_ms
from .errors import ProtocolError
from .pkce import CHALLENGE_METHOD

_log = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


@dataclass(frozen=True)
class DeviceAuthorization:
    """A device-authorization session. Lives only for one login attempt."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int
    code_verifier: str = ""

    def public_info(self) -> dict[str, Any]:
        """Fields safe to hand to a UI (no device code or verifier)."""
        return {
            "verification_uri": self.verification_uri,
            "verification_uri_complete": self.verification_uri_complete,
            "user_code": self.user_code,
            "expires_in": self.expires_in,
        }


@dataclass(frozen=True)
class TokenResponse:
    """Successful answer from the token endpoint (poll or refresh)."""

    access_token: Optional[str]
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    resource_url: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "TokenResponse":
        """Parse a token endpoint body.

        Raises:
            ProtocolError: ``expires_in`` is present but not a number.
        """
        expires_in = data.get("expires_in")
        try:
            expires_in = int(expires_in) if expires_in else None
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"Invalid expires_in in token response: {expires_in!r}") from exc
        return cls(
            access_token=data.get("access_token") or None,
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            resource_url=data.get("resource_url") or None,
            scope=data.get("scope") or None,
        )

    def to_credentials(
        self,
        previous_refresh_token: Optional[str] = None,
        at_ms: Optional[int] = None,
    ) -> OAuthCredentials:
        """Credential record for this response.

        Keeps ``previous_refresh_token`` when the server did not rotate it.
        """
        if not self.access_token:
            raise ValueError("token response has no access_token")
        issued = now_ms() if at_ms is None else at_ms
        return OAuthCredentials(
            access_token=self.access_token,
            refresh_token=self.refresh_token or previous_refresh_token,
            id_token=self.id_token,
            token_type=self.token_type,
            expiry_date=issued + self.expires_in * 1000 if self.expires_in else None,
            resource_url=self.resource_url,
        )


@dataclass(frozen=True)
class TokenPending:
    """The user has not approved yet. ``slow_down`` asks for a longer interval."""

    slow_down: bool = False


PollResult = Union[TokenResponse, TokenPending]


class OAuthClient:
    """Stateless wrapper around the device-code and token endpoints."""

    def __init__(
        self,
        settings: Optional[AuthSettings] = None,
        store: Optional[CredentialStore] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or AuthSettings()
        self.store = store
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=self.settings.http_timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "OAuthClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def request_device_authorization(
        self,
        scope: str,
        code_challenge: str,
        method: str = CHALLENGE_METHOD,
    ) -> DeviceAuthorization:
        """Start a device-authorization session.

        Raises:
            ProtocolError: Non-success status or an error-shaped body.
        """
        response = await self._http.post(
            self.settings.device_code_url,
            data={
                "client_id": self.settings.client_id,
                "scope": scope,
                "code_challenge": code_challenge,
                "code_challenge_method": method,
            },
            headers={"Accept": "application/json", "x-request-id": str(uuid.uuid4())},
        )

        if not response.is_success:
            raise _error_from_response(response, "Device authorization failed")

        data = _json_body(response)
        if not data.get("device_code"):
            raise _error_from_body(data, response.status_code, "Device authorization failed")

        _log.debug("Device authorization issued, expires in %ss", data.get("expires_in"))
        return DeviceAuthorization(
            device_code=data["device_code"],
            user_code=data.get("user_code", ""),
            verification_uri=data.get("verification_uri", ""),
            verification_uri_complete=data.get("verification_uri_complete")
            or data.get("verification_uri", ""),
            expires_in=int(data.get("expires_in") or 0),
        )

    async def poll_device_token(self, device_code: str, code_verifier: str) -> PollResult:
        """Ask whether the user has approved the device code yet.

        Follows RFC 8628: 400 ``authorization_pending`` and 429 ``slow_down``
        are pending answers, not failures.

        Raises:
            ProtocolError: Any other rejection, with ``status`` set for
                classification by the caller.
        """
        response = await self._http.post(
            self.settings.token_url,
            data={
                "grant_type": DEVICE_CODE_GRANT_TYPE,
                "client_id": self.settings.client_id,
                "device_code": device_code,
                "code_verifier": code_verifier,
            },
            headers={"Accept": "application/json"},
        )

        if not response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                error = data.get("error")
                if response.status_code == 400 and error == "authorization_pending":
                    return TokenPending()
                if response.status_code == 429 and error == "slow_down":
                    return TokenPending(slow_down=True)
            raise _error_from_response(response, "Device token poll failed")

        data = _json_body(response)
        if data.get("access_token"):
            return TokenResponse.from_json(data)
        if data.get("status") == "pending":
            return TokenPending(slow_down=bool(data.get("slowDown") or data.get("slow_down")))
        raise _error_from_body(data, response.status_code, "Device token poll failed")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new access token.

        A 400 means the refresh token is no longer accepted; the stored
        credentials are deleted before the error is raised so the next
        caller goes straight to re-authorization.

        Raises:
            ProtocolError: The server rejected the refresh.
        """
        response = await self._http.post(
            self.settings.token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.settings.client_id,
            },
            headers={"Accept": "application/json"},
        )

        if response.status_code == 400:
            if self.store is not None:
                self.store.clear()
            raise ProtocolError(
                "Refresh token expired or invalid. Please log in again.",
                status=400,
                error=_error_field(response, "error"),
                error_description=_error_field(response, "error_description"),
            )
        if not response.is_success:
            raise _error_from_response(response, "Token refresh failed")

        data = _json_body(response)
        if data.get("error"):
            raise _error_from_body(data, response.status_code, "Token refresh failed")
        return TokenResponse.from_json(data)


# --- Internal helpers ---


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise ProtocolError(
            f"Invalid JSON from {response.request.url}: {response.text[:200]}",
            status=response.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise ProtocolError("Unexpected response shape", status=response.status_code)
    return data


def _error_field(response: httpx.Response, field: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return ""
    return str(data.get(field) or "") if isinstance(data, dict) else ""


def _error_from_body(data: dict[str, Any], status: int, prefix: str) -> ProtocolError:
    error = str(data.get("error") or "unknown_error")
    description = str(data.get("error_description") or "No details provided")
    return ProtocolError(
        f"{prefix}: {error} - {description}",
        status=status,
        error=error,
        error_description=description,
    )


def _error_from_response(response: httpx.Response, prefix: str) -> ProtocolError:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return _error_from_body(data, response.status_code, f"{prefix} ({response.status_code})")
    return ProtocolError(
        f"{prefix}: {response.status_code} {response.reason_phrase}. Response: {response.text[:200]}",
        status=response.status_code,
    )
