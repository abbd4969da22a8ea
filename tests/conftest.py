"""Shared fixtures for tokenshare tests."""

import asyncio
from typing import Optional

import pytest

from tokenshare.auth_store import CredentialStore
from tokenshare.config import AuthSettings
from tokenshare.credentials import OAuthCredentials, now_ms
from tokenshare.lock import StaleLockPolicy
from tokenshare.oauth_client import TokenResponse
from tokenshare.token_manager import SharedTokenManager


def valid_credentials(**overrides) -> OAuthCredentials:
    data = {
        "access_token": "valid_access_token",
        "refresh_token": "valid_refresh_token",
        "token_type": "Bearer",
        "expiry_date": now_ms() + 3_600_000,
        "resource_url": "https://api.example.com",
    }
    data.update(overrides)
    return OAuthCredentials(**data)


def expired_credentials(**overrides) -> OAuthCredentials:
    data = {
        "access_token": "expired_access_token",
        "refresh_token": "expired_refresh_token",
        "expiry_date": now_ms() - 3_600_000,
    }
    data.update(overrides)
    return valid_credentials(**data)


class FakeRefreshClient:
    """Stands in for OAuthClient.refresh_access_token.

    Set ``gate`` to hold the refresh until the test releases it.
    """

    def __init__(
        self,
        response: Optional[TokenResponse] = None,
        error: Optional[BaseException] = None,
    ):
        self.response = response or TokenResponse(
            access_token="fresh_access_token",
            expires_in=3600,
            refresh_token="new_refresh_token",
            resource_url="https://api.example.com",
        )
        self.error = error
        self.calls: list[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        self.calls.append(refresh_token)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def settings(tmp_path) -> AuthSettings:
    return AuthSettings(
        base_url="https://auth.example.com",
        credentials_path=tmp_path / ".qwen" / "oauth_creds.json",
        lock_max_attempts=5,
        lock_attempt_interval=0.01,
        poll_interval=0.05,
        max_poll_interval=0.2,
        poll_tick=0.01,
        suppress_browser=True,
    )


@pytest.fixture
def store(settings) -> CredentialStore:
    return CredentialStore(settings.credentials_path, StaleLockPolicy(settings.lock_stale_after))


@pytest.fixture
def manager(store, settings) -> SharedTokenManager:
    return SharedTokenManager(store, settings)


@pytest.fixture
def refresh_client() -> FakeRefreshClient:
    return FakeRefreshClient()
