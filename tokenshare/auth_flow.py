"""Device-authorization login flow.

States: idle -> requesting -> polling -> one of success, error, timeout,
rate_limited or cancelled. Every terminal state except success publishes a
progress event with a message the UI can show as-is.

Cancellation is cooperative: ``cancel()`` (or a cancel published on the
channel) is checked before each poll and every ``poll_tick`` seconds while
waiting between polls.
"""

import asyncio
import logging
import math
import webbrowser
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

import httpx

from .config import AuthSettings
from .credentials import OAuthCredentials
from .errors import DeviceFlowError, ProtocolError, TokenError, TokenManagerError
from .events import AuthEventChannel, AuthStatus, AuthTopic, AuthUriInfo
from .oauth_client import DeviceAuthorization, OAuthClient, TokenResponse
from .pkce import CHALLENGE_METHOD, generate_pkce_pair
from .token_manager import SharedTokenManager
from .ui.theme import console, CYAN, VIOLET

_log = logging.getLogger(__name__)

MSG_SUCCESS = "Authentication successful! Access token obtained."
MSG_WAITING = "Waiting for authorization..."
MSG_CANCELLED = "Authentication cancelled by user."
MSG_EXPIRED = "Device code expired or invalid, please restart the authorization process."
MSG_RATE_LIMITED = (
    "Too many requests. The server is rate limiting our requests. "
    "Please select a different authentication method or try again later."
)
MSG_TIMEOUT = "Authorization timeout, please restart the process."


class FlowState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    POLLING = "polling"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    CANCELLED = "cancelled"


_FAILURE_REASONS = {
    FlowState.ERROR: "error",
    FlowState.TIMEOUT: "timeout",
    FlowState.RATE_LIMITED: "rate_limit",
    FlowState.CANCELLED: "cancelled",
}


@dataclass(frozen=True)
class AuthResult:
    """Outcome of one device-flow run."""

    state: FlowState
    credentials: Optional[OAuthCredentials] = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.state == FlowState.SUCCESS

    @property
    def reason(self) -> Optional[str]:
        """``timeout``, ``cancelled``, ``error`` or ``rate_limit``; None on success."""
        return _FAILURE_REASONS.get(self.state)


class DeviceAuthFlow:
    """One login attempt. Create a new instance per attempt."""

    def __init__(
        self,
        client: OAuthClient,
        manager: SharedTokenManager,
        channel: Optional[AuthEventChannel] = None,
        settings: Optional[AuthSettings] = None,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ):
        self.client = client
        self.manager = manager
        self.channel = channel or AuthEventChannel()
        self.settings = settings or client.settings
        self.state = FlowState.IDLE
        self.wait_history: list[float] = []
        self._open_browser = open_browser
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    async def run(self) -> AuthResult:
        """Run the flow to a terminal state. Never raises for protocol failures."""
        if self.state != FlowState.IDLE:
            raise RuntimeError("DeviceAuthFlow instances are single-use")

        subscription = self.channel.on_cancel(lambda _: self.cancel())
        try:
            return await self._run()
        finally:
            subscription.unsubscribe()

    async def _run(self) -> AuthResult:
        self.state = FlowState.REQUESTING
        pkce = generate_pkce_pair()
        try:
            session = await self.client.request_device_authorization(
                self.settings.scope, pkce.code_challenge, CHALLENGE_METHOD,
            )
        except (ProtocolError, httpx.HTTPError) as exc:
            _log.warning("Device authorization request failed: %s", exc)
            return self._fail(FlowState.ERROR, AuthStatus.ERROR, f"Device authorization failed: {exc}")
        session = replace(session, code_verifier=pkce.code_verifier)

        self.channel.publish_auth_uri(AuthUriInfo(**session.public_info()))
        self._show_verification(session)

        self.state = FlowState.POLLING
        self.channel.publish_progress(AuthStatus.POLLING, MSG_WAITING)
        return await self._poll(session)

    async def _poll(self, session: DeviceAuthorization) -> AuthResult:
        base_interval = self.settings.poll_interval
        interval = base_interval
        max_attempts = max(1, math.ceil(session.expires_in / base_interval))

        for attempt in range(max_attempts):
            if self._cancelled:
                return self._cancel_result()

            try:
                _log.debug("Polling for token (attempt %d/%d)", attempt + 1, max_attempts)
                result = await self.client.poll_device_token(
                    session.device_code, session.code_verifier,
                )
            except ProtocolError as exc:
                if exc.status == 401:
                    return self._fail(FlowState.ERROR, AuthStatus.ERROR, MSG_EXPIRED)
                if exc.status == 429:
                    return self._fail(FlowState.RATE_LIMITED, AuthStatus.RATE_LIMIT, MSG_RATE_LIMITED)
                interval = self._back_off(interval)
                self._transient(exc, attempt, max_attempts)
            except httpx.TransportError as exc:
                interval = self._back_off(interval)
                self._transient(exc, attempt, max_attempts)
            else:
                if isinstance(result, TokenResponse):
                    return await self._succeed(result)
                if result.slow_down:
                    interval = self._back_off(interval)
                    _log.debug("Server asked to slow down, interval now %.1fs", interval)
                else:
                    interval = base_interval
                self.channel.publish_progress(
                    AuthStatus.POLLING, f"Polling... (attempt {attempt + 1}/{max_attempts})",
                )

            if await self._wait(interval):
                return self._cancel_result()

        return self._fail(FlowState.TIMEOUT, AuthStatus.TIMEOUT, MSG_TIMEOUT)

    async def _succeed(self, response: TokenResponse) -> AuthResult:
        credentials = response.to_credentials()
        try:
            await self.manager.store_credentials(credentials)
        except TokenManagerError as exc:
            _log.warning("Could not persist new credentials: %s", exc)
            return self._fail(FlowState.ERROR, AuthStatus.ERROR, f"Failed to save credentials: {exc}")

        self.state = FlowState.SUCCESS
        self.channel.publish_progress(AuthStatus.SUCCESS, MSG_SUCCESS)
        return AuthResult(FlowState.SUCCESS, credentials, MSG_SUCCESS)

    async def _wait(self, interval: float) -> bool:
        """Sleep ``interval`` in short ticks. True if cancelled meanwhile."""
        self.wait_history.append(interval)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + interval
        while not self._cancelled:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.settings.poll_tick, remaining))
        return self._cancelled

    def _back_off(self, interval: float) -> float:
        return min(interval * self.settings.slow_down_factor, self.settings.max_poll_interval)

    def _transient(self, exc: Exception, attempt: int, max_attempts: int) -> None:
        _log.warning("Error polling for token: %s", exc)
        self.channel.publish_progress(
            AuthStatus.POLLING,
            f"Error polling for token, retrying (attempt {attempt + 1}/{max_attempts})",
        )

    def _fail(self, state: FlowState, status: AuthStatus, message: str) -> AuthResult:
        self.state = state
        self.channel.publish_progress(status, message)
        return AuthResult(state, None, message)

    def _cancel_result(self) -> AuthResult:
        _log.debug("Authentication cancelled by user")
        return self._fail(FlowState.CANCELLED, AuthStatus.ERROR, MSG_CANCELLED)

    def _show_verification(self, session: DeviceAuthorization) -> None:
        url = session.verification_uri_complete
        if not self.settings.suppress_browser:
            try:
                if self._open_browser(url):
                    return
            except Exception as exc:
                _log.debug("Browser launch failed: %s", exc)

        # A subscribed renderer already shows the link.
        if self.channel.listener_count(AuthTopic.AUTH_URI):
            return

        console.print("\n  Visit this URL to authorize:", style=f"dim {CYAN}")
        console.print(f"  {url}\n", style=f"bold {VIOLET}")
        console.print(f"  {MSG_WAITING}", style="dim")


_REASON_MESSAGES = {
    "timeout": "OAuth authentication timed out. Please try again.",
    "cancelled": "OAuth authentication was cancelled by user.",
    "rate_limit": "Too many requests for OAuth authentication, please try another method or try again later.",
    "error": "OAuth authentication failed. Please re-authenticate.",
}


async def authenticate(
    manager: SharedTokenManager,
    client: OAuthClient,
    channel: Optional[AuthEventChannel] = None,
    open_browser: Callable[[str], bool] = webbrowser.open,
) -> OAuthCredentials:
    """Valid credentials, running the device flow if refresh is impossible.

    Raises:
        DeviceFlowError: The device flow ended in anything but success.
    """
    try:
        return await manager.get_valid_credentials(client)
    except TokenManagerError as exc:
        if exc.type in (TokenError.NO_REFRESH_TOKEN, TokenError.REFRESH_FAILED):
            _log.debug("Stored credentials unusable (%s), starting device flow", exc.type.value)
        else:
            _log.warning("Token manager error (%s), starting device flow: %s", exc.type.value, exc)

    flow = DeviceAuthFlow(client, manager, channel, open_browser=open_browser)
    result = await flow.run()
    if result.success and result.credentials is not None:
        return result.credentials

    reason = result.reason or "error"
    raise DeviceFlowError(reason, _REASON_MESSAGES.get(reason, _REASON_MESSAGES["error"]))
