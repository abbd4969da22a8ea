"""Process-wide owner of the current OAuth credentials.

The manager keeps an in-memory copy of the credential file, reloads it when
another process has written a newer one, and refreshes expired tokens.
Within a process, concurrent callers share a single in-flight refresh.
Across processes, the store's lock file serializes refresh-and-save, and
the lock holder re-reads the file first in case someone else already
refreshed.

Construct one manager per process and pass it to every consumer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .auth_store import CredentialStore
from .config import AuthSettings
from .credentials import OAuthCredentials
from .errors import ProtocolError, TokenError, TokenManagerError
from .lock import StaleLockPolicy

_log = logging.getLogger(__name__)


@dataclass
class MemoryCache:
    """Per-process view of the credential file.

    ``file_mod_time`` is the file mtime (ns) at the moment ``credentials``
    was populated. ``last_checked_at`` is when the file was last stat'ed.
    """

    credentials: Optional[OAuthCredentials] = None
    file_mod_time: int = 0
    last_checked_at: float = 0.0


class SharedTokenManager:
    """Single source of truth for usable credentials in this process.

    The ``client`` passed to ``get_valid_credentials`` only needs an async
    ``refresh_access_token(refresh_token)`` returning a ``TokenResponse``;
    normally it is an ``OAuthClient``.
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        settings: Optional[AuthSettings] = None,
    ):
        self.settings = settings or AuthSettings()
        self.store = store or CredentialStore(
            self.settings.credentials_path,
            StaleLockPolicy(self.settings.lock_stale_after),
        )
        self._cache = MemoryCache()
        self._refresh_task: Optional[asyncio.Future] = None
        self._lock_max_attempts = self.settings.lock_max_attempts
        self._lock_attempt_interval = self.settings.lock_attempt_interval

    @property
    def refresh_buffer_ms(self) -> int:
        return int(self.settings.refresh_buffer * 1000)

    def set_lock_config(
        self,
        max_attempts: Optional[int] = None,
        attempt_interval: Optional[float] = None,
    ) -> None:
        """Override how long refreshes wait for the cross-process lock."""
        if max_attempts is not None:
            self._lock_max_attempts = max_attempts
        if attempt_interval is not None:
            self._lock_attempt_interval = attempt_interval

    async def get_valid_credentials(
        self, client: Any, force_refresh: bool = False
    ) -> OAuthCredentials:
        """Return credentials that stay valid past the refresh buffer.

        Raises:
            TokenManagerError: ``NO_REFRESH_TOKEN``, ``REFRESH_FAILED``,
                ``NETWORK_ERROR``, ``LOCK_TIMEOUT`` or ``FILE_ERROR``.
                Never retried here; the caller decides whether to fall
                back to device authorization.
        """
        if self._refresh_task is not None:
            return await asyncio.shield(self._refresh_task)

        await self._check_and_reload()

        credentials = self._cache.credentials
        if not force_refresh and credentials is not None and self._is_fresh(credentials):
            return credentials

        # Another caller may have started a refresh while we were reloading.
        if self._refresh_task is None:
            task = asyncio.ensure_future(self._perform_refresh(client, force_refresh))
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        return await asyncio.shield(self._refresh_task)

    async def store_credentials(self, credentials: OAuthCredentials) -> None:
        """Persist freshly obtained credentials under the lock and adopt them."""
        lease = await self.store.acquire_lock(
            self._lock_max_attempts, self._lock_attempt_interval,
        )
        try:
            self._adopt(credentials)
        finally:
            self.store.release_lock(lease)

    async def get_access_token(
        self, client: Any, allow_cached_fallback: bool = False
    ) -> Optional[str]:
        """Access token via the coordinated path, or None if unavailable.

        With ``allow_cached_fallback`` a cached token that is still locally
        unexpired is returned when the coordinated path fails. The server
        may already have revoked it, so this is off by default.
        """
        try:
            credentials = await self.get_valid_credentials(client)
            return credentials.access_token
        except TokenManagerError as exc:
            _log.warning("Could not obtain valid credentials: %s", exc)
            cached = self._cache.credentials
            if allow_cached_fallback and cached is not None and cached.is_valid():
                return cached.access_token
            return None

    async def sync_from_disk(self) -> Optional[OAuthCredentials]:
        """Pick up the on-disk record if it changed, without refreshing."""
        await self._check_and_reload(force=True)
        return self._cache.credentials

    def clear_cache(self) -> None:
        """Forget in-memory state. The file on disk is untouched."""
        self._cache = MemoryCache()

    def clear_credentials(self) -> None:
        """Log out: delete the credential file and forget the cache."""
        self.store.clear()
        self.clear_cache()

    def get_current_credentials(self) -> Optional[OAuthCredentials]:
        """Cached credentials without any I/O or validity check."""
        return self._cache.credentials

    def is_refresh_in_progress(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    def get_debug_info(self) -> dict[str, Any]:
        """Diagnostic snapshot of the cache. Contains no secrets."""
        credentials = self._cache.credentials
        checked = self._cache.last_checked_at
        return {
            "has_credentials": credentials is not None,
            "credentials_expired": (
                credentials is not None and not self._is_fresh(credentials)
            ),
            "can_refresh": credentials is not None and credentials.can_refresh,
            "expiry_date": credentials.expiry_date if credentials else None,
            "is_refreshing": self.is_refresh_in_progress(),
            "cache_age": time.time() - checked if checked else None,
            "file_mod_time": self._cache.file_mod_time,
            "credentials_path": str(self.store.path),
        }

    # --- Internal helpers ---

    def _is_fresh(self, credentials: OAuthCredentials) -> bool:
        return credentials.is_valid(self.refresh_buffer_ms)

    def _on_refresh_done(self, task: asyncio.Future) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the exception retrieved; every waiter re-raises it anyway.
        if not task.cancelled():
            task.exception()

    async def _check_and_reload(self, force: bool = False) -> None:
        """Reload the credential file if it changed since we last read it."""
        now = time.time()
        interval = self.settings.cache_check_interval
        if not force and interval > 0 and now - self._cache.last_checked_at < interval:
            return
        self._cache.last_checked_at = now

        mtime = self.store.modified_time()
        if mtime is None:
            self._cache.file_mod_time = 0
            return
        if mtime <= self._cache.file_mod_time:
            return

        _log.debug("Credential file changed on disk, reloading %s", self.store.path)
        try:
            loaded = self.store.load()
        except TokenManagerError as exc:
            _log.warning("Failed to reload credentials: %s", exc)
            loaded = None
        self._cache.credentials = loaded
        # An unreadable file keeps the old mtime so a rewrite in the same
        # timestamp tick is still picked up.
        if loaded is not None:
            self._cache.file_mod_time = mtime

    async def _perform_refresh(self, client: Any, force_refresh: bool) -> OAuthCredentials:
        current = self._cache.credentials
        if current is None or not current.can_refresh:
            raise TokenManagerError(
                TokenError.NO_REFRESH_TOKEN,
                "No refresh token available for token refresh",
            )

        lease = await self.store.acquire_lock(
            self._lock_max_attempts, self._lock_attempt_interval,
        )
        try:
            await self._check_and_reload(force=True)
            latest = self._cache.credentials
            if not force_refresh and latest is not None and self._is_fresh(latest):
                _log.debug("Credentials were refreshed by another process")
                return latest

            source = latest if latest is not None else current
            if not source.can_refresh:
                raise TokenManagerError(
                    TokenError.NO_REFRESH_TOKEN,
                    "No refresh token available for token refresh",
                )

            try:
                response = await client.refresh_access_token(source.refresh_token)
            except ProtocolError as exc:
                if exc.status == 400:
                    self._cache.credentials = None
                raise TokenManagerError(
                    TokenError.REFRESH_FAILED, f"Token refresh failed: {exc}", exc,
                ) from exc
            except httpx.TransportError as exc:
                raise TokenManagerError(
                    TokenError.NETWORK_ERROR,
                    f"Network error during token refresh: {exc}",
                    exc,
                ) from exc
            except httpx.HTTPError as exc:
                raise TokenManagerError(
                    TokenError.REFRESH_FAILED, f"Token refresh failed: {exc}", exc,
                ) from exc

            if response is None or not response.access_token:
                raise TokenManagerError(
                    TokenError.REFRESH_FAILED,
                    "Failed to refresh access token: no token returned",
                )

            refreshed = response.to_credentials(previous_refresh_token=source.refresh_token)
            self._adopt(refreshed)
            _log.debug("Access token refreshed, expires at %s", refreshed.expiry_date)
            return refreshed
        finally:
            self.store.release_lock(lease)

    def _adopt(self, credentials: OAuthCredentials) -> None:
        """Make ``credentials`` current and persist them. Caller holds the lock."""
        self._cache.credentials = credentials
        self.store.save(credentials)
        self._cache.file_mod_time = self.store.modified_time() or 0
        self._cache.last_checked_at = time.time()
