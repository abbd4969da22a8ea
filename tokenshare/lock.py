"""Advisory lock file used to serialize credential refreshes across processes.

The lock is a marker file created with ``O_CREAT | O_EXCL``. Whoever creates
it owns it; everyone else retries. A marker whose mtime is older than the
stale threshold is assumed to belong to a crashed process and is removed.
"""

import asyncio
import atexit
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import TokenError, TokenManagerError

_log = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 50
DEFAULT_ATTEMPT_INTERVAL = 0.2  # seconds
DEFAULT_STALE_AFTER = 15.0  # seconds

# Lock files held by this process, path -> lock id. Cleared at interpreter exit.
_held_locks: dict[Path, str] = {}


def _remove_if_owned(path: Path, lock_id: str) -> None:
    """Unlink ``path`` only if it still carries ``lock_id``. Never raises."""
    try:
        if path.read_text(encoding="utf-8").strip() != lock_id:
            _log.warning("Lock %s was taken over; leaving it in place", path)
            return
        path.unlink()
    except FileNotFoundError:
        pass
    except (OSError, ValueError) as exc:
        _log.warning("Could not release lock %s: %s", path, exc)


def release_held_locks() -> None:
    """Synchronously remove every lock file this process still holds."""
    for path, lock_id in list(_held_locks.items()):
        _remove_if_owned(path, lock_id)
        _held_locks.pop(path, None)


atexit.register(release_held_locks)


@dataclass(frozen=True)
class StaleLockPolicy:
    """Decides when an existing lock file may be forcibly reclaimed."""

    stale_after: float = DEFAULT_STALE_AFTER

    def is_stale(self, lock_mtime: float, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return current - lock_mtime > self.stale_after


class Lease:
    """Proof of lock ownership. Usable as an async context manager."""

    def __init__(self, lock: "FileLock", lock_id: str):
        self.lock = lock
        self.lock_id = lock_id
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if not self._released:
            self._released = True
            self.lock.release(self.lock_id)

    async def __aenter__(self) -> "Lease":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class FileLock:
    """Exclusive-create lock file with stale-lock takeover."""

    def __init__(self, path: Path, policy: Optional[StaleLockPolicy] = None):
        self.path = Path(path)
        self.policy = policy or StaleLockPolicy()

    async def acquire(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        attempt_interval: float = DEFAULT_ATTEMPT_INTERVAL,
    ) -> Lease:
        """Create the lock file, retrying until ``max_attempts`` is used up.

        Reclaiming a stale lock consumes an attempt but skips the wait.

        Raises:
            TokenManagerError: ``LOCK_TIMEOUT`` when attempts run out,
                ``FILE_ERROR`` when the lock file cannot be created at all.
        """
        lock_id = uuid.uuid4().hex
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        for attempt in range(max_attempts):
            if self._try_create(lock_id):
                _held_locks[self.path] = lock_id
                _log.debug("Acquired %s on attempt %d", self.path, attempt + 1)
                return Lease(self, lock_id)

            if self._reclaim_if_stale():
                continue

            _log.debug(
                "Lock %s busy (attempt %d/%d)", self.path, attempt + 1, max_attempts,
            )
            await asyncio.sleep(attempt_interval)

        raise TokenManagerError(
            TokenError.LOCK_TIMEOUT,
            f"Failed to acquire lock {self.path} after {max_attempts} attempts",
        )

    def release(self, lock_id: str) -> None:
        """Remove the lock file if it still carries ``lock_id``. Never raises."""
        if _held_locks.get(self.path) == lock_id:
            del _held_locks[self.path]
        _remove_if_owned(self.path, lock_id)

    def is_locked(self) -> bool:
        return self.path.exists()

    # --- Internal helpers ---

    def _try_create(self, lock_id: str) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            return False
        except OSError as exc:
            raise TokenManagerError(
                TokenError.FILE_ERROR,
                f"Failed to create lock file {self.path}: {exc}",
                exc,
            ) from exc
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(lock_id)
        return True

    def _reclaim_if_stale(self) -> bool:
        """Remove an abandoned lock. True if the caller should retry at once."""
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            # Released between our create and stat.
            return True
        except OSError:
            return False

        if not self.policy.is_stale(mtime):
            return False

        _log.warning(
            "Removing stale lock %s (older than %.0fs)", self.path, self.policy.stale_after,
        )
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            _log.warning("Could not remove stale lock %s: %s", self.path, exc)
            return False
        return True
