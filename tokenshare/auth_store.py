"""Credential persistence for the shared token manager.

Stores the OAuth credential record in ~/.qwen/oauth_creds.json, with a
sibling ``.lock`` file guarding refresh-and-write sequences. The directory
is kept owner-only (0700) and the credential file 0600.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .credentials import OAuthCredentials
from .errors import TokenError, TokenManagerError
from .lock import DEFAULT_ATTEMPT_INTERVAL, DEFAULT_MAX_ATTEMPTS, FileLock, Lease, StaleLockPolicy

_log = logging.getLogger(__name__)

_CREDENTIALS_DIR = Path("~/.qwen").expanduser()
_CREDENTIALS_FILE = "oauth_creds.json"


class CredentialStore:
    """Read/write the credential record and its lock file."""

    def __init__(
        self,
        path: Optional[Path] = None,
        stale_policy: Optional[StaleLockPolicy] = None,
    ):
        self.path = Path(path) if path else _CREDENTIALS_DIR / _CREDENTIALS_FILE
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock = FileLock(self.lock_path, stale_policy)

    @property
    def directory(self) -> Path:
        return self.path.parent

    def load(self) -> Optional[OAuthCredentials]:
        """Load the credential record. Returns None if absent or unreadable JSON.

        Raises:
            TokenManagerError: ``FILE_ERROR`` for file-system failures other
                than the file not existing.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TokenManagerError(
                TokenError.FILE_ERROR,
                f"Failed to read credentials from {self.path}: {exc}",
                exc,
            ) from exc

        try:
            return OAuthCredentials.from_dict(json.loads(raw))
        except (json.JSONDecodeError, ValueError) as exc:
            _log.warning("Ignoring invalid credential file %s: %s", self.path, exc)
            return None

    def save(self, credentials: OAuthCredentials) -> None:
        """Replace the credential file atomically, creating an owner-only directory.

        The record is written to a temp file in the same directory and moved
        over the target, so readers see either the old or the new file.
        """
        tmp_path = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
            os.chmod(self.directory, 0o700)
            # mkstemp creates the file 0600
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp_", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(credentials.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as exc:
            raise TokenManagerError(
                TokenError.FILE_ERROR,
                f"Failed to write credentials to {self.path}: {exc}",
                exc,
            ) from exc
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

    def modified_time(self) -> Optional[int]:
        """File mtime in nanoseconds, or None if the file does not exist.

        Raises:
            TokenManagerError: ``FILE_ERROR`` when the file cannot be stat'ed.
        """
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TokenManagerError(
                TokenError.FILE_ERROR,
                f"Failed to access credential file {self.path}: {exc}",
                exc,
            ) from exc

    def clear(self) -> None:
        """Remove the stored credentials. Missing file is not an error."""
        try:
            self.path.unlink()
            _log.debug("Cleared cached credentials at %s", self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            _log.warning("Failed to clear cached credentials %s: %s", self.path, exc)

    async def acquire_lock(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        attempt_interval: float = DEFAULT_ATTEMPT_INTERVAL,
    ) -> Lease:
        """Take the cross-process refresh lock. See ``FileLock.acquire``."""
        return await self._lock.acquire(max_attempts, attempt_interval)

    def release_lock(self, lease: Lease) -> None:
        lease.release()

    def is_locked(self) -> bool:
        return self._lock.is_locked()
