"""Tests for the credential store and its lock file."""

import json
import os
import stat
import time

import pytest

from tokenshare.auth_store import CredentialStore
from tokenshare.credentials import OAuthCredentials
from tokenshare.errors import TokenError, TokenManagerError
from tokenshare.lock import FileLock, StaleLockPolicy, _held_locks, release_held_locks


class TestCredentialStore:
    def test_save_and_load(self, store):
        creds = OAuthCredentials("tok", refresh_token="r", expiry_date=123)
        store.save(creds)
        assert store.load() == creds

    def test_load_missing(self, store):
        assert store.load() is None

    def test_load_invalid_json_is_not_found(self, store):
        store.directory.mkdir(parents=True)
        store.path.write_text("not json")
        assert store.load() is None

    def test_load_without_access_token_is_not_found(self, store):
        store.directory.mkdir(parents=True)
        store.path.write_text(json.dumps({"refresh_token": "r"}))
        assert store.load() is None

    def test_load_unreadable_is_file_error(self, tmp_path):
        # A directory where the file should be cannot be read as text.
        path = tmp_path / "creds.json"
        path.mkdir()
        with pytest.raises(TokenManagerError) as exc_info:
            CredentialStore(path).load()
        assert exc_info.value.type == TokenError.FILE_ERROR

    def test_save_creates_owner_only_directory(self, store):
        store.save(OAuthCredentials("tok"))
        assert stat.S_IMODE(store.directory.stat().st_mode) == 0o700
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600

    def test_save_writes_expected_json(self, store):
        store.save(OAuthCredentials("tok", refresh_token="r", expiry_date=9, resource_url="u"))
        assert json.loads(store.path.read_text()) == {
            "access_token": "tok",
            "refresh_token": "r",
            "token_type": "Bearer",
            "expiry_date": 9,
            "resource_url": "u",
        }

    def test_save_replaces_without_leftovers(self, store):
        store.save(OAuthCredentials("first"))
        store.save(OAuthCredentials("second"))

        assert store.load().access_token == "second"
        assert [p.name for p in store.directory.iterdir()] == ["oauth_creds.json"]
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600

    def test_modified_time(self, store):
        assert store.modified_time() is None
        store.save(OAuthCredentials("tok"))
        assert store.modified_time() == store.path.stat().st_mtime_ns

    def test_clear(self, store):
        store.save(OAuthCredentials("tok"))
        store.clear()
        assert store.load() is None
        store.clear()  # already gone

    def test_lock_path_is_sibling(self, store):
        assert store.lock_path.parent == store.path.parent
        assert store.lock_path.name == "oauth_creds.json.lock"


class TestFileLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, store):
        lease = await store.acquire_lock(max_attempts=1, attempt_interval=0.01)
        assert store.is_locked()
        assert store.lock_path.read_text() == lease.lock_id
        store.release_lock(lease)
        assert not store.is_locked()
        assert lease.released

    @pytest.mark.asyncio
    async def test_second_acquire_times_out(self, store):
        lease = await store.acquire_lock(max_attempts=1, attempt_interval=0.01)
        try:
            with pytest.raises(TokenManagerError) as exc_info:
                await store.acquire_lock(max_attempts=3, attempt_interval=0.01)
            assert exc_info.value.type == TokenError.LOCK_TIMEOUT
        finally:
            lease.release()

    @pytest.mark.asyncio
    async def test_stale_lock_is_reclaimed(self, tmp_path):
        lock_path = tmp_path / "creds.json.lock"
        lock_path.write_text("crashed-process")
        old = time.time() - 20
        os.utime(lock_path, (old, old))

        lock = FileLock(lock_path, StaleLockPolicy(stale_after=15.0))
        lease = await lock.acquire(max_attempts=2, attempt_interval=0.01)

        assert lock_path.read_text() == lease.lock_id
        lease.release()
        assert not lock_path.exists()

    @pytest.mark.asyncio
    async def test_fresh_lock_is_respected(self, tmp_path):
        lock_path = tmp_path / "creds.json.lock"
        lock_path.write_text("live-process")

        lock = FileLock(lock_path, StaleLockPolicy(stale_after=15.0))
        with pytest.raises(TokenManagerError) as exc_info:
            await lock.acquire(max_attempts=2, attempt_interval=0.01)

        assert exc_info.value.type == TokenError.LOCK_TIMEOUT
        assert lock_path.read_text() == "live-process"

    @pytest.mark.asyncio
    async def test_release_leaves_taken_over_lock(self, tmp_path):
        lock = FileLock(tmp_path / "x.lock")
        lease = await lock.acquire(max_attempts=1)
        lock.path.write_text("someone-else")

        lease.release()

        assert lock.path.read_text() == "someone-else"

    def test_release_missing_lock_does_not_raise(self, tmp_path):
        FileLock(tmp_path / "x.lock").release("anything")

    @pytest.mark.asyncio
    async def test_lease_context_manager(self, tmp_path):
        lock = FileLock(tmp_path / "x.lock")
        async with await lock.acquire(max_attempts=1):
            assert lock.is_locked()
        assert not lock.is_locked()

    @pytest.mark.asyncio
    async def test_exit_hook_removes_held_locks(self, tmp_path):
        lock = FileLock(tmp_path / "x.lock")
        await lock.acquire(max_attempts=1)
        assert lock.path in _held_locks

        release_held_locks()

        assert not lock.path.exists()
        assert lock.path not in _held_locks

    @pytest.mark.asyncio
    async def test_exit_hook_leaves_taken_over_lock(self, tmp_path):
        lock = FileLock(tmp_path / "x.lock")
        await lock.acquire(max_attempts=1)
        lock.path.write_text("someone-else")

        release_held_locks()

        assert lock.path.read_text() == "someone-else"
        assert lock.path not in _held_locks

    @pytest.mark.asyncio
    async def test_release_with_undecodable_lock_does_not_raise(self, tmp_path):
        lock = FileLock(tmp_path / "x.lock")
        lease = await lock.acquire(max_attempts=1)
        lock.path.write_bytes(b"\xff\xfe\xfa")

        lease.release()

        assert lock.path.exists()
        assert lock.path not in _held_locks

    def test_stale_policy_threshold(self):
        policy = StaleLockPolicy(stale_after=15.0)
        assert policy.is_stale(lock_mtime=100.0, now=116.0) is True
        assert policy.is_stale(lock_mtime=100.0, now=110.0) is False
