"""Tests for the click command surface."""

import pytest
import yaml
from click.testing import CliRunner

from conftest import expired_credentials, valid_credentials
from tokenshare.auth_store import CredentialStore
from tokenshare.cli import TokenshareApp, cli


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "oauth": {
            "base_url": "https://auth.example.com",
            "credentials_dir": str(tmp_path / "qwen"),
            "lock": {"max_attempts": 3, "attempt_interval": 0.01},
        },
        "browser": {"suppress": True},
    }))
    return path


@pytest.fixture
def cred_store(tmp_path):
    return CredentialStore(tmp_path / "qwen" / "oauth_creds.json")


def _invoke(config_file, *args):
    return CliRunner().invoke(cli, ["--config", str(config_file), *args])


def test_app_uses_configured_paths(config_file, cred_store):
    app = TokenshareApp(str(config_file))
    assert app.manager.store.path == cred_store.path
    assert app.settings.suppress_browser is True


def test_token_prints_access_token(config_file, cred_store):
    cred_store.save(valid_credentials())

    result = _invoke(config_file, "token")

    assert result.exit_code == 0
    assert "valid_access_token" in result.output


def test_token_without_login_fails(config_file):
    result = _invoke(config_file, "token")

    assert result.exit_code != 0
    assert "tokenshare login" in result.output


def test_token_with_unrefreshable_credentials_fails(config_file, cred_store):
    cred_store.save(expired_credentials(refresh_token=None))

    result = _invoke(config_file, "token")

    assert result.exit_code != 0


def test_status_runs(config_file, cred_store):
    cred_store.save(valid_credentials())

    result = _invoke(config_file, "status")

    assert result.exit_code == 0


def test_logout_removes_credentials(config_file, cred_store):
    cred_store.save(valid_credentials())

    result = _invoke(config_file, "logout")

    assert result.exit_code == 0
    assert cred_store.load() is None


def test_login_reuses_valid_credentials(config_file, cred_store):
    cred_store.save(valid_credentials())

    result = _invoke(config_file, "login")

    assert result.exit_code == 0
    assert cred_store.load().access_token == "valid_access_token"
