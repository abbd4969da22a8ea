"""Tests for configuration system."""

import tempfile
from pathlib import Path

import yaml

from tokenshare.config import AuthSettings, ConfigManager


def test_config_creation():
    """Test config file creation."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        manager = ConfigManager(str(config_path))

        assert config_path.exists()
        assert "oauth" in manager.data


def test_defaults_match_settings():
    """A freshly created config resolves to the built-in defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = ConfigManager(str(Path(tmpdir) / "config.yaml"))

        settings = manager.get_auth_settings()
        defaults = AuthSettings()

        assert settings.client_id == defaults.client_id
        assert settings.credentials_path == Path("~/.qwen/oauth_creds.json").expanduser()
        assert settings.refresh_buffer == 30.0
        assert settings.lock_max_attempts == 50
        assert settings.lock_attempt_interval == 0.2
        assert settings.lock_stale_after == 15.0
        assert settings.poll_interval == 2.0
        assert settings.max_poll_interval == 10.0
        assert settings.slow_down_factor == 1.5


def test_overrides_from_yaml():
    """Values in the file win over defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        config_path.write_text(yaml.dump({
            "oauth": {
                "base_url": "https://auth.example.com/",
                "credentials_dir": tmpdir,
                "credentials_file": "creds.json",
                "refresh_buffer_seconds": 60,
                "lock": {"max_attempts": 3},
                "device_flow": {"poll_interval": 1, "tick": 0.5},
            },
            "http": {"timeout": 5},
        }))

        settings = ConfigManager(str(config_path)).get_auth_settings()

        assert settings.credentials_path == Path(tmpdir) / "creds.json"
        assert settings.refresh_buffer == 60.0
        assert settings.lock_max_attempts == 3
        assert settings.lock_attempt_interval == 0.2
        assert settings.poll_interval == 1.0
        assert settings.poll_tick == 0.5
        assert settings.http_timeout == 5.0
        assert settings.token_url == "https://auth.example.com/api/v1/oauth2/token"


def test_invalid_yaml_falls_back_to_defaults():
    """A broken config file is ignored rather than fatal."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        config_path.write_text("oauth: [unclosed")

        manager = ConfigManager(str(config_path))

        assert manager.data == {}
        assert manager.get_auth_settings().client_id == AuthSettings().client_id


def test_env_var_resolution(monkeypatch):
    """Test environment variable resolution."""
    monkeypatch.setenv("TEST_CLIENT_ID", "from-env")

    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        config_path.write_text(yaml.dump({"oauth": {"client_id": "${TEST_CLIENT_ID}"}}))
        manager = ConfigManager(str(config_path))

        assert manager._resolve_env_var("${TEST_CLIENT_ID}") == "from-env"
        assert manager.get_auth_settings().client_id == "from-env"


def test_unset_env_var_uses_default(monkeypatch):
    monkeypatch.delenv("TOKENSHARE_UNSET", raising=False)

    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        config_path.write_text(yaml.dump({"oauth": {"scope": "${TOKENSHARE_UNSET}"}}))

        settings = ConfigManager(str(config_path)).get_auth_settings()

        assert settings.scope == AuthSettings().scope


def test_non_env_var_passthrough():
    """Test that non-env-var values pass through."""
    with tempfile.TemporaryDirectory() as tmpdir:
        manager = ConfigManager(str(Path(tmpdir) / "config.yaml"))

        assert manager._resolve_env_var("plain_value") == "plain_value"
        assert manager._resolve_env_var(42) == 42


def test_browser_suppression(monkeypatch):
    monkeypatch.delenv("TOKENSHARE_NO_BROWSER", raising=False)

    with tempfile.TemporaryDirectory() as tmpdir:
        manager = ConfigManager(str(Path(tmpdir) / "config.yaml"))
        assert manager.is_browser_suppressed() is False

        manager.data["browser"]["suppress"] = True
        assert manager.get_auth_settings().suppress_browser is True


def test_browser_suppression_from_env(monkeypatch):
    monkeypatch.setenv("TOKENSHARE_NO_BROWSER", "1")

    with tempfile.TemporaryDirectory() as tmpdir:
        manager = ConfigManager(str(Path(tmpdir) / "config.yaml"))
        assert manager.is_browser_suppressed() is True


def test_save_round_trips():
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "config.yaml"
        manager = ConfigManager(str(config_path))
        manager.data["oauth"]["scope"] = "openid"
        manager.save()

        assert ConfigManager(str(config_path)).get_auth_settings().scope == "openid"
