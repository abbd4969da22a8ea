"""Configuration management for tokenshare."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

_log = logging.getLogger(__name__)

NO_BROWSER_ENV = "TOKENSHARE_NO_BROWSER"


@dataclass(frozen=True)
class AuthSettings:
    """Resolved settings for the OAuth client, token manager and device flow."""

    base_url: str = "https://chat.qwen.ai"
    device_code_path: str = "/api/v1/oauth2/device/code"
    token_path: str = "/api/v1/oauth2/token"
    client_id: str = "f0304373b74a44d2b584a3fb70ca9e56"
    scope: str = "openid profile email model.completion"
    credentials_path: Path = Path("~/.qwen/oauth_creds.json").expanduser()
    refresh_buffer: float = 30.0
    cache_check_interval: float = 0.0
    lock_max_attempts: int = 50
    lock_attempt_interval: float = 0.2
    lock_stale_after: float = 15.0
    poll_interval: float = 2.0
    max_poll_interval: float = 10.0
    slow_down_factor: float = 1.5
    poll_tick: float = 0.1
    suppress_browser: bool = False
    http_timeout: float = 15.0

    @property
    def device_code_url(self) -> str:
        return self.base_url.rstrip("/") + self.device_code_path

    @property
    def token_url(self) -> str:
        return self.base_url.rstrip("/") + self.token_path


class ConfigManager:
    """Manage tokenshare configuration from YAML."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path or "~/.config/tokenshare/config.yaml").expanduser()
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            self._create_default_config()

        return self._read_yaml()

    def _read_yaml(self) -> Dict[str, Any]:
        """Read and parse YAML file."""
        try:
            with open(self.config_path, "r") as f:
                content = yaml.safe_load(f)
                return content if isinstance(content, dict) else {}
        except (OSError, yaml.YAMLError) as e:
            _log.warning("Error reading config %s: %s", self.config_path, e)
            return {}

    def _create_default_config(self) -> None:
        """Create default configuration file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        defaults = AuthSettings()
        default_config = {
            "oauth": {
                "base_url": defaults.base_url,
                "device_code_path": defaults.device_code_path,
                "token_path": defaults.token_path,
                "client_id": defaults.client_id,
                "scope": defaults.scope,
                "credentials_dir": "~/.qwen",
                "credentials_file": "oauth_creds.json",
                "refresh_buffer_seconds": defaults.refresh_buffer,
                "cache_check_interval": defaults.cache_check_interval,
                "lock": {
                    "max_attempts": defaults.lock_max_attempts,
                    "attempt_interval": defaults.lock_attempt_interval,
                    "stale_after": defaults.lock_stale_after,
                },
                "device_flow": {
                    "poll_interval": defaults.poll_interval,
                    "max_poll_interval": defaults.max_poll_interval,
                    "slow_down_factor": defaults.slow_down_factor,
                    "tick": defaults.poll_tick,
                },
            },
            "browser": {
                "suppress": False,
            },
            "http": {
                "timeout": defaults.http_timeout,
            },
        }

        with open(self.config_path, "w") as f:
            yaml.dump(default_config, f, default_flow_style=False)

    def _resolve_env_var(self, value: Any) -> Any:
        """Resolve environment variable references like ${VAR_NAME}."""
        if not isinstance(value, str) or not value.startswith("${") or not value.endswith("}"):
            return value

        var_name = value[2:-1]
        return os.getenv(var_name, "")

    def _get(self, section: Dict[str, Any], key: str, default: Any) -> Any:
        value = self._resolve_env_var(section.get(key, default))
        return default if value in (None, "") else value

    def get_auth_settings(self) -> AuthSettings:
        """Build the settings object consumed by the auth components."""
        oauth = self.data.get("oauth", {}) or {}
        lock = oauth.get("lock", {}) or {}
        flow = oauth.get("device_flow", {}) or {}
        defaults = AuthSettings()

        credentials_dir = Path(str(self._get(oauth, "credentials_dir", "~/.qwen"))).expanduser()
        credentials_file = str(self._get(oauth, "credentials_file", "oauth_creds.json"))

        return AuthSettings(
            base_url=str(self._get(oauth, "base_url", defaults.base_url)),
            device_code_path=str(self._get(oauth, "device_code_path", defaults.device_code_path)),
            token_path=str(self._get(oauth, "token_path", defaults.token_path)),
            client_id=str(self._get(oauth, "client_id", defaults.client_id)),
            scope=str(self._get(oauth, "scope", defaults.scope)),
            credentials_path=credentials_dir / credentials_file,
            refresh_buffer=float(self._get(oauth, "refresh_buffer_seconds", defaults.refresh_buffer)),
            cache_check_interval=float(
                self._get(oauth, "cache_check_interval", defaults.cache_check_interval)
            ),
            lock_max_attempts=int(self._get(lock, "max_attempts", defaults.lock_max_attempts)),
            lock_attempt_interval=float(
                self._get(lock, "attempt_interval", defaults.lock_attempt_interval)
            ),
            lock_stale_after=float(self._get(lock, "stale_after", defaults.lock_stale_after)),
            poll_interval=float(self._get(flow, "poll_interval", defaults.poll_interval)),
            max_poll_interval=float(self._get(flow, "max_poll_interval", defaults.max_poll_interval)),
            slow_down_factor=float(self._get(flow, "slow_down_factor", defaults.slow_down_factor)),
            poll_tick=float(self._get(flow, "tick", defaults.poll_tick)),
            suppress_browser=self.is_browser_suppressed(),
            http_timeout=float(self._get(self.data.get("http", {}) or {}, "timeout", defaults.http_timeout)),
        )

    def is_browser_suppressed(self) -> bool:
        """Browser launch is off if configured or if TOKENSHARE_NO_BROWSER is set."""
        if os.getenv(NO_BROWSER_ENV, "").lower() in ("1", "true", "yes"):
            return True
        return bool((self.data.get("browser", {}) or {}).get("suppress", False))

    def save(self) -> None:
        """Save configuration to file."""
        with open(self.config_path, "w") as f:
            yaml.dump(self.data, f, default_flow_style=False)
