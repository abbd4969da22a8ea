"""tokenshare - Cross-process OAuth device-flow credentials for CLI tools."""

__version__ = "0.1.0"

from .auth_flow import AuthResult, DeviceAuthFlow, FlowState, authenticate
from .auth_store import CredentialStore
from .config import AuthSettings, ConfigManager
from .credentials import OAuthCredentials
from .errors import DeviceFlowError, ProtocolError, TokenError, TokenManagerError
from .events import AuthEventChannel, AuthProgress, AuthStatus, AuthTopic, AuthUriInfo
from .oauth_client import OAuthClient
from .token_manager import SharedTokenManager

__all__ = [
    "AuthEventChannel",
    "AuthProgress",
    "AuthResult",
    "AuthSettings",
    "AuthStatus",
    "AuthTopic",
    "AuthUriInfo",
    "ConfigManager",
    "CredentialStore",
    "DeviceAuthFlow",
    "DeviceFlowError",
    "FlowState",
    "OAuthClient",
    "OAuthCredentials",
    "ProtocolError",
    "SharedTokenManager",
    "TokenError",
    "TokenManagerError",
    "authenticate",
]
