"""Error types shared by the token store, OAuth client and token manager."""

from enum import Enum
from typing import Optional


class TokenError(str, Enum):
    """Failure categories surfaced by the shared token manager."""

    NO_REFRESH_TOKEN = "no_refresh_token"
    REFRESH_FAILED = "refresh_failed"
    NETWORK_ERROR = "network_error"
    LOCK_TIMEOUT = "lock_timeout"
    FILE_ERROR = "file_error"


class TokenManagerError(Exception):
    """A typed failure from credential lookup, refresh or persistence."""

    def __init__(
        self,
        type: TokenError,
        message: str,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.type = type
        self.message = message
        self.original_error = original_error

    def __repr__(self) -> str:
        return f"TokenManagerError({self.type.value!r}, {self.message!r})"


class ProtocolError(Exception):
    """The OAuth server answered with an error status or error body."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        error: str = "",
        error_description: str = "",
    ):
        super().__init__(message)
        self.status = status
        self.error = error
        self.error_description = error_description


class DeviceFlowError(Exception):
    """Device authorization ended without usable credentials."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
