"""Publish/subscribe channel between the device flow and whatever renders it.

The flow publishes the verification URI and progress updates; a UI
publishes cancel. Each flow owns its own channel, so listeners never leak
between login attempts.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

_log = logging.getLogger(__name__)


class AuthTopic(str, Enum):
    """Topics carried by the channel."""

    AUTH_URI = "auth-uri"
    AUTH_PROGRESS = "auth-progress"
    AUTH_CANCEL = "auth-cancel"


class AuthStatus(str, Enum):
    """Progress states a UI can render."""

    POLLING = "polling"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"


@dataclass(frozen=True)
class AuthUriInfo:
    """What a user needs to approve the login on another device."""

    verification_uri: str
    verification_uri_complete: str
    user_code: str
    expires_in: int


@dataclass(frozen=True)
class AuthProgress:
    status: AuthStatus
    message: Optional[str] = None


Listener = Callable[[Any], None]


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` when done."""

    def __init__(self, channel: "AuthEventChannel", topic: AuthTopic, listener: Listener):
        self._channel = channel
        self.topic = topic
        self.listener = listener

    def unsubscribe(self) -> None:
        self._channel.unsubscribe(self.topic, self.listener)


class AuthEventChannel:
    """Synchronous broadcast of auth events to registered listeners."""

    def __init__(self):
        self._listeners: dict[AuthTopic, list[Listener]] = {topic: [] for topic in AuthTopic}

    def subscribe(self, topic: AuthTopic, listener: Listener) -> Subscription:
        self._listeners[topic].append(listener)
        return Subscription(self, topic, listener)

    def unsubscribe(self, topic: AuthTopic, listener: Listener) -> None:
        try:
            self._listeners[topic].remove(listener)
        except ValueError:
            pass

    def on_auth_uri(self, listener: Callable[[AuthUriInfo], None]) -> Subscription:
        return self.subscribe(AuthTopic.AUTH_URI, listener)

    def on_progress(self, listener: Callable[[AuthProgress], None]) -> Subscription:
        return self.subscribe(AuthTopic.AUTH_PROGRESS, listener)

    def on_cancel(self, listener: Callable[[None], None]) -> Subscription:
        return self.subscribe(AuthTopic.AUTH_CANCEL, listener)

    def listener_count(self, topic: AuthTopic) -> int:
        return len(self._listeners[topic])

    def publish(self, topic: AuthTopic, payload: Any = None) -> None:
        """Deliver ``payload`` to every listener of ``topic``.

        A failing listener is logged and skipped so rendering problems
        never break the login itself.
        """
        for listener in list(self._listeners[topic]):
            try:
                listener(payload)
            except Exception as exc:
                _log.warning("Auth event listener for %s failed: %s", topic.value, exc)

    def publish_auth_uri(self, info: AuthUriInfo) -> None:
        self.publish(AuthTopic.AUTH_URI, info)

    def publish_progress(self, status: AuthStatus, message: Optional[str] = None) -> None:
        self.publish(AuthTopic.AUTH_PROGRESS, AuthProgress(status, message))

    def cancel(self) -> None:
        """Ask the running flow to stop polling."""
        self.publish(AuthTopic.AUTH_CANCEL)
