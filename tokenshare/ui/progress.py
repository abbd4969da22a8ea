"""Render device-flow events to the terminal."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ..events import AuthEventChannel, AuthProgress, AuthStatus, AuthUriInfo
from .theme import console as default_console, CYAN, VIOLET, STATUS_STYLES


class ConsoleAuthRenderer:
    """Subscribes to an auth event channel and prints what it hears.

    Repeated polling updates are collapsed so the terminal is not flooded
    with one line per poll.
    """

    def __init__(self, channel: AuthEventChannel, console: Optional[Console] = None):
        self.console = console or default_console
        self.last_status: Optional[AuthStatus] = None
        self._subscriptions = [
            channel.on_auth_uri(self.show_uri),
            channel.on_progress(self.show_progress),
        ]

    def show_uri(self, info: AuthUriInfo) -> None:
        body = Text()
        body.append("Open this link to sign in:\n", style="dim")
        body.append(f"{info.verification_uri_complete}\n\n", style=f"bold {VIOLET}")
        body.append("Code: ", style="dim")
        body.append(info.user_code, style=f"bold {CYAN}")
        minutes = max(1, info.expires_in // 60)
        body.append(f"\nExpires in about {minutes} min", style="dim")
        self.console.print(Panel(body, title="Device authorization", border_style=CYAN))

    def show_progress(self, progress: AuthProgress) -> None:
        repeated = progress.status == AuthStatus.POLLING and self.last_status == AuthStatus.POLLING
        self.last_status = progress.status
        if repeated:
            return
        style = STATUS_STYLES.get(progress.status.value, "")
        self.console.print(f"  {progress.message or progress.status.value}", style=style)

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
