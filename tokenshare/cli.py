"""tokenshare CLI - shared OAuth credentials for command-line tools."""

import asyncio
import logging
import signal
import time
from typing import Optional

import click
from rich.logging import RichHandler
from rich.table import Table

from .auth_flow import DeviceAuthFlow, authenticate
from .config import ConfigManager
from .credentials import OAuthCredentials
from .errors import DeviceFlowError, TokenManagerError
from .events import AuthEventChannel
from .oauth_client import OAuthClient
from .token_manager import SharedTokenManager
from .ui import ConsoleAuthRenderer, console
from .ui.theme import CYAN


class TokenshareApp:
    """Long-lived context shared by every command in one process."""

    def __init__(self, config_path: Optional[str] = None):
        self.config = ConfigManager(config_path)
        self.settings = self.config.get_auth_settings()
        self.manager = SharedTokenManager(settings=self.settings)

    def make_client(self) -> OAuthClient:
        return OAuthClient(self.settings, store=self.manager.store)

    async def login(self, force: bool = False) -> OAuthCredentials:
        """Reuse stored credentials when possible, else run the device flow."""
        channel = AuthEventChannel()
        renderer = ConsoleAuthRenderer(channel, console)
        _install_cancel_handler(channel)
        try:
            async with self.make_client() as client:
                if not force:
                    return await authenticate(self.manager, client, channel)
                result = await DeviceAuthFlow(client, self.manager, channel, self.settings).run()
                if not result.success or result.credentials is None:
                    raise DeviceFlowError(result.reason or "error", result.message)
                return result.credentials
        finally:
            _remove_cancel_handler()
            renderer.close()

    async def token(self, force_refresh: bool = False) -> OAuthCredentials:
        async with self.make_client() as client:
            return await self.manager.get_valid_credentials(client, force_refresh)

    async def status(self) -> dict:
        await self.manager.sync_from_disk()
        return self.manager.get_debug_info()

    def logout(self) -> None:
        self.manager.clear_credentials()


def _install_cancel_handler(channel: AuthEventChannel) -> None:
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, channel.cancel)
    except (NotImplementedError, RuntimeError):
        pass


def _remove_cancel_handler() -> None:
    try:
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
    except (NotImplementedError, RuntimeError):
        pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# CLI Commands
@click.group()
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """TOKENSHARE - OAuth device login shared across CLI processes.

    Log in once; every process on this machine reuses and refreshes the
    same credentials.
    """
    _configure_logging(verbose)
    ctx.obj = TokenshareApp(config_path)


@cli.command()
@click.option("--force", is_flag=True, help="Always run the device flow")
@click.pass_obj
def login(app: TokenshareApp, force):
    """Authorize this machine via the device flow."""
    try:
        asyncio.run(app.login(force=force))
    except DeviceFlowError as e:
        raise click.ClickException(str(e))
    console.print("  Logged in.", style=f"bold {CYAN}")


@cli.command()
@click.option("--force-refresh", is_flag=True, help="Refresh even if the token is still valid")
@click.pass_obj
def token(app: TokenshareApp, force_refresh):
    """Print a valid access token, refreshing it if needed."""
    try:
        credentials = asyncio.run(app.token(force_refresh=force_refresh))
    except TokenManagerError as e:
        raise click.ClickException(f"{e} (run 'tokenshare login')")
    click.echo(credentials.access_token)


@cli.command()
@click.pass_obj
def status(app: TokenshareApp):
    """Show the state of the shared credentials."""
    try:
        info = asyncio.run(app.status())
    except TokenManagerError as e:
        raise click.ClickException(str(e))

    table = Table(show_header=False, box=None)
    table.add_column(style="dim")
    table.add_column()
    table.add_row("credentials", info["credentials_path"])
    table.add_row("logged in", "yes" if info["has_credentials"] else "no")
    if info["has_credentials"]:
        table.add_row("expired", "yes" if info["credentials_expired"] else "no")
        table.add_row("refreshable", "yes" if info["can_refresh"] else "no")
        if info["expiry_date"]:
            remaining = int(info["expiry_date"] / 1000 - time.time())
            table.add_row("expires in", f"{remaining}s" if remaining > 0 else "expired")
    table.add_row("refreshing", "yes" if info["is_refreshing"] else "no")
    console.print(table)


@cli.command()
@click.pass_obj
def logout(app: TokenshareApp):
    """Delete the stored credentials."""
    app.logout()
    console.print("  Logged out.", style="dim")


if __name__ == "__main__":
    cli()
