"""
mmm CLI - Main entry point

    mmm @alice:example.org [STATE_PREFIX]

Logs in, runs the initial sync, then prints incoming messages while
reading shell commands from stdin.
"""

import asyncio
import sys
from typing import Optional

import click
from rich.console import Console

from ..auth import PasswordAuth
from ..client.client import MmmClient
from ..client.session import MatrixSession, parse_user_id
from ..config import Settings, configure_logging
from ..core.errors import MmmError
from ..core.storage import StateStore, StorageError

console = Console()
err_console = Console(stderr=True)


def validate_user_id(ctx, param, value: str) -> str:
    try:
        parse_user_id(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    return value


async def run_client(user_id: str, settings: Settings, store: StateStore) -> None:
    """Discover, log in, bootstrap, then run sync and shell until end of input"""
    async with MatrixSession(user_id, settings) as session:
        await session.discover_homeserver()

        auth = PasswordAuth(session, settings=settings, store=store)
        await auth.authenticate()

        client = MmmClient(session, settings=settings, console=console)
        await client.initialize()
        err_console.print(f"[dim]{len(client.directory)} rooms, type {settings.room_prefix}<room> to select one[/dim]")
        await client.run()


@click.command()
@click.argument('user_id', callback=validate_user_id)
@click.argument('state_prefix', required=False, type=click.Path(file_okay=False))
def cli(user_id: str, state_prefix: Optional[str]):
    """Minimal Matrix messenger for USER_ID (@user:server).

    STATE_PREFIX is the directory for local state (device ID, log file).
    """
    try:
        settings = Settings()
    except ValueError as e:
        err_console.print(f"❌ Bad configuration: {e}", markup=False)
        sys.exit(1)

    store = StateStore(state_prefix or click.get_app_dir("mmm"), user_id)
    try:
        store.ensure_structure()
    except StorageError as e:
        err_console.print(f"❌ {e}", markup=False)
        sys.exit(1)

    configure_logging(settings, store.log_path)

    try:
        asyncio.run(run_client(user_id, settings, store))
    except MmmError as e:
        err_console.print(f"❌ {e}", markup=False)
        sys.exit(1)
    except KeyboardInterrupt:
        err_console.print("\n👋 Goodbye!")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
