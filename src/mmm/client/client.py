"""
mmm Client

Wires one session to the room directory, sync engine, history fetcher and
command shell, and runs the sync loop and the shell side by side.
"""

from typing import Any, Dict, Optional
import asyncio
import logging

from rich.console import Console

from ..config import Settings
from ..core.events import format_event_line
from ..core.rooms import RoomDirectory
from .history import HistoryFetcher
from .session import Session
from .shell import CommandShell, PromptLineReader
from .sync import SyncEngine, SyncState

logger = logging.getLogger(__name__)


class MmmClient:
    """Terminal client for one logged-in session"""

    def __init__(
        self,
        session: Session,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        reader: Optional[PromptLineReader] = None,
    ):
        self.session = session
        self.settings = settings or Settings()
        self.console = console or Console()
        self.directory = RoomDirectory()
        self.engine = SyncEngine(session, self.directory, on_event=self.display_event, settings=self.settings)
        self.history = HistoryFetcher(session, limit=self.settings.history_limit)
        self.shell = CommandShell(
            session,
            self.directory,
            self.history,
            cursor_source=lambda: self.engine.cursor,
            reader=reader,
            console=self.console,
            prefix=self.settings.room_prefix,
        )

    async def initialize(self) -> None:
        """Initial sync. Failures propagate and end the program."""
        await self.engine.bootstrap()

    async def run(self) -> None:
        """Run sync and shell until the shell hits end of input"""
        if self.engine.state != SyncState.STREAMING:
            await self.initialize()

        sync_task = asyncio.create_task(self.engine.run(), name="mmm-sync")
        shell_task = asyncio.create_task(self.shell.run(), name="mmm-shell")

        try:
            done, _ = await asyncio.wait({sync_task, shell_task}, return_when=asyncio.FIRST_COMPLETED)
            # Sync only stops on an unexpected error; surface it instead of hiding it
            for task in done:
                task.result()
        finally:
            for task in (sync_task, shell_task):
                task.cancel()
            await asyncio.gather(sync_task, shell_task, return_exceptions=True)

    def display_event(self, timestamp: int, room_name: str, sender: str, body: str) -> None:
        """Sync engine callback: print one live message"""
        self.console.print(
            format_event_line(timestamp, room_name, sender, body),
            markup=False,
            highlight=False,
            emoji=False,
            soft_wrap=True,
        )

    def get_user_info(self) -> Dict[str, Any]:
        """Current client state, for diagnostics"""
        cursor = self.engine.cursor
        return {
            'state': self.engine.state.value,
            'selected_room': self.shell.selected,
            'rooms': [name for name, _ in self.directory.snapshot()],
            'cursor_position': cursor.position if cursor else None,
        }
