"""
Command Shell

Line-oriented interactive input. A line starting with the room prefix
selects a room (or, with nothing after the prefix, prints the selected
room's recent history); any other line is sent verbatim to the selected
room. Lines aimed at a room that is not selected or not known are ignored.
"""

from typing import Callable, Optional, Union
import logging

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from pydantic import BaseModel
from rich.console import Console

from ..core.errors import MmmError
from ..core.events import format_event_line
from ..core.rooms import RoomDirectory, RoomHandle
from ..core.sync import SyncCursor
from .history import HistoryFetcher
from .session import Session

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "/"


class SelectRoom(BaseModel):
    name: str


class SendMessage(BaseModel):
    body: str


class RequestHistory(BaseModel):
    pass


Command = Union[SelectRoom, SendMessage, RequestHistory]


def parse_command(line: str, prefix: str = DEFAULT_PREFIX) -> Command:
    """Parse one input line (without its newline)"""
    if line.startswith(prefix):
        name = line[len(prefix):]
        if not name:
            return RequestHistory()
        return SelectRoom(name=name)
    return SendMessage(body=line)


class PromptLineReader:
    """
    Reads lines with prompt_toolkit

    Output written while a prompt is open is drawn above it, so live
    messages never overwrite the line being typed.
    """

    def __init__(self, prompt_session: Optional[PromptSession] = None):
        self.prompt_session = prompt_session
        self._eof = False

    async def readline(self, prompt: str = "") -> Optional[str]:
        """Next line, or None at end of input"""
        if self._eof:
            return None
        if self.prompt_session is None:
            self.prompt_session = PromptSession(history=InMemoryHistory())

        try:
            with patch_stdout(raw=True):
                return await self.prompt_session.prompt_async(prompt)
        except EOFError:
            logger.debug("End of input")
            self._eof = True
            return None


class CommandShell:
    """Interactive shell sharing the room directory with the sync engine"""

    def __init__(
        self,
        session: Session,
        directory: RoomDirectory,
        history: HistoryFetcher,
        cursor_source: Callable[[], Optional[SyncCursor]],
        reader: Optional[PromptLineReader] = None,
        console: Optional[Console] = None,
        prefix: str = DEFAULT_PREFIX,
    ):
        self.session = session
        self.directory = directory
        self.history = history
        self.cursor_source = cursor_source
        self.reader = reader or PromptLineReader()
        self.console = console or Console()
        self.prefix = prefix
        self.selected: Optional[str] = None

    @property
    def prompt(self) -> str:
        return f"{self.selected or ''}> "

    async def run(self) -> None:
        """Read and handle lines until end of input"""
        while True:
            line = await self.reader.readline(self.prompt)
            if line is None:
                logger.debug("End of input, shell exiting")
                return
            await self.handle_line(line)

    async def handle_line(self, line: str) -> None:
        if not line:
            return

        command = parse_command(line, self.prefix)
        if isinstance(command, SelectRoom):
            self.selected = command.name
            return

        handle = self._selected_handle()
        if handle is None:
            logger.debug("Ignoring %s: no resolvable room selected (%r)", type(command).__name__, self.selected)
            return

        try:
            if isinstance(command, SendMessage):
                await self.session.send_text(handle, command.body)
            else:
                await self._show_history(handle)
        except MmmError as e:
            logger.info("%s in %s failed: %s", type(command).__name__, handle.room_id, e)
            self.say(f"error: {e}")

    def say(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True)

    def _selected_handle(self) -> Optional[RoomHandle]:
        if self.selected is None:
            return None
        return self.directory.resolve(self.selected)

    async def _show_history(self, handle: RoomHandle) -> None:
        cursor = self.cursor_source()
        if cursor is None:
            logger.debug("No sync cursor yet, history unavailable")
            return

        for event in await self.history.fetch_history(handle, cursor):
            self.say(format_event_line(event.timestamp, self.selected, event.sender, event.body))
