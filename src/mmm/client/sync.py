"""
Sync Engine

Drives the /sync long-poll loop. Bootstrapping fills the room directory
from one initial sync; streaming then applies every incremental batch in
order, keeps the directory's room names current and hands each displayable
message to the event callback. The cursor only moves once a batch has
been fully processed, so a failed request is simply retried from the same
point.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional, Union
import asyncio
import inspect
import logging

from ..config import Settings
from ..core.errors import AuthError, MmmError
from ..core.events import MessageEvent
from ..core.rooms import Membership, RoomDirectory, RoomHandle
from ..core.sync import RoomUpdate, SyncBatch, SyncCursor, SyncFilter
from .session import Session

logger = logging.getLogger(__name__)

# (timestamp, room_name, sender, body)
EventCallback = Callable[[int, str, str, str], Union[None, Awaitable[None]]]


class SyncState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    STREAMING = "streaming"


class SyncEngine:
    """Long-lived incremental sync against one session"""

    def __init__(
        self,
        session: Session,
        directory: RoomDirectory,
        on_event: Optional[EventCallback] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.directory = directory
        self.on_event = on_event
        self.settings = settings or Settings()
        self.state = SyncState.BOOTSTRAPPING
        self._cursor: Optional[SyncCursor] = None

    @property
    def cursor(self) -> Optional[SyncCursor]:
        """Latest fully processed point of the feed"""
        return self._cursor

    async def bootstrap(self) -> None:
        """Initial sync. Any failure here is fatal and propagates."""
        handles, token = await self.session.bootstrap_sync(SyncFilter.lazy_joined_state())

        for handle in handles:
            await self._index_room(handle)

        self._cursor = SyncCursor(token=token)
        self.state = SyncState.STREAMING
        logger.info("Initial sync done: %d rooms", len(handles))

    async def sync_once(self) -> SyncCursor:
        """Fetch, process and commit one batch"""
        if self._cursor is None or self.state != SyncState.STREAMING:
            raise MmmError("Sync engine has not been bootstrapped")

        batch, token = await self.session.next_batch(self._cursor.token)
        await self.process_batch(batch)

        self._cursor = self._cursor.advance(token)
        logger.debug("Advanced sync cursor to position %d", self._cursor.position)
        return self._cursor

    async def run(self) -> None:
        """Bootstrap if needed, then stream forever"""
        if self.state != SyncState.STREAMING:
            await self.bootstrap()

        while True:
            try:
                await self.sync_once()
            except AuthError as e:
                logger.error("Sync rejected, retrying in %.1fs: %s", self.settings.retry_delay, e)
                await asyncio.sleep(self.settings.retry_delay)
            except MmmError as e:
                logger.warning("Sync failed, retrying in %.1fs: %s", self.settings.retry_delay, e)
                await asyncio.sleep(self.settings.retry_delay)

    async def process_batch(self, batch: SyncBatch) -> None:
        for room in batch.rooms:
            if room.membership != Membership.JOIN:
                # Invited and left rooms never reach the directory or the callback
                continue
            await self._process_room(room)

    async def _process_room(self, room: RoomUpdate) -> None:
        # state_changed is already False when a failed batch is fetched again
        await self._index_room(room.handle)

        room_name = self.directory.name_of(room.room_id) or room.room_id

        for raw in room.events:
            event = MessageEvent.from_raw(raw, room.room_id)
            if event is None or not event.is_represented:
                continue
            await self._emit(event.timestamp, room_name, event.sender, event.body)

    async def _index_room(self, handle: RoomHandle) -> None:
        name = await self.session.display_name(handle)
        if name:
            if name != self.directory.name_of(handle.room_id):
                self.directory.upsert(name, handle)
        else:
            logger.debug("No display name for %s yet", handle.room_id)

    async def _emit(self, timestamp: int, room_name: str, sender: str, body: str) -> None:
        if self.on_event is None:
            return
        result = self.on_event(timestamp, room_name, sender, body)
        if inspect.isawaitable(result):
            await result
