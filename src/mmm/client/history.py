"""
History Fetcher

One backward /messages page for a room, bounded by a sync cursor.
"""

from typing import List
import logging

from ..core.events import MessageEvent
from ..core.rooms import RoomHandle
from ..core.sync import SyncCursor
from .session import Session

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10


class HistoryFetcher:
    """Fetches recent room history older than a given sync cursor"""

    def __init__(self, session: Session, limit: int = DEFAULT_HISTORY_LIMIT):
        self.session = session
        self.limit = limit

    async def fetch_history(self, handle: RoomHandle, before: SyncCursor) -> List[MessageEvent]:
        """
        Return displayable message events older than `before`

        Events keep the server's order (newest first). Non-message and
        unrepresented events are dropped. Errors propagate unchanged; no
        retries happen here.
        """
        chunk = await self.session.fetch_backward_history(handle, before.token, self.limit)

        events = []
        for raw in chunk.events:
            event = MessageEvent.from_raw(raw, handle.room_id)
            if event is None or not event.is_represented:
                continue
            events.append(event)

        logger.debug("History for %s: %d of %d events kept", handle.room_id, len(events), len(chunk.events))
        return events
