import asyncio
import io
from typing import Dict, List, Optional, Tuple

import pytest
from rich.console import Console

from mmm.config import Settings
from mmm.core.errors import MmmError, NotFoundError
from mmm.core.rooms import Membership, RoomDirectory, RoomHandle
from mmm.core.sync import HistoryChunk, RoomUpdate, SyncBatch


def text_event(body, sender="@bob:example.org", ts=1000, event_id=None):
    return {
        'type': 'm.room.message',
        'event_id': event_id or f"$ev{ts}",
        'sender': sender,
        'origin_server_ts': ts,
        'content': {'msgtype': 'm.text', 'body': body},
    }


def content_event(content, sender="@bob:example.org", ts=1000):
    return {
        'type': 'm.room.message',
        'event_id': f"$ev{ts}",
        'sender': sender,
        'origin_server_ts': ts,
        'content': content,
    }


class FakeSession:
    """In-memory stand-in for MatrixSession

    Timeline events remember which sync token delivered them, and history
    pagination only returns events delivered at or before the token asked
    for, as /messages?dir=b does.
    """

    def __init__(self, rooms: Optional[Dict[str, str]] = None, next_batch_token: str = "s0"):
        # room_id -> display name
        self.names: Dict[str, str] = dict(rooms or {})
        # room_id -> [(index into tokens of the batch that delivered it, event)]
        self.timelines: Dict[str, List[Tuple[int, dict]]] = {room_id: [] for room_id in self.names}
        self.tokens: List[str] = [next_batch_token]
        self.batches: List[object] = []
        self.outbox: List[Tuple[str, dict]] = []
        self.drained = asyncio.Event()
        self.bootstrap_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.history_error: Optional[Exception] = None
        self.bootstrap_calls = 0
        self.next_batch_calls: List[str] = []
        self.sent: List[Tuple[str, str]] = []
        self.history_calls: List[Tuple[str, str, int]] = []
        self.sync_filters = []

    def seed(self, room_id: str, events: List[dict]):
        """Events already in the room before the initial sync"""
        self.timelines.setdefault(room_id, []).extend((0, event) for event in events)

    async def bootstrap_sync(self, sync_filter):
        self.bootstrap_calls += 1
        self.sync_filters.append(sync_filter)
        if self.bootstrap_error:
            raise self.bootstrap_error
        handles = [RoomHandle(room_id=room_id) for room_id in self.names]
        return handles, self.tokens[0]

    def queue_batch(self, rooms: List[RoomUpdate], token: str):
        self.batches.append((SyncBatch(rooms=rooms), token))

    def queue_error(self, error: Exception):
        self.batches.append(error)

    def deliver_sent(self, token: str):
        """Queue a batch carrying everything sent since the last delivery"""
        by_room: Dict[str, List[dict]] = {}
        for room_id, event in self.outbox:
            by_room.setdefault(room_id, []).append(event)
        self.outbox = []
        self.queue_batch([joined(room_id, events) for room_id, events in by_room.items()], token)

    async def next_batch(self, token):
        self.next_batch_calls.append(token)
        if not self.batches:
            # Long-poll with nothing new: wait until cancelled
            self.drained.set()
            await asyncio.Event().wait()
        item = self.batches.pop(0)
        if isinstance(item, Exception):
            raise item

        batch, next_token = item
        self.tokens.append(next_token)
        position = len(self.tokens) - 1
        for room in batch.rooms:
            self.timelines.setdefault(room.room_id, []).extend((position, event) for event in room.events)
        return item

    async def send_text(self, handle, body):
        if self.send_error:
            raise self.send_error
        self.sent.append((handle.room_id, body))
        event = text_event(body, sender="@alice:example.org", ts=5000 + len(self.sent))
        self.outbox.append((handle.room_id, event))
        return f"$sent{len(self.sent)}"

    async def fetch_backward_history(self, handle, before_token, limit):
        self.history_calls.append((handle.room_id, before_token, limit))
        if self.history_error:
            raise self.history_error
        if handle.room_id not in self.timelines:
            raise NotFoundError(f"Unknown room {handle.room_id}")
        if before_token not in self.tokens:
            raise MmmError(f"Unknown pagination token {before_token}")

        boundary = self.tokens.index(before_token)
        visible = [event for position, event in self.timelines[handle.room_id] if position <= boundary]
        newest_first = list(reversed(visible))[:limit]
        return HistoryChunk(events=newest_first, start=before_token, end="t_end")

    async def display_name(self, handle):
        return self.names.get(handle.room_id)


def joined(room_id, events=None, state_changed=False):
    return RoomUpdate(
        handle=RoomHandle(room_id=room_id, membership=Membership.JOIN),
        state_changed=state_changed,
        events=events or [],
    )


class ListReader:
    """Feeds the shell a fixed list of lines"""

    def __init__(self, lines):
        self.lines = list(lines)
        self.prompts = []

    async def readline(self, prompt=""):
        self.prompts.append(prompt)
        if not self.lines:
            return None
        return self.lines.pop(0)


@pytest.fixture
def settings():
    return Settings(_env_file=None, retry_delay=0, log_to_file=False)


@pytest.fixture
def directory():
    return RoomDirectory()


@pytest.fixture
def output():
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, color_system=None, force_terminal=False)
    return console, buffer
