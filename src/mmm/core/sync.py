"""
Sync Feed Data Model

Types exchanged between the session and the sync engine: the cursor that
marks how far the feed has been processed, the filter sent with /sync, and
the per-room updates a batch is made of.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .rooms import Membership, RoomHandle


class SyncCursor(BaseModel):
    """
    Point in the sync feed up to which everything has been processed

    token is the server's opaque next_batch value. position is the engine's
    own ordering: 1 after bootstrap, +1 for every processed batch.
    """

    model_config = ConfigDict(frozen=True)

    token: str
    position: int = Field(default=1, ge=1)

    def advance(self, token: str) -> 'SyncCursor':
        return SyncCursor(token=token, position=self.position + 1)


class SyncFilter(BaseModel):
    """Filter definition sent with /sync requests"""

    model_config = ConfigDict(frozen=True)

    lazy_load_members: bool = False
    include_redundant_members: bool = False
    timeline_limit: Optional[int] = None

    @classmethod
    def lazy_joined_state(cls) -> 'SyncFilter':
        """Lazy-load room members so the initial sync stays small"""
        return cls(lazy_load_members=True, include_redundant_members=True)

    def to_definition(self) -> Dict[str, Any]:
        """Render as a Matrix FilterDefinition"""
        state: Dict[str, Any] = {}
        if self.lazy_load_members:
            state['lazy_load_members'] = True
            if self.include_redundant_members:
                state['include_redundant_members'] = True

        room: Dict[str, Any] = {'state': state}
        if self.timeline_limit is not None:
            room['timeline'] = {'limit': self.timeline_limit}
        return {'room': room}


class RoomUpdate(BaseModel):
    """What one sync batch says about one room"""

    handle: RoomHandle
    state_changed: bool = False
    events: List[Dict[str, Any]] = Field(default_factory=list, description="Raw timeline events")

    @property
    def room_id(self) -> str:
        return self.handle.room_id

    @property
    def membership(self) -> str:
        return self.handle.membership


class SyncBatch(BaseModel):
    """One incremental /sync response, reduced to room updates"""

    rooms: List[RoomUpdate] = Field(default_factory=list)

    def joined(self) -> List[RoomUpdate]:
        return [room for room in self.rooms if room.membership == Membership.JOIN]


class HistoryChunk(BaseModel):
    """One page of /messages pagination"""

    events: List[Dict[str, Any]] = Field(default_factory=list, description="Raw events, newest first")
    start: Optional[str] = None
    end: Optional[str] = None
