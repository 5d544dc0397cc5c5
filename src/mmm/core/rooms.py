"""
Room Directory

Bidirectional mapping between human-readable room names and room handles.
The sync engine writes to it whenever a room's state changes, the shell
reads it once per command, so a single lock around both maps is enough.
"""

import threading
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class Membership:
    """Constants for the user's membership in a room"""

    JOIN = "join"
    INVITE = "invite"
    LEAVE = "leave"


class RoomHandle(BaseModel):
    """Opaque reference to a room known to the session"""

    model_config = ConfigDict(frozen=True)

    room_id: str = Field(..., description="Room identifier, e.g. !abc:example.org")
    membership: str = Field(default=Membership.JOIN, description="Current membership of the user")

    def __str__(self) -> str:
        return self.room_id


class RoomDirectory:
    """
    Name -> RoomHandle mapping shared by the sync engine and the shell

    Duplicate names are last-insert-wins. A room is listed once, under the
    name it was last upserted with: renaming it drops the old entry unless
    another room has since taken that name.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_name: Dict[str, RoomHandle] = {}
        self._names: Dict[str, str] = {}

    def upsert(self, name: str, handle: RoomHandle) -> None:
        """Insert or overwrite the mapping for name"""
        with self._lock:
            previous = self._names.get(handle.room_id)
            if previous is not None and previous != name:
                owner = self._by_name.get(previous)
                if owner is not None and owner.room_id == handle.room_id:
                    del self._by_name[previous]
            self._by_name[name] = handle
            self._names[handle.room_id] = name

    def resolve(self, name: str) -> Optional[RoomHandle]:
        """Return the current handle for name, or None if unknown"""
        with self._lock:
            return self._by_name.get(name)

    def name_of(self, room_id: str) -> Optional[str]:
        """Return the name most recently upserted for a room"""
        with self._lock:
            return self._names.get(room_id)

    def snapshot(self) -> List[Tuple[str, RoomHandle]]:
        """Point-in-time copy of all entries, sorted by name"""
        with self._lock:
            return sorted(self._by_name.items(), key=lambda item: item[0])

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._by_name
