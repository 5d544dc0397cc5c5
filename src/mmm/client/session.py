"""
Matrix Client-Server Session

The session is the only part of the client that talks to the homeserver.
Transport goes through mautrix's Client: login, /sync, sending and history
pagination. Room members live in mautrix's state store; the few summary
fields it does not keep (name, alias, heroes, member counts) are cached
here so that room display names can be computed without extra requests.
"""

from typing import Any, Awaitable, Dict, List, Optional, Protocol, Tuple, TypeVar
import asyncio
import json
import logging
import re

import aiohttp
from mautrix.client import Client
from mautrix.client.state_store.memory import MemoryStateStore
from mautrix.errors import (
    MatrixConnectionError,
    MatrixError,
    MForbidden,
    MLimitExceeded,
    MMissingToken,
    MNotFound,
    MUnknownToken,
)
from mautrix.types import (
    FilterID,
    Member,
    Membership as MemberState,
    PaginationDirection,
    RoomID,
    SyncToken,
    UserID,
)
from pydantic import BaseModel, Field

from ..config import Settings
from ..core.errors import AccessDeniedError, AuthError, MmmError, NetworkError, NotFoundError
from ..core.events import EventTypes
from ..core.rooms import Membership, RoomHandle
from ..core.sync import HistoryChunk, RoomUpdate, SyncBatch, SyncFilter

logger = logging.getLogger(__name__)

USER_ID_RE = re.compile(r"^@(?P<localpart>[^:@\s]+):(?P<server_name>[^\s]+)$")

T = TypeVar('T')


class Session(Protocol):
    """What the sync engine, history fetcher and shell need from a session"""

    async def bootstrap_sync(self, sync_filter: SyncFilter) -> Tuple[List[RoomHandle], str]:
        ...

    async def next_batch(self, token: str) -> Tuple[SyncBatch, str]:
        ...

    async def send_text(self, handle: RoomHandle, body: str) -> str:
        ...

    async def fetch_backward_history(self, handle: RoomHandle, before_token: str, limit: int) -> HistoryChunk:
        ...

    async def display_name(self, handle: RoomHandle) -> Optional[str]:
        ...


def parse_user_id(user_id: str) -> Tuple[str, str]:
    """Split @localpart:server_name, raising ValueError when malformed"""
    match = USER_ID_RE.match(user_id or "")
    if not match:
        raise ValueError(f"Bad user_id: {user_id!r} (expected @user:server)")
    return match.group('localpart'), match.group('server_name')


def translate_error(error: MatrixError) -> MmmError:
    """Map a mautrix error onto the client's error taxonomy"""
    status = getattr(error, 'http_status', None)
    errcode = getattr(error, 'errcode', None)
    message = getattr(error, 'message', None) or str(error) or type(error).__name__
    if errcode:
        message = f"{message} ({errcode})"

    if isinstance(error, (MUnknownToken, MMissingToken)) or status == 401:
        return AuthError(message, errcode=errcode, status=status)
    if isinstance(error, MForbidden) or status == 403:
        return AccessDeniedError(message, errcode=errcode, status=status)
    if isinstance(error, MNotFound) or status == 404:
        return NotFoundError(message, errcode=errcode, status=status)
    if isinstance(error, (MatrixConnectionError, MLimitExceeded)) or (status is not None and status >= 500):
        return NetworkError(message, errcode=errcode, status=status)
    return MmmError(message, errcode=errcode, status=status)


class RoomSummary(BaseModel):
    """Per-room fields the display name needs beyond the member list"""

    membership: str = Membership.JOIN
    name: Optional[str] = None
    canonical_alias: Optional[str] = None
    heroes: List[str] = Field(default_factory=list)
    joined_member_count: Optional[int] = None
    invited_member_count: Optional[int] = None

    def apply_state_event(self, event: Dict[str, Any]) -> bool:
        """Apply an m.room.name or m.room.canonical_alias event, returning True if it changed anything"""
        content = event.get('content')
        if not isinstance(content, dict):
            content = {}

        if event.get('type') == EventTypes.NAME:
            name = content.get('name') if isinstance(content.get('name'), str) else None
            name = name or None
            changed = name != self.name
            self.name = name
            return changed

        if event.get('type') == EventTypes.CANONICAL_ALIAS:
            alias = content.get('alias') if isinstance(content.get('alias'), str) else None
            alias = alias or None
            changed = alias != self.canonical_alias
            self.canonical_alias = alias
            return changed

        return False

    def apply_summary(self, summary: Dict[str, Any]) -> bool:
        """Apply a sync room summary (heroes and member counts)"""
        changed = False
        heroes = summary.get('m.heroes')
        if isinstance(heroes, list):
            heroes = [h for h in heroes if isinstance(h, str)]
            changed |= heroes != self.heroes
            self.heroes = heroes

        joined = summary.get('m.joined_member_count')
        if isinstance(joined, int):
            changed |= joined != self.joined_member_count
            self.joined_member_count = joined

        invited = summary.get('m.invited_member_count')
        if isinstance(invited, int):
            changed |= invited != self.invited_member_count
            self.invited_member_count = invited

        return changed


def join_names(names: List[str]) -> str:
    """['A'] -> 'A', ['A', 'B', 'C'] -> 'A, B and C'"""
    if len(names) == 1:
        return names[0]
    return f"{', '.join(names[:-1])} and {names[-1]}"


def _member_state(value: Any) -> MemberState:
    try:
        return MemberState(value)
    except ValueError:
        return MemberState.LEAVE


class MatrixSession:
    """Session backed by a mautrix Client"""

    def __init__(self, user_id: str, settings: Optional[Settings] = None):
        self.user_id = user_id
        self.localpart, self.server_name = parse_user_id(user_id)
        self.settings = settings or Settings()
        self.homeserver: Optional[str] = self.settings.homeserver
        self.access_token: Optional[str] = None
        self.device_id: Optional[str] = None
        self.state_store = MemoryStateStore()
        self.rooms: Dict[str, RoomSummary] = {}
        self.client: Optional[Client] = None
        self._sync_filter: Optional[SyncFilter] = None
        self._http: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> 'MatrixSession':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._http is None:
            self._http = aiohttp.ClientSession()

    async def close(self) -> None:
        self.client = None
        if self._http is not None:
            await self._http.close()
            self._http = None

    @property
    def logged_in(self) -> bool:
        return self.access_token is not None

    async def discover_homeserver(self) -> str:
        """Resolve the homeserver base URL from the user ID's server name"""
        if not self.homeserver:
            base_url = None
            try:
                base_url = await asyncio.wait_for(
                    Client.discover(self.server_name, self._http_session()),
                    self.settings.request_timeout,
                )
            except (MatrixError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.debug("Well-known lookup for %s failed: %s", self.server_name, e)
            self.homeserver = str(base_url or f"https://{self.server_name}").rstrip('/')

        self.client = Client(
            mxid=UserID(self.user_id),
            base_url=self.homeserver,
            token=self.access_token or "",
            client_session=self._http_session(),
            state_store=self.state_store,
        )
        if self.device_id:
            self.client.device_id = self.device_id
        logger.info("Using homeserver %s", self.homeserver)
        return self.homeserver

    async def login(self, password: str, device_id: Optional[str] = None) -> str:
        """Password login as the user's localpart. Returns the device ID the server assigned."""
        client = self._matrix()
        try:
            resp = await self._call(client.login(
                identifier=self.localpart,
                password=password,
                device_name=self.settings.device_name,
                device_id=device_id,
            ))
        except AccessDeniedError as e:
            raise AuthError(str(e), errcode=e.errcode, status=e.status) from e

        if not resp.access_token:
            raise AuthError("Login response has no access_token")

        self.restore(resp.access_token, resp.device_id or device_id)
        logger.info("Logged in as %s (device %s)", self.user_id, self.device_id)
        return self.device_id

    def restore(self, access_token: Optional[str], device_id: Optional[str] = None) -> None:
        """Reuse an access token from an earlier login"""
        self.access_token = access_token
        self.device_id = device_id
        if self.client is not None:
            self.client.api.token = access_token or ""
            self.client.device_id = device_id or ""

    async def whoami(self) -> str:
        """Check the access token, returning the user it belongs to"""
        resp = await self._call(self._matrix(authed=True).whoami())
        user_id = str(resp.user_id)
        if user_id != self.user_id:
            raise AuthError(f"Access token belongs to {user_id!r}, not {self.user_id!r}")
        return user_id

    async def bootstrap_sync(self, sync_filter: SyncFilter) -> Tuple[List[RoomHandle], str]:
        self._sync_filter = sync_filter
        data = await self._sync(None, 0)
        token = self._next_token(data)
        batch = await self.apply_sync(data)
        return [room.handle for room in batch.joined()], token

    async def next_batch(self, token: str) -> Tuple[SyncBatch, str]:
        data = await self._sync(token, self.settings.sync_timeout_ms)
        # Reject the response before it touches the room cache
        next_token = self._next_token(data)
        return await self.apply_sync(data), next_token

    async def send_text(self, handle: RoomHandle, body: str) -> str:
        event_id = await self._call(self._matrix(authed=True).send_text(RoomID(handle.room_id), body))
        logger.debug("Sent %s to %s", event_id, handle.room_id)
        return str(event_id)

    async def fetch_backward_history(self, handle: RoomHandle, before_token: str, limit: int) -> HistoryChunk:
        resp = await self._call(self._matrix(authed=True).get_messages(
            RoomID(handle.room_id),
            direction=PaginationDirection.BACKWARD,
            from_token=SyncToken(before_token),
            limit=limit,
        ))
        return HistoryChunk(
            events=[event.serialize() for event in resp.events],
            start=resp.start,
            end=resp.end,
        )

    async def display_name(self, handle: RoomHandle) -> Optional[str]:
        """Room display name: explicit name, then alias, then heroes, then Empty Room"""
        summary = self.rooms.get(handle.room_id)
        if summary is None:
            return None
        if summary.name:
            return summary.name
        if summary.canonical_alias:
            return summary.canonical_alias

        room_id = RoomID(handle.room_id)
        members = self.state_store.members.get(room_id, {})

        heroes = [h for h in summary.heroes if h != self.user_id]
        if not heroes:
            heroes = sorted(
                user_id for user_id, member in members.items()
                if user_id != self.user_id and member.membership in (MemberState.JOIN, MemberState.INVITE)
            )[:5]

        joined = summary.joined_member_count
        if joined is None:
            joined = sum(1 for m in members.values() if m.membership == MemberState.JOIN)
        invited = summary.invited_member_count
        if invited is None:
            invited = sum(1 for m in members.values() if m.membership == MemberState.INVITE)

        names = [await self._member_name(room_id, user_id) for user_id in heroes]
        others = joined + invited - 1

        if names and others > len(names):
            return f"{', '.join(names)} and {others - len(names)} others"
        if names and others >= 1:
            return join_names(names)
        if names:
            return f"Empty Room (was {join_names(names)})"
        return "Empty Room"

    async def apply_sync(self, data: Dict[str, Any]) -> SyncBatch:
        """Fold a /sync response into the room caches and reduce it to room updates"""
        rooms = data.get('rooms') if isinstance(data.get('rooms'), dict) else {}
        updates = []

        for membership in (Membership.JOIN, Membership.INVITE, Membership.LEAVE):
            section = rooms.get(membership)
            if not isinstance(section, dict):
                continue

            for room_id, room_data in section.items():
                if not isinstance(room_data, dict):
                    continue
                updates.append(await self._apply_room(room_id, membership, room_data))

        return SyncBatch(rooms=updates)

    async def _apply_room(self, room_id: str, membership: str, room_data: Dict[str, Any]) -> RoomUpdate:
        summary = self.rooms.get(room_id)
        changed = summary is None or summary.membership != membership
        if summary is None:
            summary = self.rooms[room_id] = RoomSummary()
        summary.membership = membership

        state_key = 'invite_state' if membership == Membership.INVITE else 'state'
        state_events = _events_of(room_data.get(state_key))
        timeline = _events_of(room_data.get('timeline'))

        for event in state_events + timeline:
            if 'state_key' not in event:
                continue
            if event.get('type') == EventTypes.MEMBER:
                changed |= await self._apply_member(room_id, event)
            else:
                changed |= summary.apply_state_event(event)

        room_summary = room_data.get('summary')
        if isinstance(room_summary, dict):
            changed |= summary.apply_summary(room_summary)

        return RoomUpdate(
            handle=RoomHandle(room_id=room_id, membership=membership),
            state_changed=changed,
            events=timeline,
        )

    async def _apply_member(self, room_id: str, event: Dict[str, Any]) -> bool:
        user_id = event.get('state_key')
        if not isinstance(user_id, str):
            return False
        content = event.get('content') if isinstance(event.get('content'), dict) else {}
        displayname = content.get('displayname')
        member = Member(
            membership=_member_state(content.get('membership')),
            displayname=displayname if isinstance(displayname, str) else None,
        )

        previous = await self.state_store.get_member(RoomID(room_id), UserID(user_id))
        await self.state_store.set_member(RoomID(room_id), UserID(user_id), member)
        return (
            previous is None
            or previous.membership != member.membership
            or previous.displayname != member.displayname
        )

    async def _member_name(self, room_id: RoomID, user_id: str) -> str:
        member = await self.state_store.get_member(room_id, UserID(user_id))
        if member and member.displayname:
            return member.displayname
        return user_id

    async def _sync(self, since: Optional[str], timeout_ms: int) -> Dict[str, Any]:
        filter_id = None
        if self._sync_filter is not None:
            filter_id = FilterID(json.dumps(self._sync_filter.to_definition(), separators=(',', ':')))

        # Leave the server its full long-poll window before giving up
        data = await self._call(
            self._matrix(authed=True).sync(
                since=SyncToken(since) if since else None,
                timeout=timeout_ms,
                filter_id=filter_id,
            ),
            timeout=timeout_ms / 1000 + self.settings.request_timeout,
        )
        return data if isinstance(data, dict) else {}

    def _next_token(self, data: Dict[str, Any]) -> str:
        token = data.get('next_batch')
        if not isinstance(token, str) or not token:
            raise MmmError("Sync response has no next_batch")
        return token

    def _http_session(self) -> aiohttp.ClientSession:
        if self._http is None:
            raise MmmError("Session is not open")
        return self._http

    def _matrix(self, authed: bool = False) -> Client:
        if authed and self.access_token is None:
            raise AuthError("Not logged in")
        if self.client is None:
            raise MmmError("Homeserver is not known yet")
        return self.client

    async def _call(self, request: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await one mautrix request, translating its failures"""
        try:
            return await asyncio.wait_for(request, timeout or self.settings.request_timeout)
        except MatrixError as e:
            raise translate_error(e) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Request failed: {e!r}") from e


def _events_of(section: Any) -> List[Dict[str, Any]]:
    if not isinstance(section, dict):
        return []
    events = section.get('events')
    if not isinstance(events, list):
        return []
    return [event for event in events if isinstance(event, dict)]
