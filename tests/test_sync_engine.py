import asyncio

import pytest

from mmm.client.sync import SyncEngine, SyncState
from mmm.core.errors import AuthError, MmmError, NetworkError
from mmm.core.rooms import Membership, RoomDirectory, RoomHandle
from mmm.core.sync import RoomUpdate

from conftest import FakeSession, content_event, joined, text_event


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, timestamp, room_name, sender, body):
        self.events.append((timestamp, room_name, sender, body))


@pytest.fixture
def session():
    return FakeSession({"!gen:x": "general", "!rnd:x": "random"})


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def engine(session, directory, recorder, settings):
    return SyncEngine(session, directory, on_event=recorder, settings=settings)


@pytest.mark.asyncio
async def test_bootstrap_populates_directory(engine, session, directory):
    assert engine.state == SyncState.BOOTSTRAPPING

    await engine.bootstrap()

    assert engine.state == SyncState.STREAMING
    assert directory.resolve("general") == RoomHandle(room_id="!gen:x")
    assert directory.resolve("random") == RoomHandle(room_id="!rnd:x")
    assert engine.cursor.token == "s0"
    assert engine.cursor.position == 1


@pytest.mark.asyncio
async def test_bootstrap_requests_lazy_loaded_members(engine, session):
    await engine.bootstrap()

    definition = session.sync_filters[0].to_definition()
    assert definition['room']['state']['lazy_load_members'] is True
    assert definition['room']['state']['include_redundant_members'] is True


@pytest.mark.asyncio
async def test_bootstrap_failure_is_fatal(engine, session, directory):
    session.bootstrap_error = AuthError("bad token")

    with pytest.raises(AuthError):
        await engine.bootstrap()

    assert engine.state == SyncState.BOOTSTRAPPING
    assert engine.cursor is None
    assert len(directory) == 0


@pytest.mark.asyncio
async def test_bootstrap_skips_rooms_without_name(directory, recorder, settings):
    session = FakeSession({"!gen:x": "general"})
    session.names["!noname:x"] = None
    engine = SyncEngine(session, directory, on_event=recorder, settings=settings)

    await engine.bootstrap()

    assert [name for name, _ in directory.snapshot()] == ["general"]


@pytest.mark.asyncio
async def test_bootstrap_twice_gives_same_snapshot(session, directory, recorder, settings):
    await SyncEngine(session, directory, on_event=recorder, settings=settings).bootstrap()
    first = directory.snapshot()

    other = RoomDirectory()
    await SyncEngine(session, other, on_event=recorder, settings=settings).bootstrap()

    assert other.snapshot() == first


@pytest.mark.asyncio
async def test_sync_once_requires_bootstrap(engine):
    with pytest.raises(MmmError):
        await engine.sync_once()


@pytest.mark.asyncio
async def test_messages_in_joined_rooms_reach_callback(engine, session, recorder):
    await engine.bootstrap()
    session.queue_batch([joined("!gen:x", [text_event("hello", ts=10)])], "s1")

    await engine.sync_once()

    assert recorder.events == [(10, "general", "@bob:example.org", "hello")]


@pytest.mark.asyncio
async def test_invited_and_left_rooms_are_discarded(engine, session, directory, recorder):
    await engine.bootstrap()
    session.names["!inv:x"] = "invited room"
    session.names["!left:x"] = "left room"
    session.queue_batch([
        RoomUpdate(handle=RoomHandle(room_id="!inv:x", membership=Membership.INVITE),
                   state_changed=True, events=[text_event("psst")]),
        RoomUpdate(handle=RoomHandle(room_id="!left:x", membership=Membership.LEAVE),
                   state_changed=True, events=[text_event("bye")]),
    ], "s1")

    await engine.sync_once()

    assert recorder.events == []
    assert directory.resolve("invited room") is None
    assert directory.resolve("left room") is None


@pytest.mark.asyncio
async def test_unrepresented_events_never_reach_callback(engine, session, recorder):
    await engine.bootstrap()
    session.queue_batch([joined("!gen:x", [
        content_event({'msgtype': 'm.file', 'body': 'report.pdf'}, ts=1),
        content_event({'msgtype': 'm.video', 'body': 'clip.mp4'}, ts=2),
        {'type': 'm.room.member', 'state_key': '@c:x', 'content': {'membership': 'join'}},
        text_event("kept", ts=3),
    ])], "s1")

    await engine.sync_once()

    assert [body for _, _, _, body in recorder.events] == ["kept"]


@pytest.mark.asyncio
async def test_empty_bodies_are_still_emitted(engine, session, recorder):
    await engine.bootstrap()
    session.queue_batch([joined("!gen:x", [
        text_event("", ts=1),
        content_event({'msgtype': 'm.image', 'body': 'no-url.png'}, ts=2),
        content_event({'msgtype': 'm.image', 'body': 'cat.png', 'url': 'mxc://x/cat'}, ts=3),
    ])], "s1")

    await engine.sync_once()

    assert [body for _, _, _, body in recorder.events] == ["", "", "cat.png(mxc://x/cat)"]


@pytest.mark.asyncio
async def test_state_change_updates_room_name(engine, session, directory, recorder):
    await engine.bootstrap()
    session.names["!gen:x"] = "renamed"
    session.queue_batch([joined("!gen:x", [text_event("after rename")], state_changed=True)], "s1")

    await engine.sync_once()

    assert directory.resolve("renamed") == RoomHandle(room_id="!gen:x")
    assert directory.resolve("general") is None
    assert [(name, h.room_id) for name, h in directory.snapshot()] == [("random", "!rnd:x"), ("renamed", "!gen:x")]
    assert recorder.events[0][1] == "renamed"


@pytest.mark.asyncio
async def test_rename_is_picked_up_without_state_change_flag(engine, session, directory):
    await engine.bootstrap()
    session.names["!gen:x"] = "renamed"
    session.queue_batch([joined("!gen:x", state_changed=False)], "s1")

    await engine.sync_once()

    assert directory.resolve("renamed") == RoomHandle(room_id="!gen:x")
    assert directory.name_of("!gen:x") == "renamed"


@pytest.mark.asyncio
async def test_newly_joined_room_is_indexed(engine, session, directory):
    await engine.bootstrap()
    session.names["!new:x"] = "fresh"
    session.queue_batch([joined("!new:x")], "s1")

    await engine.sync_once()

    assert directory.resolve("fresh") == RoomHandle(room_id="!new:x")


@pytest.mark.asyncio
async def test_room_without_name_falls_back_to_room_id(engine, session, recorder):
    await engine.bootstrap()
    session.queue_batch([joined("!anon:x", [text_event("hi", ts=7)])], "s1")

    await engine.sync_once()

    assert recorder.events == [(7, "!anon:x", "@bob:example.org", "hi")]


@pytest.mark.asyncio
async def test_cursor_is_strictly_increasing(engine, session):
    await engine.bootstrap()
    for i in range(1, 4):
        session.queue_batch([], f"s{i}")

    positions = [engine.cursor.position]
    for _ in range(3):
        positions.append((await engine.sync_once()).position)

    assert positions == [1, 2, 3, 4]
    assert session.next_batch_calls == ["s0", "s1", "s2"]
    assert engine.cursor.token == "s3"


@pytest.mark.asyncio
async def test_failed_request_does_not_move_cursor(engine, session):
    await engine.bootstrap()
    before = engine.cursor
    session.queue_error(NetworkError("connection reset"))

    with pytest.raises(NetworkError):
        await engine.sync_once()

    assert engine.cursor == before


@pytest.mark.asyncio
async def test_failed_callback_does_not_move_cursor(session, directory, settings):
    def explode(*args):
        raise RuntimeError("display broke")

    engine = SyncEngine(session, directory, on_event=explode, settings=settings)
    await engine.bootstrap()
    before = engine.cursor
    session.queue_batch([joined("!gen:x", [text_event("hi")])], "s1")

    with pytest.raises(RuntimeError):
        await engine.sync_once()

    assert engine.cursor == before


@pytest.mark.asyncio
async def test_run_retries_every_failure_with_same_cursor(engine, session, recorder):
    session.queue_error(NetworkError("timeout"))
    session.queue_error(AuthError("token revoked"))
    session.queue_error(MmmError("bad gateway body"))
    session.queue_batch([joined("!gen:x", [text_event("after retry", ts=5)])], "s1")

    task = asyncio.create_task(engine.run())
    await asyncio.wait_for(session.drained.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.next_batch_calls == ["s0", "s0", "s0", "s0", "s1"]
    assert recorder.events == [(5, "general", "@bob:example.org", "after retry")]
    assert engine.cursor.position == 2


@pytest.mark.asyncio
async def test_async_callback_is_awaited(session, directory, settings):
    seen = []

    async def on_event(timestamp, room_name, sender, body):
        await asyncio.sleep(0)
        seen.append(body)

    engine = SyncEngine(session, directory, on_event=on_event, settings=settings)
    await engine.bootstrap()
    session.queue_batch([joined("!gen:x", [text_event("async")])], "s1")

    await engine.sync_once()

    assert seen == ["async"]
