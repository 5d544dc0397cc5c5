"""
mmm - Minimal Matrix Messenger

A terminal client for the Matrix protocol. It keeps a live view of the
user's joined rooms from the /sync feed while a line-oriented shell
selects rooms, sends text and shows recent history.

Key Features:
- Incremental /sync with a cursor that never skips or repeats a batch
- Room directory shared between the sync loop and the shell
- Text and image messages normalized to one printable line
- Password login with echo disabled, optional keyring-saved token

Usage:
    from mmm import MatrixSession, MmmClient

    async with MatrixSession("@alice:example.org") as session:
        await session.discover_homeserver()
        await session.login(password)
        client = MmmClient(session)
        await client.run()
"""

__version__ = "0.1.0"
__author__ = "mmm Contributors"
__license__ = "AGPLv3"

from .core import MessageEvent, RoomDirectory, RoomHandle, SyncCursor, normalize
from .client import MatrixSession, MmmClient
from .auth import PasswordAuth

__all__ = [
    'MessageEvent',
    'RoomDirectory',
    'RoomHandle',
    'SyncCursor',
    'normalize',
    'MatrixSession',
    'MmmClient',
    'PasswordAuth'
]
