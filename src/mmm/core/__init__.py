"""
mmm Core Module

This module contains the protocol-level building blocks:
- Message event schema and content normalization
- Room handles and the shared room directory
- Sync cursor, filter and batch types
- Error taxonomy and the local state directory
"""

from .errors import MmmError, AuthError, NetworkError, NotFoundError, AccessDeniedError
from .events import MessageEvent, EventTypes, MsgTypes, TextContent, ImageContent, OtherContent, normalize, parse_content
from .rooms import Membership, RoomHandle, RoomDirectory
from .sync import SyncCursor, SyncFilter, SyncBatch, RoomUpdate, HistoryChunk
from .storage import StateStore, StorageError

__all__ = [
    'MmmError',
    'AuthError',
    'NetworkError',
    'NotFoundError',
    'AccessDeniedError',
    'MessageEvent',
    'EventTypes',
    'MsgTypes',
    'TextContent',
    'ImageContent',
    'OtherContent',
    'normalize',
    'parse_content',
    'Membership',
    'RoomHandle',
    'RoomDirectory',
    'SyncCursor',
    'SyncFilter',
    'SyncBatch',
    'RoomUpdate',
    'HistoryChunk',
    'StateStore',
    'StorageError'
]
