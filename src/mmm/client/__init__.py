"""
mmm Client Module

This module contains the client runtime including:
- Matrix session on mautrix
- Sync engine
- History fetcher
- Command shell
"""

from .session import Session, MatrixSession
from .sync import SyncEngine, SyncState
from .history import HistoryFetcher
from .shell import CommandShell, PromptLineReader, parse_command
from .client import MmmClient

__all__ = [
    'Session',
    'MatrixSession',
    'SyncEngine',
    'SyncState',
    'HistoryFetcher',
    'CommandShell',
    'PromptLineReader',
    'parse_command',
    'MmmClient'
]
