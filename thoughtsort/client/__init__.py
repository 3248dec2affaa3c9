from __future__ import annotations

from .context import AppContext
from .local_store import LocalStore
from .remote_api import RemoteAPI
from .review import PendingEntryLifecycle, UndoToken
from .sync import SyncEngine, SyncOutcome

__all__ = [
    "AppContext",
    "LocalStore",
    "PendingEntryLifecycle",
    "RemoteAPI",
    "SyncEngine",
    "SyncOutcome",
    "UndoToken",
]
