"""
Hotel channel sync engine
Keeps a hotel PMS and a remote channel manager consistent in both directions
"""

from .config import SyncSettings, get_settings
from .contracts import EntityKind, EntitySource, PMSStore, SyncMode, TriggerSource
from .errors import ChannelSyncError
from .hooks import ChangeEvent, ChangeSubject, SyncNotifier
from .runtime import SyncRuntime

__version__ = "0.1.0"

__all__ = [
    "SyncSettings",
    "get_settings",
    "EntityKind",
    "EntitySource",
    "PMSStore",
    "SyncMode",
    "TriggerSource",
    "ChannelSyncError",
    "ChangeEvent",
    "ChangeSubject",
    "SyncNotifier",
    "SyncRuntime",
]
