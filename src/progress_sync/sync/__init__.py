"""Local/remote synchronization."""

from .coordinator import SyncCoordinator
from .ledger import HttpRemoteLedger, MemoryRemoteLedger, RemoteLedger, RemoteProgress, RemoteSyncResult
from .merge import FieldPolicy, MERGE_POLICIES, merge_snapshots
from .outbox import Outbox

__all__ = [
    "SyncCoordinator",
    "HttpRemoteLedger",
    "MemoryRemoteLedger",
    "RemoteLedger",
    "RemoteProgress",
    "RemoteSyncResult",
    "FieldPolicy",
    "MERGE_POLICIES",
    "merge_snapshots",
    "Outbox",
]
