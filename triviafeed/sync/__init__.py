"""
Sync: local outbox to remote store and back.

- remote_client: PostgREST-style HTTP client with retries and schema fallback
- reconciler: sync() upload and fetch_remote_deltas() pull
- background: periodic sync thread
"""

from triviafeed.sync.background import BackgroundSync, SyncStatus
from triviafeed.sync.reconciler import SyncReconciler, SyncResult
from triviafeed.sync.remote_client import OPTIONAL_COLUMNS, RemotePage, RemoteStoreClient

__all__ = [
    "OPTIONAL_COLUMNS",
    "BackgroundSync",
    "RemotePage",
    "RemoteStoreClient",
    "SyncReconciler",
    "SyncResult",
    "SyncStatus",
]
