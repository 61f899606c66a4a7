"""
Sync Reconciler.

Moves weight change events between the local outbox and the remote store.

- sync(): upload every unsynced event, stamping synced_at only after the
  remote acknowledged it. Upload is keyed by event id, so a retry after a
  lost acknowledgement is harmless.
- fetch_remote_deltas(): pull events other devices uploaded since the last
  pull and hand them to the idempotent weight model path. The pull cursor is
  the server-assigned arrival time, never a device clock, so an event created
  offline long ago still arrives once its device reconnects.

Failures leave events unsynced for the next call. The weight update path
never waits on anything in this module.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger

from triviafeed.core.errors import SchemaMismatch, SyncTransportError
from triviafeed.core.models import WeightChangeEvent, utcnow
from triviafeed.db.local_store import LocalStore

from .remote_client import RemoteStoreClient

# (user_id, events) -> number of events newly applied
ApplyRemote = Callable[[str, Sequence[WeightChangeEvent]], int]


@dataclass
class SyncResult:
    """Result of a sync operation."""

    success: bool
    uploaded: int = 0
    pending: int = 0
    pulled: int = 0
    applied: int = 0
    offline: bool = False
    cancelled: bool = False
    degraded_columns: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    sync_timestamp: datetime = field(default_factory=utcnow)


class SyncReconciler:
    """Uploads the local outbox and pulls other devices' events."""

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStoreClient,
        apply_remote: ApplyRemote | None = None,
        reachability: Callable[[], bool] | None = None,
        batch_size: int = 200,
        pull_enabled: bool = True,
        pull_page_size: int = 1000,
        pull_overlap_seconds: float = 300.0,
    ):
        self.store = store
        self.remote = remote
        self.apply_remote = apply_remote
        self.reachability = reachability or remote.health_check
        self.batch_size = batch_size
        self.pull_enabled = pull_enabled
        self.pull_page_size = max(1, pull_page_size)
        self.pull_overlap_seconds = pull_overlap_seconds
        self._sync_lock = threading.Lock()

    def is_reachable(self) -> bool:
        try:
            return bool(self.reachability())
        except Exception as e:
            logger.debug("Reachability check failed: {}", e)
            return False

    # =========================================================================
    # Upload
    # =========================================================================

    def sync(
        self,
        cancel: threading.Event | None = None,
        user_ids: Iterable[str] | None = None,
    ) -> SyncResult:
        """
        Upload unsynced events, then pull remote deltas.

        Args:
            cancel: Set to stop between events; the rest stays unsynced
            user_ids: Users to pull for besides every user known locally

        Returns:
            SyncResult with counts and errors; local events are never dropped
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress - skipping")
            return SyncResult(success=False, errors=["sync already in progress"])

        try:
            if not self.is_reachable():
                pending = self.store.pending_count()
                logger.info("Remote store unreachable; {} events stay queued", pending)
                return SyncResult(
                    success=False,
                    offline=True,
                    pending=pending,
                    errors=["remote store unreachable"],
                )

            result = SyncResult(success=True)
            self._upload(result, cancel)

            if self.pull_enabled and not result.cancelled:
                users = self.store.known_user_ids()
                users += [u for u in user_ids or () if u not in users]
                for user_id in users:
                    if cancel is not None and cancel.is_set():
                        result.cancelled = True
                        break
                    try:
                        pulled, applied = self._pull(user_id)
                    except (SyncTransportError, SchemaMismatch) as e:
                        result.errors.append(f"pull {user_id}: {e}")
                        break
                    result.pulled += pulled
                    result.applied += applied

            result.pending = self.store.pending_count()
            result.degraded_columns = sorted(self.remote.dropped_columns)
            result.success = not result.errors and not result.cancelled
            logger.info(
                "Sync complete: uploaded={}, pending={}, pulled={}, applied={}, errors={}",
                result.uploaded,
                result.pending,
                result.pulled,
                result.applied,
                len(result.errors),
            )
            return result
        finally:
            self._sync_lock.release()

    def _upload(self, result: SyncResult, cancel: threading.Event | None) -> None:
        while True:
            batch = self.store.pending_events(limit=self.batch_size)
            rejected = 0
            for event in batch:
                if cancel is not None and cancel.is_set():
                    logger.info("Sync cancelled after {} uploads", result.uploaded)
                    result.cancelled = True
                    return
                try:
                    self.remote.upsert_event(event)
                except SyncTransportError as e:
                    result.errors.append(f"upload {event.id}: {e}")
                    if e.retryable:
                        # Remote went away; the rest waits for the next sync
                        return
                    rejected += 1
                    continue
                except SchemaMismatch as e:
                    result.errors.append(f"upload {event.id}: {e}")
                    return
                self.store.mark_synced([event.id])
                result.uploaded += 1

            # Rejected events stay pending and would come back in the next batch
            if len(batch) < self.batch_size or rejected:
                return

    # =========================================================================
    # Pull
    # =========================================================================

    def fetch_remote_deltas(self, user_id: str, since: datetime | None = None) -> int:
        """
        Pull and apply other devices' events for one user.

        Args:
            user_id: User whose events are pulled
            since: Lower bound (default: the persisted cursor)

        Returns:
            Number of events newly applied to the weight model

        Raises:
            SyncTransportError: Remote unreachable
        """
        return self._pull(user_id, since)[1]

    def _pull(self, user_id: str, since: datetime | None = None) -> tuple[int, int]:
        """
        Page through a user's remote events from the cursor on.

        The query starts pull_overlap_seconds before the cursor so that rows
        committed out of arrival order are not missed; rows seen before are
        dropped by event id.

        Returns:
            (events new to the local store, events newly applied)
        """
        stored_cursor = self.store.get_cursor(user_id)
        cursor = since or stored_cursor
        query_from = cursor - timedelta(seconds=self.pull_overlap_seconds) if cursor else None

        newest = None
        pulled = applied = malformed = offset = 0
        while True:
            page = self.remote.fetch_page(
                user_id, since=query_from, limit=self.pull_page_size, offset=offset
            )
            valid = [e for e in page.events if e.is_well_formed and e.user_id == user_id]
            malformed += page.rows - len(valid)

            stored = self.store.append_events(valid)
            pulled += len(stored)
            if self.apply_remote and valid:
                applied += self.apply_remote(user_id, valid)
            if page.cursor is not None and (newest is None or page.cursor > newest):
                newest = page.cursor

            if page.rows < self.pull_page_size:
                break
            offset += page.rows

        if newest is not None and (stored_cursor is None or newest > stored_cursor):
            self.store.set_cursor(user_id, newest)
        if malformed:
            logger.warning("Ignoring {} malformed remote events for {}", malformed, user_id)
        if pulled or applied:
            logger.info("Pulled {} new events for {} ({} applied)", pulled, user_id, applied)
        return pulled, applied
