"""
Background sync manager.

Runs SyncReconciler.sync() periodically in a daemon thread while the
engine is active. Stopping sets the cancel event, so an in-flight sync
stops between events and leaves the rest queued.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from loguru import logger

from triviafeed.core.models import utcnow

from .reconciler import SyncReconciler, SyncResult


@dataclass
class SyncStatus:
    """Current background sync status."""

    is_running: bool = False
    is_syncing: bool = False
    remote_reachable: bool = False
    last_sync_at: datetime | None = None
    last_sync_success: bool = True
    last_upload_count: int = 0
    last_pull_count: int = 0
    error_message: str | None = None
    total_syncs: int = 0


@dataclass
class BackgroundSync:
    """
    Background sync manager.

    Usage:
        background = BackgroundSync(reconciler, interval_seconds=300)
        background.start()
        # ... app runs ...
        background.stop()
    """

    reconciler: SyncReconciler
    interval_seconds: float = 300
    on_sync_complete: Callable[[SyncStatus], None] | None = None

    # Internal state
    _status: SyncStatus = field(default_factory=SyncStatus)
    _thread: threading.Thread | None = field(default=None, repr=False)
    _stop_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def status(self) -> SyncStatus:
        """Get current sync status."""
        return self._status

    def start(self) -> bool:
        """
        Start background sync.

        Returns:
            True if started (or already running), False if the interval is disabled
        """
        if self._status.is_running:
            logger.warning("Background sync already running")
            return True
        if self.interval_seconds <= 0:
            logger.info("Background sync disabled (interval {}s)", self.interval_seconds)
            return False

        self._status.is_running = True
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sync_loop,
            name="triviafeed-background-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info("Background sync started (interval: {}s)", self.interval_seconds)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop background sync gracefully."""
        if not self._status.is_running:
            return

        logger.info("Stopping background sync...")
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

        self._status.is_running = False
        logger.info("Background sync stopped")

    def sync_now(self) -> SyncResult:
        """Trigger immediate sync (blocking)."""
        return self._do_sync()

    def _sync_loop(self) -> None:
        while not self._stop_event.is_set():
            if self._stop_event.wait(timeout=self.interval_seconds):
                break
            self._do_sync()

    def _do_sync(self) -> SyncResult:
        self._status.is_syncing = True
        try:
            result = self.reconciler.sync(cancel=self._stop_event)
        except Exception as exc:
            logger.error("Background sync error: {}", exc)
            self._status.last_sync_success = False
            self._status.error_message = str(exc)
            return SyncResult(success=False, errors=[str(exc)])
        finally:
            self._status.is_syncing = False

        self._status.remote_reachable = not result.offline
        self._status.last_sync_at = utcnow()
        self._status.last_sync_success = result.success
        self._status.last_upload_count = result.uploaded
        self._status.last_pull_count = result.pulled
        self._status.error_message = result.errors[0] if result.errors else None
        self._status.total_syncs += 1

        if self.on_sync_complete:
            try:
                self.on_sync_complete(self._status)
            except Exception as exc:
                logger.warning("Sync callback failed: {}", exc)
        return result

    def get_status_line(self) -> str:
        """Short status line for display, e.g. 'Sync: 2m ago (up 3, down 12)'."""
        if not self._status.is_running:
            return "Sync: off"
        if self._status.is_syncing:
            return "Sync: syncing..."
        if not self._status.last_sync_at:
            return "Sync: waiting"
        if not self._status.remote_reachable:
            return "Sync: offline"

        age = (utcnow() - self._status.last_sync_at).total_seconds()
        if age < 60:
            age_str = "just now"
        elif age < 3600:
            age_str = f"{int(age / 60)}m ago"
        else:
            age_str = f"{int(age / 3600)}h ago"
        if not self._status.last_sync_success:
            return f"Sync: failed {age_str}"
        return f"Sync: {age_str} (up {self._status.last_upload_count}, down {self._status.last_pull_count})"
