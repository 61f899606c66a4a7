"""
Remote store client for weight change events.

Talks to a PostgREST-style backend (the app's hosted database):
- Upload: POST /rest/v1/<table>?on_conflict=id with
  Prefer: resolution=ignore-duplicates, so re-sending an event id is a no-op
- Pull: GET /rest/v1/<table> filtered by user and device, paged in order
  of the server-assigned inserted_at column

Usage:
    with RemoteStoreClient.from_settings(get_settings()) as client:
        client.upsert_event(event)
        page = client.fetch_page(user_id, since=cursor)
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from loguru import logger

from triviafeed.core.errors import SchemaMismatch, SyncTransportError
from triviafeed.core.models import InteractionType, WeightChangeEvent, as_utc, utcnow

# Columns the first version of the remote table did not have
OPTIONAL_COLUMNS = (
    "skip_compensation_applied",
    "skip_compensation_topic",
    "skip_compensation_subtopic",
    "skip_compensation_branch",
    "question_id",
    "interaction_type",
    "device_id",
)

SCHEMA_ERROR_CODES = ("PGRST204", "42703")

# Set by the server on insert (DEFAULT now()); never part of an upload
SERVER_CURSOR_COLUMN = "inserted_at"

_COLUMN_PATTERNS = (
    re.compile(r"the '([\w.]+)' column"),
    re.compile(r"column \"?([\w.]+)\"? (?:of relation \"?\w+\"? )?does not exist"),
)


def parse_missing_column(payload: dict[str, Any]) -> str | None:
    """Column name from a PostgREST/Postgres 'unknown column' error, if present."""
    message = " ".join(str(payload.get(k) or "") for k in ("message", "details", "hint"))
    for pattern in _COLUMN_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1).rsplit(".", 1)[-1]
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        return None


@dataclass
class RemotePage:
    """One page of pulled rows."""

    events: list[WeightChangeEvent] = field(default_factory=list)
    rows: int = 0
    # Latest cursor column value on the page (None if the page had none)
    cursor: datetime | None = None


def event_from_remote(data: dict[str, Any], synced_at: datetime | None = None) -> WeightChangeEvent:
    """Build an event from a remote row; pulled events are already synced."""
    interaction = data.get("interaction_type")
    return WeightChangeEvent(
        id=str(data["id"]),
        user_id=data["user_id"],
        topic=data["topic"],
        subtopic=data.get("subtopic"),
        branch=data.get("branch"),
        delta=float(data["delta"]),
        skip_compensation_applied=bool(data.get("skip_compensation_applied") or False),
        skip_compensation_topic=float(data.get("skip_compensation_topic") or 0.0),
        skip_compensation_subtopic=float(data.get("skip_compensation_subtopic") or 0.0),
        skip_compensation_branch=float(data.get("skip_compensation_branch") or 0.0),
        question_id=data.get("question_id"),
        interaction_type=InteractionType(interaction) if interaction else None,
        device_id=data.get("device_id"),
        created_at=datetime.fromisoformat(data["created_at"]),
        synced_at=synced_at or utcnow(),
    )


class RemoteStoreClient:
    """HTTP client for the remote weight change table."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        table: str = "user_weight_changes",
        timeout_seconds: float = 10.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        device_id: str | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the remote client.

        Args:
            base_url: Backend base URL (without /rest/v1)
            api_key: Key sent as 'apikey' header and bearer token
            table: Remote event table
            timeout_seconds: Per-request timeout
            retry_attempts: Attempts per request before giving up
            backoff_seconds: Base of the exponential backoff
            device_id: This device, excluded when pulling
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Backoff sleep function
        """
        self.base_url = base_url.rstrip("/")
        self.table = table
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        self.device_id = device_id
        self._sleep = sleep
        self._dropped_columns: set[str] = set()

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> RemoteStoreClient:
        return cls(
            base_url=settings.remote_url,
            api_key=settings.remote_api_key,
            table=settings.remote_events_table,
            timeout_seconds=settings.remote_timeout_seconds,
            retry_attempts=settings.remote_retry_attempts,
            backoff_seconds=settings.remote_backoff_seconds,
            device_id=settings.device_id,
            **kwargs,
        )

    def __enter__(self) -> RemoteStoreClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    @property
    def dropped_columns(self) -> frozenset[str]:
        """Optional columns the remote table turned out not to have."""
        return frozenset(self._dropped_columns)

    @property
    def table_path(self) -> str:
        return f"/rest/v1/{self.table}"

    # =========================================================================
    # Upload
    # =========================================================================

    def payload_for(self, event: WeightChangeEvent) -> dict[str, Any]:
        """Event row in the shape the remote table currently accepts."""
        return {k: v for k, v in event.to_dict().items() if k not in self._dropped_columns}

    def upsert_event(self, event: WeightChangeEvent) -> bool:
        """
        Upload one event, idempotent on its id.

        A schema mismatch drops the offending optional column (or all of them
        when the column can not be identified) and retries with the reduced
        shape.

        Returns:
            True once the remote acknowledged the event

        Raises:
            SyncTransportError: Remote unreachable or refused the event
            SchemaMismatch: A required column is missing remotely
        """
        while True:
            try:
                self._request(
                    "POST",
                    self.table_path,
                    params={"on_conflict": "id"},
                    headers={"Prefer": "resolution=ignore-duplicates,return=minimal"},
                    json=[self.payload_for(event)],
                )
                return True
            except SchemaMismatch as e:
                if not self._degrade(e):
                    raise

    def _degrade(self, error: SchemaMismatch) -> bool:
        """Drop columns after a schema mismatch; False if nothing is left to drop."""
        remaining = [c for c in OPTIONAL_COLUMNS if c not in self._dropped_columns]
        if error.column in remaining:
            self._dropped_columns.add(error.column)
            logger.warning(
                "Remote table {} has no column {}; uploading without it", self.table, error.column
            )
            return True
        if error.column is None and remaining:
            self._dropped_columns.update(remaining)
            logger.warning(
                "Remote schema mismatch on {}; falling back to the reduced event shape", self.table
            )
            return True
        return False

    # =========================================================================
    # Pull
    # =========================================================================

    @property
    def cursor_column(self) -> str:
        """Column pulls are ordered and filtered by."""
        if SERVER_CURSOR_COLUMN in self._dropped_columns:
            return "created_at"
        return SERVER_CURSOR_COLUMN

    def fetch_page(
        self,
        user_id: str,
        since: datetime | None = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> RemotePage:
        """
        One page of a user's events by other devices, in server arrival order.

        Rows are filtered on the server-assigned inserted_at (inclusive), so an
        event uploaded late by an offline device is still picked up even though
        its created_at is older than the cursor. A table without inserted_at
        falls back to created_at.

        Args:
            user_id: User whose events are pulled
            since: Inclusive lower bound on the cursor column
            limit: Page size
            offset: Rows to skip (paging within one lower bound)

        Raises:
            SyncTransportError: Remote unreachable or refused the query
            SchemaMismatch: The table lacks a column pulls can not do without
        """
        while True:
            column = self.cursor_column
            params: dict[str, Any] = {
                "select": "*",
                "user_id": f"eq.{user_id}",
                "order": f"{column}.asc,id.asc",
                "limit": limit,
                "offset": offset,
            }
            if since is not None:
                params[column] = f"gte.{since.isoformat()}"
            if self.device_id and "device_id" not in self._dropped_columns:
                params["or"] = f"(device_id.is.null,device_id.neq.{self.device_id})"

            try:
                response = self._request("GET", self.table_path, params=params)
                break
            except SchemaMismatch as e:
                if not self._degrade_pull(e, device_filter="or" in params):
                    raise

        rows = response.json()
        synced_at = utcnow()
        events = []
        cursor = None
        for row in rows:
            arrived = _parse_timestamp(row.get(column))
            if arrived is not None and (cursor is None or arrived > cursor):
                cursor = arrived
            try:
                events.append(event_from_remote(row, synced_at))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Ignoring malformed remote event {}: {}", row.get("id"), e)
        return RemotePage(events=events, rows=len(rows), cursor=cursor)

    def _degrade_pull(self, error: SchemaMismatch, device_filter: bool) -> bool:
        """Relax the pull query after a schema mismatch; False if nothing is left."""
        if device_filter and error.column in ("device_id", None):
            self._dropped_columns.add("device_id")
            logger.warning("Remote table {} can not filter on device_id; pulling every device", self.table)
            return True
        if error.column in (SERVER_CURSOR_COLUMN, None) and self.cursor_column == SERVER_CURSOR_COLUMN:
            self._dropped_columns.add(SERVER_CURSOR_COLUMN)
            logger.warning(
                "Remote table {} has no {} column; pulling by created_at", self.table, SERVER_CURSOR_COLUMN
            )
            return True
        return False

    def health_check(self) -> bool:
        """Reachability probe: one quick request, no retries."""
        try:
            response = self.client.get(
                self.table_path, params={"select": "id", "limit": 1}, timeout=min(5.0, self.timeout_seconds)
            )
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug("Remote health check failed: {}", e)
            return False

    # =========================================================================
    # Transport
    # =========================================================================

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request with bounded retries and exponential backoff."""
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = self.client.request(method, path, **kwargs)
                response.raise_for_status()
                return response

            except httpx.TimeoutException as e:
                last_error = e
                self._backoff(attempt, f"Remote timeout on {method} {path}")

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status >= 500:
                    self._backoff(attempt, f"Remote server error {status} on {method} {path}")
                    continue
                self._raise_client_error(e.response)

            except httpx.RequestError as e:
                last_error = e
                self._backoff(attempt, f"Remote request error on {method} {path}: {e}")

        error_msg = f"Remote {method} {path} failed after {self.retry_attempts} attempts"
        logger.error("{}: {}", error_msg, last_error)
        status_code = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        raise SyncTransportError(f"{error_msg}: {last_error}", retryable=True, status_code=status_code)

    def _backoff(self, attempt: int, message: str) -> None:
        if attempt >= self.retry_attempts - 1:
            logger.warning("{} (attempt {}/{})", message, attempt + 1, self.retry_attempts)
            return
        wait_time = self.backoff_seconds * 2**attempt
        logger.warning(
            "{} (attempt {}/{}), retrying in {}s",
            message,
            attempt + 1,
            self.retry_attempts,
            wait_time,
        )
        if wait_time > 0:
            self._sleep(wait_time)

    def _raise_client_error(self, response: httpx.Response) -> None:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        code = str(payload.get("code") or "")
        if code in SCHEMA_ERROR_CODES:
            raise SchemaMismatch(
                payload.get("message") or f"Schema mismatch ({code})",
                column=parse_missing_column(payload),
            )
        logger.error("Remote client error {}: {}", response.status_code, payload or response.text)
        raise SyncTransportError(
            f"Remote rejected request with {response.status_code}",
            retryable=False,
            status_code=response.status_code,
        )
