"""
Integration Tests for the Feed and Sync Flow.

Runs FeedEngine end to end on in-memory SQLite stores, with the remote
store played by an in-memory PostgREST fake behind httpx.MockTransport:
1. Answers and skips never resurface
2. Weight changes follow the configured magnitudes
3. Offline work is uploaded exactly once on reconnect
4. Devices converge through the remote store, late uploads included
5. Storage failures come back as results
"""

import json
import re
import threading
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from triviafeed.core.models import FeedReason, TopicKey
from triviafeed.db.local_store import LocalStore
from triviafeed.engine import FeedEngine
from triviafeed.sync.remote_client import RemoteStoreClient

pytestmark = pytest.mark.integration

TABLE_PATH = "/rest/v1/user_weight_changes"
ALL_COLUMNS = {
    "id",
    "user_id",
    "topic",
    "subtopic",
    "branch",
    "delta",
    "skip_compensation_applied",
    "skip_compensation_topic",
    "skip_compensation_subtopic",
    "skip_compensation_branch",
    "question_id",
    "interaction_type",
    "device_id",
    "created_at",
    "inserted_at",
}
SERVER_EPOCH = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


class FakePostgrest:
    """Remote event table answering the PostgREST subset the client uses."""

    def __init__(self, columns=ALL_COLUMNS):
        self.columns = set(columns)
        self.rows: dict[str, dict] = {}
        self.writes = 0
        self.online = True
        # Server clock for the inserted_at default; ticks once per row
        self.now = SERVER_EPOCH

    def transport(self):
        return httpx.MockTransport(self.handle)

    def handle(self, request):
        if not self.online:
            raise httpx.ConnectError("network unreachable", request=request)
        if request.url.path != TABLE_PATH:
            return httpx.Response(404)
        if request.method == "POST":
            return self._insert(json.loads(request.content))
        return self._select(request.url.params)

    def _insert(self, rows):
        for row in rows:
            unknown = sorted(set(row) - self.columns)
            if unknown:
                return httpx.Response(
                    400,
                    json={
                        "code": "PGRST204",
                        "message": f"Could not find the '{unknown[0]}' column of 'user_weight_changes' in the schema cache",
                    },
                )
        for row in rows:
            self.writes += 1
            if row["id"] in self.rows:
                continue
            if "inserted_at" in self.columns:
                row = {**row, "inserted_at": self.now.isoformat()}
                self.now += timedelta(milliseconds=1)
            self.rows[row["id"]] = row
        return httpx.Response(201)

    def _select(self, params):
        order = [part.split(".")[0] for part in params.get("order", "id.asc").split(",")]
        referenced = [k for k in params if k not in ("select", "order", "limit", "offset", "or")] + order
        if "or" in params:
            referenced.append("device_id")
        missing = [c for c in referenced if c not in self.columns]
        if missing:
            return httpx.Response(
                400,
                json={"code": "42703", "message": f"column user_weight_changes.{missing[0]} does not exist"},
            )

        rows = list(self.rows.values())
        if "user_id" in params:
            user_id = params["user_id"].removeprefix("eq.")
            rows = [r for r in rows if r["user_id"] == user_id]
        for column in ("inserted_at", "created_at"):
            if column in params:
                since = datetime.fromisoformat(params[column].removeprefix("gte."))
                rows = [r for r in rows if datetime.fromisoformat(r[column]) >= since]
        if "or" in params:
            device = re.search(r"device_id\.neq\.([^,)]+)", params["or"]).group(1)
            rows = [r for r in rows if r.get("device_id") is None or r["device_id"] != device]
        rows.sort(key=lambda r: tuple(r[c] if c == "id" else datetime.fromisoformat(r[c]) for c in order))
        offset = int(params.get("offset", 0))
        return httpx.Response(200, json=rows[offset : offset + int(params.get("limit", 1000))])


@pytest.fixture
def remote_db():
    return FakePostgrest()


def make_engine(store, questions, flags, remote_db=None, device_id="phone", **kwargs):
    remote = None
    if remote_db is not None:
        remote = RemoteStoreClient(
            "http://remote.test",
            backoff_seconds=0,
            device_id=device_id,
            transport=remote_db.transport(),
        )
    engine = FeedEngine(store, remote=remote, device_id=device_id, flags=flags, **kwargs)
    if questions:
        engine.import_questions(questions)
    return engine


@pytest.fixture
def engine(store, sample_questions, flags, remote_db):
    return make_engine(store, sample_questions, flags, remote_db)


class TestNoResurfacing:
    """Resolved questions never come back, through any trigger."""

    def test_answered_and_skipped_stay_out(self, engine):
        first = engine.need_more("u1", FeedReason.CHECKPOINT, 3)
        answered, skipped = first.question_ids[0], first.question_ids[1]

        assert engine.record_answer("u1", answered, answer_index=0).success
        assert engine.record_skip("u1", skipped).success

        seen = list(engine.feed_items("u1"))
        while True:
            batch = engine.need_more("u1", FeedReason.CHECKPOINT, 2)
            assert answered not in batch.question_ids
            assert skipped not in batch.question_ids
            seen.extend(batch.question_ids)
            if batch.pool_exhausted:
                break

        assert answered not in engine.feed_items("u1")
        assert len(seen) == len(set(seen))

    def test_refill_replaces_resolved_item(self, engine):
        first = engine.need_more("u1", FeedReason.CHECKPOINT, 2)

        result = engine.record_skip("u1", first.question_ids[0])

        assert result.batch.reason is FeedReason.SKIPPED
        assert len(result.batch) == 1
        assert result.batch.question_ids[0] not in first.question_ids
        assert len(engine.feed_items("u1")) == 2

    def test_second_answer_rejected(self, engine):
        engine.record_answer("u1", "sci-1", answer_index=0)

        result = engine.record_skip("u1", "sci-1")

        assert not result.success
        assert result.error_type == "QuestionAlreadyResolved"
        assert engine.store.pending_count() == 3

    def test_unknown_question_is_a_typed_failure(self, engine):
        result = engine.record_answer("u1", "nope", answer_index=0)
        assert not result.success
        assert result.error_type == "InvalidWeightUpdate"

    def test_restart_keeps_resolved_set(self, store, sample_questions, flags, engine):
        engine.record_answer("u1", "sci-1", answer_index=0)
        engine.record_skip("u1", "his-1")

        restarted = make_engine(LocalStore(store.engine), [], flags)
        batch = restarted.need_more("u1", FeedReason.CHECKPOINT, 10)

        assert len(restarted.pool) == len(sample_questions)
        assert not {"sci-1", "his-1"} & set(batch.question_ids)
        assert len(batch) == len(sample_questions) - 2


class TestWeights:
    """Weight updates from answers and skips."""

    def test_science_correct_then_incorrect(self, engine):
        engine.record_answer("u1", "sci-3", answer_index=0)
        assert engine.topic_weights("u1")[TopicKey("Science")].score == pytest.approx(0.55)

        engine.record_answer("u1", "sci-2", answer_index=3)
        weights = engine.topic_weights("u1")
        assert weights[TopicKey("Science")].score == pytest.approx(0.56)
        assert weights[TopicKey("Science", "Chemistry")].score == pytest.approx(0.515)

        batch = engine.need_more("u1", FeedReason.CHECKPOINT, 5)
        assert not {"sci-3", "sci-2"} & set(batch.question_ids)

    def test_explicit_correctness_wins(self, engine):
        result = engine.record_answer("u1", "art-1", answer_index=3, is_correct=True)
        assert result.events[0].delta == pytest.approx(0.05)

    def test_skip_lowers_every_level(self, engine):
        result = engine.record_skip("u1", "sci-1")

        deltas = {e.key.level: e.delta for e in result.events}
        assert deltas == pytest.approx({"topic": -0.05, "subtopic": -0.07, "branch": -0.10})
        assert not any(e.skip_compensation_applied for e in result.events)

    def test_skip_after_correct_is_compensated(self, engine):
        engine.record_answer("u1", "sci-3", answer_index=0)

        result = engine.record_skip("u1", "sci-2")

        topic_event = next(e for e in result.events if e.key == TopicKey("Science"))
        assert topic_event.skip_compensation_applied
        assert -0.05 < topic_event.delta < 0

    def test_weights_survive_restart(self, store, flags, engine):
        engine.record_answer("u1", "sci-3", answer_index=0)

        restarted = make_engine(LocalStore(store.engine), [], flags)

        assert restarted.topic_weights("u1")[TopicKey("Science")].score == pytest.approx(0.55)


class TestOfflineSync:
    """Offline work reaches the remote store exactly once."""

    def test_offline_start_then_reconnect(self, engine, remote_db):
        remote_db.online = False

        batch = engine.need_more("u1", FeedReason.CHECKPOINT, 3)
        engine.record_answer("u1", batch.question_ids[0], answer_index=0)
        engine.record_skip("u1", batch.question_ids[1])
        created = engine.store.pending_count()

        offline = engine.sync()
        assert offline.offline
        assert offline.pending == created
        assert remote_db.rows == {}

        remote_db.online = True
        result = engine.sync()

        assert result.success
        assert result.uploaded == created
        assert len(remote_db.rows) == created
        assert remote_db.writes == created

        again = engine.sync()
        assert again.uploaded == 0
        assert remote_db.writes == created

    def test_no_remote_configured(self, store, sample_questions, flags):
        engine = make_engine(store, sample_questions, flags)
        engine.record_answer("u1", "sci-1", answer_index=0)

        result = engine.sync()

        assert result.offline
        assert result.errors == ["no remote store configured"]
        assert store.pending_count() == 3


class TestTwoDevices:
    """Devices converge through the remote store."""

    def test_pulled_events_update_the_other_device(self, engine, remote_db, sample_questions, flags):
        tablet = make_engine(LocalStore.in_memory(), sample_questions, flags, remote_db, device_id="tablet")
        tablet.need_more("u1", FeedReason.CHECKPOINT, 1)

        engine.record_answer("u1", "sci-3", answer_index=0)
        engine.sync()
        result = tablet.sync()

        assert result.pulled == 1
        assert result.applied == 1
        assert tablet.topic_weights("u1")[TopicKey("Science")].score == pytest.approx(0.55)
        assert tablet.store.pending_count() == 0

        # Nothing echoes back to the phone
        assert engine.sync().pulled == 0

    def test_pull_into_unloaded_user(self, engine, remote_db, sample_questions, flags):
        engine.record_answer("u1", "his-2", answer_index=0)
        engine.sync()

        tablet = make_engine(LocalStore.in_memory(), sample_questions, flags, remote_db, device_id="tablet")

        assert tablet.pull_remote("u1") == 1
        assert tablet.topic_weights("u1")[TopicKey("History")].score == pytest.approx(0.55)
        assert tablet.pull_remote("u1") == 0

    def test_old_remote_schema(self, store, sample_questions, flags):
        remote_db = FakePostgrest(columns=ALL_COLUMNS - {"device_id", "interaction_type"})
        engine = make_engine(store, sample_questions, flags, remote_db)
        engine.record_answer("u1", "sci-1", answer_index=0)

        result = engine.sync()

        assert result.success
        assert result.uploaded == 3
        assert result.degraded_columns == ["device_id", "interaction_type"]
        assert all("device_id" not in row for row in remote_db.rows.values())

    def test_remote_without_arrival_column(self, store, sample_questions, flags):
        remote_db = FakePostgrest(columns=ALL_COLUMNS - {"inserted_at"})
        phone = make_engine(store, sample_questions, flags, remote_db)
        tablet = make_engine(LocalStore.in_memory(), sample_questions, flags, remote_db, device_id="tablet")
        tablet.record_answer("u1", "his-2", answer_index=0)
        tablet.sync()

        result = phone.sync(user_ids=["u1"])

        assert result.success
        assert result.pulled == 1
        assert result.degraded_columns == ["inserted_at"]
        assert phone.topic_weights("u1")[TopicKey("History")].score == pytest.approx(0.55)


class TestLateOfflineUpload:
    """An event created offline arrives everywhere, however old its created_at."""

    def test_three_devices_converge(self, engine, remote_db, sample_questions, flags):
        phone = engine
        tablet = make_engine(LocalStore.in_memory(), sample_questions, flags, remote_db, device_id="tablet")
        laptop = make_engine(LocalStore.in_memory(), sample_questions, flags, remote_db, device_id="laptop")
        phone.need_more("u1", FeedReason.CHECKPOINT, 1)

        # The tablet is offline: it answers first but uploads last
        tablet.record_answer("u1", "sci-3", answer_index=0, now=T0)
        offline_events = tablet.store.pending_count()
        laptop.record_answer("u1", "his-2", answer_index=0, now=T0 + timedelta(hours=1))
        assert laptop.sync().success

        first = phone.sync()
        assert first.pulled == 1
        assert phone.topic_weights("u1")[TopicKey("History")].score == pytest.approx(0.55)

        reconnect = tablet.sync()
        assert reconnect.success
        assert reconnect.uploaded == offline_events

        second = phone.sync()

        assert second.success
        assert second.pulled == reconnect.uploaded
        weights = phone.topic_weights("u1")
        assert weights[TopicKey("Science")].score == pytest.approx(0.55)
        assert weights[TopicKey("History")].score == pytest.approx(0.55)

        # The laptop catches up the same way
        laptop.sync()
        assert laptop.topic_weights("u1")[TopicKey("Science")].score == pytest.approx(0.55)


class TestFreshDevice:
    """A device with no local history can pull before its first answer."""

    def test_pull_before_first_feed(self, engine, remote_db, sample_questions, flags):
        engine.record_answer("u1", "his-2", answer_index=0)
        engine.sync()

        tablet = make_engine(LocalStore.in_memory(), sample_questions, flags, remote_db, device_id="tablet")
        assert tablet.store.known_user_ids() == []

        result = tablet.sync(user_ids=["u1"])

        assert result.pulled == 1
        assert tablet.topic_weights("u1")[TopicKey("History")].score == pytest.approx(0.55)
        batch = tablet.need_more("u1", FeedReason.CHECKPOINT, 1)
        assert tablet.pool.get(batch.question_ids[0]).topic == "History"

    def test_without_user_ids_nothing_is_pulled(self, engine, remote_db, sample_questions, flags):
        engine.record_answer("u1", "his-2", answer_index=0)
        engine.sync()

        tablet = make_engine(LocalStore.in_memory(), sample_questions, flags, remote_db, device_id="tablet")

        assert tablet.sync().pulled == 0


class FailingStore(LocalStore):
    """LocalStore whose interaction writes fail until told otherwise."""

    fail = True

    def record_interaction(self, *args, **kwargs):
        if self.fail:
            raise OperationalError("INSERT INTO question_states", {}, Exception("database is locked"))
        return super().record_interaction(*args, **kwargs)


class TestStorageFailure:
    """A failed local write comes back as a RecordResult and changes nothing."""

    @pytest.fixture
    def failing(self, sample_questions, flags):
        store = FailingStore.in_memory()
        return make_engine(store, sample_questions, flags)

    def test_answer_and_skip_report_failure(self, failing):
        batch = failing.need_more("u1", FeedReason.CHECKPOINT, 2)
        first, second = batch.question_ids

        answered = failing.record_answer("u1", first, answer_index=0)
        skipped = failing.record_skip("u1", second)

        for result in (answered, skipped):
            assert not result.success
            assert result.error_type == "OperationalError"
            assert result.events == []
        assert failing.topic_weights("u1") == {}
        assert failing.feed_items("u1") == (first, second)
        assert failing.store.pending_count() == 0

    def test_retry_after_recovery(self, failing):
        batch = failing.need_more("u1", FeedReason.CHECKPOINT, 1)
        question_id = batch.question_ids[0]
        assert not failing.record_answer("u1", question_id, answer_index=0).success

        failing.store.fail = False
        result = failing.record_answer("u1", question_id, answer_index=0)

        assert result.success
        assert question_id not in failing.feed_items("u1")
        assert failing.store.pending_count() == len(result.events)


class TestBackgroundSync:
    """The periodic sync thread drains the outbox."""

    def test_uploads_on_interval(self, engine, remote_db):
        engine.record_answer("u1", "sci-3", answer_index=0)
        created = engine.store.pending_count()
        done = threading.Event()
        uploads = []

        def on_complete(status):
            uploads.append(status.last_upload_count)
            done.set()

        assert engine.start_background_sync(0.01, on_sync_complete=on_complete)
        try:
            assert done.wait(timeout=5)
        finally:
            engine.close()

        assert uploads[0] == created
        assert len(remote_db.rows) == created
        assert not engine.background.status.is_running

    def test_needs_a_remote(self, store, sample_questions, flags):
        engine = make_engine(store, sample_questions, flags)
        assert engine.start_background_sync(0.01) is False
