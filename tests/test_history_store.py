"""Tests for tidings.services.history_store."""

import json
import time
import typing

import pytest

from tidings.services.expiry_scheduler import ExpiryScheduler
from tidings.services.history_store import MAX_ID, HistoryStore, default_history_file
from tidings.types.notifications import CloseReason, HistoryFilter, Notification, Urgency


@pytest.fixture
def store(qapp):
    return HistoryStore(capacity=3)


def _insert(store, make_notification, **kwargs):
    notification = make_notification(**kwargs)
    notification.id = store.allocate_id()
    store.insert_or_replace(notification)
    return notification.id


# ---------------------------------------------------------------------------
# 1. Identifiers
# ---------------------------------------------------------------------------

class TestAllocateId:
    def test_starts_at_one_and_increments(self, store):
        assert store.allocate_id() == 1
        assert store.allocate_id() == 2

    def test_wraps_and_skips_zero(self, store):
        store._next_id = MAX_ID
        assert store.allocate_id() == MAX_ID
        assert store.allocate_id() == 1

    def test_skips_held_ids(self, store, make_notification):
        first = _insert(store, make_notification)
        store._next_id = first
        assert store.allocate_id() != first


# ---------------------------------------------------------------------------
# 2. Insert, replace, eviction
# ---------------------------------------------------------------------------

class TestInsert:
    def test_insert_and_list_newest_first(self, store, make_notification):
        a = _insert(store, make_notification, summary="a")
        b = _insert(store, make_notification, summary="b")
        assert [n.id for n in store.list()] == [b, a]

    def test_replace_keeps_id_and_moves_to_end(self, store, make_notification):
        a = _insert(store, make_notification, summary="a")
        _insert(store, make_notification, summary="b")
        replacement = make_notification(id=a, summary="a2")
        outcome = store.insert_or_replace(replacement)
        assert outcome.replaced
        assert store.list()[0].summary == "a2"
        assert len(store) == 2

    def test_replace_reopens_closed_entry(self, store, make_notification):
        a = _insert(store, make_notification)
        store.close(a, CloseReason.DISMISSED)
        store.insert_or_replace(make_notification(id=a, summary="again"))
        assert store.is_open(a)

    def test_evicts_oldest_closed_first(self, store, make_notification):
        a = _insert(store, make_notification, summary="a")
        b = _insert(store, make_notification, summary="b")
        c = _insert(store, make_notification, summary="c")
        store.close(b, CloseReason.EXPIRED)
        d = make_notification(id=store.allocate_id(), summary="d")
        outcome = store.insert_or_replace(d)
        assert [n.id for n in outcome.evicted] == [b]
        assert store.contains(a) and store.contains(c)

    def test_evicts_oldest_open_when_nothing_closed(self, store, make_notification):
        ids = [_insert(store, make_notification, summary=str(i)) for i in range(4)]
        assert not store.contains(ids[0])
        assert len(store) == 3

    def test_eviction_cancels_expiry(self, qapp, make_notification):
        expiry = ExpiryScheduler()
        store = HistoryStore(capacity=1, expiry=expiry)
        first = _insert(store, make_notification)
        expiry.schedule(first, 60_000)
        _insert(store, make_notification, summary="second")
        assert not expiry.is_scheduled(first)

    def test_set_capacity_shrinks(self, store, make_notification):
        for i in range(3):
            _insert(store, make_notification, summary=str(i))
        evicted = store.set_capacity(1)
        assert len(evicted) == 2
        assert len(store) == 1

    def test_active_limit_closes_oldest_open(self, qapp, make_notification):
        store = HistoryStore(capacity=10, max_active=2)
        ids = [_insert(store, make_notification, summary=str(i)) for i in range(3)]
        assert store.contains(ids[0])
        assert not store.is_open(ids[0])
        assert store.get(ids[0]).close_reason is CloseReason.UNDEFINED
        assert [n.id for n in store.list(HistoryFilter.ACTIVE)] == [ids[2], ids[1]]

    def test_lowering_active_limit(self, store, make_notification):
        ids = [_insert(store, make_notification, summary=str(i)) for i in range(3)]
        retired = store.set_max_active(1)
        assert [n.id for n in retired] == ids[:2]
        assert store.counts()["active"] == 1
        assert store.set_max_active(0) == []

    def test_eviction_helpers_return_builtin_lists(self):
        for name in ("list", "set_capacity", "evict_if_over_capacity", "_evict_locked"):
            hints = typing.get_type_hints(getattr(HistoryStore, name))
            assert hints["return"] == list[Notification]

    def test_evict_if_over_capacity(self, store, make_notification):
        for i in range(3):
            _insert(store, make_notification, summary=str(i))
        store._capacity = 2
        evicted = store.evict_if_over_capacity()
        assert [n.summary for n in evicted] == ["0"]
        assert len(store) == 2

    def test_returned_entries_are_copies(self, store, make_notification):
        a = _insert(store, make_notification)
        store.get(a).summary = "tampered"
        assert store.get(a).summary == "New message"


# ---------------------------------------------------------------------------
# 3. Close, remove, clear
# ---------------------------------------------------------------------------

class TestClose:
    def test_close_records_reason(self, store, make_notification):
        a = _insert(store, make_notification)
        closed = store.close(a, CloseReason.EXPIRED)
        assert closed.close_reason is CloseReason.EXPIRED
        assert store.get(a).closed
        assert store.list(HistoryFilter.CLOSED)[0].id == a

    def test_close_twice_returns_none(self, store, make_notification):
        a = _insert(store, make_notification)
        store.close(a, CloseReason.DISMISSED)
        assert store.close(a, CloseReason.DISMISSED) is None

    def test_close_unknown_returns_none(self, store):
        assert store.close(42, CloseReason.DISMISSED) is None

    def test_transient_dropped_on_close(self, store, make_notification):
        a = _insert(store, make_notification, transient=True)
        store.close(a, CloseReason.EXPIRED)
        assert not store.contains(a)

    def test_transient_kept_when_configured(self, store, make_notification):
        store.set_transient_to_history(True)
        a = _insert(store, make_notification, transient=True)
        store.close(a, CloseReason.EXPIRED)
        assert store.contains(a)

    def test_closed_entry_drops_hints(self, store, make_notification):
        a = _insert(store, make_notification, hints={"x-custom": 1})
        store.close(a, CloseReason.EXPIRED)
        assert store.get(a).hints == {}

    def test_clear_with_predicate(self, store, make_notification):
        a = _insert(store, make_notification, app_name="mail")
        b = _insert(store, make_notification, app_name="chat")
        removed = store.clear(lambda n: n.app_name == "mail")
        assert [n.id for n in removed] == [a]
        assert store.contains(b)

    def test_remove(self, store, make_notification):
        a = _insert(store, make_notification)
        assert store.remove(a).id == a
        assert store.remove(a) is None


# ---------------------------------------------------------------------------
# 4. Dedup and repeat
# ---------------------------------------------------------------------------

class TestDuplicates:
    def test_find_duplicate_within_window(self, store, make_notification):
        a = _insert(store, make_notification)
        assert store.find_duplicate(make_notification(), 2000) == a

    def test_window_zero_disables(self, store, make_notification):
        _insert(store, make_notification)
        assert store.find_duplicate(make_notification(), 0) is None

    def test_outside_window(self, store, make_notification):
        _insert(store, make_notification)
        assert store.find_duplicate(make_notification(), 2000, now=time.time() + 10) is None

    def test_closed_entries_not_duplicates(self, store, make_notification):
        a = _insert(store, make_notification)
        store.close(a, CloseReason.DISMISSED)
        assert store.find_duplicate(make_notification(), 2000) is None

    def test_bump_repeat(self, store, make_notification):
        a = _insert(store, make_notification)
        _insert(store, make_notification, summary="other")
        store.mark_all_read()
        bumped = store.bump_repeat(a)
        assert bumped.repeat_count == 2
        assert not bumped.read
        assert store.list()[0].id == a


# ---------------------------------------------------------------------------
# 5. Counts and change events
# ---------------------------------------------------------------------------

class TestEvents:
    def test_counts(self, store, make_notification):
        a = _insert(store, make_notification, urgency=Urgency.CRITICAL)
        _insert(store, make_notification, summary="b")
        store.close(a, CloseReason.DISMISSED)
        assert store.counts() == {
            "total": 2,
            "active": 1,
            "closed": 1,
            "unread": 2,
            "criticalActive": 0,
        }

    def test_one_event_per_operation(self, store, make_notification):
        events = []
        store.changed.connect(lambda e: events.append(e))
        a = _insert(store, make_notification)
        store.close(a, CloseReason.DISMISSED)
        assert [e["ops"] for e in events] == [["insert"], ["close"]]
        assert events[-1]["counts"]["closed"] == 1

    def test_batch_coalesces(self, store, make_notification):
        events = []
        store.changed.connect(lambda e: events.append(e))
        with store.batch():
            a = _insert(store, make_notification)
            store.close(a, CloseReason.DISMISSED)
            store.mark_all_read()
        assert len(events) == 1
        assert events[0]["ops"] == ["insert", "close", "read"]
        assert events[0]["ids"] == [a]

    def test_noop_emits_nothing(self, store):
        events = []
        store.changed.connect(lambda e: events.append(e))
        store.mark_all_read()
        store.clear()
        assert events == []


# ---------------------------------------------------------------------------
# 6. Persistence
# ---------------------------------------------------------------------------

class TestPersistence:
    def test_default_history_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert default_history_file() == tmp_path / "tidings" / "history.json"

    def test_round_trip_closes_entries(self, qapp, tmp_path, make_notification):
        path = tmp_path / "history.json"
        store = HistoryStore(capacity=10, history_file=path)
        a = _insert(store, make_notification, summary="kept")
        _insert(store, make_notification, summary="gone", transient=True)

        reloaded = HistoryStore(capacity=10, history_file=path)
        (entry,) = reloaded.list()
        assert entry.id == a
        assert entry.closed
        assert entry.close_reason is CloseReason.UNDEFINED
        assert reloaded.allocate_id() > a

    def test_corrupt_file_ignored(self, qapp, tmp_path):
        path = tmp_path / "history.json"
        path.write_text("{not json")
        store = HistoryStore(history_file=path)
        assert len(store) == 0

    def test_saved_as_json_list(self, qapp, tmp_path, make_notification):
        path = tmp_path / "history.json"
        store = HistoryStore(history_file=path)
        _insert(store, make_notification)
        records = json.loads(path.read_text())
        assert records[0]["summary"] == "New message"
