import threading
from collections.abc import Iterator
from pathlib import Path

import pytest

from thoughtsort.client.local_store import LocalStore
from thoughtsort.errors import RecordNotFoundError
from thoughtsort.models import Category, Entry, SyncStatus


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalStore]:
    local = LocalStore(tmp_path / "local.sqlite", user_id="u1")
    try:
        yield local
    finally:
        local.close()


def _remote_category(category_id: str = "cat-1", name: str = "Work") -> Category:
    return Category(id=category_id, user_id="u1", name=name, entry_count=1)


def _remote_entry(
    entry_id: str = "e-1",
    category_id: str | None = "cat-1",
    *,
    created_at: str = "2026-01-01T00:00:00+00:00",
    **kwargs,
) -> Entry:
    return Entry(
        id=entry_id,
        user_id="u1",
        transcript="remote text",
        title="Remote",
        category_id=category_id,
        category_name="Work" if category_id else None,
        created_at=created_at,
        **kwargs,
    )


def test_new_category_is_queued_for_create(store: LocalStore) -> None:
    category = store.create_category("  Ideas ")
    assert category.name == "Ideas"
    assert category.sync_status == SyncStatus.PENDING_CREATE
    assert category.local_rev == 1

    edited = store.update_category(category.id, note_body="first")
    assert edited.sync_status == SyncStatus.PENDING_CREATE
    assert edited.local_rev == 2


def test_editing_synced_category_queues_update(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    store.upsert_remote_entry(_remote_entry())

    edited = store.update_category("cat-1", name="Job")

    assert edited.sync_status == SyncStatus.PENDING_UPDATE
    entry = store.get_entry("e-1")
    assert entry is not None
    assert entry.category_name == "Job"


def test_blank_category_name_is_rejected(store: LocalStore) -> None:
    with pytest.raises(ValueError):
        store.create_category("   ")


def test_deleting_unpushed_entry_drops_it(store: LocalStore) -> None:
    entry = store.create_entry("buy milk")
    store.delete_entry(entry.id)
    assert store.get_entry(entry.id) is None
    assert store.pending_summary()["entries"] == {}


def test_deleting_synced_entry_queues_delete(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    store.upsert_remote_entry(_remote_entry())

    store.delete_entry("e-1")

    raw = store.get_entry("e-1")
    assert raw is not None
    assert raw.sync_status == SyncStatus.PENDING_DELETE
    assert raw.is_pending is False
    assert store.list_entries() == []
    with pytest.raises(RecordNotFoundError):
        store.update_entry("e-1", title="gone")


def test_deleting_category_moves_entries_to_inbox(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    store.upsert_remote_entry(_remote_entry())

    store.delete_category("cat-1")

    assert store.list_categories() == []
    assert [c.sync_status for c in store.pending_categories(SyncStatus.PENDING_DELETE)] == [
        SyncStatus.PENDING_DELETE
    ]
    assert [e.id for e in store.inbox_entries()] == ["e-1"]
    assert store.inbox_count() == 1


def test_mark_synced_ignores_stale_revision(store: LocalStore) -> None:
    entry = store.create_entry("draft")
    stale_rev = entry.local_rev
    store.update_entry(entry.id, transcript="draft, edited")

    assert store.mark_entry_synced(entry.id, stale_rev) is False
    current = store.get_entry(entry.id)
    assert current is not None
    assert current.sync_status == SyncStatus.PENDING_CREATE
    assert store.mark_entry_synced(entry.id, current.local_rev) is True


def test_pull_does_not_overwrite_local_changes(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    store.upsert_remote_entry(_remote_entry())
    store.update_entry("e-1", title="Local title")

    applied = store.upsert_remote_entry(_remote_entry())

    assert applied is False
    entry = store.get_entry("e-1")
    assert entry is not None
    assert entry.title == "Local title"
    assert entry.sync_status == SyncStatus.PENDING_UPDATE


def test_pull_keeps_local_review_state(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    store.upsert_remote_entry(_remote_entry())
    store.mark_entries_seen(["e-1"], "2026-01-05T00:00:00+00:00")

    store.upsert_remote_entry(_remote_entry(seen_at=None))

    entry = store.get_entry("e-1")
    assert entry is not None
    assert entry.seen_at == "2026-01-05T00:00:00+00:00"
    assert entry.sync_status == SyncStatus.SYNCED


def test_pull_never_removes_pending_records(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    store.upsert_remote_entry(_remote_entry())
    pending_entry = store.create_entry("not pushed yet")
    pending_category = store.create_category("Draft")

    removed = store.remove_synced_entries_not_in([]) + store.remove_synced_categories_not_in([])

    assert removed == 2
    assert store.get_entry("e-1") is None
    assert store.get_entry(pending_entry.id) is not None
    assert store.get_category(pending_category.id) is not None


def test_pending_review_entries_oldest_first(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    store.upsert_remote_entry(_remote_entry("e-new", created_at="2026-01-03T00:00:00+00:00"))
    store.upsert_remote_entry(_remote_entry("e-old", created_at="2026-01-02T00:00:00+00:00"))
    store.upsert_remote_entry(_remote_entry("e-done", is_pending=False))
    store.create_entry("still processing", category_id="cat-1")

    pending = store.pending_review_entries("cat-1")

    assert [e.id for e in pending] == ["e-old", "e-new"]


def test_replace_entry_with_server_record(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    local = store.create_entry("captured offline", audio_local_path="/tmp/rec.m4a")

    stored = store.replace_entry_with_server(local, _remote_entry("srv-1"))

    assert store.get_entry(local.id) is None
    assert stored.id == "srv-1"
    assert stored.sync_status == SyncStatus.SYNCED
    assert stored.is_unseen
    assert store.refresh_category_entry_count("cat-1") == 1


def test_replace_keeps_edit_made_while_processing(store: LocalStore) -> None:
    store.upsert_remote_category(_remote_category())
    pushed = store.create_entry("buy milk")
    store.update_entry(pushed.id, transcript="buy milk and eggs")

    stored = store.replace_entry_with_server(pushed, _remote_entry("srv-1"))

    assert store.get_entry(pushed.id) is None
    assert stored.id == "srv-1"
    assert stored.transcript == "buy milk and eggs"
    assert stored.title == "Remote"
    assert stored.sync_status == SyncStatus.PENDING_UPDATE
    assert store.pending_summary()["entries"] == {"pendingUpdate": 1}


def test_replace_queues_delete_for_capture_removed_while_processing(
    store: LocalStore,
) -> None:
    store.upsert_remote_category(_remote_category())
    pushed = store.create_entry("never mind")
    store.delete_entry(pushed.id)

    stored = store.replace_entry_with_server(pushed, _remote_entry("srv-1"))

    assert stored.sync_status == SyncStatus.PENDING_DELETE
    assert store.list_entries() == []
    assert [e.id for e in store.pending_entries(SyncStatus.PENDING_DELETE)] == ["srv-1"]


def test_search_and_sync_state(store: LocalStore) -> None:
    store.create_entry("Call the plumber about the sink")
    store.create_entry("Buy oat milk")

    assert [e.transcript for e in store.search_entries("plumber")] == [
        "Call the plumber about the sink"
    ]
    assert store.sync_state()["last_ok_at"] is None

    store.set_sync_error("connection refused")
    store.set_sync_ok()
    state = store.sync_state()
    assert state["last_ok_at"] is not None
    assert state["last_error"] == "connection refused"
    assert store.pending_summary() == {"categories": {}, "entries": {"pendingCreate": 2}}


def test_reads_wait_for_an_open_write(store: LocalStore) -> None:
    store.create_entry("first")
    counts: list[int] = []
    started = threading.Event()

    def reader() -> None:
        started.set()
        counts.append(len(store.list_entries()))

    with store.transaction():
        store.conn.execute("DELETE FROM entries")
        thread = threading.Thread(target=reader)
        thread.start()
        assert started.wait(5)
        thread.join(0.2)
        assert thread.is_alive()
        store.create_entry("second")
    thread.join(5)

    assert counts == [1]
