import datetime as dt

import pytest

from thoughtsort.errors import DuplicateRecordError, RecordNotFoundError
from thoughtsort.models import Entry
from thoughtsort.server.store import RemoteStore


def _entry(category_id: str | None, title: str, created_at: str = "", **kwargs) -> Entry:
    return Entry(
        id="",
        user_id="u1",
        transcript=f"{title} body",
        title=title,
        category_id=category_id,
        created_at=created_at,
        **kwargs,
    )


def test_categories_ordered_by_entry_count(remote_store: RemoteStore) -> None:
    first = remote_store.create_category("u1", "First", created_at="2026-01-01T00:00:00+00:00")
    second = remote_store.create_category("u1", "Second", created_at="2026-01-02T00:00:00+00:00")
    third = remote_store.create_category("u1", "Third", created_at="2026-01-03T00:00:00+00:00")
    remote_store.insert_entry(_entry(third.id, "a"))

    ids = [c.id for c in remote_store.list_categories("u1")]

    assert ids == [third.id, first.id, second.id]


def test_insert_and_delete_maintain_category_bookkeeping(remote_store: RemoteStore) -> None:
    work = remote_store.create_category("u1", "Work")
    older = remote_store.insert_entry(_entry(work.id, "Older", "2026-01-01T00:00:00+00:00"))
    newer = remote_store.insert_entry(_entry(work.id, "Newer", "2026-01-02T00:00:00+00:00"))

    stored = remote_store.get_category(work.id)
    assert stored is not None
    assert stored.entry_count == 2
    assert stored.latest_entry_title == "Newer"
    assert older.category_name == "Work"

    remote_store.delete_entry(newer.id, "u1")
    stored = remote_store.get_category(work.id)
    assert stored is not None
    assert stored.entry_count == 1
    assert stored.latest_entry_title == "Older"


def test_moving_an_entry_updates_both_categories(remote_store: RemoteStore) -> None:
    work = remote_store.create_category("u1", "Work")
    home = remote_store.create_category("u1", "Home")
    entry = remote_store.insert_entry(_entry(work.id, "Fix sink"))

    moved = remote_store.update_entry(entry.id, "u1", {"category_id": home.id, "seen_at": None})

    assert moved.category_name == "Home"
    work_after = remote_store.get_category(work.id)
    home_after = remote_store.get_category(home.id)
    assert work_after is not None and home_after is not None
    assert work_after.entry_count == 0
    assert work_after.latest_entry_title is None
    assert home_after.entry_count == 1
    assert home_after.latest_entry_title == "Fix sink"


def test_rename_propagates_to_entries(remote_store: RemoteStore) -> None:
    work = remote_store.create_category("u1", "Work")
    entry = remote_store.insert_entry(_entry(work.id, "Standup"))

    remote_store.update_category(work.id, "u1", name="Job", note_body="notes")

    stored = remote_store.get_entry(entry.id)
    assert stored is not None
    assert stored.category_name == "Job"
    category = remote_store.get_category(work.id)
    assert category is not None
    assert category.note_body == "notes"


def test_deleting_category_moves_entries_to_inbox(remote_store: RemoteStore) -> None:
    work = remote_store.create_category("u1", "Work")
    entry = remote_store.insert_entry(_entry(work.id, "Standup"))

    remote_store.delete_category(work.id, "u1")

    stored = remote_store.get_entry(entry.id)
    assert stored is not None
    assert stored.category_id is None


def test_duplicate_category_id(remote_store: RemoteStore) -> None:
    remote_store.create_category("u1", "Work", category_id="cat-1")
    with pytest.raises(DuplicateRecordError):
        remote_store.create_category("u1", "Work again", category_id="cat-1")


def test_records_are_scoped_to_their_user(remote_store: RemoteStore) -> None:
    work = remote_store.create_category("u1", "Work")
    assert remote_store.get_category(work.id, "u2") is None
    with pytest.raises(RecordNotFoundError):
        remote_store.update_category(work.id, "u2", name="Stolen")
    with pytest.raises(RecordNotFoundError):
        remote_store.delete_category(work.id, "u2")
    with pytest.raises(RecordNotFoundError):
        remote_store.update_entry("missing", "u1", {"title": "x"})


def test_match_category_filters_candidates(remote_store: RemoteStore) -> None:
    near = remote_store.create_category("u1", "Near", centroid=[1.0, 0.1])
    archived = remote_store.create_category("u1", "Exact but archived", centroid=[1.0, 0.0])
    remote_store.update_category(archived.id, "u1", is_archived=True)
    remote_store.create_category("u1", "Other dims", centroid=[1.0, 0.0, 0.0])
    remote_store.create_category("u2", "Other user", centroid=[1.0, 0.0])

    match = remote_store.match_category([1.0, 0.0], "u1", 0.6)

    assert match is not None
    assert match.id == near.id
    assert match.similarity == pytest.approx(0.995, abs=1e-3)
    assert remote_store.match_category([0.0, 1.0], "u1", 0.6) is None


def test_cleanup_stale_audio(remote_store: RemoteStore) -> None:
    now = dt.datetime(2026, 5, 2, 12, 0, tzinfo=dt.UTC)
    remote_store.put_audio("u1/old.m4a", "u1", b"old")
    remote_store.put_audio("u1/new.m4a", "u1", b"new")
    old = remote_store.insert_entry(
        _entry(None, "old", "2026-04-30T12:00:00+00:00", audio_url="u1/old.m4a")
    )
    new = remote_store.insert_entry(
        _entry(None, "new", "2026-05-02T11:00:00Z", audio_url="u1/new.m4a")
    )

    result = remote_store.cleanup_stale_audio(max_age_hours=24, now=now)

    assert result == {"entries": 1, "objects": 1}
    assert remote_store.get_audio("u1/old.m4a") is None
    assert remote_store.get_audio("u1/new.m4a") == b"new"
    old_after = remote_store.get_entry(old.id)
    new_after = remote_store.get_entry(new.id)
    assert old_after is not None and new_after is not None
    assert old_after.audio_url is None
    assert new_after.audio_url == "u1/new.m4a"
    assert remote_store.cleanup_stale_audio(max_age_hours=24, now=now) == {
        "entries": 0,
        "objects": 0,
    }
