import threading
from http.server import HTTPServer
from pathlib import Path
from typing import Any

import httpx
import pytest

from thoughtsort.client.remote_api import RemoteAPI
from thoughtsort.errors import ClassificationError, RemoteAPIError
from thoughtsort.models import Category
from thoughtsort.server.api import build_api_handler
from thoughtsort.server.store import RemoteStore


def _client(api_server: dict[str, Any], token: str = "tok-u1") -> RemoteAPI:
    return RemoteAPI(api_server["url"], token, timeout_s=5)


def _category(name: str, category_id: str = "") -> Category:
    return Category(id=category_id, user_id="u1", name=name, is_user_created=True)


def test_requests_without_valid_token_are_rejected(api_server: dict[str, Any]) -> None:
    resp = httpx.get(f"{api_server['url']}/v1/categories")
    assert resp.status_code == 401
    with _client(api_server, token="wrong") as api, pytest.raises(RemoteAPIError) as excinfo:
        api.fetch_categories()
    assert excinfo.value.status == 401


def test_category_crud(api_server: dict[str, Any]) -> None:
    with _client(api_server) as api:
        created = api.create_category(_category("Work", "cat-1"))
        assert created.id == "cat-1"
        assert created.is_user_created is True

        created.name = "Job"
        created.note_body = "standup at 9"
        updated = api.update_category(created)
        assert updated.name == "Job"
        assert updated.note_body == "standup at 9"

        assert [c.name for c in api.fetch_categories()] == ["Job"]
        api.delete_category("cat-1")
        assert api.fetch_categories() == []


def test_archived_categories_are_listed_only_on_request(api_server: dict[str, Any]) -> None:
    store = RemoteStore(api_server["db_path"])
    try:
        store.create_category("u1", "Active", category_id="cat-1")
        store.create_category("u1", "Old", category_id="cat-2")
        store.update_category("cat-2", "u1", is_archived=True)
    finally:
        store.close()
    headers = {"Authorization": "Bearer tok-u1"}

    with _client(api_server) as api:
        assert [c.id for c in api.fetch_categories()] == ["cat-1"]
    resp = httpx.get(
        f"{api_server['url']}/v1/categories?include_archived=1", headers=headers
    )
    assert resp.status_code == 200
    assert sorted(c["id"] for c in resp.json()["categories"]) == ["cat-1", "cat-2"]


def test_duplicate_create_is_reported(api_server: dict[str, Any]) -> None:
    with _client(api_server) as api:
        api.create_category(_category("Work", "cat-1"))
        with pytest.raises(RemoteAPIError) as excinfo:
            api.create_category(_category("Work", "cat-1"))
    assert excinfo.value.status == 409
    assert excinfo.value.is_duplicate


def test_users_cannot_touch_each_other(api_server: dict[str, Any]) -> None:
    with _client(api_server) as owner, _client(api_server, "tok-u2") as other:
        owner.create_category(_category("Work", "cat-1"))
        assert other.fetch_categories() == []
        with pytest.raises(RemoteAPIError) as excinfo:
            other.delete_category("cat-1")
    assert excinfo.value.is_not_found


def test_invalid_json_body(api_server: dict[str, Any]) -> None:
    resp = httpx.post(
        f"{api_server['url']}/v1/categories",
        content=b"{nope",
        headers={"Authorization": "Bearer tok-u1", "Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "invalid_json"}


def test_process_entry_round_trip(api_server: dict[str, Any], classifier) -> None:
    classifier.queue("Groceries", title="Shopping", formatted="- milk")
    with _client(api_server) as api:
        result = api.process_entry(
            "milk", locale="en-US", created_at="2026-02-01T09:00:00+00:00"
        )
        entries = api.fetch_entries()
    assert result.is_new_category is True
    assert result.category.name == "Groceries"
    assert result.entry.title == "Shopping"
    assert result.entry.created_at == "2026-02-01T09:00:00+00:00"
    assert [e.id for e in entries] == [result.entry.id]


def test_process_entry_with_uploaded_audio(api_server: dict[str, Any], transcriber) -> None:
    transcriber.text = "spoken words"
    with _client(api_server) as api:
        path = api.upload_audio("rec-1.m4a", b"\x00\x01audio")
        result = api.process_entry("", locale="en-US", audio_path=path)
    assert path == "u1/rec-1.m4a"
    assert result.entry.transcript == "spoken words"
    assert result.entry.audio_url == "u1/rec-1.m4a"


def test_process_entry_rejects_foreign_audio(api_server: dict[str, Any]) -> None:
    with _client(api_server) as api, pytest.raises(RemoteAPIError) as excinfo:
        api.process_entry("hi", locale="en-US", audio_path="u2/rec.m4a")
    assert excinfo.value.status == 403


def test_process_entry_validation_error(api_server: dict[str, Any]) -> None:
    with _client(api_server) as api, pytest.raises(RemoteAPIError) as excinfo:
        api.process_entry("   ", locale="en-US")
    assert excinfo.value.status == 400


def test_process_entry_ai_failure(api_server: dict[str, Any], classifier) -> None:
    classifier.results.append(ClassificationError("model returned prose"))
    with _client(api_server) as api, pytest.raises(RemoteAPIError) as excinfo:
        api.process_entry("hello", locale="en-US")
    assert excinfo.value.status == 502
    assert excinfo.value.code == "ai_failure"
    store = RemoteStore(api_server["db_path"])
    try:
        assert store.list_entries("u1") == []
        assert store.list_categories("u1") == []
    finally:
        store.close()


def test_entry_edit_and_delete(api_server: dict[str, Any]) -> None:
    with _client(api_server) as api:
        home = api.create_category(_category("Home", "cat-home"))
        result = api.process_entry("fix the sink", locale="en-US")
        entry = result.entry
        entry.category_id = home.id
        entry.seen_at = None
        edited = api.edit_entry(entry)
        assert edited.category_id == home.id
        assert edited.category_name == "Home"
        api.delete_entry(entry.id)
        assert api.fetch_entries() == []
        with pytest.raises(RemoteAPIError) as excinfo:
            api.delete_entry(entry.id)
    assert excinfo.value.is_not_found


def test_process_entry_unavailable_without_pipeline(tmp_path: Path) -> None:
    handler = build_api_handler(tmp_path / "server.sqlite", tokens={"tok": "u1"})
    server = HTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        with RemoteAPI(f"127.0.0.1:{server.server_address[1]}", "tok") as api:
            with pytest.raises(RemoteAPIError) as excinfo:
                api.process_entry("hello", locale="en-US")
            assert api.fetch_categories() == []
    finally:
        server.shutdown()
        server.server_close()
    assert excinfo.value.status == 503
