import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from thoughtsort.cli import app
from thoughtsort.client.local_store import LocalStore

runner = CliRunner()


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("capture", "inbox", "review", "keep", "move", "sync", "serve", "cleanup-audio"):
        assert command in result.stdout


def test_category_help_shows_subcommands() -> None:
    result = runner.invoke(app, ["category", "--help"])
    assert result.exit_code == 0
    assert "add" in result.stdout
    assert "rename" in result.stdout
    assert "delete" in result.stdout


def test_capture_without_sync_lands_in_inbox(tmp_path: Path) -> None:
    db_path = str(tmp_path / "local.sqlite")

    result = runner.invoke(app, ["capture", "call the plumber", "--no-sync", "--db-path", db_path])
    assert result.exit_code == 0, result.stdout
    assert "Queued entry" in result.stdout

    result = runner.invoke(app, ["inbox", "--db-path", db_path])
    assert result.exit_code == 0
    assert "call the plumber" in result.stdout
    assert "pendingCreate" in result.stdout


def test_capture_joins_segments(tmp_path: Path) -> None:
    db_path = tmp_path / "local.sqlite"

    result = runner.invoke(
        app,
        ["capture", "call the ", "  plumber", "", "tomorrow"]
        + ["--no-sync", "--db-path", str(db_path)],
    )
    assert result.exit_code == 0, result.stdout

    store = LocalStore(db_path, user_id="local")
    try:
        assert [e.transcript for e in store.list_entries()] == ["call the plumber tomorrow"]
    finally:
        store.close()


def test_capture_requires_text_or_audio(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["capture", "", "--no-sync", "--db-path", str(tmp_path / "local.sqlite")]
    )
    assert result.exit_code == 1
    assert "Nothing to capture" in result.stdout


def test_category_add_and_list(tmp_path: Path) -> None:
    db_path = str(tmp_path / "local.sqlite")
    assert runner.invoke(app, ["category", "add", "Errands", "--db-path", db_path]).exit_code == 0

    result = runner.invoke(app, ["categories", "--db-path", db_path])

    assert result.exit_code == 0
    assert "Errands" in result.stdout


def test_sync_without_token_exits(tmp_path: Path) -> None:
    result = runner.invoke(app, ["sync", "--db-path", str(tmp_path / "local.sqlite")])
    assert result.exit_code == 1
    assert "No API token configured" in result.stdout


def test_status_reports_queue(tmp_path: Path) -> None:
    db_path = str(tmp_path / "local.sqlite")
    runner.invoke(app, ["capture", "note one", "--no-sync", "--db-path", db_path])

    result = runner.invoke(app, ["status", "--db-path", db_path])

    assert result.exit_code == 0
    assert "Last sync: never" in result.stdout
    assert "pendingCreate=1" in result.stdout


def test_config_set_and_show(tmp_path: Path) -> None:
    result = runner.invoke(app, ["config", "set", "max_categories", "12"])
    assert result.exit_code == 0, result.stdout
    assert runner.invoke(app, ["config", "set", "api_token", "secret-token"]).exit_code == 0

    stored = json.loads((tmp_path / "config.json").read_text())
    assert stored == {"max_categories": 12, "api_token": "secret-token"}

    shown = runner.invoke(app, ["config", "show"])
    assert shown.exit_code == 0
    assert '"max_categories": 12' in shown.stdout
    assert "secret-token" not in shown.stdout

    assert runner.invoke(app, ["config", "set", "nope", "1"]).exit_code == 1


def test_config_show_names_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("THOUGHTSORT_MAX_CATEGORIES", "7")

    shown = runner.invoke(app, ["config", "show"])

    assert shown.exit_code == 0
    assert '"max_categories": 7' in shown.stdout
    assert "THOUGHTSORT_MAX_CATEGORIES" in shown.stdout
