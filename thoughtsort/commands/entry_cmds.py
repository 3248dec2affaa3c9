from __future__ import annotations

import shutil
from pathlib import Path

import typer
from rich import print
from rich.markup import escape
from rich.table import Table

from thoughtsort.client.local_store import LocalStore
from thoughtsort.client.review import PendingEntryLifecycle
from thoughtsort.config import ThoughtsortConfig
from thoughtsort.errors import RecordNotFoundError
from thoughtsort.models import SyncStatus
from thoughtsort.speech import SUPPORTED_LOCALES, assemble_segments

from .common import short_id


def _copy_recording(cfg: ThoughtsortConfig, audio: str) -> str:
    source = Path(audio).expanduser()
    if not source.is_file():
        print(f"[red]Recording not found: {source}[/red]")
        raise typer.Exit(code=1)
    target_dir = Path(cfg.audio_dir).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    # The sync engine removes the queued copy after upload.
    target = target_dir / f"{source.stem}-{source.stat().st_mtime_ns}{source.suffix or '.m4a'}"
    shutil.copyfile(source, target)
    return str(target)


def capture_cmd(
    *,
    store: LocalStore,
    cfg: ThoughtsortConfig,
    segments: list[str],
    locale: str,
    category_id: str | None,
    audio: str | None,
) -> str:
    """Queue a capture for processing and return its provisional id.

    Each segment is the text of one recognizer task, joined with single spaces.
    """

    if locale not in SUPPORTED_LOCALES:
        print(f"[yellow]Unsupported locale {locale}; the transcript is sent as-is[/yellow]")
    text = assemble_segments(segments, locale=locale)
    if not text.strip() and not audio:
        print("[red]Nothing to capture: pass text or --audio[/red]")
        raise typer.Exit(code=1)
    if len(text) > cfg.max_transcript_chars:
        print(f"[red]Transcript too long (max {cfg.max_transcript_chars} characters)[/red]")
        raise typer.Exit(code=1)
    audio_path = _copy_recording(cfg, audio) if audio else None
    try:
        entry = store.create_entry(
            text, locale=locale, category_id=category_id, audio_local_path=audio_path
        )
    except RecordNotFoundError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"Queued entry {short_id(entry.id)}")
    return entry.id


def _status_marker(status: SyncStatus) -> str:
    if status == SyncStatus.SYNCED:
        return ""
    return f" [yellow]({status.value})[/yellow]"


def inbox_cmd(*, store: LocalStore) -> None:
    entries = store.inbox_entries()
    if not entries:
        print("Inbox is empty")
        return
    for entry in entries:
        label = entry.title or entry.transcript[:60]
        print(f"- {short_id(entry.id)} {escape(label)}{_status_marker(entry.sync_status)}")


def categories_cmd(*, store: LocalStore, newly_sorted: set[str] | None = None) -> None:
    categories = store.list_categories()
    if not categories:
        print("No categories yet")
        return
    table = Table("id", "name", "entries", "pending", "latest")
    for category in categories:
        pending = len(store.pending_review_entries(category.id))
        name = escape(category.name)
        if newly_sorted and category.id in newly_sorted:
            name = f"{name} [green]NEW[/green]"
        table.add_row(
            short_id(category.id),
            name + _status_marker(category.sync_status),
            str(category.entry_count),
            str(pending),
            escape(category.latest_entry_title or ""),
        )
    print(table)


def resolve_category_id(store: LocalStore, value: str) -> str:
    """Accept a full id, an id prefix, or a case-insensitive name."""

    categories = store.list_categories(include_archived=True)
    for category in categories:
        if category.id == value:
            return category.id
    lowered = value.strip().lower()
    for category in categories:
        if category.name.lower() == lowered:
            return category.id
    matches = [c for c in categories if c.id.startswith(value)]
    if len(matches) == 1:
        return matches[0].id
    print(f"[red]Unknown category: {value}[/red]")
    raise typer.Exit(code=1)


def resolve_entry_id(store: LocalStore, value: str) -> str:
    entry = store.get_entry(value)
    if entry is not None:
        return entry.id
    matches = [e for e in store.list_entries() if e.id.startswith(value)]
    if len(matches) == 1:
        return matches[0].id
    print(f"[red]Unknown entry: {value}[/red]")
    raise typer.Exit(code=1)


def category_add_cmd(*, store: LocalStore, name: str) -> None:
    try:
        category = store.create_category(name)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"Created category {category.name} ({short_id(category.id)})")


def category_rename_cmd(*, store: LocalStore, category: str, name: str) -> None:
    category_id = resolve_category_id(store, category)
    updated = store.update_category(category_id, name=name)
    print(f"Renamed to {updated.name}")


def category_delete_cmd(*, store: LocalStore, category: str) -> None:
    category_id = resolve_category_id(store, category)
    store.delete_category(category_id)
    print("Category queued for deletion")


def review_cmd(*, lifecycle: PendingEntryLifecycle, category: str) -> None:
    category_id = resolve_category_id(lifecycle.store, category)
    pending = lifecycle.open_category(category_id)
    note = lifecycle.store.get_category(category_id)
    if note is not None and note.note_body:
        print("[bold]Note[/bold]")
        print(escape(note.note_body))
    if not pending:
        print("No entries to review")
        return
    print("\n[bold]To review[/bold]")
    for entry in pending:
        print(f"- {short_id(entry.id)} [bold]{escape(entry.title)}[/bold]")
        print(f"  {escape(entry.transcript)}")


def keep_cmd(*, lifecycle: PendingEntryLifecycle, entry: str) -> None:
    entry_id = resolve_entry_id(lifecycle.store, entry)
    try:
        category = lifecycle.keep(entry_id)
    except RecordNotFoundError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"Merged into {category.name}")


def move_cmd(
    *,
    lifecycle: PendingEntryLifecycle,
    entry: str,
    target: str | None,
    new_category: str | None,
) -> None:
    if bool(target) == bool(new_category):
        print("[red]Pass exactly one of TARGET or --new[/red]")
        raise typer.Exit(code=1)
    entry_id = resolve_entry_id(lifecycle.store, entry)
    if target:
        token = lifecycle.move(entry_id, resolve_category_id(lifecycle.store, target))
    else:
        token = lifecycle.move_to_new_category(entry_id, str(new_category))
    print(token.message)


def search_cmd(*, store: LocalStore, query: str, limit: int) -> None:
    results = store.search_entries(query, limit=limit)
    if not results:
        print("No matches")
        return
    for entry in results:
        where = escape(entry.category_name or "Inbox")
        label = escape(entry.title or entry.transcript[:60])
        print(f"- {short_id(entry.id)} ({where}) {label}")
