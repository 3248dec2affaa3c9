from __future__ import annotations

import threading

import typer
from rich import print
from rich.markup import escape

from thoughtsort.client.local_store import LocalStore
from thoughtsort.client.sync import SyncEngine, SyncOutcome, run_sync_daemon
from thoughtsort.config import ThoughtsortConfig


def _print_outcome(outcome: SyncOutcome) -> None:
    if outcome.cancelled:
        print("[yellow]Sync cancelled[/yellow]")
        return
    if not outcome.ok:
        print(f"[red]Sync failed: {escape(outcome.error or '')}[/red]")
        return
    print(
        f"Sync ok: pushed {outcome.pushed}, pulled {outcome.pulled_categories} categories "
        f"and {outcome.pulled_entries} entries, removed {outcome.removed}"
    )
    if outcome.failed:
        print(f"[yellow]{len(outcome.failed)} record(s) will retry next sync[/yellow]")


def sync_once_cmd(*, engine: SyncEngine) -> None:
    outcome = engine.sync_all()
    _print_outcome(outcome)
    if not outcome.ok:
        raise typer.Exit(code=1)


def sync_loop_cmd(
    *, engine: SyncEngine, interval_s: int, stop_event: threading.Event | None = None
) -> None:
    print(f"Syncing every {interval_s}s (Ctrl+C to stop)")
    try:
        run_sync_daemon(engine, interval_s, stop_event=stop_event)
    except KeyboardInterrupt:
        engine.cancel()
        engine.wait_idle(5.0)


def status_cmd(*, store: LocalStore, cfg: ThoughtsortConfig) -> None:
    state = store.sync_state()
    summary = store.pending_summary()
    print(f"- API: {cfg.api_url}")
    print(f"- User: {cfg.user_id}")
    print(f"- Last sync: {state['last_ok_at'] or 'never'}")
    if state["last_error"]:
        print(f"- Last error: {escape(state['last_error'] or '')} ({state['last_error_at']})")
    print(f"- Inbox: {store.inbox_count()}")
    for table, counts in summary.items():
        if not counts:
            print(f"- Pending {table}: none")
            continue
        detail = ", ".join(f"{status}={count}" for status, count in sorted(counts.items()))
        print(f"- Pending {table}: {detail}")
