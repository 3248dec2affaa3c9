from __future__ import annotations

import typer
from rich import print

from . import __version__
from .client.context import AppContext
from .client.review import PendingEntryLifecycle
from .client.sync import SyncEngine
from .commands.common import (
    local_store_from_config,
    read_config_or_exit,
    remote_api_or_exit,
    remote_store_from_config,
    setup_logging,
    write_config_or_exit,
)
from .commands.config_cmds import config_set_cmd, config_show_cmd
from .commands.entry_cmds import (
    capture_cmd,
    categories_cmd,
    category_add_cmd,
    category_delete_cmd,
    category_rename_cmd,
    inbox_cmd,
    keep_cmd,
    move_cmd,
    review_cmd,
    search_cmd,
)
from .commands.server_cmds import cleanup_audio_cmd, init_db_cmd, serve_cmd
from .commands.sync_cmds import status_cmd, sync_loop_cmd, sync_once_cmd
from .config import get_config_path, get_env_overrides, load_config

app = typer.Typer(help="thoughtsort: voice notes sorted into categories")
category_app = typer.Typer(help="Manage categories")
config_app = typer.Typer(help="Show and edit configuration")
app.add_typer(category_app, name="category")
app.add_typer(config_app, name="config")


@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    setup_logging(verbose)


def _engine(db_path: str | None) -> SyncEngine:
    cfg = load_config()
    api = remote_api_or_exit(cfg)
    return SyncEngine(local_store_from_config(cfg, db_path), api, AppContext())


def _lifecycle(db_path: str | None, *, sync: bool) -> PendingEntryLifecycle:
    cfg = load_config()
    api = remote_api_or_exit(cfg) if sync else None
    store = local_store_from_config(cfg, db_path)
    engine = SyncEngine(store, api) if api is not None else None
    return PendingEntryLifecycle(store, engine, undo_window_s=cfg.undo_window_s)


def _finish(lifecycle: PendingEntryLifecycle) -> None:
    if lifecycle.engine is not None:
        lifecycle.engine.wait_idle(30.0)
        lifecycle.engine.api.close()
    lifecycle.store.close()


@app.command()
def capture(
    text: list[str] = typer.Argument(None, help="Transcript text, one argument per segment"),
    locale: str = typer.Option("en-US", help="Locale of the recording"),
    category: str = typer.Option(None, help="Category id for a manual note"),
    audio: str = typer.Option(None, help="Path to a recording to upload"),
    sync: bool = typer.Option(True, "--sync/--no-sync", help="Sync right after capturing"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Capture a note; it is sorted on the next sync."""

    cfg = load_config()
    store = local_store_from_config(cfg, db_path)
    try:
        capture_cmd(
            store=store,
            cfg=cfg,
            segments=list(text or []),
            locale=locale,
            category_id=category,
            audio=audio,
        )
    finally:
        store.close()
    if sync:
        engine = _engine(db_path)
        try:
            sync_once_cmd(engine=engine)
        finally:
            engine.api.close()
            engine.store.close()


@app.command()
def inbox(db_path: str = typer.Option(None, help="Path to the local database")) -> None:
    """List entries without a category."""

    store = local_store_from_config(load_config(), db_path)
    try:
        inbox_cmd(store=store)
    finally:
        store.close()


@app.command()
def categories(db_path: str = typer.Option(None, help="Path to the local database")) -> None:
    """List categories with entry and review counts."""

    store = local_store_from_config(load_config(), db_path)
    try:
        categories_cmd(store=store)
    finally:
        store.close()


@category_app.command("add")
def category_add(
    name: str = typer.Argument(..., help="Category name"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Create a category."""

    store = local_store_from_config(load_config(), db_path)
    try:
        category_add_cmd(store=store, name=name)
    finally:
        store.close()


@category_app.command("rename")
def category_rename(
    category: str = typer.Argument(..., help="Category id or name"),
    name: str = typer.Argument(..., help="New name"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Rename a category."""

    store = local_store_from_config(load_config(), db_path)
    try:
        category_rename_cmd(store=store, category=category, name=name)
    finally:
        store.close()


@category_app.command("delete")
def category_delete(
    category: str = typer.Argument(..., help="Category id or name"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Delete a category; its entries return to the inbox."""

    store = local_store_from_config(load_config(), db_path)
    try:
        category_delete_cmd(store=store, category=category)
    finally:
        store.close()


@app.command()
def review(
    category: str = typer.Argument(..., help="Category id or name"),
    sync: bool = typer.Option(True, "--sync/--no-sync", help="Sync merged entries"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Open a category: merge seen entries and show new ones."""

    lifecycle = _lifecycle(db_path, sync=sync)
    try:
        review_cmd(lifecycle=lifecycle, category=category)
    finally:
        _finish(lifecycle)


@app.command()
def keep(
    entry: str = typer.Argument(..., help="Entry id"),
    sync: bool = typer.Option(True, "--sync/--no-sync", help="Sync after merging"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Merge an entry into its category note."""

    lifecycle = _lifecycle(db_path, sync=sync)
    try:
        keep_cmd(lifecycle=lifecycle, entry=entry)
    finally:
        _finish(lifecycle)


@app.command()
def move(
    entry: str = typer.Argument(..., help="Entry id"),
    target: str = typer.Argument(None, help="Target category id or name"),
    new: str = typer.Option(None, "--new", help="Create this category and move there"),
    sync: bool = typer.Option(True, "--sync/--no-sync", help="Sync after moving"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Move an entry to another category."""

    lifecycle = _lifecycle(db_path, sync=sync)
    try:
        move_cmd(lifecycle=lifecycle, entry=entry, target=target, new_category=new)
    finally:
        _finish(lifecycle)


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to look for"),
    limit: int = typer.Option(20, help="Maximum results"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Search entry titles and transcripts."""

    store = local_store_from_config(load_config(), db_path)
    try:
        search_cmd(store=store, query=query, limit=limit)
    finally:
        store.close()


@app.command("sync")
def sync_(
    loop: bool = typer.Option(False, "--loop", help="Keep syncing on an interval"),
    interval: int = typer.Option(None, help="Seconds between syncs with --loop"),
    db_path: str = typer.Option(None, help="Path to the local database"),
) -> None:
    """Push local changes and pull remote state."""

    engine = _engine(db_path)
    try:
        if loop:
            sync_loop_cmd(engine=engine, interval_s=interval or load_config().sync_interval_s)
        else:
            sync_once_cmd(engine=engine)
    finally:
        engine.api.close()
        engine.store.close()


@app.command()
def status(db_path: str = typer.Option(None, help="Path to the local database")) -> None:
    """Show sync state and queued changes."""

    cfg = load_config()
    store = local_store_from_config(cfg, db_path)
    try:
        status_cmd(store=store, cfg=cfg)
    finally:
        store.close()


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind host"),
    port: int = typer.Option(None, help="Bind port"),
    token: str = typer.Option(None, help="Accept this bearer token for the configured user"),
    db_path: str = typer.Option(None, help="Path to the server database"),
) -> None:
    """Run the remote store API with AI ingestion."""

    serve_cmd(cfg=load_config(), host=host, port=port, db_path=db_path, token=token)


@app.command("cleanup-audio")
def cleanup_audio(
    max_age_hours: int = typer.Option(None, help="Retention window in hours"),
    db_path: str = typer.Option(None, help="Path to the server database"),
) -> None:
    """Delete stored recordings past the retention window."""

    cfg = load_config()
    cleanup_audio_cmd(
        store=remote_store_from_config(cfg, db_path),
        max_age_hours=max_age_hours or cfg.audio_retention_hours,
    )


@app.command("init-db")
def init_db(
    server: bool = typer.Option(False, "--server", help="Initialize the server database"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    cfg = load_config()
    if server:
        init_db_cmd(store=remote_store_from_config(cfg, db_path))
    else:
        init_db_cmd(store=local_store_from_config(cfg, db_path))


@config_app.command("show")
def config_show(
    reveal: bool = typer.Option(False, "--reveal", help="Print secrets unredacted"),
) -> None:
    """Print the effective configuration."""

    config_show_cmd(
        load_config=load_config,
        get_config_path=get_config_path,
        get_env_overrides=get_env_overrides,
        reveal=reveal,
    )


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Config key"),
    value: str = typer.Argument(None, help="New value"),
    unset: bool = typer.Option(False, "--unset", help="Remove the key from the config file"),
) -> None:
    """Write a key to the config file."""

    config_set_cmd(
        read_config_or_exit=read_config_or_exit,
        write_config_or_exit=write_config_or_exit,
        key=key,
        value=value,
        unset=unset,
    )


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
