from __future__ import annotations

import logging
from typing import Any

import typer
from rich import print
from rich.logging import RichHandler

from thoughtsort.client.local_store import LocalStore
from thoughtsort.client.remote_api import RemoteAPI
from thoughtsort.config import ThoughtsortConfig, read_config_file, write_config_file
from thoughtsort.server.store import RemoteStore


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(show_path=False, rich_tracebacks=verbose)],
        force=True,
    )


def local_store_from_config(cfg: ThoughtsortConfig, db_path: str | None = None) -> LocalStore:
    return LocalStore(db_path or cfg.db_path, user_id=cfg.user_id)


def remote_store_from_config(cfg: ThoughtsortConfig, db_path: str | None = None) -> RemoteStore:
    return RemoteStore(db_path or cfg.server_db_path)


def remote_api_or_exit(cfg: ThoughtsortConfig) -> RemoteAPI:
    if not cfg.api_token:
        print("[red]No API token configured (set THOUGHTSORT_API_TOKEN or api_token)[/red]")
        raise typer.Exit(code=1)
    return RemoteAPI(cfg.api_url, cfg.api_token, timeout_s=cfg.http_timeout_s)


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def write_config_or_exit(data: dict[str, Any]) -> None:
    try:
        write_config_file(data)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def short_id(value: str) -> str:
    return value[:8]
