from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

import typer
from rich import print
from rich.markup import escape

from thoughtsort.config import CONFIG_ENV_OVERRIDES, ThoughtsortConfig

_SECRET_KEYS = {"api_token", "openai_api_key", "anthropic_api_key", "server_tokens"}


def _redact(key: str, value: Any) -> Any:
    if key in _SECRET_KEYS and value:
        return "***"
    return value


def config_show_cmd(
    *,
    load_config: Callable[[], ThoughtsortConfig],
    get_config_path: Callable[[], Path],
    get_env_overrides: Callable[[], dict[str, str]],
    reveal: bool,
) -> None:
    cfg = load_config()
    data = asdict(cfg)
    if not reveal:
        data = {key: _redact(key, value) for key, value in data.items()}
    print(f"[dim]{get_config_path()}[/dim]")
    print(escape(json.dumps(data, indent=2)))
    overridden = sorted(get_env_overrides())
    if overridden:
        names = ", ".join(f"{key} ({CONFIG_ENV_OVERRIDES[key]})" for key in overridden)
        print(f"[yellow]Overridden by environment: {escape(names)}[/yellow]")


def _coerce_value(key: str, raw: str) -> Any:
    defaults = ThoughtsortConfig()
    current = getattr(defaults, key)
    if isinstance(current, bool):
        return raw.lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, dict):
        return json.loads(raw)
    return raw


def config_set_cmd(
    *,
    read_config_or_exit: Callable[[], dict[str, Any]],
    write_config_or_exit: Callable[[dict[str, Any]], None],
    key: str,
    value: str | None,
    unset: bool,
) -> None:
    known = {f.name for f in fields(ThoughtsortConfig)}
    if key not in known:
        print(f"[red]Unknown config key: {key}[/red]")
        raise typer.Exit(code=1)
    data = read_config_or_exit()
    if unset:
        data.pop(key, None)
        write_config_or_exit(data)
        print(f"Removed {key}")
        return
    if value is None:
        print("[red]Pass a VALUE or --unset[/red]")
        raise typer.Exit(code=1)
    try:
        data[key] = _coerce_value(key, value)
    except ValueError as exc:
        print(f"[red]Invalid value for {key}: {value}[/red]")
        raise typer.Exit(code=1) from exc
    write_config_or_exit(data)
    print(f"Set {key}")
