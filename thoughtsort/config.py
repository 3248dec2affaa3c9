from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/thoughtsort/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "THOUGHTSORT_DB",
    "server_db_path": "THOUGHTSORT_SERVER_DB",
    "audio_dir": "THOUGHTSORT_AUDIO_DIR",
    "api_url": "THOUGHTSORT_API_URL",
    "api_token": "THOUGHTSORT_API_TOKEN",
    "user_id": "THOUGHTSORT_USER_ID",
    "server_host": "THOUGHTSORT_SERVER_HOST",
    "server_port": "THOUGHTSORT_SERVER_PORT",
    "server_tokens": "THOUGHTSORT_SERVER_TOKENS",
    "openai_api_key": "OPENAI_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "classifier_provider": "THOUGHTSORT_CLASSIFIER_PROVIDER",
    "classifier_model": "THOUGHTSORT_CLASSIFIER_MODEL",
    "embedding_provider": "THOUGHTSORT_EMBEDDING_PROVIDER",
    "embedding_model": "THOUGHTSORT_EMBEDDING_MODEL",
    "transcription_model": "THOUGHTSORT_TRANSCRIPTION_MODEL",
    "similarity_threshold": "THOUGHTSORT_SIMILARITY_THRESHOLD",
    "max_categories": "THOUGHTSORT_MAX_CATEGORIES",
    "max_transcript_chars": "THOUGHTSORT_MAX_TRANSCRIPT_CHARS",
    "sync_interval_s": "THOUGHTSORT_SYNC_INTERVAL_S",
}

_INT_KEYS = {
    "server_port",
    "max_categories",
    "max_transcript_chars",
    "audio_retention_hours",
    "sync_interval_s",
}
_FLOAT_KEYS = {
    "similarity_threshold",
    "classify_timeout_s",
    "transcribe_timeout_s",
    "http_timeout_s",
    "undo_window_s",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("THOUGHTSORT_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class ThoughtsortConfig:
    db_path: str = "~/.thoughtsort/local.sqlite"
    server_db_path: str = "~/.thoughtsort/server.sqlite"
    audio_dir: str = "~/.thoughtsort/recordings"

    api_url: str = "http://127.0.0.1:7411"
    api_token: str | None = None
    user_id: str = "local"

    server_host: str = "127.0.0.1"
    server_port: int = 7411
    # Bearer token -> user id accepted by the server.
    server_tokens: dict[str, str] = field(default_factory=dict)

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    classifier_provider: str = "openai"
    classifier_model: str | None = None
    embedding_provider: str = "openai"
    embedding_model: str | None = None
    transcription_model: str = "whisper-1"

    similarity_threshold: float = 0.60
    max_categories: int = 10
    max_transcript_chars: int = 10000

    classify_timeout_s: float = 25.0
    transcribe_timeout_s: float = 60.0
    http_timeout_s: float = 30.0
    undo_window_s: float = 5.0
    audio_retention_hours: int = 24
    sync_interval_s: int = 60


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_token_map(value: object, *, key: str) -> dict[str, str] | None:
    if value is None:
        return None
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if str(k).strip() and str(v).strip()}
    if isinstance(value, str):
        # "token1=user1,token2=user2"
        tokens: dict[str, str] = {}
        for part in value.split(","):
            token, sep, user = part.partition("=")
            if sep and token.strip() and user.strip():
                tokens[token.strip()] = user.strip()
        return tokens
    warnings.warn(f"Invalid token map for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def load_config(path: Path | None = None) -> ThoughtsortConfig:
    cfg = ThoughtsortConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: ThoughtsortConfig, data: dict[str, Any]) -> ThoughtsortConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key == "server_tokens":
            parsed = _coerce_token_map(value, key=key)
            if parsed is not None:
                cfg.server_tokens = parsed
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: ThoughtsortConfig) -> ThoughtsortConfig:
    return _apply_dict(cfg, get_env_overrides())


def server_logs_enabled() -> bool:
    return _parse_bool(os.getenv("THOUGHTSORT_SERVER_LOGS"), False)
