import json
from pathlib import Path

import pytest

from thoughtsort.config import (
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    server_logs_enabled,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_missing_config_file_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "nope.json") == {}


def test_write_then_load(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    write_config_file({"similarity_threshold": 0.55, "max_categories": 12}, config_path)

    cfg = load_config(config_path)

    assert cfg.similarity_threshold == 0.55
    assert cfg.max_categories == 12
    assert cfg.undo_window_s == 5.0


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"api_url": "http://file:1", "user_id": "alice"}))
    monkeypatch.setenv("THOUGHTSORT_API_URL", "http://env:2")
    monkeypatch.setenv("THOUGHTSORT_SIMILARITY_THRESHOLD", "0.7")

    cfg = load_config(config_path)

    assert cfg.api_url == "http://env:2"
    assert cfg.user_id == "alice"
    assert cfg.similarity_threshold == 0.7
    assert get_env_overrides()["api_url"] == "http://env:2"


def test_invalid_numbers_warn_and_keep_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"max_categories": "many"}))
    with pytest.warns(RuntimeWarning, match="max_categories"):
        cfg = load_config(config_path)
    assert cfg.max_categories == 10


def test_server_tokens_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("THOUGHTSORT_SERVER_TOKENS", "abc=alice, def=bob,broken")
    cfg = load_config(tmp_path / "missing.json")
    assert cfg.server_tokens == {"abc": "alice", "def": "bob"}


def test_server_tokens_from_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"server_tokens": {"abc": "alice"}}))
    assert load_config(config_path).server_tokens == {"abc": "alice"}


def test_config_path_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("THOUGHTSORT_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"


def test_server_logs_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("THOUGHTSORT_SERVER_LOGS", raising=False)
    assert server_logs_enabled() is False
    monkeypatch.setenv("THOUGHTSORT_SERVER_LOGS", "1")
    assert server_logs_enabled() is True


def test_every_env_override_reaches_the_config(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("THOUGHTSORT_SERVER_TOKENS", "tok=carol")
    monkeypatch.setenv("THOUGHTSORT_SERVER_PORT", "8123")

    cfg = load_config(tmp_path / "missing.json")

    assert cfg.openai_api_key == "sk-env"
    assert cfg.server_tokens == {"tok": "carol"}
    assert cfg.server_port == 8123
    assert {"openai_api_key", "server_tokens", "server_port"} <= set(get_env_overrides())


def test_bad_env_number_warns(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("THOUGHTSORT_SERVER_PORT", "eighty")
    with pytest.warns(RuntimeWarning, match="server_port"):
        cfg = load_config(tmp_path / "missing.json")
    assert cfg.server_port == 7411
