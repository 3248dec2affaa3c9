from __future__ import annotations

import contextlib
import json
import logging
import re
import socket
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

from .. import db
from ..config import server_logs_enabled
from ..errors import (
    ClassificationError,
    DuplicateRecordError,
    EmbeddingError,
    IngestionValidationError,
    RecordNotFoundError,
)
from ..ingest.pipeline import IngestionPipeline
from ..models import IngestionRequest
from .store import RemoteStore

logger = logging.getLogger(__name__)

MAX_JSON_BODY_BYTES = 1048576
MAX_AUDIO_BYTES = 25 * 1048576

PipelineFactory = Callable[[RemoteStore], IngestionPipeline]

_CATEGORY_PATH = re.compile(r"^/v1/categories/([^/]+)$")
_ENTRY_PATH = re.compile(r"^/v1/entries/([^/]+)$")
_AUDIO_PATH = re.compile(r"^/v1/audio/([A-Za-z0-9._-]+)$")


def _read_body(handler: BaseHTTPRequestHandler, limit: int = MAX_JSON_BODY_BYTES) -> bytes:
    length = int(handler.headers.get("Content-Length", "0") or 0)
    if length <= 0:
        return b""
    if length > limit:
        raise ValueError("payload_too_large")
    return handler.rfile.read(length)


def _parse_json_body(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return {}
    try:
        data = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _send_json(handler: BaseHTTPRequestHandler, payload: dict[str, Any], status: int = 200) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _bearer_token(handler: BaseHTTPRequestHandler) -> str | None:
    header = handler.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def build_api_handler(
    db_path: Path | str | None = None,
    *,
    tokens: dict[str, str],
    pipeline_factory: PipelineFactory | None = None,
):
    """Build the request handler class for the remote store API.

    ``tokens`` maps bearer tokens to user ids; every route is scoped to the
    authenticated user.
    """

    resolved_db = Path(db_path or db.DEFAULT_SERVER_DB_PATH)
    token_map = dict(tokens)

    class ApiHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            if server_logs_enabled():
                super().log_message(format, *args)

        def _store(self) -> RemoteStore:
            return RemoteStore(resolved_db)

        def _user_id(self) -> str | None:
            token = _bearer_token(self)
            if token is None:
                return None
            return token_map.get(token)

        def _json_or_error(self) -> dict[str, Any] | None:
            try:
                raw = _read_body(self)
            except ValueError:
                _send_json(self, {"error": "payload_too_large"}, status=413)
                return None
            data = _parse_json_body(raw)
            if data is None:
                _send_json(self, {"error": "invalid_json"}, status=400)
            return data

        def _dispatch(self, route: Callable[[RemoteStore, str, Any], None]) -> None:
            user_id = self._user_id()
            if user_id is None:
                _send_json(self, {"error": "unauthorized"}, status=401)
                return
            parsed = urlparse(self.path)
            store = self._store()
            try:
                route(store, user_id, parsed)
            except RecordNotFoundError:
                _send_json(self, {"error": "not_found"}, status=404)
            except DuplicateRecordError:
                _send_json(self, {"error": "duplicate"}, status=409)
            except Exception:
                logger.exception("api request failed", extra={"path": parsed.path})
                _send_json(self, {"error": "internal_error"}, status=500)
            finally:
                store.close()

        def do_GET(self) -> None:  # noqa: N802
            self._dispatch(self._route_get)

        def do_POST(self) -> None:  # noqa: N802
            self._dispatch(self._route_post)

        def do_PATCH(self) -> None:  # noqa: N802
            self._dispatch(self._route_patch)

        def do_DELETE(self) -> None:  # noqa: N802
            self._dispatch(self._route_delete)

        def do_PUT(self) -> None:  # noqa: N802
            self._dispatch(self._route_put)

        def _route_get(self, store: RemoteStore, user_id: str, parsed: Any) -> None:
            if parsed.path == "/v1/categories":
                params = parse_qs(parsed.query)
                include_archived = params.get("include_archived", ["0"])[0] in {"1", "true"}
                categories = store.list_categories(user_id, include_archived=include_archived)
                _send_json(self, {"categories": [c.to_wire() for c in categories]})
                return
            if parsed.path == "/v1/entries":
                params = parse_qs(parsed.query)
                category_id = params.get("category_id", [None])[0]
                entries = store.list_entries(user_id, category_id=category_id)
                _send_json(self, {"entries": [e.to_wire() for e in entries]})
                return
            _send_json(self, {"error": "not_found"}, status=404)

        def _route_post(self, store: RemoteStore, user_id: str, parsed: Any) -> None:
            if parsed.path == "/v1/categories":
                data = self._json_or_error()
                if data is None:
                    return
                name = data.get("name")
                if not isinstance(name, str) or not name.strip():
                    _send_json(self, {"error": "name_required"}, status=400)
                    return
                category = store.create_category(
                    user_id,
                    name,
                    category_id=data.get("id") or None,
                    is_user_created=bool(data.get("is_user_created", True)),
                    note_body=str(data.get("note_body") or ""),
                    created_at=data.get("created_at") or None,
                )
                _send_json(self, {"category": category.to_wire()}, status=201)
                return
            if parsed.path == "/v1/process-entry":
                self._process_entry(store, user_id)
                return
            _send_json(self, {"error": "not_found"}, status=404)

        def _route_patch(self, store: RemoteStore, user_id: str, parsed: Any) -> None:
            category_match = _CATEGORY_PATH.match(parsed.path)
            entry_match = _ENTRY_PATH.match(parsed.path)
            if category_match is None and entry_match is None:
                _send_json(self, {"error": "not_found"}, status=404)
                return
            data = self._json_or_error()
            if data is None:
                return
            if category_match is not None:
                is_archived = data.get("is_archived")
                category = store.update_category(
                    category_match.group(1),
                    user_id,
                    name=data.get("name"),
                    note_body=data.get("note_body"),
                    is_archived=None if is_archived is None else bool(is_archived),
                )
                _send_json(self, {"category": category.to_wire()})
                return
            if entry_match is not None:
                entry = store.update_entry(entry_match.group(1), user_id, data)
                _send_json(self, {"entry": entry.to_wire()})

        def _route_delete(self, store: RemoteStore, user_id: str, parsed: Any) -> None:
            category_match = _CATEGORY_PATH.match(parsed.path)
            if category_match is not None:
                store.delete_category(category_match.group(1), user_id)
                _send_json(self, {"deleted": category_match.group(1)})
                return
            entry_match = _ENTRY_PATH.match(parsed.path)
            if entry_match is not None:
                store.delete_entry(entry_match.group(1), user_id)
                _send_json(self, {"deleted": entry_match.group(1)})
                return
            _send_json(self, {"error": "not_found"}, status=404)

        def _route_put(self, store: RemoteStore, user_id: str, parsed: Any) -> None:
            match = _AUDIO_PATH.match(parsed.path)
            if match is None:
                _send_json(self, {"error": "not_found"}, status=404)
                return
            try:
                raw = _read_body(self, MAX_AUDIO_BYTES)
            except ValueError:
                _send_json(self, {"error": "payload_too_large"}, status=413)
                return
            if not raw:
                _send_json(self, {"error": "empty_audio"}, status=400)
                return
            path = f"{user_id}/{match.group(1)}"
            store.put_audio(path, user_id, raw, self.headers.get("Content-Type"))
            _send_json(self, {"path": path}, status=201)

        def _process_entry(self, store: RemoteStore, user_id: str) -> None:
            if pipeline_factory is None:
                _send_json(self, {"error": "ingestion_unavailable"}, status=503)
                return
            data = self._json_or_error()
            if data is None:
                return
            audio_path = data.get("audio_path")
            if audio_path and not str(audio_path).startswith(f"{user_id}/"):
                _send_json(self, {"error": "forbidden_audio_path"}, status=403)
                return
            request = IngestionRequest(
                user_id=user_id,
                transcript=str(data.get("transcript") or ""),
                locale=str(data.get("locale") or "en"),
                category_id=data.get("category_id") or None,
                audio_path=str(audio_path) if audio_path else None,
                created_at=data.get("created_at") or None,
            )
            try:
                result = pipeline_factory(store).process(request)
            except IngestionValidationError as exc:
                _send_json(self, {"error": str(exc)}, status=400)
                return
            except (ClassificationError, EmbeddingError) as exc:
                _send_json(self, {"error": str(exc), "code": "ai_failure"}, status=502)
                return
            _send_json(self, result.to_wire())

    return ApiHandler


def serve(
    host: str,
    port: int,
    *,
    db_path: Path | str | None = None,
    tokens: dict[str, str],
    pipeline_factory: PipelineFactory | None = None,
    stop_event: threading.Event | None = None,
) -> None:
    handler = build_api_handler(db_path, tokens=tokens, pipeline_factory=pipeline_factory)

    class Server(HTTPServer):
        address_family = socket.AF_INET6 if ":" in host else socket.AF_INET

        def server_bind(self) -> None:
            if self.address_family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            super().server_bind()

    server = Server((host, port), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info("api listening", extra={"host": host, "port": port})
    stop = stop_event or threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    finally:
        server.shutdown()
        server.server_close()
