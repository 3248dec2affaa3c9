from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import RemoteAPIError
from ..models import Category, Entry, ProcessEntryResult

logger = logging.getLogger(__name__)


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    if "://" in trimmed:
        return trimmed
    return f"http://{trimmed}"


class RemoteAPI:
    """HTTP client for the remote store API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout_s: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = build_base_url(base_url)
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            timeout=timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RemoteAPI:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteAPIError(f"{method} {path} failed: {exc}") from exc
        payload: Any = None
        if resp.content:
            try:
                payload = resp.json()
            except ValueError:
                payload = None
        if resp.status_code >= 400:
            code = None
            if isinstance(payload, dict):
                code = payload.get("code") or payload.get("error")
            raise RemoteAPIError(
                f"{method} {path} returned {resp.status_code}: {code or 'error'}",
                status=resp.status_code,
                code=str(code) if code else None,
            )
        if not isinstance(payload, dict):
            raise RemoteAPIError(
                f"{method} {path} returned a non-object body",
                status=resp.status_code,
                code="invalid_response",
            )
        return payload

    @staticmethod
    def _field(payload: dict[str, Any], key: str) -> Any:
        if key not in payload:
            raise RemoteAPIError(f"response missing {key}", code="invalid_response")
        return payload[key]

    def fetch_categories(self) -> list[Category]:
        payload = self._request("GET", "/v1/categories")
        items = self._field(payload, "categories")
        try:
            return [Category.from_wire(item) for item in items]
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteAPIError("malformed category list", code="invalid_response") from exc

    def create_category(self, category: Category) -> Category:
        payload = self._request(
            "POST",
            "/v1/categories",
            json={
                "id": category.id,
                "name": category.name,
                "note_body": category.note_body,
                "is_user_created": category.is_user_created,
                "created_at": category.created_at,
            },
        )
        return Category.from_wire(self._field(payload, "category"))

    def update_category(self, category: Category) -> Category:
        payload = self._request(
            "PATCH",
            f"/v1/categories/{category.id}",
            json={"name": category.name, "note_body": category.note_body},
        )
        return Category.from_wire(self._field(payload, "category"))

    def delete_category(self, category_id: str) -> None:
        self._request("DELETE", f"/v1/categories/{category_id}")

    def fetch_entries(self, category_id: str | None = None) -> list[Entry]:
        params = {"category_id": category_id} if category_id else None
        payload = self._request("GET", "/v1/entries", params=params)
        items = self._field(payload, "entries")
        try:
            return [Entry.from_wire(item) for item in items]
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteAPIError("malformed entry list", code="invalid_response") from exc

    def edit_entry(self, entry: Entry) -> Entry:
        payload = self._request(
            "PATCH",
            f"/v1/entries/{entry.id}",
            json={
                "transcript": entry.transcript,
                "title": entry.title,
                "category_id": entry.category_id,
                "is_pending": entry.is_pending,
                "seen_at": entry.seen_at,
            },
        )
        return Entry.from_wire(self._field(payload, "entry"))

    def delete_entry(self, entry_id: str) -> None:
        self._request("DELETE", f"/v1/entries/{entry_id}")

    def process_entry(
        self,
        transcript: str,
        *,
        locale: str,
        category_id: str | None = None,
        audio_path: str | None = None,
        created_at: str | None = None,
    ) -> ProcessEntryResult:
        body: dict[str, Any] = {"transcript": transcript, "locale": locale}
        if category_id:
            body["category_id"] = category_id
        if audio_path:
            body["audio_path"] = audio_path
        if created_at:
            body["created_at"] = created_at
        payload = self._request("POST", "/v1/process-entry", json=body)
        try:
            return ProcessEntryResult(
                entry=Entry.from_wire(self._field(payload, "entry")),
                category=Category.from_wire(self._field(payload, "category")),
                is_new_category=bool(payload.get("is_new_category")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteAPIError(
                "malformed process-entry response", code="invalid_response"
            ) from exc

    def upload_audio(self, name: str, data: bytes, *, content_type: str = "audio/m4a") -> str:
        payload = self._request(
            "PUT",
            f"/v1/audio/{name}",
            content=data,
            headers={"Content-Type": content_type},
        )
        path = self._field(payload, "path")
        if not isinstance(path, str) or not path:
            raise RemoteAPIError("upload returned no path", code="invalid_response")
        return path
