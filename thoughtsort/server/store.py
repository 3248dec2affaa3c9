from __future__ import annotations

import contextlib
import datetime as dt
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any

from .. import db
from ..errors import DuplicateRecordError, RecordNotFoundError
from ..ingest.centroid import CentroidMaintainer
from ..models import Category, CategoryMatch, Entry
from ..utils import new_id, now_iso, parse_iso8601
from ..vectors import cosine_similarity, dump_vector, load_vector, same_dimension

logger = logging.getLogger(__name__)

_ENTRY_EDITABLE = ("transcript", "title", "category_id", "is_pending", "seen_at", "locale")


class RemoteStore:
    """Authoritative category/entry store shared by every client of a user."""

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_SERVER_DB_PATH,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_server_schema(self.conn)
        self._tx_depth = 0
        self.centroids = CentroidMaintainer(self)

    def close(self) -> None:
        self.conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Group writes; only the outermost block commits or rolls back."""

        self._tx_depth += 1
        try:
            yield self.conn
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self.conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self.conn.commit()

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self.conn.commit()

    # categories

    @staticmethod
    def _category_from_row(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            entry_count=int(row["entry_count"] or 0),
            embedding_centroid=load_vector(row["embedding_centroid"]),
            is_archived=bool(row["is_archived"]),
            is_user_created=bool(row["is_user_created"]),
            created_at=row["created_at"],
            last_updated=row["last_updated"],
            latest_entry_title=row["latest_entry_title"],
            note_body=row["note_body"] or "",
        )

    def list_categories(self, user_id: str, *, include_archived: bool = False) -> list[Category]:
        """Categories ordered by descending entry count (oldest first on ties)."""

        clause = "" if include_archived else "AND is_archived = 0"
        rows = self.conn.execute(
            f"""
            SELECT * FROM categories
            WHERE user_id = ? {clause}
            ORDER BY entry_count DESC, created_at ASC
            """,
            (user_id,),
        ).fetchall()
        return [self._category_from_row(row) for row in rows]

    def get_category(self, category_id: str, user_id: str | None = None) -> Category | None:
        row = self.conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
        if row is None:
            return None
        if user_id is not None and row["user_id"] != user_id:
            return None
        return self._category_from_row(row)

    def _require_category(self, category_id: str) -> Category:
        category = self.get_category(category_id)
        if category is None:
            raise RecordNotFoundError(f"category not found: {category_id}")
        return category

    def create_category(
        self,
        user_id: str,
        name: str,
        *,
        category_id: str | None = None,
        centroid: Sequence[float] | None = None,
        is_user_created: bool = True,
        note_body: str = "",
        created_at: str | None = None,
    ) -> Category:
        cleaned = name.strip()
        if not cleaned:
            raise ValueError("category name is required")
        category_id = category_id or new_id()
        now = now_iso()
        try:
            self.conn.execute(
                """
                INSERT INTO categories(
                    id, user_id, name, is_user_created, entry_count,
                    embedding_centroid, created_at, last_updated, note_body
                )
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (
                    category_id,
                    user_id,
                    cleaned,
                    1 if is_user_created else 0,
                    dump_vector(centroid),
                    created_at or now,
                    now,
                    note_body,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(f"duplicate category id: {category_id}") from exc
        self._commit()
        return self._require_category(category_id)

    def update_category(
        self,
        category_id: str,
        user_id: str,
        *,
        name: str | None = None,
        note_body: str | None = None,
        is_archived: bool | None = None,
    ) -> Category:
        if self.get_category(category_id, user_id) is None:
            raise RecordNotFoundError(f"category not found: {category_id}")
        updates: list[str] = []
        params: list[Any] = []
        if name is not None and name.strip():
            updates.append("name = ?")
            params.append(name.strip())
        if note_body is not None:
            updates.append("note_body = ?")
            params.append(note_body)
        if is_archived is not None:
            updates.append("is_archived = ?")
            params.append(1 if is_archived else 0)
        if updates:
            params.append(category_id)
            self.conn.execute(f"UPDATE categories SET {', '.join(updates)} WHERE id = ?", params)
            self._commit()
        return self._require_category(category_id)

    def delete_category(self, category_id: str, user_id: str) -> None:
        cur = self.conn.execute(
            "DELETE FROM categories WHERE id = ? AND user_id = ?", (category_id, user_id)
        )
        if cur.rowcount == 0:
            raise RecordNotFoundError(f"category not found: {category_id}")
        self._commit()

    def set_centroid(self, category_id: str, centroid: Sequence[float] | None) -> None:
        self.conn.execute(
            "UPDATE categories SET embedding_centroid = ? WHERE id = ?",
            (dump_vector(centroid), category_id),
        )
        self._commit()

    def member_embeddings(
        self, category_id: str, *, exclude_entry_id: str | None = None
    ) -> list[list[float]]:
        rows = self.conn.execute(
            """
            SELECT id, embedding_vector FROM entries
            WHERE category_id = ? AND embedding_vector IS NOT NULL
            ORDER BY created_at ASC
            """,
            (category_id,),
        ).fetchall()
        vectors: list[list[float]] = []
        for row in rows:
            if exclude_entry_id is not None and row["id"] == exclude_entry_id:
                continue
            vector = load_vector(row["embedding_vector"])
            if vector:
                vectors.append(vector)
        return vectors

    def match_category(
        self, query_embedding: Sequence[float], user_id: str, threshold: float
    ) -> CategoryMatch | None:
        """Best non-archived category whose centroid is at least ``threshold`` similar.

        Centroids of a different dimensionality never match.
        """

        best: CategoryMatch | None = None
        for category in self.list_categories(user_id):
            centroid = category.embedding_centroid
            if centroid is None or not same_dimension(centroid, query_embedding):
                continue
            similarity = cosine_similarity(query_embedding, centroid)
            if similarity < threshold:
                continue
            if best is None or similarity > best.similarity:
                best = CategoryMatch(id=category.id, name=category.name, similarity=similarity)
        return best

    # entries

    @staticmethod
    def _entry_from_row(row: sqlite3.Row) -> Entry:
        return Entry(
            id=row["id"],
            user_id=row["user_id"],
            transcript=row["transcript"],
            title=row["title"] or "",
            category_id=row["category_id"],
            category_name=row["category_name"],
            embedding_vector=load_vector(row["embedding_vector"]),
            locale=row["locale"],
            created_at=row["created_at"],
            is_pending=bool(row["is_pending"]),
            seen_at=row["seen_at"],
            audio_url=row["audio_url"],
        )

    def get_entry(self, entry_id: str, user_id: str | None = None) -> Entry | None:
        row = self.conn.execute("SELECT * FROM entries WHERE id = ?", (entry_id,)).fetchone()
        if row is None:
            return None
        if user_id is not None and row["user_id"] != user_id:
            return None
        return self._entry_from_row(row)

    def _require_entry(self, entry_id: str) -> Entry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise RecordNotFoundError(f"entry not found: {entry_id}")
        return entry

    def list_entries(self, user_id: str, *, category_id: str | None = None) -> list[Entry]:
        params: list[Any] = [user_id]
        clause = ""
        if category_id is not None:
            clause = "AND category_id = ?"
            params.append(category_id)
        rows = self.conn.execute(
            f"""
            SELECT * FROM entries
            WHERE user_id = ? {clause}
            ORDER BY created_at DESC
            """,
            params,
        ).fetchall()
        return [self._entry_from_row(row) for row in rows]

    def insert_entry(self, entry: Entry) -> Entry:
        now = now_iso()
        entry_id = entry.id or new_id()
        try:
            self.conn.execute(
                """
                INSERT INTO entries(
                    id, user_id, transcript, title, category_id, embedding_vector,
                    locale, created_at, last_updated, is_pending, seen_at, audio_url
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    entry.user_id,
                    entry.transcript,
                    entry.title,
                    entry.category_id,
                    dump_vector(entry.embedding_vector),
                    entry.locale,
                    entry.created_at or now,
                    now,
                    1 if entry.is_pending else 0,
                    entry.seen_at,
                    entry.audio_url,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(f"duplicate entry id: {entry_id}") from exc
        self._commit()
        return self._require_entry(entry_id)

    def update_entry(self, entry_id: str, user_id: str, fields: dict[str, Any]) -> Entry:
        if self.get_entry(entry_id, user_id) is None:
            raise RecordNotFoundError(f"entry not found: {entry_id}")
        updates: list[str] = []
        params: list[Any] = []
        for key in _ENTRY_EDITABLE:
            if key not in fields:
                continue
            value = fields[key]
            if key == "is_pending":
                value = 1 if value else 0
            updates.append(f"{key} = ?")
            params.append(value)
        if updates:
            updates.append("last_updated = ?")
            params.extend([now_iso(), entry_id])
            self.conn.execute(f"UPDATE entries SET {', '.join(updates)} WHERE id = ?", params)
            self._commit()
        return self._require_entry(entry_id)

    def delete_entry(self, entry_id: str, user_id: str) -> None:
        """Delete an entry and recompute its former category's centroid."""

        with self.transaction():
            entry = self.get_entry(entry_id, user_id)
            if entry is None:
                raise RecordNotFoundError(f"entry not found: {entry_id}")
            self.conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
            if entry.category_id:
                self.centroids.recompute_on_removal(entry.category_id, entry_id)

    # audio

    def put_audio(
        self, path: str, user_id: str, data: bytes, content_type: str | None = None
    ) -> str:
        self.conn.execute(
            """
            INSERT INTO audio_objects(path, user_id, content_type, data, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                data = excluded.data,
                content_type = excluded.content_type
            """,
            (path, user_id, content_type, sqlite3.Binary(data), now_iso()),
        )
        self._commit()
        return path

    def get_audio(self, path: str) -> bytes | None:
        row = self.conn.execute("SELECT data FROM audio_objects WHERE path = ?", (path,)).fetchone()
        if row is None:
            return None
        return bytes(row["data"])

    def delete_audio(self, paths: Sequence[str]) -> int:
        if not paths:
            return 0
        placeholders = ",".join("?" for _ in paths)
        cur = self.conn.execute(
            f"DELETE FROM audio_objects WHERE path IN ({placeholders})", list(paths)
        )
        self._commit()
        return int(cur.rowcount or 0)

    def cleanup_stale_audio(
        self, *, max_age_hours: int = 24, now: dt.datetime | None = None
    ) -> dict[str, int]:
        """Drop recordings older than ``max_age_hours`` and clear their audio_url."""

        cutoff = (now or dt.datetime.now(dt.UTC)) - dt.timedelta(hours=max_age_hours)
        rows = [
            row
            for row in self.conn.execute(
                "SELECT id, audio_url, created_at FROM entries WHERE audio_url IS NOT NULL"
            ).fetchall()
            if (created := parse_iso8601(row["created_at"])) is not None and created < cutoff
        ]
        if not rows:
            return {"entries": 0, "objects": 0}
        paths = [row["audio_url"] for row in rows]
        ids = [row["id"] for row in rows]
        with self.transaction():
            removed = self.delete_audio(paths)
            placeholders = ",".join("?" for _ in ids)
            self.conn.execute(
                f"UPDATE entries SET audio_url = NULL WHERE id IN ({placeholders})", ids
            )
        logger.info("cleared stale audio", extra={"entries": len(ids), "objects": removed})
        return {"entries": len(ids), "objects": removed}
