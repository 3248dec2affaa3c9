from __future__ import annotations

import contextlib
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from .. import db
from ..errors import RecordNotFoundError
from ..models import Category, Entry, SyncStatus
from ..utils import new_id, now_iso
from ..vectors import dump_vector, load_vector

_UNSET: Any = object()


def _edited_status(current: SyncStatus) -> SyncStatus:
    # A record the remote has never seen stays a create.
    if current == SyncStatus.PENDING_CREATE:
        return current
    return SyncStatus.PENDING_UPDATE


class LocalStore:
    """Offline replica of one user's categories and entries.

    Every local mutation records a sync_status and bumps local_rev; the sync
    engine only marks a row synced if its local_rev is unchanged since the
    push started.
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        user_id: str,
        check_same_thread: bool = False,
    ):
        self.db_path = Path(db_path).expanduser()
        self.user_id = user_id
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_local_schema(self.conn)
        self._lock = threading.RLock()
        self._tx_depth = 0

    def close(self) -> None:
        self.conn.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
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

    # Reads share the lock with writers so a multi-statement write is never seen half done.
    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchall()

    def _query_one(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchone()

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
            sync_status=SyncStatus(row["sync_status"]),
            local_rev=int(row["local_rev"] or 0),
        )

    def list_categories(self, *, include_archived: bool = False) -> list[Category]:
        clause = "" if include_archived else "AND is_archived = 0"
        rows = self._query(
            f"""
            SELECT * FROM categories
            WHERE sync_status != ? {clause}
            ORDER BY entry_count DESC, name COLLATE NOCASE ASC
            """,
            (SyncStatus.PENDING_DELETE.value,),
        )
        return [self._category_from_row(row) for row in rows]

    def get_category(self, category_id: str) -> Category | None:
        row = self._query_one("SELECT * FROM categories WHERE id = ?", (category_id,))
        return self._category_from_row(row) if row else None

    def _require_category(self, category_id: str) -> Category:
        category = self.get_category(category_id)
        if category is None or category.sync_status == SyncStatus.PENDING_DELETE:
            raise RecordNotFoundError(f"category not found: {category_id}")
        return category

    def create_category(self, name: str, *, note_body: str = "") -> Category:
        cleaned = name.strip()
        if not cleaned:
            raise ValueError("category name is required")
        category_id = new_id()
        now = now_iso()
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO categories(
                    id, user_id, name, is_user_created, created_at, last_updated,
                    note_body, sync_status, local_rev
                )
                VALUES (?, ?, ?, 1, ?, ?, ?, ?, 1)
                """,
                (
                    category_id,
                    self.user_id,
                    cleaned,
                    now,
                    now,
                    note_body,
                    SyncStatus.PENDING_CREATE.value,
                ),
            )
        return self._require_category(category_id)

    def update_category(
        self,
        category_id: str,
        *,
        name: str | None = None,
        note_body: str | None = None,
    ) -> Category:
        with self.transaction():
            category = self._require_category(category_id)
            new_name = name.strip() if name is not None and name.strip() else category.name
            new_body = category.note_body if note_body is None else note_body
            self.conn.execute(
                """
                UPDATE categories
                SET name = ?, note_body = ?, last_updated = ?,
                    sync_status = ?, local_rev = local_rev + 1
                WHERE id = ?
                """,
                (
                    new_name,
                    new_body,
                    now_iso(),
                    _edited_status(category.sync_status).value,
                    category_id,
                ),
            )
            self.conn.execute(
                "UPDATE entries SET category_name = ? WHERE category_id = ?",
                (new_name, category_id),
            )
        return self._require_category(category_id)

    def delete_category(self, category_id: str) -> None:
        """Queue a category for remote deletion; its entries fall back to the inbox."""

        with self.transaction():
            category = self._require_category(category_id)
            if category.sync_status == SyncStatus.PENDING_CREATE:
                self.conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            else:
                self.conn.execute(
                    """
                    UPDATE categories
                    SET sync_status = ?, local_rev = local_rev + 1
                    WHERE id = ?
                    """,
                    (SyncStatus.PENDING_DELETE.value, category_id),
                )
            self.conn.execute(
                """
                UPDATE entries SET category_id = NULL, category_name = NULL
                WHERE category_id = ?
                """,
                (category_id,),
            )

    def pending_categories(self, status: SyncStatus) -> list[Category]:
        rows = self._query(
            "SELECT * FROM categories WHERE sync_status = ? ORDER BY created_at ASC",
            (status.value,),
        )
        return [self._category_from_row(row) for row in rows]

    def mark_category_synced(self, category_id: str, local_rev: int) -> bool:
        with self.transaction():
            cur = self.conn.execute(
                "UPDATE categories SET sync_status = ? WHERE id = ? AND local_rev = ?",
                (SyncStatus.SYNCED.value, category_id, local_rev),
            )
        return cur.rowcount > 0

    def hard_delete_category(self, category_id: str) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            self.conn.execute(
                "DELETE FROM category_last_seen WHERE category_id = ?", (category_id,)
            )

    def _write_remote_category(self, category: Category) -> None:
        self.conn.execute(
            """
            INSERT INTO categories(
                id, user_id, name, entry_count, embedding_centroid, is_archived,
                is_user_created, created_at, last_updated, latest_entry_title,
                note_body, sync_status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_id = excluded.user_id,
                name = excluded.name,
                entry_count = excluded.entry_count,
                embedding_centroid = excluded.embedding_centroid,
                is_archived = excluded.is_archived,
                is_user_created = excluded.is_user_created,
                created_at = excluded.created_at,
                last_updated = excluded.last_updated,
                latest_entry_title = excluded.latest_entry_title,
                note_body = excluded.note_body,
                sync_status = excluded.sync_status
            """,
            (
                category.id,
                category.user_id or self.user_id,
                category.name,
                category.entry_count,
                dump_vector(category.embedding_centroid),
                1 if category.is_archived else 0,
                1 if category.is_user_created else 0,
                category.created_at or now_iso(),
                category.last_updated or now_iso(),
                category.latest_entry_title,
                category.note_body,
                SyncStatus.SYNCED.value,
            ),
        )

    def upsert_remote_category(self, category: Category) -> bool:
        """Apply a pulled category. Rows with unpushed local changes win."""

        with self.transaction():
            local = self.get_category(category.id)
            if local is not None and local.sync_status != SyncStatus.SYNCED:
                return False
            self._write_remote_category(category)
            self.conn.execute(
                "UPDATE entries SET category_name = ? WHERE category_id = ?",
                (category.name, category.id),
            )
        return True

    def ensure_category(self, category: Category) -> None:
        """Insert a server category we have never seen; leave known rows alone."""

        with self.transaction():
            if self.get_category(category.id) is None:
                self._write_remote_category(category)

    def remove_synced_categories_not_in(self, remote_ids: Iterable[str]) -> int:
        keep = set(remote_ids)
        removed = 0
        with self.transaction():
            rows = self._query(
                "SELECT id FROM categories WHERE sync_status = ?", (SyncStatus.SYNCED.value,)
            )
            for row in rows:
                if row["id"] in keep:
                    continue
                self.conn.execute("DELETE FROM categories WHERE id = ?", (row["id"],))
                self.conn.execute(
                    "DELETE FROM category_last_seen WHERE category_id = ?", (row["id"],)
                )
                removed += 1
        return removed

    def refresh_category_entry_count(self, category_id: str) -> int:
        with self.transaction():
            row = self._query_one(
                """
                SELECT COUNT(*) AS n FROM entries
                WHERE category_id = ? AND sync_status != ?
                """,
                (category_id, SyncStatus.PENDING_DELETE.value),
            )
            count = int(row["n"] or 0)
            self.conn.execute(
                "UPDATE categories SET entry_count = ? WHERE id = ?", (count, category_id)
            )
        return count

    def set_category_last_seen(self, category_id: str, seen_at: str | None = None) -> None:
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO category_last_seen(category_id, last_seen_at)
                VALUES (?, ?)
                ON CONFLICT(category_id) DO UPDATE SET last_seen_at = excluded.last_seen_at
                """,
                (category_id, seen_at or now_iso()),
            )

    def category_last_seen(self, category_id: str) -> str | None:
        row = self._query_one(
            "SELECT last_seen_at FROM category_last_seen WHERE category_id = ?", (category_id,)
        )
        return row["last_seen_at"] if row else None

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
            audio_local_path=row["audio_local_path"],
            sync_status=SyncStatus(row["sync_status"]),
            local_rev=int(row["local_rev"] or 0),
        )

    def get_entry(self, entry_id: str) -> Entry | None:
        row = self._query_one("SELECT * FROM entries WHERE id = ?", (entry_id,))
        return self._entry_from_row(row) if row else None

    def _require_entry(self, entry_id: str) -> Entry:
        entry = self.get_entry(entry_id)
        if entry is None or entry.sync_status == SyncStatus.PENDING_DELETE:
            raise RecordNotFoundError(f"entry not found: {entry_id}")
        return entry

    def create_entry(
        self,
        transcript: str,
        *,
        locale: str = "en-US",
        category_id: str | None = None,
        audio_local_path: str | None = None,
    ) -> Entry:
        """Record a capture locally; the sync engine sends it for processing."""

        entry_id = new_id()
        with self.transaction():
            category_name = None
            if category_id is not None:
                category_name = self._require_category(category_id).name
            self.conn.execute(
                """
                INSERT INTO entries(
                    id, user_id, transcript, title, category_id, category_name, locale,
                    created_at, is_pending, audio_local_path, sync_status, local_rev
                )
                VALUES (?, ?, ?, '', ?, ?, ?, ?, 1, ?, ?, 1)
                """,
                (
                    entry_id,
                    self.user_id,
                    transcript.strip(),
                    category_id,
                    category_name,
                    locale,
                    now_iso(),
                    audio_local_path,
                    SyncStatus.PENDING_CREATE.value,
                ),
            )
        return self._require_entry(entry_id)

    def list_entries(self, *, category_id: str | None = None) -> list[Entry]:
        params: list[Any] = [SyncStatus.PENDING_DELETE.value]
        clause = ""
        if category_id is not None:
            clause = "AND category_id = ?"
            params.append(category_id)
        rows = self._query(
            f"""
            SELECT * FROM entries
            WHERE sync_status != ? {clause}
            ORDER BY created_at DESC
            """,
            params,
        )
        return [self._entry_from_row(row) for row in rows]

    def inbox_entries(self) -> list[Entry]:
        rows = self._query(
            """
            SELECT * FROM entries
            WHERE category_id IS NULL AND sync_status != ?
            ORDER BY created_at DESC
            """,
            (SyncStatus.PENDING_DELETE.value,),
        )
        return [self._entry_from_row(row) for row in rows]

    def inbox_count(self) -> int:
        row = self._query_one(
            """
            SELECT COUNT(*) AS n FROM entries
            WHERE category_id IS NULL AND sync_status != ?
            """,
            (SyncStatus.PENDING_DELETE.value,),
        )
        return int(row["n"] or 0)

    def pending_review_entries(self, category_id: str) -> list[Entry]:
        """Entries waiting for Keep/Move in a category, oldest first."""

        rows = self._query(
            """
            SELECT * FROM entries
            WHERE category_id = ? AND is_pending = 1 AND sync_status NOT IN (?, ?)
            ORDER BY created_at ASC
            """,
            (category_id, SyncStatus.PENDING_CREATE.value, SyncStatus.PENDING_DELETE.value),
        )
        return [self._entry_from_row(row) for row in rows]

    def search_entries(self, query: str, *, limit: int = 50) -> list[Entry]:
        needle = f"%{query.strip()}%"
        rows = self._query(
            """
            SELECT * FROM entries
            WHERE sync_status != ? AND (transcript LIKE ? OR title LIKE ?)
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (SyncStatus.PENDING_DELETE.value, needle, needle, limit),
        )
        return [self._entry_from_row(row) for row in rows]

    def update_entry(
        self,
        entry_id: str,
        *,
        transcript: str | None = None,
        title: str | None = None,
        category_id: str | None = _UNSET,
        seen_at: str | None = _UNSET,
        is_pending: bool | None = None,
    ) -> Entry:
        with self.transaction():
            entry = self._require_entry(entry_id)
            fields: dict[str, Any] = {}
            if transcript is not None:
                fields["transcript"] = transcript
            if title is not None:
                fields["title"] = title
            if category_id is not _UNSET:
                fields["category_id"] = category_id
                fields["category_name"] = (
                    self._require_category(category_id).name if category_id else None
                )
            if seen_at is not _UNSET:
                fields["seen_at"] = seen_at
            if is_pending is not None:
                fields["is_pending"] = 1 if is_pending else 0
            if fields:
                fields["sync_status"] = _edited_status(entry.sync_status).value
                assignments = ", ".join(f"{key} = ?" for key in fields)
                self.conn.execute(
                    f"UPDATE entries SET {assignments}, local_rev = local_rev + 1 WHERE id = ?",
                    [*fields.values(), entry_id],
                )
        return self._require_entry(entry_id)

    def mark_entries_seen(self, entry_ids: Iterable[str], seen_at: str | None = None) -> None:
        """Review bookkeeping only; does not queue a push."""

        stamp = seen_at or now_iso()
        with self.transaction():
            for entry_id in entry_ids:
                self.conn.execute(
                    "UPDATE entries SET seen_at = ? WHERE id = ? AND seen_at IS NULL",
                    (stamp, entry_id),
                )

    def delete_entry(self, entry_id: str) -> None:
        with self.transaction():
            entry = self._require_entry(entry_id)
            if entry.sync_status == SyncStatus.PENDING_CREATE:
                self.conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
                return
            self.conn.execute(
                """
                UPDATE entries
                SET is_pending = 0, sync_status = ?, local_rev = local_rev + 1
                WHERE id = ?
                """,
                (SyncStatus.PENDING_DELETE.value, entry_id),
            )

    def pending_entries(self, status: SyncStatus) -> list[Entry]:
        rows = self._query(
            "SELECT * FROM entries WHERE sync_status = ? ORDER BY created_at ASC",
            (status.value,),
        )
        return [self._entry_from_row(row) for row in rows]

    def mark_entry_synced(self, entry_id: str, local_rev: int) -> bool:
        with self.transaction():
            cur = self.conn.execute(
                "UPDATE entries SET sync_status = ? WHERE id = ? AND local_rev = ?",
                (SyncStatus.SYNCED.value, entry_id, local_rev),
            )
        return cur.rowcount > 0

    def hard_delete_entry(self, entry_id: str) -> None:
        with self.transaction():
            self.conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))

    def _write_remote_entry(self, entry: Entry, *, keep_review_state: Entry | None) -> None:
        is_pending = entry.is_pending
        seen_at = entry.seen_at
        if keep_review_state is not None:
            is_pending = keep_review_state.is_pending
            seen_at = keep_review_state.seen_at
        self.conn.execute(
            """
            INSERT INTO entries(
                id, user_id, transcript, title, category_id, category_name,
                embedding_vector, locale, created_at, is_pending, seen_at,
                audio_url, sync_status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                transcript = excluded.transcript,
                title = excluded.title,
                category_id = excluded.category_id,
                category_name = excluded.category_name,
                embedding_vector = excluded.embedding_vector,
                locale = excluded.locale,
                created_at = excluded.created_at,
                is_pending = excluded.is_pending,
                seen_at = excluded.seen_at,
                audio_url = excluded.audio_url,
                sync_status = excluded.sync_status
            """,
            (
                entry.id,
                entry.user_id or self.user_id,
                entry.transcript,
                entry.title,
                entry.category_id,
                entry.category_name,
                dump_vector(entry.embedding_vector),
                entry.locale,
                entry.created_at or now_iso(),
                1 if is_pending else 0,
                seen_at,
                entry.audio_url,
                SyncStatus.SYNCED.value,
            ),
        )

    def upsert_remote_entry(self, entry: Entry) -> bool:
        """Apply a pulled entry.

        Rows with unpushed local changes are left alone. Review state
        (is_pending, seen_at) of an already-known entry stays local.
        """

        with self.transaction():
            local = self.get_entry(entry.id)
            if local is not None and local.sync_status != SyncStatus.SYNCED:
                return False
            self._write_remote_entry(entry, keep_review_state=local)
        return True

    def replace_entry_with_server(self, provisional: Entry, server_entry: Entry) -> Entry:
        """Swap a provisional capture for the processed server record.

        ``provisional`` is the row as it was pushed. If its local_rev moved
        while the push was in flight, the local edits are carried onto the
        server id as a pending update. A capture deleted in the meantime
        leaves the server record queued for delete.
        """

        with self.transaction():
            current = self.get_entry(provisional.id)
            self.conn.execute("DELETE FROM entries WHERE id = ?", (provisional.id,))
            self._write_remote_entry(server_entry, keep_review_state=None)
            if current is None:
                self.conn.execute(
                    """
                    UPDATE entries
                    SET is_pending = 0, sync_status = ?, local_rev = local_rev + 1
                    WHERE id = ?
                    """,
                    (SyncStatus.PENDING_DELETE.value, server_entry.id),
                )
            elif current.local_rev != provisional.local_rev:
                self._carry_local_edits(server_entry.id, provisional, current)
            stored = self.get_entry(server_entry.id)
        if stored is None:
            raise RecordNotFoundError(f"entry not found: {server_entry.id}")
        return stored

    def _carry_local_edits(self, entry_id: str, pushed: Entry, current: Entry) -> None:
        fields: dict[str, Any] = {}
        for name in ("transcript", "title", "category_id", "seen_at"):
            if getattr(current, name) != getattr(pushed, name):
                fields[name] = getattr(current, name)
        if "category_id" in fields:
            fields["category_name"] = current.category_name
        if current.is_pending != pushed.is_pending:
            fields["is_pending"] = 1 if current.is_pending else 0
        fields["sync_status"] = SyncStatus.PENDING_UPDATE.value
        assignments = ", ".join(f"{key} = ?" for key in fields)
        self.conn.execute(
            f"UPDATE entries SET {assignments}, local_rev = local_rev + 1 WHERE id = ?",
            [*fields.values(), entry_id],
        )

    def remove_synced_entries_not_in(self, remote_ids: Iterable[str]) -> int:
        keep = set(remote_ids)
        removed = 0
        with self.transaction():
            rows = self._query(
                "SELECT id FROM entries WHERE sync_status = ?", (SyncStatus.SYNCED.value,)
            )
            for row in rows:
                if row["id"] in keep:
                    continue
                self.conn.execute("DELETE FROM entries WHERE id = ?", (row["id"],))
                removed += 1
        return removed

    # sync bookkeeping

    def set_sync_ok(self) -> None:
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO sync_state(id, last_ok_at) VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET last_ok_at = excluded.last_ok_at
                """,
                (now_iso(),),
            )

    def set_sync_error(self, error: str) -> None:
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO sync_state(id, last_error, last_error_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    last_error = excluded.last_error,
                    last_error_at = excluded.last_error_at
                """,
                (error, now_iso()),
            )

    def sync_state(self) -> dict[str, str | None]:
        row = self._query_one(
            "SELECT last_ok_at, last_error, last_error_at FROM sync_state WHERE id = 1"
        )
        if row is None:
            return {"last_ok_at": None, "last_error": None, "last_error_at": None}
        return {
            "last_ok_at": row["last_ok_at"],
            "last_error": row["last_error"],
            "last_error_at": row["last_error_at"],
        }

    def pending_summary(self) -> dict[str, dict[str, int]]:
        summary: dict[str, dict[str, int]] = {}
        for table in ("categories", "entries"):
            rows = self._query(
                f"""
                SELECT sync_status, COUNT(*) AS n FROM {table}
                WHERE sync_status != ?
                GROUP BY sync_status
                """,
                (SyncStatus.SYNCED.value,),
            )
            summary[table] = {row["sync_status"]: int(row["n"]) for row in rows}
        return summary
