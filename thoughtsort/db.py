from __future__ import annotations

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".thoughtsort" / "local.sqlite"
DEFAULT_SERVER_DB_PATH = Path.home() / ".thoughtsort" / "server.sqlite"

_SQL_NOW = "strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')"


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_server_schema(conn: sqlite3.Connection) -> None:
    """Authoritative store schema.

    Category bookkeeping (entry_count, latest_entry_title, last_updated) and
    the denormalized entries.category_name are owned by triggers; callers
    never write them directly.
    """

    conn.executescript(
        f"""
        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            is_user_created INTEGER NOT NULL DEFAULT 1,
            is_archived INTEGER NOT NULL DEFAULT 0,
            entry_count INTEGER NOT NULL DEFAULT 0,
            embedding_centroid TEXT,
            created_at TEXT NOT NULL,
            last_updated TEXT NOT NULL,
            latest_entry_title TEXT,
            note_body TEXT NOT NULL DEFAULT ''
        );
        CREATE INDEX IF NOT EXISTS idx_categories_user ON categories(user_id);

        CREATE TABLE IF NOT EXISTS entries (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            transcript TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            category_id TEXT REFERENCES categories(id) ON DELETE SET NULL,
            category_name TEXT,
            embedding_vector TEXT,
            locale TEXT NOT NULL DEFAULT 'en-US',
            created_at TEXT NOT NULL,
            last_updated TEXT NOT NULL,
            is_pending INTEGER NOT NULL DEFAULT 1,
            seen_at TEXT,
            audio_url TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_entries_user ON entries(user_id);
        CREATE INDEX IF NOT EXISTS idx_entries_category ON entries(category_id, created_at);

        CREATE TABLE IF NOT EXISTS audio_objects (
            path TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            content_type TEXT,
            data BLOB NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TRIGGER IF NOT EXISTS trg_entries_after_insert
        AFTER INSERT ON entries
        BEGIN
            UPDATE entries
            SET category_name = (SELECT name FROM categories WHERE id = NEW.category_id)
            WHERE id = NEW.id;
            UPDATE categories
            SET entry_count = entry_count + 1,
                latest_entry_title = NEW.title,
                last_updated = {_SQL_NOW}
            WHERE id = NEW.category_id;
        END;

        CREATE TRIGGER IF NOT EXISTS trg_entries_after_delete
        AFTER DELETE ON entries
        BEGIN
            UPDATE categories
            SET entry_count = MAX(entry_count - 1, 0),
                latest_entry_title = (
                    SELECT title FROM entries
                    WHERE category_id = OLD.category_id
                    ORDER BY created_at DESC LIMIT 1
                ),
                last_updated = {_SQL_NOW}
            WHERE id = OLD.category_id;
        END;

        CREATE TRIGGER IF NOT EXISTS trg_entries_after_move
        AFTER UPDATE OF category_id ON entries
        WHEN OLD.category_id IS NOT NEW.category_id
        BEGIN
            UPDATE entries
            SET category_name = (SELECT name FROM categories WHERE id = NEW.category_id)
            WHERE id = NEW.id;
            UPDATE categories
            SET entry_count = MAX(entry_count - 1, 0),
                latest_entry_title = (
                    SELECT title FROM entries
                    WHERE category_id = OLD.category_id
                    ORDER BY created_at DESC LIMIT 1
                ),
                last_updated = {_SQL_NOW}
            WHERE id = OLD.category_id;
            UPDATE categories
            SET entry_count = entry_count + 1,
                latest_entry_title = (
                    SELECT title FROM entries
                    WHERE category_id = NEW.category_id
                    ORDER BY created_at DESC LIMIT 1
                ),
                last_updated = {_SQL_NOW}
            WHERE id = NEW.category_id;
        END;

        CREATE TRIGGER IF NOT EXISTS trg_categories_after_rename
        AFTER UPDATE OF name ON categories
        WHEN OLD.name IS NOT NEW.name
        BEGIN
            UPDATE entries SET category_name = NEW.name WHERE category_id = NEW.id;
        END;

        CREATE TRIGGER IF NOT EXISTS trg_categories_touch
        AFTER UPDATE OF name, note_body, is_archived ON categories
        BEGIN
            UPDATE categories SET last_updated = {_SQL_NOW} WHERE id = NEW.id;
        END;
        """
    )


def initialize_local_schema(conn: sqlite3.Connection) -> None:
    """Client replica schema; every row carries its own sync_status."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            entry_count INTEGER NOT NULL DEFAULT 0,
            embedding_centroid TEXT,
            is_archived INTEGER NOT NULL DEFAULT 0,
            is_user_created INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            last_updated TEXT NOT NULL,
            latest_entry_title TEXT,
            note_body TEXT NOT NULL DEFAULT '',
            sync_status TEXT NOT NULL DEFAULT 'synced',
            local_rev INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS entries (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            transcript TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            category_id TEXT,
            category_name TEXT,
            embedding_vector TEXT,
            locale TEXT NOT NULL DEFAULT 'en-US',
            created_at TEXT NOT NULL,
            is_pending INTEGER NOT NULL DEFAULT 1,
            seen_at TEXT,
            audio_url TEXT,
            audio_local_path TEXT,
            sync_status TEXT NOT NULL DEFAULT 'synced',
            local_rev INTEGER NOT NULL DEFAULT 0
        );
        CREATE INDEX IF NOT EXISTS idx_entries_category ON entries(category_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_entries_sync_status ON entries(sync_status);

        CREATE TABLE IF NOT EXISTS category_last_seen (
            category_id TEXT PRIMARY KEY,
            last_seen_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS sync_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            last_ok_at TEXT,
            last_error TEXT,
            last_error_at TEXT
        );
        """
    )
