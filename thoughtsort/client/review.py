from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..errors import RecordNotFoundError
from ..models import Category, Entry
from ..utils import now_iso
from .context import AppContext
from .local_store import LocalStore
from .sync import SyncEngine

logger = logging.getLogger(__name__)

DEFAULT_UNDO_WINDOW_S = 5.0
NOTE_SEPARATOR = "\n\n"


def prepend_to_note(note_body: str, text: str) -> str:
    """Put ``text`` at the top of a note, newest first."""

    cleaned = text.strip()
    if not cleaned:
        return note_body
    if not note_body:
        return cleaned
    return cleaned + NOTE_SEPARATOR + note_body


@dataclass
class UndoToken:
    entry_id: str
    previous_category_id: str | None
    target_category_id: str
    target_name: str
    expires_at: float
    used: bool = False

    @property
    def message(self) -> str:
        return f"Moved to {self.target_name}"


class PendingEntryLifecycle:
    """Review of AI-sorted entries inside a category.

    An entry arrives unseen. Opening its category marks it seen; the next
    time the category is opened a still-pending seen entry is merged into
    the category note automatically. Keep merges right away, Move sends
    the entry to another category as unseen again.
    """

    def __init__(
        self,
        store: LocalStore,
        engine: SyncEngine | None = None,
        context: AppContext | None = None,
        *,
        undo_window_s: float = DEFAULT_UNDO_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.engine = engine
        self.context = context or (engine.context if engine is not None else AppContext())
        self.undo_window_s = undo_window_s
        self.clock = clock

    def _request_sync(self) -> None:
        if self.engine is not None:
            self.engine.request_sync()

    def _require_category(self, category_id: str) -> Category:
        category = self.store.get_category(category_id)
        if category is None:
            raise RecordNotFoundError(f"category not found: {category_id}")
        return category

    def _require_entry(self, entry_id: str) -> Entry:
        entry = self.store.get_entry(entry_id)
        if entry is None:
            raise RecordNotFoundError(f"entry not found: {entry_id}")
        return entry

    def open_category(self, category_id: str) -> list[Entry]:
        """Auto-merge seen entries, mark the rest seen, return them for review."""

        now = now_iso()
        merged = 0
        with self.store.transaction():
            category = self._require_category(category_id)
            pending = self.store.pending_review_entries(category_id)
            body = category.note_body
            for entry in pending:
                if entry.seen_at is None:
                    continue
                body = prepend_to_note(body, entry.transcript)
                self.store.delete_entry(entry.id)
                merged += 1
            if merged:
                self.store.update_category(category_id, note_body=body)
            unseen = [entry.id for entry in pending if entry.seen_at is None]
            self.store.mark_entries_seen(unseen, now)
            self.store.set_category_last_seen(category_id, now)
        self.context.clear_newly_sorted(category_id)
        if merged:
            logger.info(
                "auto-merged seen entries",
                extra={"category_id": category_id, "merged": merged},
            )
            self._request_sync()
        return self.store.pending_review_entries(category_id)

    def keep(self, entry_id: str) -> Category:
        with self.store.transaction():
            entry = self._require_entry(entry_id)
            if entry.category_id is None:
                raise RecordNotFoundError(f"entry has no category: {entry_id}")
            category = self._require_category(entry.category_id)
            self.store.update_category(
                category.id, note_body=prepend_to_note(category.note_body, entry.transcript)
            )
            self.store.delete_entry(entry.id)
        self._request_sync()
        return self._require_category(category.id)

    def move(self, entry_id: str, target_category_id: str) -> UndoToken:
        with self.store.transaction():
            entry = self._require_entry(entry_id)
            target = self._require_category(target_category_id)
            previous = entry.category_id
            self.store.update_entry(entry_id, category_id=target.id, seen_at=None)
        self._request_sync()
        return UndoToken(
            entry_id=entry_id,
            previous_category_id=previous,
            target_category_id=target.id,
            target_name=target.name,
            expires_at=self.clock() + self.undo_window_s,
        )

    def move_to_new_category(self, entry_id: str, name: str) -> UndoToken:
        with self.store.transaction():
            self._require_entry(entry_id)
            category = self.store.create_category(name)
            token = self.move(entry_id, category.id)
        return token

    def undo(self, token: UndoToken) -> bool:
        """Reverse a move if the undo window is still open; the entry returns seen."""

        if token.used or self.clock() > token.expires_at:
            return False
        token.used = True
        self.store.update_entry(
            token.entry_id, category_id=token.previous_category_id, seen_at=now_iso()
        )
        self._request_sync()
        return True
