from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass
class AppContext:
    """Derived display state shared by the sync engine and review flows."""

    newly_sorted_category_ids: set[str] = field(default_factory=set)
    last_sync_failed: bool = False
    inbox_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def mark_newly_sorted(self, category_id: str) -> None:
        with self._lock:
            self.newly_sorted_category_ids.add(category_id)

    def clear_newly_sorted(self, category_id: str) -> None:
        with self._lock:
            self.newly_sorted_category_ids.discard(category_id)

    def is_newly_sorted(self, category_id: str) -> bool:
        with self._lock:
            return category_id in self.newly_sorted_category_ids

    def set_sync_failed(self, failed: bool) -> None:
        with self._lock:
            self.last_sync_failed = failed

    def set_inbox_count(self, count: int) -> None:
        with self._lock:
            self.inbox_count = count
