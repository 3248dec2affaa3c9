from __future__ import annotations

import contextlib
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import RemoteAPIError, SyncCancelledError
from ..models import SyncStatus
from .context import AppContext
from .local_store import LocalStore
from .remote_api import RemoteAPI

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    ok: bool = True
    cancelled: bool = False
    error: str | None = None
    pushed: int = 0
    pulled_categories: int = 0
    pulled_entries: int = 0
    removed: int = 0
    # Ids of records whose push failed; they stay queued for the next cycle.
    failed: list[str] = field(default_factory=list)


class SyncEngine:
    """Push local mutations, then pull remote state, one cycle at a time.

    request_sync() never blocks. A request made while a cycle is running
    is coalesced into exactly one follow-up cycle, and its future resolves
    when that follow-up finishes.
    """

    def __init__(
        self,
        store: LocalStore,
        api: RemoteAPI,
        context: AppContext | None = None,
    ) -> None:
        self.store = store
        self.api = api
        self.context = context or AppContext()
        self._lock = threading.Lock()
        self._syncing = False
        self._pending_rerun = False
        self._waiters: list[Future[SyncOutcome]] = []
        # Waiters whose rerun was dropped by cancel(); resolved as cancelled.
        self._dropped: list[Future[SyncOutcome]] = []
        self._cancel = threading.Event()
        self._worker: threading.Thread | None = None

    @property
    def syncing(self) -> bool:
        with self._lock:
            return self._syncing

    def request_sync(self) -> Future[SyncOutcome]:
        future: Future[SyncOutcome] = Future()
        with self._lock:
            self._waiters.append(future)
            if self._syncing:
                self._pending_rerun = True
                return future
            self._syncing = True
            self._cancel.clear()
            worker = threading.Thread(target=self._run_loop, name="thoughtsort-sync", daemon=True)
            self._worker = worker
        worker.start()
        return future

    def sync_all(self, timeout: float | None = None) -> SyncOutcome:
        return self.request_sync().result(timeout)

    def cancel(self) -> None:
        """Stop the running cycle between records and drop its queued rerun.

        Only requests already waiting are dropped. A request_sync() made
        after cancel() still gets a cycle of its own.
        """

        with self._lock:
            if not self._syncing:
                return
            self._cancel.set()
            self._pending_rerun = False
            self._dropped.extend(self._waiters)
            self._waiters = []

    def wait_idle(self, timeout: float | None = None) -> None:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def _run_loop(self) -> None:
        while True:
            with self._lock:
                waiters, self._waiters = self._waiters, []
                self._pending_rerun = False
            outcome = self._run_cycle()
            with self._lock:
                dropped, self._dropped = self._dropped, []
                self._cancel.clear()
                rerun = self._pending_rerun
                if not rerun:
                    self._syncing = False
            for waiter in waiters:
                waiter.set_result(outcome)
            for waiter in dropped:
                waiter.set_result(SyncOutcome(ok=False, cancelled=True))
            if not rerun:
                return

    def _run_cycle(self) -> SyncOutcome:
        outcome = SyncOutcome()
        try:
            self._push(outcome)
            self._pull(outcome)
        except SyncCancelledError:
            logger.info("sync cancelled")
            outcome.ok = False
            outcome.cancelled = True
            return outcome
        except Exception as exc:
            if isinstance(exc, RemoteAPIError):
                logger.warning("sync failed", extra={"status": exc.status, "code": exc.code})
            else:
                logger.exception("sync failed")
            outcome.ok = False
            outcome.error = str(exc) or exc.__class__.__name__
            self.store.set_sync_error(outcome.error)
            self.context.set_sync_failed(True)
            return outcome
        self.store.set_sync_ok()
        self.context.set_sync_failed(False)
        return outcome

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise SyncCancelledError()

    # push

    def _push(self, outcome: SyncOutcome) -> None:
        self._push_category_creates(outcome)
        self._push_entry_creates(outcome)
        self._push_category_updates(outcome)
        self._push_entry_updates(outcome)
        self._push_entry_deletes(outcome)
        self._push_category_deletes(outcome)

    def _push_category_creates(self, outcome: SyncOutcome) -> None:
        for category in self.store.pending_categories(SyncStatus.PENDING_CREATE):
            self._check_cancelled()
            try:
                self.api.create_category(category)
            except RemoteAPIError as exc:
                if not exc.is_duplicate:
                    self._record_failure(outcome, "category create", category.id, exc)
                    continue
                # Created by an earlier push whose response never arrived.
            self.store.mark_category_synced(category.id, category.local_rev)
            outcome.pushed += 1

    def _push_entry_creates(self, outcome: SyncOutcome) -> None:
        for entry in self.store.pending_entries(SyncStatus.PENDING_CREATE):
            self._check_cancelled()
            audio_path = self._upload_audio(entry.id, entry.audio_local_path)
            try:
                result = self.api.process_entry(
                    entry.transcript,
                    locale=entry.locale,
                    category_id=entry.category_id,
                    audio_path=audio_path,
                    created_at=entry.created_at,
                )
            except RemoteAPIError as exc:
                self._record_failure(outcome, "entry process", entry.id, exc)
                continue
            with self.store.transaction():
                self.store.ensure_category(result.category)
                stored = self.store.replace_entry_with_server(entry, result.entry)
                self.store.refresh_category_entry_count(result.category.id)
                if stored.category_id and stored.category_id != result.category.id:
                    self.store.refresh_category_entry_count(stored.category_id)
            self.context.mark_newly_sorted(result.category.id)
            if entry.audio_local_path:
                with contextlib.suppress(OSError):
                    Path(entry.audio_local_path).unlink()
            logger.info(
                "entry processed",
                extra={
                    "local_id": entry.id,
                    "entry_id": result.entry.id,
                    "category_id": result.category.id,
                    "is_new_category": result.is_new_category,
                },
            )
            outcome.pushed += 1

    def _upload_audio(self, entry_id: str, local_path: str | None) -> str | None:
        if not local_path:
            return None
        path = Path(local_path)
        try:
            data = path.read_bytes()
        except OSError:
            logger.warning("local recording missing", extra={"entry_id": entry_id})
            return None
        try:
            return self.api.upload_audio(f"{entry_id}{path.suffix or '.m4a'}", data)
        except RemoteAPIError as exc:
            # The device transcript is enough to process the entry.
            logger.warning(
                "audio upload failed; continuing without audio",
                extra={"entry_id": entry_id, "status": exc.status},
            )
            return None

    def _push_category_updates(self, outcome: SyncOutcome) -> None:
        for category in self.store.pending_categories(SyncStatus.PENDING_UPDATE):
            self._check_cancelled()
            try:
                self.api.update_category(category)
            except RemoteAPIError as exc:
                self._record_failure(outcome, "category update", category.id, exc)
                continue
            self.store.mark_category_synced(category.id, category.local_rev)
            outcome.pushed += 1

    def _push_entry_updates(self, outcome: SyncOutcome) -> None:
        for entry in self.store.pending_entries(SyncStatus.PENDING_UPDATE):
            self._check_cancelled()
            try:
                self.api.edit_entry(entry)
            except RemoteAPIError as exc:
                self._record_failure(outcome, "entry update", entry.id, exc)
                continue
            self.store.mark_entry_synced(entry.id, entry.local_rev)
            outcome.pushed += 1

    def _push_entry_deletes(self, outcome: SyncOutcome) -> None:
        for entry in self.store.pending_entries(SyncStatus.PENDING_DELETE):
            self._check_cancelled()
            try:
                self.api.delete_entry(entry.id)
            except RemoteAPIError as exc:
                if not exc.is_not_found:
                    self._record_failure(outcome, "entry delete", entry.id, exc)
                    continue
            self.store.hard_delete_entry(entry.id)
            outcome.pushed += 1

    def _push_category_deletes(self, outcome: SyncOutcome) -> None:
        for category in self.store.pending_categories(SyncStatus.PENDING_DELETE):
            self._check_cancelled()
            try:
                self.api.delete_category(category.id)
            except RemoteAPIError as exc:
                if not exc.is_not_found:
                    self._record_failure(outcome, "category delete", category.id, exc)
                    continue
            self.store.hard_delete_category(category.id)
            outcome.pushed += 1

    @staticmethod
    def _record_failure(
        outcome: SyncOutcome, action: str, record_id: str, exc: RemoteAPIError
    ) -> None:
        logger.warning(
            "push failed; will retry",
            extra={
                "action": action,
                "record_id": record_id,
                "status": exc.status,
                "code": exc.code,
            },
        )
        outcome.failed.append(record_id)

    # pull

    def _pull(self, outcome: SyncOutcome) -> None:
        self._check_cancelled()
        categories = self.api.fetch_categories()
        self._check_cancelled()
        entries = self.api.fetch_entries()
        self._check_cancelled()
        with self.store.transaction():
            for category in categories:
                if self.store.upsert_remote_category(category):
                    outcome.pulled_categories += 1
            outcome.removed += self.store.remove_synced_categories_not_in(c.id for c in categories)
            for entry in entries:
                if self.store.upsert_remote_entry(entry):
                    outcome.pulled_entries += 1
            outcome.removed += self.store.remove_synced_entries_not_in(e.id for e in entries)
        self.context.set_inbox_count(self.store.inbox_count())


def run_sync_daemon(
    engine: SyncEngine,
    interval_s: float,
    *,
    stop_event: threading.Event | None = None,
) -> None:
    stop = stop_event or threading.Event()
    engine.sync_all()
    while not stop.wait(interval_s):
        engine.sync_all()
