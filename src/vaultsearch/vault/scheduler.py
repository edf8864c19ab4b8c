"""Update scheduler — debounced, batched re-indexing driven by file events.

Each tracked path moves ``unqueued -> queued(ts) -> processing -> unqueued``.
Create/modify events (re)queue a path with a fresh timestamp and re-arm a
debounce timer on the running loop. When the timer fires, the periodic
tick runs, or :meth:`UpdateScheduler.flush` is called, every queued path
older than the debounce window is dequeued and re-indexed. A path leaves
the queue whether or not its re-index succeeds; failures are logged and
not retried.

Deletes skip the queue and remove the note promptly. A rename is a delete
of the old path plus a queued create of the new one, carrying over the
old path's queue timestamp.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from vaultsearch.errors import ValidationError
from vaultsearch.vault.models import FileEventKind

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

    from vaultsearch.config import UpdateConfig
    from vaultsearch.indexer.store import IndexStore
    from vaultsearch.vault.models import FileEvent
    from vaultsearch.vault.reader import VaultReader

logger = logging.getLogger(__name__)


class UpdateScheduler:
    """Keeps the index in step with vault changes.

    Parameters
    ----------
    store:
        The shared index store. Must be initialized before work runs;
        until then re-index requests are re-queued.
    reader:
        Vault reader for note content and eligibility.
    config:
        Update mode, frequency and rescan batching.
    clock:
        Seconds since the epoch; injectable for tests.
    """

    def __init__(
        self,
        store: IndexStore,
        reader: VaultReader,
        config: UpdateConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._reader = reader
        self._config = config
        self._clock = clock
        self._frequency = config.frequency_seconds

        # path -> queued_at (epoch seconds)
        self._modified: dict[str, float] = {}
        self._deleted: set[str] = set()

        self._timer: asyncio.TimerHandle | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._rescan_task: asyncio.Task[int] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._process_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str:
        return self._config.mode

    @property
    def debounce_seconds(self) -> float:
        """Quiet period before a queued path is re-indexed, floor-clamped."""
        return max(self._frequency, self._config.min_debounce_seconds)

    @property
    def check_interval_seconds(self) -> float:
        """Period of the background tick: twice the frequency, at least the minimum."""
        return max(self._config.min_check_interval_seconds, self._frequency * 2)

    async def update_frequency(self, seconds: float) -> None:
        """Apply a new update frequency; work queued under the old timing is flushed."""
        logger.debug("Update frequency changed: %ss -> %ss", self._frequency, seconds)
        self._frequency = seconds
        await self.flush()

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._modified)

    def has_modified_file(self, path: str) -> bool:
        return path in self._modified

    def queued_at(self, path: str) -> float | None:
        return self._modified.get(path)

    def queue_file(self, path: str) -> None:
        """Queue *path* for re-index, refreshing its timestamp if already queued."""
        self._modified[path] = self._clock()
        self._deleted.discard(path)
        logger.debug("Queued %s (%d pending)", path, len(self._modified))
        self._arm_timer()

    def transfer_modified_file(self, old_path: str, new_path: str) -> None:
        """Move a queue entry to a new path, keeping its original timestamp."""
        queued_at = self._modified.pop(old_path, None)
        self._modified[new_path] = queued_at if queued_at is not None else self._clock()
        self._deleted.discard(new_path)
        self._arm_timer()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_event(self, event: FileEvent) -> None:
        """Route one file event. Called on the event loop thread."""
        if self.mode != "onUpdate":
            logger.debug("Ignoring %s event for %s (mode=%s)", event.kind, event.path, self.mode)
            return

        match event.kind:
            case FileEventKind.CREATED | FileEventKind.MODIFIED:
                if self._reader.is_note_path(event.path):
                    self.queue_file(event.path)
            case FileEventKind.DELETED:
                if self._reader.is_note_path(event.path):
                    self.on_delete(event.path)
            case FileEventKind.RENAMED:
                self.on_rename(event.old_path or "", event.path)

    def on_delete(self, path: str) -> None:
        self._modified.pop(path, None)
        self._deleted.add(path)
        self._spawn(self._drain_deletes())

    def on_rename(self, old_path: str, new_path: str) -> None:
        old_ok = bool(old_path) and self._reader.is_note_path(old_path)
        new_ok = self._reader.is_note_path(new_path)

        if old_ok and new_ok:
            self.transfer_modified_file(old_path, new_path)
            self._deleted.add(old_path)
            self._spawn(self._drain_deletes())
        elif old_ok:
            self.on_delete(old_path)
        elif new_ok:
            self.queue_file(new_path)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_pending(self, force: bool = False) -> int:
        """Re-index queued paths older than the debounce window.

        With *force*, every queued path is processed regardless of age.
        Returns the number of paths dequeued.
        """
        async with self._process_lock:
            await self._drain_deletes()

            now = self._clock()
            window = self.debounce_seconds
            due = [
                path
                for path, queued_at in self._modified.items()
                if force or now - queued_at >= window
            ]
            if not due:
                logger.debug("No files need updating (%d queued)", len(self._modified))
                return 0

            logger.debug("Processing %d modified files: %s", len(due), ", ".join(due))
            for path in due:
                self._modified.pop(path, None)
                await self.reindex_file(path)

        if self._modified:
            self._arm_timer()
        return len(due)

    async def flush(self) -> int:
        """Process everything queued now and wait for in-flight work."""
        self._cancel_timer()
        processed = await self.process_pending(force=True)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return processed

    async def reindex_file(self, path: str, *, manual: bool = False) -> bool:
        """Read *path* from the vault and replace its index entry.

        Honors ``mode == "none"`` unless *manual*. A vanished file is
        removed from the index. Never raises.
        """
        if self.mode == "none" and not manual:
            logger.debug("Skipping reindex of %s (mode=none)", path)
            return False

        if not self._store.is_initialized:
            logger.debug("Index not initialized, re-queueing %s", path)
            self.queue_file(path)
            return False

        try:
            note = await asyncio.to_thread(self._reader.read_note, path)
        except ValidationError as e:
            logger.warning("Refusing to index %s: %s", path, e)
            return False
        except (OSError, UnicodeDecodeError):
            logger.exception("Error reading %s for reindex", path)
            return False

        if note is None:
            await self.remove_file_from_index(path)
            return False

        return await self._store.reindex_file(path, note.content, note.modified)

    async def remove_file_from_index(self, path: str) -> bool:
        """Drop *path* from the index and persist. Never raises."""
        if not self._store.is_initialized:
            logger.debug("Index not initialized, skipping removal of %s", path)
            return False
        try:
            removed = await self._store.remove_note(path)
            if removed:
                await self._store.save_to_file()
                logger.debug("Successfully removed %s from index", path)
            return removed
        except Exception:
            logger.exception("Error removing file %s from index", path)
            return False

    async def _drain_deletes(self) -> None:
        while self._deleted:
            path = self._deleted.pop()
            await self.remove_file_from_index(path)

    # ------------------------------------------------------------------
    # Rescan
    # ------------------------------------------------------------------

    def is_initial_indexing_in_progress(self) -> bool:
        return self._store.is_initializing

    def rescan_vault_files(self) -> asyncio.Task[int] | None:
        """Start re-indexing the whole vault in batches.

        Returns the background task (the running one if a rescan is already
        in flight), or None when the index is not initialized yet.
        """
        if not self._store.is_initialized:
            logger.warning("Index is still initializing; rescan not started")
            return None
        if self._rescan_task is not None and not self._rescan_task.done():
            return self._rescan_task

        self._rescan_task = asyncio.get_running_loop().create_task(self._rescan())
        self._tasks.add(self._rescan_task)
        self._rescan_task.add_done_callback(self._task_done)
        return self._rescan_task

    async def _rescan(self) -> int:
        paths = await asyncio.to_thread(self._reader.iter_note_paths)
        logger.info("Found %d notes to index", len(paths))

        batch_size = self._config.rescan_batch_size
        delay = self._config.rescan_batch_delay_ms / 1000
        indexed = 0

        for start in range(0, len(paths), batch_size):
            batch = paths[start : start + batch_size]
            results = await asyncio.gather(*(self._index_for_rescan(p) for p in batch))
            indexed += sum(results)
            logger.debug("Indexing files: %d/%d", start + len(batch), len(paths))
            if start + batch_size < len(paths):
                await asyncio.sleep(delay)

        present = set(paths)
        stale = [p for p in self._store.get_embedded_paths() if p not in present]
        for path in stale:
            await self._store.remove_note(path)
        if stale:
            logger.info("Removed %d notes no longer in the vault", len(stale))

        await self._store.save_to_file()
        logger.info("Completed indexing %d of %d notes", indexed, len(paths))
        return indexed

    async def _index_for_rescan(self, path: str) -> bool:
        try:
            note = await asyncio.to_thread(self._reader.read_note, path)
        except Exception:
            logger.exception("Error indexing file %s", path)
            return False
        if note is None:
            return False
        return await self._store.reindex_file(path, note.content, note.modified, save=False)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic background tick on the running loop."""
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.get_running_loop().create_task(self._tick())
            logger.debug("Periodic check every %.0fs", self.check_interval_seconds)

    async def aclose(self) -> None:
        """Stop timers, abandon any rescan, and flush queued work."""
        self._cancel_timer()
        if self._tick_task is not None:
            self._tick_task.cancel()
            await asyncio.gather(self._tick_task, return_exceptions=True)
            self._tick_task = None
        if self._rescan_task is not None and not self._rescan_task.done():
            self._rescan_task.cancel()
        await self.flush()
        # Paths requeued by an uninitialized store must not re-arm after close.
        self._cancel_timer()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval_seconds)
            try:
                await self.process_pending()
            except Exception:
                logger.exception("Periodic update check failed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _arm_timer(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_timer()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._spawn(self.process_pending())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Picked up by the next process_pending()
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background update failed", exc_info=task.exception())
