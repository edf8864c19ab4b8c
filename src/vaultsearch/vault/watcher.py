"""Vault file watcher — turns watchdog events into scheduler file events."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from vaultsearch.vault.models import FileEvent, FileEventKind

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class _VaultEventHandler(FileSystemEventHandler):
    """Handles file system events under the vault root.

    Runs on the watchdog thread; ``on_event`` must be thread-safe.
    """

    def __init__(
        self,
        vault_root: Path,
        excluded_folders: list[str],
        on_event: Callable[[FileEvent], None],
    ) -> None:
        self.vault_root = vault_root
        self.excluded = set(excluded_folders)
        self.on_event = on_event

    def _relative(self, path: str | bytes) -> str | None:
        if isinstance(path, bytes):
            path = path.decode()
        try:
            rel = Path(path).relative_to(self.vault_root)
        except ValueError:
            return None
        if any(part in self.excluded for part in rel.parts):
            return None
        return rel.as_posix()

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        rel = self._relative(event.src_path)
        if rel is not None:
            logger.debug("File created: %s", rel)
            self.on_event(FileEvent(FileEventKind.CREATED, rel))

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        rel = self._relative(event.src_path)
        if rel is not None:
            logger.debug("File modified: %s", rel)
            self.on_event(FileEvent(FileEventKind.MODIFIED, rel))

    def on_deleted(self, event: FileDeletedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        rel = self._relative(event.src_path)
        if rel is not None:
            logger.debug("File deleted: %s", rel)
            self.on_event(FileEvent(FileEventKind.DELETED, rel))

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        old = self._relative(event.src_path)
        new = self._relative(event.dest_path)
        if old is None and new is None:
            return
        if new is None:
            # Moved out of the vault or into an excluded folder
            self.on_event(FileEvent(FileEventKind.DELETED, old))  # type: ignore[arg-type]
        elif old is None:
            self.on_event(FileEvent(FileEventKind.CREATED, new))
        else:
            logger.debug("File renamed: %s -> %s", old, new)
            self.on_event(FileEvent(FileEventKind.RENAMED, new, old_path=old))


class VaultWatcher:
    """Watches the vault and forwards changes onto an asyncio loop.

    Usage:
        watcher = VaultWatcher(vault_root, excluded, scheduler.handle_event, loop)
        watcher.start()  # non-blocking
        ...
        watcher.stop()
    """

    def __init__(
        self,
        vault_root: Path,
        excluded_folders: list[str],
        on_event: Callable[[FileEvent], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.vault_root = vault_root.resolve()
        self._on_event = on_event
        self._loop = loop
        self.handler = _VaultEventHandler(
            vault_root=self.vault_root,
            excluded_folders=excluded_folders,
            on_event=self._dispatch,
        )
        self._observer: Observer | None = None

    def _dispatch(self, event: FileEvent) -> None:
        if self._loop is None:
            self._on_event(event)
            return
        try:
            self._loop.call_soon_threadsafe(self._on_event, event)
        except RuntimeError:
            logger.debug("Event loop closed, dropping %s event for %s", event.kind, event.path)

    def start(self) -> None:
        """Start watching the vault directory (non-blocking)."""
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError:
                self._loop = None
        self._observer = Observer()
        self._observer.schedule(self.handler, str(self.vault_root), recursive=True)
        self._observer.start()
        logger.info("Watching vault at %s", self.vault_root)

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("Vault watcher stopped")
