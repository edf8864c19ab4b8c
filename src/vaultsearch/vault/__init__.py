"""Vault operations — reading notes, watching for changes, and scheduling updates."""

from vaultsearch.vault.models import (
    FileEvent,
    FileEventKind,
    IndexSnapshot,
    NoteChunk,
    NoteEmbedding,
    NoteFile,
)
from vaultsearch.vault.reader import VaultReader
from vaultsearch.vault.scheduler import UpdateScheduler
from vaultsearch.vault.watcher import VaultWatcher

__all__ = [
    "FileEvent",
    "FileEventKind",
    "IndexSnapshot",
    "NoteChunk",
    "NoteEmbedding",
    "NoteFile",
    "UpdateScheduler",
    "VaultReader",
    "VaultWatcher",
]
