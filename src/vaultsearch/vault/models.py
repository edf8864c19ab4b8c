"""Data models for note chunks, note embeddings and the persisted snapshot.

Field aliases give the camelCase names of the on-disk snapshot format;
Python code uses the snake_case names.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

SNAPSHOT_VERSION = 1


class NoteChunk(BaseModel):
    """A bounded segment of a note together with its embedding vector."""

    model_config = ConfigDict(frozen=True)

    content: str
    embedding: list[float]
    position: int = 0


class NoteEmbedding(BaseModel):
    """All chunk embeddings of one note, keyed by its vault-relative path."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    chunks: list[NoteChunk] = Field(default_factory=list)
    last_modified: float = Field(default=0.0, alias="lastModified")  # epoch ms

    @property
    def title(self) -> str:
        """Filename without folder or extension, used for title matching."""
        name = self.path.rsplit("/", 1)[-1]
        stem, dot, _ = name.rpartition(".")
        return stem if dot and stem else name


class IndexSnapshot(BaseModel):
    """The full index as written to disk."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = SNAPSHOT_VERSION
    last_updated: int = Field(default=0, alias="lastUpdated")  # epoch ms
    embeddings: dict[str, NoteEmbedding] = Field(default_factory=dict)


class FileEventKind(StrEnum):
    """File-system changes consumed by the update scheduler."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True, slots=True)
class FileEvent:
    """A vault file change, with vault-relative POSIX paths."""

    kind: FileEventKind
    path: str
    old_path: str | None = None


@dataclass(frozen=True, slots=True)
class NoteFile:
    """Raw note content read from the vault."""

    path: str
    content: str
    modified: float  # epoch ms
