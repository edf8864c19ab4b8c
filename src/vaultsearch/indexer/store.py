"""Index store: chunking, embedding and persistence over the vector index.

The store owns the canonical ``path -> NoteEmbedding`` map and mirrors it
into the ``VectorIndex``. All public operations catch and log their own
failures; only :meth:`IndexStore.initialize` raises (``ConfigurationError``).

Concurrency: mutations and searches take one ``asyncio.Lock``. Embedding
calls run outside it. Each add records a token for its path while it awaits
embeddings; a newer add or any remove replaces or drops that token, and the
stale add is discarded, so the last issued mutation wins.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
import tempfile
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from vaultsearch.concurrency import SingleFlight
from vaultsearch.errors import PersistenceError, ProviderError, ValidationError
from vaultsearch.indexer.chunker import chunk_content
from vaultsearch.indexer.embedder import create_embedding_provider
from vaultsearch.indexer.query import process_query
from vaultsearch.indexer.vector_index import VectorIndex
from vaultsearch.vault.models import (
    SNAPSHOT_VERSION,
    IndexSnapshot,
    NoteChunk,
    NoteEmbedding,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from vaultsearch.config import Settings
    from vaultsearch.indexer.embedder import EmbeddingProvider
    from vaultsearch.indexer.vector_index import SearchResult

logger = logging.getLogger(__name__)


class IndexStore:
    """Manages note embeddings for a single vault.

    Construct once per host application and pass it to every consumer.
    Call :meth:`initialize` (any number of times, from any number of tasks)
    before indexing or searching.
    """

    def __init__(
        self,
        settings: Settings,
        provider: EmbeddingProvider | None = None,
        vector_index: VectorIndex | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.config = settings.embedding
        self.persist_path: Path = settings.index.persist_path
        self._provider = provider
        self._clock = clock
        self._vector_index = vector_index or VectorIndex(
            settings.embedding.dimensions, settings.search, clock=clock
        )
        self._embeddings: dict[str, NoteEmbedding] = {}
        self._tokens = itertools.count(1)
        self._in_flight: dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._init = SingleFlight(self._initialize, name="index initialization")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def dimensions(self) -> int:
        return self._vector_index.dimensions

    @property
    def vector_index(self) -> VectorIndex:
        return self._vector_index

    @property
    def provider(self) -> EmbeddingProvider | None:
        return self._provider

    @property
    def is_initialized(self) -> bool:
        return self._init.done

    @property
    def is_initializing(self) -> bool:
        return self._init.in_flight

    async def initialize(self) -> None:
        """Bind the embedding provider and load the snapshot, at most once.

        Concurrent callers share one in-flight run. On failure the guard
        resets so a later call retries.

        Raises:
            ConfigurationError: Unknown provider or missing provider settings.
        """
        await self._init.run()

    async def _initialize(self) -> None:
        logger.debug("Initializing index store")
        if self._provider is None:
            self._provider = create_embedding_provider(
                self.config, self.settings.embedding_api_key
            )
        loaded = await self.load_from_file()
        logger.info(
            "Index store ready: %d notes loaded, provider=%s",
            loaded,
            self._provider.provider_name,
        )

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def is_valid_content(self, path: str, content: str) -> bool:
        """Whether *content* is long enough to be worth embedding."""
        if not content or len(content.strip()) < self.config.min_content_length:
            logger.debug(
                "File %s is too short to generate meaningful embeddings (%d chars). Skipping.",
                path,
                len(content or ""),
            )
            return False
        return True

    async def add_note(self, path: str, content: str, last_modified: float | None = None) -> bool:
        """Chunk, embed and index a note, replacing any previous embedding.

        Returns True if the note is now indexed. Short content, provider
        failures and dimension mismatches are logged and return False;
        a failed chunk leaves the previous entry (if any) untouched.
        """
        if not self.is_valid_content(path, content):
            return False

        chunks = chunk_content(content, self.config.chunk_size, self.config.chunk_overlap)
        if not chunks:
            logger.debug("No chunks created for %s. Skipping.", path)
            return False
        logger.debug("Created %d chunks for %s", len(chunks), path)

        token = next(self._tokens)
        self._in_flight[path] = token
        try:
            try:
                vectors = await asyncio.gather(*(self._embed(c.content) for c in chunks))
                for i, vector in enumerate(vectors):
                    if len(vector) != self.dimensions:
                        raise ValidationError(
                            f"chunk {i} has {len(vector)} dimensions, expected {self.dimensions}"
                        )
            except ProviderError as e:
                logger.warning("Embedding failed for %s (%s): %s", path, e.provider, e)
                return False
            except ValidationError as e:
                logger.warning("Rejected embeddings for %s: %s", path, e)
                return False
            except Exception:
                logger.exception("Error adding note %s", path)
                return False

            note = NoteEmbedding(
                path=path,
                chunks=[
                    NoteChunk(content=c.content, embedding=v, position=c.position)
                    for c, v in zip(chunks, vectors, strict=True)
                ],
                last_modified=self._clock() * 1000 if last_modified is None else last_modified,
            )

            async with self._lock:
                if self._in_flight.get(path) != token:
                    logger.debug("Discarding stale embeddings for %s", path)
                    return False
                if not self._vector_index.add_embedding(path, note):
                    return False
                self._embeddings[path] = note
        finally:
            # Only the newest add for a path owns its entry.
            if self._in_flight.get(path) == token:
                del self._in_flight[path]

        logger.debug("Successfully added embeddings for %s", path)
        return True

    async def remove_note(self, path: str) -> bool:
        """Remove a note. Idempotent; returns whether it was indexed."""
        async with self._lock:
            self._in_flight.pop(path, None)
            existed = self._embeddings.pop(path, None) is not None
            self._vector_index.remove_embedding(path)
        if existed:
            logger.debug("Removed embeddings for %s", path)
        return existed

    async def reindex_file(
        self,
        path: str,
        content: str,
        last_modified: float | None = None,
        *,
        save: bool = True,
    ) -> bool:
        """Replace a note's embedding from fresh content.

        Content that has become too short drops the stale entry. With
        *save*, the snapshot is rewritten when the index changed.
        """
        try:
            if not self.is_valid_content(path, content):
                if await self.remove_note(path) and save:
                    await self.save_to_file()
                return False

            added = await self.add_note(path, content, last_modified)
            if added:
                if save:
                    await self.save_to_file()
                logger.debug("Successfully reindexed file: %s", path)
            return added
        except Exception:
            logger.exception("Error reindexing file %s", path)
            return False

    async def clear(self) -> None:
        """Drop every embedding, e.g. after the embedding space changed."""
        async with self._lock:
            self._in_flight.clear()
            self._embeddings.clear()
            self._vector_index.clear()
        logger.info("Cleared index store")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_notes(
        self,
        query: str,
        max_results: int | None = None,
        search_terms: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        """Semantic search over indexed notes.

        Args:
            query: Natural language search query.
            max_results: Hard cap on results; defaults to ``search.max_results``.
            search_terms: Terms for the title boost; derived from *query*
                when omitted.

        Returns:
            Ranked results, empty on a cold index or provider failure. The
            provider is not called when the index is empty.
        """
        if self._vector_index.is_empty():
            logger.debug("Search on empty index: %r", query)
            return []

        limit = self.settings.search.max_results if max_results is None else max_results
        if limit <= 0:
            return []
        terms = list(search_terms) if search_terms is not None else process_query(query).tokens

        try:
            query_vector = await self._embed(query)
        except ProviderError as e:
            logger.warning("Query embedding failed (%s): %s", e.provider, e)
            return []
        except Exception:
            logger.exception("Error embedding query %r", query)
            return []

        async with self._lock:
            results = self._vector_index.search(
                query_vector,
                similarity_threshold=self.settings.search.similarity_threshold,
                limit=limit,
                search_terms=terms,
            )
        return results[:limit]

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    def get_embedded_paths(self) -> list[str]:
        return list(self._embeddings)

    def get_embedding(self, path: str) -> NoteEmbedding | None:
        return self._embeddings.get(path)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "notes": len(self._embeddings),
            "chunks": sum(len(e.chunks) for e in self._embeddings.values()),
            "dimensions": self.dimensions,
            "persist_path": str(self.persist_path),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save_to_file(self) -> bool:
        """Write the full index snapshot atomically. Failures are logged.

        On failure the previous file on disk is left as it was.
        """
        async with self._lock:
            embeddings = dict(self._embeddings)
        try:
            snapshot = IndexSnapshot(
                last_updated=int(self._clock() * 1000),
                embeddings=embeddings,
            ).model_dump(mode="json", by_alias=True)
            await asyncio.to_thread(_write_json_atomic, self.persist_path, snapshot)
        except PersistenceError as e:
            logger.error("Failed to save index to %s: %s", self.persist_path, e)
            return False
        except Exception:
            logger.exception("Failed to save index to %s", self.persist_path)
            return False

        logger.debug("Saved %d embeddings to %s", len(embeddings), self.persist_path)
        return True

    async def load_from_file(self) -> int:
        """Replace the in-memory index with the snapshot on disk.

        A missing file leaves the store empty. Unreadable or malformed
        files are logged and also leave it empty. Returns notes loaded.
        """
        try:
            data = await asyncio.to_thread(_read_json, self.persist_path)
        except PersistenceError as e:
            logger.warning("Could not load index from %s, starting empty: %s", self.persist_path, e)
            data = None

        async with self._lock:
            self._in_flight.clear()
            self._embeddings.clear()
            self._vector_index.clear()

            if data is None:
                return 0

            version = data.get("version")
            if version != SNAPSHOT_VERSION:
                logger.warning(
                    "Snapshot %s has version %r (expected %d); attempting best-effort load",
                    self.persist_path,
                    version,
                    SNAPSHOT_VERSION,
                )

            entries = data.get("embeddings")
            if not isinstance(entries, dict):
                logger.warning("Snapshot %s has no embeddings map, starting empty", self.persist_path)
                return 0

            for path, raw in entries.items():
                try:
                    note = NoteEmbedding.model_validate(raw)
                except PydanticValidationError as e:
                    logger.warning("Skipping malformed entry %s in snapshot: %s", path, e)
                    continue
                if note.path != path:
                    note = note.model_copy(update={"path": path})
                if self._vector_index.add_embedding(path, note):
                    self._embeddings[path] = note

        logger.info("Loaded %d embeddings from %s", len(self._embeddings), self.persist_path)
        return len(self._embeddings)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed(self, text: str) -> list[float]:
        if self._provider is None:
            raise ProviderError("Embedding provider not initialized", provider="none")
        return await self._provider.embed(text)


def _read_json(path: Path) -> dict[str, Any] | None:
    """Parse the snapshot file. None if missing; PersistenceError if unusable."""
    if not path.exists():
        logger.info("No existing index at %s, starting fresh", path)
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PersistenceError(str(e)) from e
    if not isinstance(data, dict):
        raise PersistenceError(f"expected a JSON object, got {type(data).__name__}")
    return data


def _write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Serialize fully, then replace *path* in one step."""
    try:
        text = json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"serialization failed: {e}") from e

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    except OSError as e:
        raise PersistenceError(str(e)) from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_path, path)
    except OSError as e:
        raise PersistenceError(str(e)) from e
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
