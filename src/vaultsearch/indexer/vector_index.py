"""In-memory vector index with exact cosine search and additive score fusion.

Final score per note::

    score = base_score + recency_score + title_score

* ``base_score`` — best cosine similarity over the note's chunks.
* ``recency_score`` — ``max_recency_boost * exp(-age_days / window_days)``
  inside the recency window, 0 past it.
* ``title_score`` — ``title_match_boost`` per search term found in the
  note's filename (case-insensitive).

The similarity threshold gates on ``base_score`` only, so boosts can
reorder relevant notes but never admit irrelevant ones.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from vaultsearch.config import SearchConfig
    from vaultsearch.vault.models import NoteChunk, NoteEmbedding

logger = logging.getLogger(__name__)

_MS_PER_DAY = 1000 * 60 * 60 * 24


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A ranked note for one query, with its score breakdown."""

    path: str
    score: float
    base_score: float
    title_score: float
    recency_score: float
    chunk_index: int


@dataclass(slots=True)
class IndexEntry:
    """Derived per-note view: chunk matrix and norms, rebuilt on every add."""

    chunks: list[NoteChunk]
    vectors: np.ndarray
    norms: np.ndarray
    max_score: float = 0.0


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity; 0.0 for empty, zero or mismatched vectors."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or va.shape != vb.shape:
        if va.shape != vb.shape:
            logger.error(
                "Cannot compare vectors of different dimensions (%d vs %d)", va.size, vb.size
            )
        return 0.0
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


class VectorIndex:
    """Holds note embeddings and their derived index entries.

    Both maps always have the same key set: a path is either fully indexed
    or absent.
    """

    def __init__(
        self,
        dimensions: int,
        config: SearchConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.dimensions = dimensions
        self.config = config
        self._clock = clock
        self._embeddings: dict[str, NoteEmbedding] = {}
        self._index: dict[str, IndexEntry] = {}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_embedding(self, path: str, embedding: NoteEmbedding) -> bool:
        """Index *embedding* under *path*, replacing any previous entry.

        Returns False, leaving the index untouched, if the note has no
        chunks or any chunk vector is not ``dimensions`` long.
        """
        if not embedding.chunks:
            logger.debug("Skipping embedding for %s: no chunks", path)
            return False

        for i, chunk in enumerate(embedding.chunks):
            if len(chunk.embedding) != self.dimensions:
                logger.error(
                    "Invalid chunk %d in %s: expected %d dimensions, got %d",
                    i,
                    path,
                    self.dimensions,
                    len(chunk.embedding),
                )
                return False

        vectors = np.asarray([c.embedding for c in embedding.chunks], dtype=np.float64)
        if not np.all(np.isfinite(vectors)):
            logger.error("Invalid embedding for %s: non-finite values", path)
            return False

        self._embeddings[path] = embedding
        self._index[path] = IndexEntry(
            chunks=list(embedding.chunks),
            vectors=vectors,
            norms=np.linalg.norm(vectors, axis=1),
        )
        logger.debug("Added embedding for %s with %d chunks", path, len(embedding.chunks))
        return True

    def remove_embedding(self, path: str) -> bool:
        """Remove *path* from both maps. Returns whether it was present."""
        existed = self._embeddings.pop(path, None) is not None
        self._index.pop(path, None)
        return existed

    def clear(self) -> None:
        self._embeddings.clear()
        self._index.clear()
        logger.debug("Cleared vector index")

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def is_empty(self) -> bool:
        return not self._embeddings

    def __len__(self) -> int:
        return len(self._embeddings)

    def __contains__(self, path: object) -> bool:
        return path in self._embeddings

    @property
    def paths(self) -> list[str]:
        return list(self._embeddings)

    @property
    def chunk_count(self) -> int:
        return sum(len(e.chunks) for e in self._index.values())

    def get_embedding(self, path: str) -> NoteEmbedding | None:
        return self._embeddings.get(path)

    def get_chunk(self, path: str, chunk_index: int) -> NoteChunk | None:
        embedding = self._embeddings.get(path)
        if embedding is None or not 0 <= chunk_index < len(embedding.chunks):
            return None
        return embedding.chunks[chunk_index]

    def get_all_chunks(self, path: str) -> list[NoteChunk] | None:
        embedding = self._embeddings.get(path)
        return list(embedding.chunks) if embedding is not None else None

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def calculate_recency_score(self, last_modified: float) -> float:
        """Recency boost for a note modified at *last_modified* (epoch ms)."""
        max_boost = self.config.max_recency_boost
        window = self.config.recency_boost_window_days
        if max_boost <= 0 or window <= 0 or last_modified <= 0:
            return 0.0

        age_days = max(0.0, (self._clock() * 1000 - last_modified) / _MS_PER_DAY)
        if age_days >= window:
            return 0.0
        return min(max_boost, max_boost * math.exp(-age_days / window))

    def calculate_title_score(self, path: str, search_terms: Sequence[str]) -> float:
        embedding = self._embeddings.get(path)
        title = (embedding.title if embedding is not None else path).lower()
        matches = sum(1 for term in search_terms if term and term.lower() in title)
        return matches * self.config.title_match_boost

    def search(
        self,
        query_vector: Sequence[float] | np.ndarray,
        *,
        similarity_threshold: float | None = None,
        limit: int | None = None,
        search_terms: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        """Rank indexed notes against *query_vector*.

        Args:
            query_vector: Query embedding, ``dimensions`` long.
            similarity_threshold: Minimum ``base_score``; defaults to config.
            limit: Maximum number of results; defaults to config.
            search_terms: Optional query terms for the title boost.

        Returns:
            Results sorted by fused score descending, then path ascending.
        """
        if self.is_empty():
            return []

        threshold = (
            self.config.similarity_threshold
            if similarity_threshold is None
            else similarity_threshold
        )
        max_results = self.config.max_results if limit is None else limit
        if max_results <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.shape != (self.dimensions,):
            logger.error(
                "Query vector has %d dimensions, expected %d", query.size, self.dimensions
            )
            return []
        query_norm = float(np.linalg.norm(query))

        terms = list(search_terms or [])
        results: list[SearchResult] = []

        for path, entry in self._index.items():
            similarities = _row_similarities(entry, query, query_norm)
            best = int(np.argmax(similarities))
            base_score = float(similarities[best])
            entry.max_score = base_score

            if base_score < threshold:
                continue

            recency_score = self.calculate_recency_score(self._embeddings[path].last_modified)
            title_score = self.calculate_title_score(path, terms) if terms else 0.0
            results.append(
                SearchResult(
                    path=path,
                    score=base_score + recency_score + title_score,
                    base_score=base_score,
                    title_score=title_score,
                    recency_score=recency_score,
                    chunk_index=best,
                )
            )

        results.sort(key=lambda r: (-r.score, r.path))
        ranked = results[:max_results]

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Search results: %s",
                [
                    (r.path, round(r.score, 3), round(r.title_score, 3), round(r.recency_score, 3))
                    for r in ranked
                ],
            )
        return ranked


def _row_similarities(entry: IndexEntry, query: np.ndarray, query_norm: float) -> np.ndarray:
    """Cosine similarity of every chunk row against the query; zero rows score 0."""
    if query_norm == 0.0:
        return np.zeros(len(entry.chunks))
    dots = entry.vectors @ query
    denom = entry.norms * query_norm
    safe = np.where(denom == 0.0, 1.0, denom)
    return np.where(denom == 0.0, 0.0, dots / safe)
