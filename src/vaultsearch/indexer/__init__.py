"""Indexer — chunking, embedding providers, vector search and the index store."""

from vaultsearch.indexer.chunker import TextChunk, chunk_content
from vaultsearch.indexer.embedder import (
    EmbeddingProvider,
    OpenAICompatibleEmbedder,
    ProviderKind,
    create_embedding_provider,
)
from vaultsearch.indexer.query import ProcessedQuery, process_query
from vaultsearch.indexer.store import IndexStore
from vaultsearch.indexer.vector_index import SearchResult, VectorIndex, cosine_similarity

__all__ = [
    "EmbeddingProvider",
    "IndexStore",
    "OpenAICompatibleEmbedder",
    "ProcessedQuery",
    "ProviderKind",
    "SearchResult",
    "TextChunk",
    "VectorIndex",
    "chunk_content",
    "cosine_similarity",
    "create_embedding_provider",
    "process_query",
]
