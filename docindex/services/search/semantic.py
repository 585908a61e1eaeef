import logging
from dataclasses import asdict, dataclass

import numpy as np

from docindex.config import settings
from docindex.services.indexer.embeddings import EmbeddingProvider
from docindex.services.search.keyword import keyword_search
from docindex.services.store.base import DocsStore, StoredChunk

logger = logging.getLogger("docindex.search.semantic")

CHUNK_TYPES = ("text", "code", "all")


@dataclass
class SearchResult:
    chunk_id: int
    content: str
    url: str
    title: str
    chunk_type: str
    similarity: float
    language: str | None = None
    match: str = "semantic"  # semantic, keyword

    def to_dict(self) -> dict:
        return asdict(self)


def cosine_similarity(a, b) -> float:
    """dot(a, b) / (|a| * |b|), clamped to [-1, 1]. 0 when either norm is 0."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Vectors must have the same length ({a.shape[0]} != {b.shape[0]})")
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def _to_result(chunk: StoredChunk, similarity: float, match: str = "semantic") -> SearchResult:
    return SearchResult(
        chunk_id=chunk.id,
        content=chunk.content,
        url=chunk.url,
        title=chunk.title or "Untitled",
        chunk_type=chunk.chunk_type,
        similarity=round(similarity, 6),
        language=chunk.language,
        match=match,
    )


class SearchEngine:
    """Exact brute-force cosine search over stored chunk embeddings.

    Only chunks that already have an embedding take part. When the query
    cannot be embedded, falls back to keyword scoring over every chunk in
    scope.
    """

    def __init__(self, store: DocsStore, provider: EmbeddingProvider):
        self.store = store
        self.provider = provider

    async def search(
        self,
        query: str,
        source_id: int | None = None,
        chunk_type: str = "all",
        limit: int = None,
    ) -> list[SearchResult]:
        if chunk_type not in CHUNK_TYPES:
            raise ValueError(f"chunk_type must be one of {', '.join(CHUNK_TYPES)}")
        if limit is None:
            limit = settings.default_search_limit
        if limit < 1:
            raise ValueError("limit must be at least 1")
        limit = min(limit, settings.max_search_results)

        if not query.strip():
            return []

        try:
            query_embedding = await self.provider.embed_query(query)
        except Exception as e:
            logger.warning("Embedding provider failed; falling back to keyword search: %s", e)
            return await self._keyword_fallback(query, source_id, chunk_type, limit)

        chunks = await self.store.find_chunks_with_embedding(source_id)
        query_vec = np.asarray(query_embedding, dtype=np.float64)

        scored: list[tuple[StoredChunk, float]] = []
        skipped = 0
        for chunk in chunks:
            if len(chunk.embedding) != query_vec.shape[0]:
                skipped += 1
                continue
            scored.append((chunk, cosine_similarity(query_vec, chunk.embedding)))
        if skipped:
            logger.warning("Skipped %d chunks with mismatched embedding dimensions", skipped)

        scored.sort(key=lambda item: item[1], reverse=True)
        if chunk_type != "all":
            scored = [item for item in scored if item[0].chunk_type == chunk_type]

        logger.debug("Search '%s' scored %d chunks", query, len(scored))
        return [_to_result(chunk, sim) for chunk, sim in scored[:limit]]

    async def _keyword_fallback(
        self, query: str, source_id: int | None, chunk_type: str, limit: int
    ) -> list[SearchResult]:
        chunks = await self.store.find_chunks(source_id)
        if chunk_type != "all":
            chunks = [c for c in chunks if c.chunk_type == chunk_type]
        scored = keyword_search(query, chunks)
        return [_to_result(chunk, score, match="keyword") for chunk, score in scored[:limit]]
