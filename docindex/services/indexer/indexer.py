import asyncio
import hashlib
import logging
from dataclasses import dataclass

from docindex.config import settings
from docindex.errors import EmbeddingInProgressError
from docindex.services.crawler.base import PageContent
from docindex.services.indexer.chunker import build_chunks
from docindex.services.indexer.embeddings import EmbeddingProvider
from docindex.services.store.base import DocsStore

logger = logging.getLogger("docindex.indexer")


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class EmbeddingRunStats:
    total: int = 0
    embedded: int = 0
    failed_batches: int = 0


class Indexer:
    """Persists pages as chunks and fills in their embeddings.

    Saving a page is idempotent on its content hash. Embedding generation is
    a separate, explicitly triggered phase run in batches; a failed batch is
    logged and skipped so its chunks simply stay unembedded.
    """

    def __init__(
        self,
        store: DocsStore,
        provider: EmbeddingProvider | None = None,
        batch_size: int = None,
        batch_delay_seconds: float = None,
    ):
        self.store = store
        self.provider = provider
        self.batch_size = batch_size or settings.embedding_batch_size
        self.batch_delay_seconds = (
            settings.embedding_batch_delay_seconds
            if batch_delay_seconds is None
            else batch_delay_seconds
        )
        self._embedding_locks: dict[int, asyncio.Lock] = {}

    async def save_page(
        self, source_id: int, page: PageContent, file_path: str | None = None
    ) -> bool:
        """Store a page and regenerate its chunks. False when unchanged."""
        digest = content_hash(page.content)
        existing = await self.store.find_page_by_url(source_id, page.url)
        if existing is not None and existing.content_hash == digest:
            logger.debug("Content unchanged, skipping %s", page.url)
            return False

        page_id = await self.store.upsert_page(
            source_id,
            url=page.url,
            title=page.title,
            content=page.content,
            content_hash=digest,
            file_path=file_path,
        )
        if existing is not None:
            await self.store.delete_chunks_for_page(page_id)

        chunks = build_chunks(page)
        await self.store.insert_chunks(page_id, chunks)
        logger.info("Saved %s with %d chunks", page.url, len(chunks))
        return True

    def is_embedding(self, source_id: int) -> bool:
        lock = self._embedding_locks.get(source_id)
        return lock is not None and lock.locked()

    async def generate_embeddings_for_source(self, source_id: int) -> EmbeddingRunStats:
        """Embed every chunk of the source that has no embedding yet.

        Single-flight per source: raises EmbeddingInProgressError when a run
        for the same source is already active in this process.
        """
        if self.provider is None:
            raise RuntimeError("Indexer has no embedding provider")

        lock = self._embedding_locks.setdefault(source_id, asyncio.Lock())
        if lock.locked():
            raise EmbeddingInProgressError(source_id)

        async with lock:
            return await self._run_embeddings(source_id)

    async def regenerate_embeddings(self, source_id: int) -> EmbeddingRunStats:
        """Drop every embedding of the source, then embed all of its chunks."""
        if self.is_embedding(source_id):
            raise EmbeddingInProgressError(source_id)
        await self.store.clear_embeddings_for_source(source_id)
        return await self.generate_embeddings_for_source(source_id)

    async def _run_embeddings(self, source_id: int) -> EmbeddingRunStats:
        logger.info("Starting embedding generation for source %d", source_id)
        chunks = await self.store.find_chunks_needing_embedding(source_id)
        stats = EmbeddingRunStats(total=len(chunks))
        if not chunks:
            logger.info("No chunks need embedding generation")
            return stats

        batch_count = (len(chunks) + self.batch_size - 1) // self.batch_size
        logger.info("Generating embeddings for %d chunks in %d batches", len(chunks), batch_count)

        for batch_no, start in enumerate(range(0, len(chunks), self.batch_size), start=1):
            batch = chunks[start : start + self.batch_size]
            try:
                embeddings = await self.provider.generate_embeddings([c.content for c in batch])
                if len(embeddings) != len(batch):
                    raise ValueError(
                        f"provider returned {len(embeddings)} vectors for {len(batch)} chunks"
                    )
                for chunk, embedding in zip(batch, embeddings):
                    await self.store.update_chunk_embedding(chunk.id, embedding)
                stats.embedded += len(batch)
                logger.info("Processed embedding batch %d/%d", batch_no, batch_count)
            except Exception as e:
                stats.failed_batches += 1
                logger.error("Error processing embedding batch %d/%d: %s", batch_no, batch_count, e)

            if batch_no < batch_count and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

        logger.info(
            "Embedding generation completed for source %d: %d/%d embedded, %d failed batches",
            source_id,
            stats.embedded,
            stats.total,
            stats.failed_batches,
        )
        return stats
