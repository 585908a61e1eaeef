from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from docindex.models import Page, Source


@dataclass
class ChunkDraft:
    """A chunk produced by the chunker, not yet persisted."""

    content: str
    chunk_type: str  # text, code
    position: int
    language: str | None = None
    heading_path: str | None = None


@dataclass
class PendingChunk:
    id: int
    content: str


@dataclass
class StoredChunk:
    """A persisted chunk joined with its page, as search needs it."""

    id: int
    page_id: int
    source_id: int
    content: str
    chunk_type: str
    url: str
    title: str
    language: str | None = None
    embedding: list[float] | None = None


class DocsStore(ABC):
    """Persistence contract of the crawl/index/search pipeline.

    Sources and pages are returned as (detached) ORM objects; chunks are
    returned as plain dataclasses joined with their page.
    """

    # Sources

    @abstractmethod
    async def get_source_by_id(self, source_id: int) -> Source | None: ...

    @abstractmethod
    async def get_source_by_url(self, url: str) -> Source | None: ...

    @abstractmethod
    async def list_sources(self, status: str | None = None) -> list[Source]: ...

    @abstractmethod
    async def create_source(
        self, url: str, title: str | None, crawl_options: dict | None = None
    ) -> Source: ...

    @abstractmethod
    async def update_source_status(
        self, source_id: int, status: str, error_message: str | None = None
    ) -> None:
        """Set the status; error_message replaces the stored one (None clears it)."""
        ...

    @abstractmethod
    async def update_source_counters(
        self,
        source_id: int,
        total_pages: int,
        crawled_pages: int,
        last_crawled_at: datetime | None = None,
    ) -> None: ...

    @abstractmethod
    async def reset_source(self, source_id: int) -> None:
        """Back to pending with zeroed counters and no error."""
        ...

    @abstractmethod
    async def delete_source(self, source_id: int) -> None:
        """Delete the source with all of its pages and chunks."""
        ...

    # Pages

    @abstractmethod
    async def find_page_by_url(self, source_id: int, url: str) -> Page | None: ...

    @abstractmethod
    async def upsert_page(
        self,
        source_id: int,
        url: str,
        title: str,
        content: str,
        content_hash: str,
        file_path: str | None = None,
    ) -> int:
        """Insert or update the (source, url) page. Returns the page id."""
        ...

    @abstractmethod
    async def delete_pages_for_source(self, source_id: int) -> None: ...

    # Chunks

    @abstractmethod
    async def delete_chunks_for_page(self, page_id: int) -> None: ...

    @abstractmethod
    async def insert_chunks(self, page_id: int, chunks: list[ChunkDraft]) -> None: ...

    @abstractmethod
    async def find_chunks_needing_embedding(self, source_id: int) -> list[PendingChunk]:
        """Chunks of the source with a null embedding, ordered by id."""
        ...

    @abstractmethod
    async def update_chunk_embedding(self, chunk_id: int, embedding: list[float]) -> None: ...

    @abstractmethod
    async def clear_embeddings_for_source(self, source_id: int) -> None: ...

    @abstractmethod
    async def find_chunks_with_embedding(
        self, source_id: int | None = None
    ) -> list[StoredChunk]:
        """Chunks with a decoded embedding, optionally for one source."""
        ...

    @abstractmethod
    async def find_chunks(self, source_id: int | None = None) -> list[StoredChunk]:
        """All chunks (embedded or not), optionally for one source."""
        ...

    @abstractmethod
    async def get_stats(self) -> dict:
        """total_sources, total_pages, total_chunks, sources_with_embeddings."""
        ...
