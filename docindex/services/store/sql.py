import json
import logging
from datetime import datetime

from sqlalchemy import delete, distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docindex.models import Chunk, Page, Source
from docindex.services.store.base import ChunkDraft, DocsStore, PendingChunk, StoredChunk

logger = logging.getLogger("docindex.store.sql")


def encode_embedding(embedding: list[float]) -> str:
    return json.dumps([float(x) for x in embedding])


def decode_embedding(raw: str | None) -> list[float] | None:
    if not raw:
        return None
    try:
        values = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(values, list):
        return None
    return values


class SqlDocsStore(DocsStore):
    """DocsStore on SQLAlchemy async sessions, one short session per call.

    Workers of a crawl run concurrently, so no session is shared between
    calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_source_by_id(self, source_id: int) -> Source | None:
        async with self.session_factory() as db:
            return await db.get(Source, source_id)

    async def get_source_by_url(self, url: str) -> Source | None:
        async with self.session_factory() as db:
            result = await db.execute(select(Source).where(Source.url == url))
            return result.scalar_one_or_none()

    async def list_sources(self, status: str | None = None) -> list[Source]:
        query = select(Source).order_by(Source.created_at.desc(), Source.id.desc())
        if status:
            query = query.where(Source.status == status)
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def create_source(
        self, url: str, title: str | None, crawl_options: dict | None = None
    ) -> Source:
        async with self.session_factory() as db:
            source = Source(
                url=url,
                title=title,
                status="pending",
                crawl_options=crawl_options,
                total_pages=0,
                crawled_pages=0,
            )
            db.add(source)
            await db.commit()
            await db.refresh(source)
            return source

    async def update_source_status(
        self, source_id: int, status: str, error_message: str | None = None
    ) -> None:
        await self._update_source(source_id, status=status, error_message=error_message)

    async def update_source_counters(
        self,
        source_id: int,
        total_pages: int,
        crawled_pages: int,
        last_crawled_at: datetime | None = None,
    ) -> None:
        values = {"total_pages": total_pages, "crawled_pages": crawled_pages}
        if last_crawled_at is not None:
            values["last_crawled_at"] = last_crawled_at
        await self._update_source(source_id, **values)

    async def reset_source(self, source_id: int) -> None:
        await self._update_source(
            source_id, status="pending", total_pages=0, crawled_pages=0, error_message=None
        )

    async def _update_source(self, source_id: int, **values) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Source)
                .where(Source.id == source_id)
                .values(**values, updated_at=func.now())
            )
            await db.commit()

    async def delete_source(self, source_id: int) -> None:
        async with self.session_factory() as db:
            await self._delete_pages(db, source_id)
            await db.execute(delete(Source).where(Source.id == source_id))
            await db.commit()

    async def find_page_by_url(self, source_id: int, url: str) -> Page | None:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Page).where(Page.source_id == source_id, Page.url == url)
            )
            return result.scalar_one_or_none()

    async def upsert_page(
        self,
        source_id: int,
        url: str,
        title: str,
        content: str,
        content_hash: str,
        file_path: str | None = None,
    ) -> int:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Page).where(Page.source_id == source_id, Page.url == url)
            )
            page = result.scalar_one_or_none()
            if page is None:
                page = Page(source_id=source_id, url=url)
                db.add(page)
            page.title = title
            page.content = content
            page.content_hash = content_hash
            page.file_path = file_path
            await db.flush()
            page_id = page.id
            await db.commit()
            return page_id

    async def delete_pages_for_source(self, source_id: int) -> None:
        async with self.session_factory() as db:
            await self._delete_pages(db, source_id)
            await db.commit()

    @staticmethod
    async def _delete_pages(db: AsyncSession, source_id: int) -> None:
        page_ids = select(Page.id).where(Page.source_id == source_id)
        await db.execute(delete(Chunk).where(Chunk.page_id.in_(page_ids)))
        await db.execute(delete(Page).where(Page.source_id == source_id))

    async def delete_chunks_for_page(self, page_id: int) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(Chunk).where(Chunk.page_id == page_id))
            await db.commit()

    async def insert_chunks(self, page_id: int, chunks: list[ChunkDraft]) -> None:
        if not chunks:
            return
        async with self.session_factory() as db:
            db.add_all(
                Chunk(
                    page_id=page_id,
                    content=draft.content,
                    chunk_type=draft.chunk_type,
                    language=draft.language,
                    heading_path=draft.heading_path,
                    section_position=draft.position,
                )
                for draft in chunks
            )
            await db.commit()

    async def find_chunks_needing_embedding(self, source_id: int) -> list[PendingChunk]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Chunk.id, Chunk.content)
                .join(Page, Page.id == Chunk.page_id)
                .where(Page.source_id == source_id, Chunk.embedding.is_(None))
                .order_by(Chunk.id)
            )
            return [PendingChunk(id=row.id, content=row.content) for row in result]

    async def update_chunk_embedding(self, chunk_id: int, embedding: list[float]) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Chunk)
                .where(Chunk.id == chunk_id)
                .values(embedding=encode_embedding(embedding))
            )
            await db.commit()

    async def clear_embeddings_for_source(self, source_id: int) -> None:
        page_ids = select(Page.id).where(Page.source_id == source_id)
        async with self.session_factory() as db:
            await db.execute(
                update(Chunk).where(Chunk.page_id.in_(page_ids)).values(embedding=None)
            )
            await db.commit()

    async def find_chunks_with_embedding(
        self, source_id: int | None = None
    ) -> list[StoredChunk]:
        chunks = await self._find_chunks(source_id, embedded_only=True)
        usable = [c for c in chunks if c.embedding is not None]
        if len(usable) != len(chunks):
            logger.warning("Skipped %d chunks with malformed embeddings", len(chunks) - len(usable))
        return usable

    async def find_chunks(self, source_id: int | None = None) -> list[StoredChunk]:
        return await self._find_chunks(source_id, embedded_only=False)

    async def _find_chunks(self, source_id: int | None, embedded_only: bool) -> list[StoredChunk]:
        query = (
            select(
                Chunk.id,
                Chunk.page_id,
                Chunk.content,
                Chunk.chunk_type,
                Chunk.language,
                Chunk.embedding,
                Page.source_id,
                Page.url,
                Page.title,
            )
            .join(Page, Page.id == Chunk.page_id)
            .order_by(Chunk.id)
        )
        if embedded_only:
            query = query.where(Chunk.embedding.is_not(None))
        if source_id is not None:
            query = query.where(Page.source_id == source_id)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return [
                StoredChunk(
                    id=row.id,
                    page_id=row.page_id,
                    source_id=row.source_id,
                    content=row.content,
                    chunk_type=row.chunk_type,
                    url=row.url,
                    title=row.title or "Untitled",
                    language=row.language,
                    embedding=decode_embedding(row.embedding),
                )
                for row in result
            ]

    async def get_stats(self) -> dict:
        async with self.session_factory() as db:
            total_sources = await db.scalar(select(func.count(Source.id)))
            total_pages = await db.scalar(select(func.count(Page.id)))
            total_chunks = await db.scalar(select(func.count(Chunk.id)))
            with_embeddings = await db.scalar(
                select(func.count(distinct(Page.source_id)))
                .select_from(Chunk)
                .join(Page, Page.id == Chunk.page_id)
                .where(Chunk.embedding.is_not(None))
            )
        return {
            "total_sources": total_sources or 0,
            "total_pages": total_pages or 0,
            "total_chunks": total_chunks or 0,
            "sources_with_embeddings": with_embeddings or 0,
        }
