from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docindex.api.deps import get_crawl_manager, get_redis, get_store
from docindex.database import get_db
from docindex.errors import DuplicateSourceError, SourceNotFoundError
from docindex.models import Chunk, Page, Source
from docindex.services.crawler.manager import CrawlManager
from docindex.services.store.base import DocsStore
from docindex.utils.cache import cache_invalidate_pattern

router = APIRouter()


def _source_dict(source: Source) -> dict:
    return {
        "id": source.id,
        "url": source.url,
        "title": source.title,
        "status": source.status,
        "total_pages": source.total_pages or 0,
        "crawled_pages": source.crawled_pages or 0,
        "error_message": source.error_message,
        "crawl_options": source.crawl_options,
        "last_crawled_at": source.last_crawled_at.isoformat() if source.last_crawled_at else None,
        "created_at": source.created_at.isoformat() if source.created_at else None,
    }


async def _get_source_or_404(store: DocsStore, source_id: int) -> Source:
    source = await store.get_source_by_id(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.post("/sources", status_code=201)
async def create_source(
    request: dict,
    manager: CrawlManager = Depends(get_crawl_manager),
):
    """Add a documentation site and start crawling it.

    Body:
      - url: root URL of the documentation (http or https)
      - title: optional display name
      - options: optional crawl options (maxPages, maxDepth, concurrency,
        throttleMs, includePaths, excludePaths, downloadCodeFiles, ...)
    """
    url = request.get("url")
    if not url:
        raise HTTPException(status_code=400, detail="url is required")

    try:
        source = await manager.create_source(
            url, title=request.get("title"), options=request.get("options")
        )
    except DuplicateSourceError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "source_id": source.id,
        "url": source.url,
        "status": "crawling",
        "message": f"Crawl started for {source.url}",
    }


@router.get("/sources")
async def list_sources(
    status: str | None = None,
    store: DocsStore = Depends(get_store),
):
    sources = await store.list_sources(status)
    return {"sources": [_source_dict(s) for s in sources], "total": len(sources)}


@router.get("/sources/{source_id}")
async def get_source(
    source_id: int,
    store: DocsStore = Depends(get_store),
    manager: CrawlManager = Depends(get_crawl_manager),
):
    source = await _get_source_or_404(store, source_id)
    data = _source_dict(source)
    data["active"] = manager.is_active(source_id)
    return data


@router.get("/sources/{source_id}/progress")
async def get_progress(
    source_id: int,
    store: DocsStore = Depends(get_store),
    manager: CrawlManager = Depends(get_crawl_manager),
):
    source = await _get_source_or_404(store, source_id)
    progress = manager.get_progress(source_id)
    if progress is None:
        # No job seen by this process; report what is persisted
        progress = {
            "source_id": source.id,
            "status": source.status,
            "total_pages": source.total_pages or 0,
            "crawled_pages": source.crawled_pages or 0,
            "current_url": None,
            "error_message": source.error_message,
        }
    return progress


@router.delete("/sources/{source_id}")
async def delete_source(
    source_id: int,
    manager: CrawlManager = Depends(get_crawl_manager),
    redis=Depends(get_redis),
):
    try:
        await manager.delete_source(source_id)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    await cache_invalidate_pattern(redis, "search:*")
    return {"source_id": source_id, "deleted": True}


@router.post("/sources/{source_id}/pause")
async def pause_crawl(
    source_id: int,
    manager: CrawlManager = Depends(get_crawl_manager),
):
    if not await manager.pause(source_id):
        raise HTTPException(status_code=409, detail="No active crawl to pause")
    return {"source_id": source_id, "status": "paused"}


@router.post("/sources/{source_id}/resume")
async def resume_crawl(
    source_id: int,
    manager: CrawlManager = Depends(get_crawl_manager),
):
    if not await manager.resume(source_id):
        raise HTTPException(status_code=409, detail="No paused crawl to resume")
    return {"source_id": source_id, "status": "crawling"}


@router.post("/sources/{source_id}/stop")
async def stop_crawl(
    source_id: int,
    manager: CrawlManager = Depends(get_crawl_manager),
):
    if not await manager.stop(source_id):
        raise HTTPException(status_code=409, detail="No active crawl to stop")
    return {"source_id": source_id, "status": "stopped"}


@router.post("/sources/{source_id}/crawl", status_code=202)
async def recrawl_source(
    source_id: int,
    manager: CrawlManager = Depends(get_crawl_manager),
):
    """Crawl the source again. Pages whose content did not change are kept as-is."""
    try:
        await manager.recrawl(source_id)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    return {"source_id": source_id, "status": "crawling"}


@router.post("/sources/{source_id}/reindex", status_code=202)
async def reindex_source(
    source_id: int,
    manager: CrawlManager = Depends(get_crawl_manager),
    redis=Depends(get_redis),
):
    """Drop every page and chunk of the source and crawl it from scratch."""
    try:
        await manager.reindex(source_id)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    await cache_invalidate_pattern(redis, "search:*")
    return {"source_id": source_id, "status": "crawling"}


@router.post("/sources/{source_id}/embeddings", status_code=202)
async def generate_embeddings(
    source_id: int,
    request: dict | None = None,
    store: DocsStore = Depends(get_store),
):
    """Queue embedding generation for the source on the worker.

    Body (optional):
      - regenerate: drop existing embeddings first (default false)
    """
    from docindex.workers.embedding_tasks import generate_source_embeddings

    await _get_source_or_404(store, source_id)
    regenerate = bool((request or {}).get("regenerate", False))
    task = generate_source_embeddings.delay(source_id, regenerate)
    return {
        "source_id": source_id,
        "task_id": task.id,
        "regenerate": regenerate,
        "message": "Embedding generation queued",
    }


@router.get("/sources/{source_id}/pages")
async def list_pages(
    source_id: int,
    db: AsyncSession = Depends(get_db),
):
    if await db.get(Source, source_id) is None:
        raise HTTPException(status_code=404, detail="Source not found")

    result = await db.execute(
        select(Page).where(Page.source_id == source_id).order_by(Page.id)
    )
    pages = result.scalars().all()
    return {
        "source_id": source_id,
        "pages": [
            {
                "id": p.id,
                "url": p.url,
                "title": p.title,
                "content_hash": p.content_hash,
                "updated_at": p.updated_at.isoformat() if p.updated_at else None,
            }
            for p in pages
        ],
        "total": len(pages),
    }


@router.get("/pages/{page_id}/chunks")
async def list_chunks(
    page_id: int,
    db: AsyncSession = Depends(get_db),
):
    if await db.get(Page, page_id) is None:
        raise HTTPException(status_code=404, detail="Page not found")

    result = await db.execute(
        select(Chunk).where(Chunk.page_id == page_id).order_by(Chunk.section_position, Chunk.id)
    )
    chunks = result.scalars().all()
    return {
        "page_id": page_id,
        "chunks": [
            {
                "id": c.id,
                "chunk_type": c.chunk_type,
                "language": c.language,
                "heading_path": c.heading_path,
                "position": c.section_position,
                "content": c.content,
                "has_embedding": c.embedding is not None,
            }
            for c in chunks
        ],
        "total": len(chunks),
    }


@router.get("/stats")
async def get_stats(store: DocsStore = Depends(get_store)):
    return await store.get_stats()
