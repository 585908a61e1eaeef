import asyncio
import logging
from dataclasses import asdict

import redis
import redis.asyncio as aioredis

from docindex.config import settings
from docindex.services.indexer.indexer import Indexer
from docindex.services.store.base import DocsStore
from docindex.utils.cache import cache_invalidate_pattern
from docindex.workers.celery_app import celery

logger = logging.getLogger("docindex.workers.embeddings")

LOCK_TIMEOUT = 6 * 60 * 60  # a run never holds a source longer than this


def _run_async(coro):
    """Run an async function from a sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _embedding_lock(client: redis.Redis, source_id: int):
    return client.lock(f"docindex:embedding-lock:{source_id}", timeout=LOCK_TIMEOUT)


async def run_embeddings(
    store: DocsStore,
    indexer: Indexer,
    lock_client: redis.Redis,
    cache_client: aioredis.Redis | None,
    source_ids: list[int] | None,
    regenerate: bool,
) -> list[dict]:
    """Embed the given sources (all completed ones when None), one Redis lock each.

    Cached search responses are dropped once any chunk embedding changed.
    """
    if source_ids is None:
        source_ids = [s.id for s in await store.list_sources(status="completed")]

    runs = []
    for source_id in source_ids:
        lock = _embedding_lock(lock_client, source_id)
        if not lock.acquire(blocking=False):
            logger.info("Embedding already running for source %d, skipping", source_id)
            runs.append({"source_id": source_id, "skipped": True})
            continue
        try:
            if regenerate:
                stats = await indexer.regenerate_embeddings(source_id)
            else:
                stats = await indexer.generate_embeddings_for_source(source_id)
        finally:
            lock.release()
        runs.append({"source_id": source_id, "skipped": False, **asdict(stats)})

    if any(not run["skipped"] and (regenerate or run["embedded"]) for run in runs):
        cleared = await cache_invalidate_pattern(cache_client, "search:*")
        logger.info("Cleared %d cached search responses", cleared)
    return runs


async def _embed_sources(source_ids: list[int] | None, regenerate: bool) -> list[dict]:
    """Wire a fresh engine, provider and Redis clients for one task run."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from docindex.services.indexer.embeddings import get_embedding_provider
    from docindex.services.store.sql import SqlDocsStore

    engine = create_async_engine(settings.database_url, pool_size=3)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    store = SqlDocsStore(session_factory)
    provider = get_embedding_provider(settings)
    indexer = Indexer(store, provider)
    lock_client = redis.Redis.from_url(settings.redis_url)
    cache_client = aioredis.from_url(settings.redis_url, decode_responses=True)

    try:
        return await run_embeddings(
            store, indexer, lock_client, cache_client, source_ids, regenerate
        )
    finally:
        await provider.close()
        await engine.dispose()
        lock_client.close()
        await cache_client.close()


@celery.task(
    name="docindex.workers.embedding_tasks.generate_source_embeddings",
    bind=True,
    max_retries=3,
)
def generate_source_embeddings(self, source_id: int, regenerate: bool = False):
    """Generate embeddings for every unembedded chunk of one source."""
    logger.info("Embedding task for source %d (regenerate=%s)", source_id, regenerate)
    try:
        return _run_async(_embed_sources([source_id], regenerate))[0]
    except Exception as exc:
        logger.error("Embedding task for source %d failed: %s", source_id, exc)
        raise self.retry(exc=exc, countdown=60)


@celery.task(name="docindex.workers.embedding_tasks.embed_all_pending")
def embed_all_pending():
    """Retry chunks left unembedded (e.g. by failed batches) across all completed sources."""
    runs = _run_async(_embed_sources(None, regenerate=False))
    embedded = sum(r.get("embedded", 0) for r in runs)
    logger.info("Nightly embedding run: %d sources, %d chunks embedded", len(runs), embedded)
    return runs
