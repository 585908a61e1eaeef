import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI

from docindex.config import settings
from docindex.database import async_session_factory
from docindex.middleware.request_logging import RequestLoggingMiddleware
from docindex.services.crawler.base import CrawlProgress
from docindex.services.crawler.fetcher import FallbackFetcher, create_http_client
from docindex.services.crawler.manager import CrawlManager
from docindex.services.crawler.scheduler import CrawlScheduler
from docindex.services.indexer.embeddings import get_embedding_provider
from docindex.services.indexer.indexer import Indexer
from docindex.services.search.semantic import SearchEngine
from docindex.services.store.sql import SqlDocsStore
from docindex.utils.cache import cache_invalidate_pattern, publish_json
from docindex.utils.html_store import HtmlStore

# Configure structured logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
)

logger = logging.getLogger("docindex.main")


def _progress_publisher(redis: aioredis.Redis):
    async def publish(progress: CrawlProgress) -> None:
        await publish_json(redis, settings.progress_channel, progress.to_dict())
        if progress.status in ("completed", "stopped"):
            await cache_invalidate_pattern(redis, "search:*")

    return publish


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Redis pool plus the crawl/index/search pipeline
    app.state.redis = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )

    renderer = None
    if settings.headless_render_enabled:
        from docindex.services.crawler.renderer import PlaywrightRenderer

        renderer = PlaywrightRenderer(settings.render_timeout_seconds)

    store = SqlDocsStore(async_session_factory)
    http_client = create_http_client()
    provider = get_embedding_provider(settings)
    indexer = Indexer(store, provider)
    scheduler = CrawlScheduler(
        store,
        FallbackFetcher(http_client, renderer=renderer),
        indexer,
        html_store=HtmlStore(settings.raw_html_dir),
    )

    app.state.store = store
    app.state.indexer = indexer
    app.state.crawl_manager = CrawlManager(
        store, scheduler, progress_sink=_progress_publisher(app.state.redis)
    )
    app.state.search_engine = SearchEngine(store, provider)
    yield

    # Shutdown: stop live crawls before closing what they use
    await app.state.crawl_manager.shutdown()
    await http_client.aclose()
    await provider.close()
    if renderer is not None:
        await renderer.close()
    await app.state.redis.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="DocIndex - crawl documentation sites into a semantically searchable knowledge base.",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

# --- Routers ---
from docindex.api.v1 import search, sources  # noqa: E402

app.include_router(sources.router, prefix="/api/v1", tags=["Sources"])
app.include_router(search.router, prefix="/api/v1", tags=["Search"])


@app.get("/api/v1/health", tags=["Health"])
async def health_check():
    redis_ok = False
    try:
        redis_ok = await app.state.redis.ping()
    except Exception as e:
        logger.warning("Redis health check failed: %s", e)

    return {
        "status": "healthy" if redis_ok else "degraded",
        "version": settings.app_version,
        "services": {
            "redis": "up" if redis_ok else "down",
        },
    }
