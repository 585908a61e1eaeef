import redis.asyncio as aioredis
from fastapi import HTTPException, Request

from docindex.services.crawler.manager import CrawlManager
from docindex.services.search.semantic import SearchEngine
from docindex.services.store.base import DocsStore


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"Service not ready: {name}")
    return value


def get_crawl_manager(request: Request) -> CrawlManager:
    return _state(request, "crawl_manager")


def get_store(request: Request) -> DocsStore:
    return _state(request, "store")


def get_search_engine(request: Request) -> SearchEngine:
    return _state(request, "search_engine")


def get_redis(request: Request) -> aioredis.Redis | None:
    # Cache and publish helpers tolerate a missing client
    return getattr(request.app.state, "redis", None)
