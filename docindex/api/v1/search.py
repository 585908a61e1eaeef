import hashlib
import time

from fastapi import APIRouter, Depends, HTTPException, Query

from docindex.api.deps import get_redis, get_search_engine, get_store
from docindex.config import settings
from docindex.services.rag.retriever import (
    available_sources_summary,
    is_docs_context_available,
    retrieve_context,
)
from docindex.services.search.semantic import SearchEngine
from docindex.services.store.base import DocsStore
from docindex.utils.cache import cache_get, cache_set

router = APIRouter()


def _cache_key(q: str, source_id: int | None, chunk_type: str, limit: int) -> str:
    digest = hashlib.md5(" ".join(q.lower().split()).encode()).hexdigest()
    return f"search:{digest}:src{source_id or 'all'}:{chunk_type}:l{limit}"


@router.get("/search")
async def search(
    q: str = Query(..., min_length=1, max_length=500, description="Search query"),
    source_id: int | None = Query(None, description="Restrict to one documentation source"),
    chunk_type: str = Query("all", pattern="^(text|code|all)$"),
    limit: int = Query(settings.default_search_limit, ge=1, le=settings.max_search_results),
    engine: SearchEngine = Depends(get_search_engine),
    redis=Depends(get_redis),
):
    """Semantic search over embedded documentation chunks."""
    start_time = time.time()

    cache_key = _cache_key(q, source_id, chunk_type, limit)
    cached = await cache_get(redis, cache_key)
    if cached:
        cached["cached"] = True
        return cached

    results = await engine.search(q, source_id=source_id, chunk_type=chunk_type, limit=limit)
    latency_ms = (time.time() - start_time) * 1000
    keyword_fallback = any(r.match == "keyword" for r in results)

    response = {
        "query": q,
        "source_id": source_id,
        "chunk_type": chunk_type,
        "total": len(results),
        "latency_ms": round(latency_ms, 1),
        "cached": False,
        "mode": "keyword" if keyword_fallback else "semantic",
        "results": [r.to_dict() for r in results],
    }

    # Keyword fallback results are not cached
    if results and not keyword_fallback:
        await cache_set(redis, cache_key, response, ttl=settings.search_cache_ttl)

    return response


@router.post("/search/context")
async def search_context(
    request_body: dict,
    engine: SearchEngine = Depends(get_search_engine),
    store: DocsStore = Depends(get_store),
):
    """Build a documentation context block for an assistant prompt.

    Body:
      - query: the user question
      - max_chunks: optional, default 8
      - min_similarity: optional, default 0.7
      - include_code: optional, default true
      - source_ids: optional list of preferred sources
    """
    query = request_body.get("query")
    if not query:
        raise HTTPException(status_code=400, detail="query is required")

    source_ids = request_body.get("source_ids") or None
    if source_ids is not None and not all(isinstance(i, int) for i in source_ids):
        raise HTTPException(status_code=400, detail="source_ids must be a list of integers")

    try:
        context = await retrieve_context(
            engine,
            store,
            query,
            max_chunks=int(request_body.get("max_chunks", settings.context_max_chunks)),
            min_similarity=float(
                request_body.get("min_similarity", settings.context_min_similarity)
            ),
            include_code=bool(request_body.get("include_code", True)),
            source_ids=source_ids,
        )
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    data = context.to_dict()
    data["available"] = await is_docs_context_available(store)
    data["sources_summary"] = await available_sources_summary(store)
    return data
