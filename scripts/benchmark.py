"""Search latency benchmark.

Usage:
    python -m scripts.benchmark [source_id]

Runs a set of test queries and measures:
- Semantic search latency (p50, p95, p99)
- Keyword fallback latency over the same chunks
- Overlap between semantic and keyword results
"""

import asyncio
import statistics
import sys
import time

sys.path.insert(0, ".")

from docindex.config import settings
from docindex.database import async_session_factory, engine
from docindex.services.indexer.embeddings import get_embedding_provider
from docindex.services.search.keyword import keyword_search
from docindex.services.search.semantic import SearchEngine
from docindex.services.store.sql import SqlDocsStore

TEST_QUERIES = [
    "getting started",
    "installation",
    "configuration options",
    "authentication",
    "error handling",
    "async example",
    "command line usage",
    "migration guide",
    "api reference",
    "environment variables",
]


def report(name: str, latencies: list[float]) -> None:
    if not latencies:
        return
    sorted_lat = sorted(latencies)
    print(f"{name} Latency:")
    print(f"  p50:  {sorted_lat[len(sorted_lat)//2]:6.1f} ms")
    print(f"  p95:  {sorted_lat[int(len(sorted_lat)*0.95)]:6.1f} ms")
    print(f"  p99:  {sorted_lat[-1]:6.1f} ms")
    print(f"  mean: {statistics.mean(latencies):6.1f} ms")


async def main(source_id: int | None):
    print("=== DocIndex Benchmark ===\n")

    store = SqlDocsStore(async_session_factory)
    provider = get_embedding_provider(settings)
    search_engine = SearchEngine(store, provider)

    semantic_latencies = []
    keyword_latencies = []
    overlaps = []
    zero_result = 0

    try:
        print("Running semantic benchmark...")
        for query in TEST_QUERIES:
            start = time.time()
            results = await search_engine.search(query, source_id=source_id, limit=10)
            elapsed = (time.time() - start) * 1000
            semantic_latencies.append(elapsed)
            if not results:
                zero_result += 1
            print(f"  [{elapsed:6.1f}ms] q='{query}' -> {len(results)} results")

        print("\nRunning keyword benchmark...")
        chunks = await store.find_chunks(source_id)
        for query in TEST_QUERIES:
            start = time.time()
            scored = keyword_search(query, chunks)[:10]
            elapsed = (time.time() - start) * 1000
            keyword_latencies.append(elapsed)
            print(f"  [{elapsed:6.1f}ms] q='{query}' -> {len(scored)} results")

            semantic_ids = {
                r.chunk_id
                for r in await search_engine.search(query, source_id=source_id, limit=10)
            }
            keyword_ids = {chunk.id for chunk, _ in scored}
            if semantic_ids or keyword_ids:
                overlaps.append(
                    len(semantic_ids & keyword_ids) / max(len(semantic_ids | keyword_ids), 1)
                )
    finally:
        await provider.close()
        await engine.dispose()

    print("\n=== Results ===\n")
    report("Semantic", semantic_latencies)
    report("Keyword", keyword_latencies)
    if overlaps:
        print(f"\nSemantic/Keyword Overlap: {statistics.mean(overlaps):.1%} avg")
    print(f"\nZero-result queries: {zero_result}/{len(TEST_QUERIES)}")
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main(int(sys.argv[1]) if len(sys.argv) > 1 else None))
