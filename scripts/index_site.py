"""Index one documentation site end to end.

Usage:
    python -m scripts.index_site https://docs.example.com [--max-pages 50] [--query "install"]

This script:
1. Creates the tables if needed
2. Creates (or reuses) the source for the URL
3. Crawls it in-process
4. Generates embeddings for its chunks
5. Runs a sample query against the result
"""

import argparse
import asyncio
import sys

sys.path.insert(0, ".")

from docindex.config import settings
from docindex.database import async_session_factory, engine, init_models
from docindex.services.crawler.base import CrawlOptions
from docindex.services.crawler.fetcher import FallbackFetcher, create_http_client
from docindex.services.crawler.scheduler import CrawlJob, CrawlScheduler
from docindex.services.indexer.embeddings import get_embedding_provider
from docindex.services.indexer.indexer import Indexer
from docindex.services.search.semantic import SearchEngine
from docindex.services.store.sql import SqlDocsStore
from docindex.utils.html_store import HtmlStore
from docindex.utils.urls import normalize_url


def print_progress(progress):
    print(
        f"  [{progress.status:>9}] {progress.crawled_pages}/{progress.total_pages}"
        f" {progress.current_url or ''}"
    )


async def main(args):
    print("=== DocIndex Site Indexer ===\n")

    print("[1/5] Creating tables...")
    await init_models()

    store = SqlDocsStore(async_session_factory)
    url = normalize_url(args.url)
    options = CrawlOptions(max_pages=args.max_pages, max_depth=args.max_depth)

    print("[2/5] Creating source...")
    source = await store.get_source_by_url(url)
    if source is None:
        source = await store.create_source(url, args.title, options.to_dict())
        print(f"  Source {source.id} created for {url}")
    else:
        print(f"  Reusing source {source.id}")

    http_client = create_http_client()
    provider = get_embedding_provider(settings)
    indexer = Indexer(store, provider)
    scheduler = CrawlScheduler(
        store,
        FallbackFetcher(http_client),
        indexer,
        html_store=HtmlStore(settings.raw_html_dir),
        progress_sink=print_progress,
    )

    try:
        print("\n[3/5] Crawling...")
        result = await scheduler.crawl(CrawlJob(source.id, url, options))
        print(f"  Crawl {result.status}: {result.crawled_pages} pages")

        print("\n[4/5] Generating embeddings...")
        stats = await indexer.generate_embeddings_for_source(source.id)
        print(
            f"  {stats.embedded}/{stats.total} chunks embedded,"
            f" {stats.failed_batches} failed batches"
        )

        print(f"\n[5/5] Sample query: {args.query!r}")
        results = await SearchEngine(store, provider).search(args.query, source_id=source.id, limit=5)
        for r in results:
            print(f"  {r.similarity:.3f} [{r.chunk_type}] {r.title} - {r.url}")
        if not results:
            print("  No results")
    finally:
        await http_client.aclose()
        await provider.close()
        await engine.dispose()

    print("\nDone.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Crawl, embed and query one docs site")
    parser.add_argument("url")
    parser.add_argument("--title", default=None)
    parser.add_argument("--max-pages", type=int, default=50)
    parser.add_argument("--max-depth", type=int, default=3)
    parser.add_argument("--query", default="getting started")
    asyncio.run(main(parser.parse_args()))
