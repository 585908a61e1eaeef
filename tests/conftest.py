import hashlib
from datetime import datetime, timezone

import httpx
import pytest

from docindex.models import Page, Source
from docindex.services.crawler.base import CrawlOptions
from docindex.services.crawler.fetcher import FallbackFetcher
from docindex.services.crawler.scheduler import CrawlScheduler
from docindex.services.indexer.embeddings import EmbeddingProvider
from docindex.services.indexer.indexer import Indexer
from docindex.services.store.base import ChunkDraft, DocsStore, PendingChunk, StoredChunk

BASE_URL = "https://docs.example.com"


class MemoryDocsStore(DocsStore):
    """Dict-backed store with the same contract as the SQL one."""

    def __init__(self):
        self.sources: dict[int, Source] = {}
        self.pages: dict[int, Page] = {}
        self.chunks: dict[int, dict] = {}
        self.status_history: dict[int, list[str]] = {}
        self._ids = {"source": 0, "page": 0, "chunk": 0}

    def _next_id(self, kind: str) -> int:
        self._ids[kind] += 1
        return self._ids[kind]

    async def get_source_by_id(self, source_id):
        return self.sources.get(source_id)

    async def get_source_by_url(self, url):
        for source in self.sources.values():
            if source.url == url:
                return source
        return None

    async def list_sources(self, status=None):
        sources = sorted(self.sources.values(), key=lambda s: s.id, reverse=True)
        if status:
            sources = [s for s in sources if s.status == status]
        return sources

    async def create_source(self, url, title, crawl_options=None):
        source = Source(
            url=url,
            title=title,
            status="pending",
            crawl_options=crawl_options,
            total_pages=0,
            crawled_pages=0,
        )
        source.id = self._next_id("source")
        source.error_message = None
        source.last_crawled_at = None
        source.created_at = datetime.now(timezone.utc)
        self.sources[source.id] = source
        self.status_history[source.id] = ["pending"]
        return source

    async def update_source_status(self, source_id, status, error_message=None):
        source = self.sources.get(source_id)
        if source is None:
            return
        source.status = status
        source.error_message = error_message
        self.status_history[source_id].append(status)

    async def update_source_counters(
        self, source_id, total_pages, crawled_pages, last_crawled_at=None
    ):
        source = self.sources.get(source_id)
        if source is None:
            return
        source.total_pages = total_pages
        source.crawled_pages = crawled_pages
        if last_crawled_at is not None:
            source.last_crawled_at = last_crawled_at

    async def reset_source(self, source_id):
        source = self.sources[source_id]
        source.status = "pending"
        source.total_pages = 0
        source.crawled_pages = 0
        source.error_message = None

    async def delete_source(self, source_id):
        await self.delete_pages_for_source(source_id)
        self.sources.pop(source_id, None)

    async def find_page_by_url(self, source_id, url):
        for page in self.pages.values():
            if page.source_id == source_id and page.url == url:
                return page
        return None

    async def upsert_page(self, source_id, url, title, content, content_hash, file_path=None):
        page = await self.find_page_by_url(source_id, url)
        if page is None:
            page = Page(source_id=source_id, url=url)
            page.id = self._next_id("page")
            self.pages[page.id] = page
        page.title = title
        page.content = content
        page.content_hash = content_hash
        page.file_path = file_path
        return page.id

    async def delete_pages_for_source(self, source_id):
        page_ids = [p.id for p in self.pages.values() if p.source_id == source_id]
        for page_id in page_ids:
            await self.delete_chunks_for_page(page_id)
            del self.pages[page_id]

    async def delete_chunks_for_page(self, page_id):
        for chunk_id in [cid for cid, c in self.chunks.items() if c["page_id"] == page_id]:
            del self.chunks[chunk_id]

    async def insert_chunks(self, page_id, chunks: list[ChunkDraft]):
        for draft in chunks:
            chunk_id = self._next_id("chunk")
            self.chunks[chunk_id] = {
                "id": chunk_id,
                "page_id": page_id,
                "content": draft.content,
                "chunk_type": draft.chunk_type,
                "language": draft.language,
                "heading_path": draft.heading_path,
                "position": draft.position,
                "embedding": None,
            }

    def _source_of(self, chunk: dict) -> int:
        return self.pages[chunk["page_id"]].source_id

    async def find_chunks_needing_embedding(self, source_id):
        return [
            PendingChunk(id=c["id"], content=c["content"])
            for c in sorted(self.chunks.values(), key=lambda c: c["id"])
            if c["embedding"] is None and self._source_of(c) == source_id
        ]

    async def update_chunk_embedding(self, chunk_id, embedding):
        self.chunks[chunk_id]["embedding"] = list(embedding)

    async def clear_embeddings_for_source(self, source_id):
        for chunk in self.chunks.values():
            if self._source_of(chunk) == source_id:
                chunk["embedding"] = None

    async def find_chunks_with_embedding(self, source_id=None):
        return [c for c in await self.find_chunks(source_id) if c.embedding is not None]

    async def find_chunks(self, source_id=None):
        results = []
        for c in sorted(self.chunks.values(), key=lambda c: c["id"]):
            page = self.pages[c["page_id"]]
            if source_id is not None and page.source_id != source_id:
                continue
            results.append(
                StoredChunk(
                    id=c["id"],
                    page_id=page.id,
                    source_id=page.source_id,
                    content=c["content"],
                    chunk_type=c["chunk_type"],
                    url=page.url,
                    title=page.title or "Untitled",
                    language=c["language"],
                    embedding=c["embedding"],
                )
            )
        return results

    async def get_stats(self):
        embedded_sources = {
            self._source_of(c) for c in self.chunks.values() if c["embedding"] is not None
        }
        return {
            "total_sources": len(self.sources),
            "total_pages": len(self.pages),
            "total_chunks": len(self.chunks),
            "sources_with_embeddings": len(embedded_sources),
        }


class FakeEmbeddingProvider(EmbeddingProvider):
    """Hash-derived deterministic vectors; can fail chosen calls (1-based)."""

    name = "fake"

    def __init__(self, dim: int = 8, fail_on_calls: set[int] | None = None, fail_all: bool = False):
        self.dim = dim
        self.fail_on_calls = fail_on_calls or set()
        self.fail_all = fail_all
        self.calls = 0
        self.batch_sizes: list[int] = []

    def vector_for(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode()).digest()
        return [(digest[i] / 255.0) + 0.01 for i in range(self.dim)]

    async def generate_embeddings(self, texts):
        self.calls += 1
        self.batch_sizes.append(len(texts))
        if self.fail_all or self.calls in self.fail_on_calls:
            raise RuntimeError(f"embedding call {self.calls} failed")
        return [self.vector_for(t) for t in texts]


def page_html(title: str, body: str = "", links: list[str] = (), code: str | None = None) -> str:
    """A documentation page comfortably above the minimum HTML length."""
    anchors = "".join(f'<li><a href="{href}">{href}</a></li>' for href in links)
    code_html = f'<pre><code class="language-python">{code}</code></pre>' if code else ""
    filler = (
        "This page documents the behaviour of the library in detail, with enough "
        "prose to count as real content for the extractor."
    )
    return (
        f"<html><head><title>{title}</title></head><body>"
        f"<nav><ul>{anchors}</ul></nav>"
        f"<main><h1>{title}</h1><p>{body or filler}</p><p>{filler}</p>{code_html}</main>"
        "</body></html>"
    )


class MockSite:
    """In-memory documentation site served through httpx.MockTransport."""

    def __init__(self, pages: dict[str, str], base_url: str = BASE_URL):
        self.base_url = base_url
        self.pages = dict(pages)
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        origin = f"{request.url.scheme}://{request.url.host}"
        if origin != self.base_url:
            return httpx.Response(404, text="not found")
        body = self.pages.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=body, headers={"Content-Type": "text/html"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), follow_redirects=True)

    def hits(self, path: str) -> int:
        return sum(1 for url in self.requests if url == f"{self.base_url}{path}")


def fast_options(**overrides) -> CrawlOptions:
    values = {"throttle_ms": 0, "concurrency": 2, "max_pages": 50, "max_depth": 5}
    values.update(overrides)
    return CrawlOptions(**values)


@pytest.fixture
def store():
    return MemoryDocsStore()


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def indexer(store, provider):
    return Indexer(store, provider, batch_size=100, batch_delay_seconds=0)


@pytest.fixture
def make_scheduler(store, indexer):
    """Build a scheduler whose fetcher talks to a MockSite."""
    def _make(site: MockSite, progress_sink=None):
        return CrawlScheduler(
            store,
            FallbackFetcher(site.client()),
            indexer,
            progress_sink=progress_sink,
        )

    yield _make


class FakeRedis:
    """The slice of redis.asyncio the cache helpers use."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)

    async def scan_iter(self, pattern):
        prefix = pattern.rstrip("*")
        for key in list(self.data):
            if key.startswith(prefix):
                yield key


class FakeLock:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def acquire(self, blocking=True):
        if self.name in self.client.held:
            return False
        self.client.held.add(self.name)
        return True

    def release(self):
        self.client.held.discard(self.name)


class FakeLockClient:
    """Sync redis client stand-in offering only lock()."""

    def __init__(self):
        self.held: set[str] = set()

    def lock(self, name, timeout=None):
        return FakeLock(self, name)
