import asyncio
import inspect
import logging
from collections import deque
from datetime import datetime, timezone

from docindex.errors import InvalidSourceUrlError, SourceNotFoundError
from docindex.services.crawler.base import (
    CodeBlock,
    CrawlOptions,
    CrawlProgress,
    FetchResult,
    PageContent,
    ProgressSink,
)
from docindex.services.crawler.extractor import ContentExtractor
from docindex.services.crawler.fetcher import FallbackFetcher
from docindex.services.crawler.scope import CrawlScope, code_file_language
from docindex.services.indexer.indexer import Indexer
from docindex.services.store.base import DocsStore
from docindex.utils.html_store import HtmlStore
from docindex.utils.robots import fetch_robots, fetch_sitemap_urls
from docindex.utils.urls import is_http_url, normalize_url

logger = logging.getLogger("docindex.crawler.scheduler")


class Frontier:
    """FIFO of (url, depth) pairs shared by the worker pool.

    Tracks in-flight work so that workers can tell "empty for now" from
    "drained": the frontier is drained once it is empty, nothing is in
    flight and it is not paused. While paused, get() blocks on the condition.
    """

    def __init__(self) -> None:
        self._items: deque[tuple[str, int]] = deque()
        self._cond = asyncio.Condition()
        self._in_flight = 0
        self._paused = False
        self._closed = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def paused(self) -> bool:
        return self._paused

    async def put(self, url: str, depth: int) -> None:
        async with self._cond:
            if self._closed:
                return
            self._items.append((url, depth))
            self._cond.notify()

    async def get(self) -> tuple[str, int] | None:
        """Next item, or None once the frontier is drained or closed."""
        async with self._cond:
            while True:
                if self._closed:
                    return None
                if not self._paused:
                    if self._items:
                        self._in_flight += 1
                        return self._items.popleft()
                    if self._in_flight == 0:
                        self._closed = True
                        self._cond.notify_all()
                        return None
                await self._cond.wait()

    async def task_done(self) -> None:
        async with self._cond:
            self._in_flight -= 1
            self._cond.notify_all()

    async def pause(self) -> None:
        async with self._cond:
            self._paused = True

    async def resume(self) -> None:
        async with self._cond:
            self._paused = False
            self._cond.notify_all()

    async def close(self) -> None:
        """Drop all pending items and release every waiting worker."""
        async with self._cond:
            self._closed = True
            self._items.clear()
            self._cond.notify_all()


class ThrottleGate:
    """Minimum interval between task starts, shared by all workers of a job."""

    def __init__(self, interval_seconds: float):
        self.interval = interval_seconds
        self._lock = asyncio.Lock()
        self._next_start = 0.0

    async def wait(self) -> None:
        if self.interval <= 0:
            return
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            if self._next_start > now:
                await asyncio.sleep(self._next_start - now)
                now = loop.time()
            self._next_start = now + self.interval


class CrawlJob:
    """In-memory state of one active crawl of one source."""

    def __init__(self, source_id: int, root_url: str, options: CrawlOptions | None = None):
        if not is_http_url(root_url):
            raise InvalidSourceUrlError(root_url)
        self.source_id = source_id
        self.root_url = normalize_url(root_url)
        self.options = options or CrawlOptions()
        self.scope = CrawlScope(
            self.root_url,
            include_paths=self.options.include_paths,
            exclude_paths=self.options.exclude_paths,
            download_code_files=self.options.download_code_files,
        )
        self.visited: set[str] = set()
        # Final URLs reached through redirects or fallback candidates
        self.resolved: set[str] = set()
        self.frontier = Frontier()
        self.throttle = ThrottleGate(self.options.throttle_ms / 1000)
        self.status = "pending"
        self.crawled_pages = 0
        self.failed_pages = 0
        self.stopped = False
        self.origin_probe_done = False

    @property
    def paused(self) -> bool:
        return self.frontier.paused

    @property
    def total_pages(self) -> int:
        return min(len(self.visited) + len(self.frontier), self.options.max_pages)

    def claim(self, url: str, depth: int) -> bool:
        """Mark a dequeued URL visited if it may be processed.

        Runs without awaiting, so two workers can never claim the same URL.
        """
        if url in self.visited or url in self.resolved:
            return False
        if depth > self.options.max_depth:
            return False
        if len(self.visited) >= self.options.max_pages:
            return False
        self.visited.add(url)
        return True

    async def pause(self) -> None:
        if self.stopped or self.status in ("completed", "failed"):
            return
        await self.frontier.pause()
        self.status = "paused"

    async def resume(self) -> None:
        if self.stopped or not self.paused:
            return
        await self.frontier.resume()
        self.status = "crawling"

    async def stop(self) -> None:
        self.stopped = True
        await self.frontier.close()


class CrawlScheduler:
    """Drives crawl jobs: seeds the frontier, runs the worker pool, reports.

    Per URL the pipeline is strictly fetch -> extract -> persist -> enqueue
    children. A failing URL is logged and skipped; only source-level problems
    end a crawl with status ``failed``.
    """

    def __init__(
        self,
        store: DocsStore,
        fetcher: FallbackFetcher,
        indexer: Indexer,
        extractor: ContentExtractor | None = None,
        html_store: HtmlStore | None = None,
        progress_sink: ProgressSink | None = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.indexer = indexer
        self.extractor = extractor or ContentExtractor()
        self.html_store = html_store
        self.progress_sink = progress_sink

    async def crawl(self, job: CrawlJob) -> CrawlProgress:
        source = await self.store.get_source_by_id(job.source_id)
        if source is None:
            error = SourceNotFoundError(job.source_id)
            logger.error("Cannot crawl: %s", error)
            job.status = "failed"
            await self.report(job, "failed", error_message=str(error))
            raise error

        logger.info("Starting crawl for %s (source=%d)", job.root_url, job.source_id)
        try:
            # A pause issued before the task started must survive
            job.status = "paused" if job.paused else "crawling"
            await self.store.update_source_status(job.source_id, job.status)
            await self.report(job, job.status)

            await self._seed(job)
            await asyncio.gather(
                *(self._worker(job) for _ in range(job.options.concurrency))
            )
        except Exception as e:
            logger.error("Crawl of source %d failed: %s", job.source_id, e)
            job.status = "failed"
            await self.store.update_source_status(job.source_id, "failed", error_message=str(e))
            await self.report(job, "failed", error_message=str(e))
            raise

        if job.stopped:
            job.status = "stopped"
            await self.store.update_source_counters(
                job.source_id, total_pages=job.crawled_pages, crawled_pages=job.crawled_pages
            )
            await self.store.update_source_status(job.source_id, "stopped")
            logger.info("Crawl of source %d stopped after %d pages", job.source_id, job.crawled_pages)
            return await self.report(job, "stopped")

        job.status = "completed"
        await self.store.update_source_counters(
            job.source_id,
            total_pages=job.crawled_pages,
            crawled_pages=job.crawled_pages,
            last_crawled_at=datetime.now(timezone.utc),
        )
        await self.store.update_source_status(job.source_id, "completed")
        logger.info(
            "Crawl of source %d completed: crawled=%d failed=%d",
            job.source_id,
            job.crawled_pages,
            job.failed_pages,
        )
        return await self.report(job, "completed")

    async def _seed(self, job: CrawlJob) -> None:
        client = self.fetcher.client
        job.scope.robots = await fetch_robots(client, job.scope.origin)

        sitemap_urls = [
            normalize_url(url)
            for url in await fetch_sitemap_urls(client, job.scope.origin)
            if is_http_url(url)
        ]
        seeds = [job.root_url]
        seeds.extend(url for url in sitemap_urls if url != job.root_url)
        seeds = seeds[: job.options.max_pages]

        queued = 0
        for url in seeds:
            if job.scope.should_crawl(url):
                await job.frontier.put(url, 0)
                queued += 1
            else:
                logger.info("Skipped seed URL: %s", url)

        if queued == 0:
            logger.info("No seed URL in scope, queueing %s anyway", job.root_url)
            await job.frontier.put(job.root_url, 0)

    async def _worker(self, job: CrawlJob) -> None:
        while True:
            item = await job.frontier.get()
            if item is None:
                return
            url, depth = item
            try:
                if job.stopped or not job.claim(url, depth):
                    continue
                try:
                    await job.throttle.wait()
                    await self._process_url(job, url, depth)
                except Exception as e:
                    job.failed_pages += 1
                    logger.error("Failed to crawl %s: %s", url, e)

                # Every claimed URL is reported, failed ones included
                if not job.stopped:
                    await self.store.update_source_counters(
                        job.source_id,
                        total_pages=job.total_pages,
                        crawled_pages=job.crawled_pages,
                    )
                    await self.report(job, job.status, current_url=url)
            except Exception as e:
                logger.error("Failed to record progress for %s: %s", url, e)
            finally:
                await job.frontier.task_done()

    async def _process_url(self, job: CrawlJob, url: str, depth: int) -> None:
        logger.info("Crawling: %s (depth: %d)", url, depth)

        language = code_file_language(url)
        if language is not None:
            result = await self.fetcher.fetch_code_file(url)
        else:
            result = await self.fetcher.fetch(
                url, use_headless_render=job.options.use_headless_render
            )
        if result is None:
            job.failed_pages += 1
            return
        if job.stopped:
            return

        final_url = normalize_url(result.final_url)
        if final_url != url:
            if final_url in job.visited or final_url in job.resolved:
                logger.info("Skipping %s, it resolves to already visited %s", url, final_url)
                return
            job.resolved.add(final_url)

        if language is not None:
            page = self._code_file_page(result, language)
        else:
            if (
                job.options.allow_cross_origin
                and depth == 0
                and not job.origin_probe_done
            ):
                job.origin_probe_done = True
                self._discover_alternate_origin(job, result)
            page = self.extractor.extract(
                result.html,
                final_url,
                should_crawl=job.scope.should_crawl,
                visited=job.visited,
            )

        file_path = None
        if self.html_store is not None and not page.code_file:
            file_path = await self.html_store.save(page.url, result.html)

        if job.stopped:
            return
        await self.indexer.save_page(job.source_id, page, file_path=file_path)
        job.crawled_pages += 1

        if depth < job.options.max_depth and len(job.visited) < job.options.max_pages:
            for link in page.links[: job.options.child_link_cap]:
                if link not in job.visited:
                    await job.frontier.put(link, depth + 1)

    def _discover_alternate_origin(self, job: CrawlJob, result: FetchResult) -> None:
        counts = self.extractor.count_link_origins(result.html, result.final_url)
        for origin in job.scope.allowed_origins:
            counts.pop(origin, None)
        if not counts:
            return
        origin, count = counts.most_common(1)[0]
        if count >= job.options.alternate_origin_threshold:
            job.scope.allow_origin(origin)
            logger.info("Discovered and allowed alternate origin: %s (%d links)", origin, count)

    @staticmethod
    def _code_file_page(result: FetchResult, language: str) -> PageContent:
        url = normalize_url(result.final_url)
        text = result.html.strip()
        return PageContent(
            url=url,
            title=url.rsplit("/", 1)[-1] or url,
            content=text,
            code_blocks=[CodeBlock(content=text, language=language)],
            code_file=True,
        )

    async def report(
        self,
        job: CrawlJob,
        status: str,
        current_url: str | None = None,
        error_message: str | None = None,
    ) -> CrawlProgress:
        progress = CrawlProgress(
            source_id=job.source_id,
            status=status,
            total_pages=(
                job.total_pages if status in ("crawling", "paused") else job.crawled_pages
            ),
            crawled_pages=job.crawled_pages,
            current_url=current_url,
            error_message=error_message,
        )
        if self.progress_sink is not None:
            result = self.progress_sink(progress)
            if inspect.isawaitable(result):
                await result
        return progress
