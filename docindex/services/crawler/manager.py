import asyncio
import inspect
import logging

from docindex.errors import DuplicateSourceError, InvalidSourceUrlError, SourceNotFoundError
from docindex.models import Source
from docindex.services.crawler.base import CrawlOptions, CrawlProgress, ProgressSink
from docindex.services.crawler.scheduler import CrawlJob, CrawlScheduler
from docindex.services.store.base import DocsStore
from docindex.utils.urls import is_http_url, normalize_url

logger = logging.getLogger("docindex.crawler.manager")


class CrawlManager:
    """Registry of live crawl jobs, at most one per source.

    Crawls run as background tasks on the current event loop. The manager
    keeps the latest progress of every source it has crawled and forwards
    each snapshot to an optional external sink.
    """

    def __init__(
        self,
        store: DocsStore,
        scheduler: CrawlScheduler,
        progress_sink: ProgressSink | None = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.scheduler.progress_sink = self._on_progress
        self.progress_sink = progress_sink
        self._jobs: dict[int, CrawlJob] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._progress: dict[int, dict] = {}

    async def create_source(
        self, url: str, title: str | None = None, options: dict | None = None
    ) -> Source:
        """Register a documentation site and start crawling it."""
        if not isinstance(url, str) or not is_http_url(url.strip()):
            raise InvalidSourceUrlError(url)
        url = normalize_url(url.strip())
        crawl_options = CrawlOptions.from_dict(options)

        if await self.store.get_source_by_url(url) is not None:
            raise DuplicateSourceError(url)

        source = await self.store.create_source(url, title, crawl_options.to_dict())
        logger.info("Created source %d for %s", source.id, url)
        await self.start_crawl(source.id, crawl_options)
        return source

    async def start_crawl(
        self, source_id: int, options: CrawlOptions | None = None
    ) -> CrawlJob:
        """Start a crawl, replacing any job still running for the source.

        Without explicit options the source's stored crawl options are used.
        """
        source = await self._get_source(source_id)
        if options is None:
            options = CrawlOptions.from_dict(source.crawl_options or {})

        await self._stop_job(source_id)

        job = CrawlJob(source.id, source.url, options)
        self._jobs[source_id] = job
        self._tasks[source_id] = asyncio.create_task(self._run(job))
        return job

    async def _run(self, job: CrawlJob) -> None:
        try:
            await self.scheduler.crawl(job)
        except Exception as e:
            # Already persisted as failed by the scheduler
            logger.error("Crawl task for source %d ended with error: %s", job.source_id, e)
        finally:
            if self._jobs.get(job.source_id) is job:
                del self._jobs[job.source_id]
                self._tasks.pop(job.source_id, None)

    def is_active(self, source_id: int) -> bool:
        return source_id in self._jobs

    def get_job(self, source_id: int) -> CrawlJob | None:
        return self._jobs.get(source_id)

    async def pause(self, source_id: int) -> bool:
        job = self._jobs.get(source_id)
        if job is None or job.stopped:
            return False
        await job.pause()
        await self.store.update_source_status(source_id, "paused")
        await self.scheduler.report(job, "paused")
        logger.info("Paused crawl of source %d", source_id)
        return True

    async def resume(self, source_id: int) -> bool:
        job = self._jobs.get(source_id)
        if job is None or not job.paused:
            return False
        await job.resume()
        await self.store.update_source_status(source_id, "crawling")
        await self.scheduler.report(job, "crawling")
        logger.info("Resumed crawl of source %d", source_id)
        return True

    async def stop(self, source_id: int) -> bool:
        """Stop the live job and wait until it has persisted its final state."""
        if source_id not in self._jobs:
            return False
        await self._stop_job(source_id)
        logger.info("Stopped crawl of source %d", source_id)
        return True

    async def recrawl(self, source_id: int) -> CrawlJob:
        """Crawl again with the stored options. Unchanged pages are no-ops."""
        return await self.start_crawl(source_id)

    async def reindex(self, source_id: int) -> CrawlJob:
        """Drop all pages and chunks of the source, then crawl from scratch."""
        await self._get_source(source_id)
        await self._stop_job(source_id)
        await self.store.delete_pages_for_source(source_id)
        await self.store.reset_source(source_id)
        self._progress.pop(source_id, None)
        logger.info("Reindexing source %d", source_id)
        return await self.start_crawl(source_id)

    async def delete_source(self, source_id: int) -> None:
        await self._get_source(source_id)
        await self._stop_job(source_id)
        await self.store.delete_source(source_id)
        self._progress.pop(source_id, None)
        logger.info("Deleted source %d", source_id)

    def get_progress(self, source_id: int) -> dict | None:
        return self._progress.get(source_id)

    async def wait(self, source_id: int) -> None:
        """Wait for the live job of the source, if any, to finish."""
        task = self._tasks.get(source_id)
        if task is not None:
            await task

    async def shutdown(self) -> None:
        for source_id in list(self._jobs):
            await self._stop_job(source_id)

    async def _stop_job(self, source_id: int) -> None:
        job = self._jobs.get(source_id)
        task = self._tasks.get(source_id)
        if job is not None:
            await job.stop()
        if task is not None:
            await task

    async def _get_source(self, source_id: int) -> Source:
        source = await self.store.get_source_by_id(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    async def _on_progress(self, progress: CrawlProgress) -> None:
        self._progress[progress.source_id] = progress.to_dict()
        if self.progress_sink is not None:
            result = self.progress_sink(progress)
            if inspect.isawaitable(result):
                await result
