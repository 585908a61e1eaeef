"""Tests for the crawl scheduler."""

import asyncio

import httpx
import pytest

from docindex.errors import InvalidSourceUrlError, SourceNotFoundError
from docindex.services.crawler.scheduler import CrawlJob, Frontier, ThrottleGate

from conftest import BASE_URL, MockSite, fast_options, page_html

ROOT = f"{BASE_URL}/"


def linear_site() -> MockSite:
    return MockSite(
        {
            "/": page_html("Home", links=["/a"]),
            "/a": page_html("A", links=["/b"]),
            "/b": page_html("B", links=["/c"]),
            "/c": page_html("C"),
        }
    )


def connected_site(n: int) -> MockSite:
    paths = ["/"] + [f"/p{i}" for i in range(1, n)]
    return MockSite({path: page_html(path, links=paths) for path in paths})


async def test_linear_site_is_fully_crawled(store, make_scheduler):
    source = await store.create_source(ROOT, "Example")
    progress = await make_scheduler(linear_site()).crawl(
        CrawlJob(source.id, ROOT, fast_options())
    )

    assert progress.status == "completed"
    assert progress.crawled_pages == 4
    assert {p.url for p in store.pages.values()} == {
        ROOT,
        f"{BASE_URL}/a",
        f"{BASE_URL}/b",
        f"{BASE_URL}/c",
    }
    assert source.status == "completed"
    assert source.crawled_pages == 4
    assert source.last_crawled_at is not None
    assert store.status_history[source.id] == ["pending", "crawling", "completed"]


async def test_max_depth_limits_crawl(store, make_scheduler):
    source = await store.create_source(ROOT, None)
    progress = await make_scheduler(linear_site()).crawl(
        CrawlJob(source.id, ROOT, fast_options(max_depth=1))
    )
    assert progress.crawled_pages == 2
    assert {p.url for p in store.pages.values()} == {ROOT, f"{BASE_URL}/a"}


async def test_max_pages_limits_crawl(store, make_scheduler):
    source = await store.create_source(ROOT, None)
    progress = await make_scheduler(connected_site(8)).crawl(
        CrawlJob(source.id, ROOT, fast_options(max_pages=3, concurrency=3))
    )
    assert progress.crawled_pages == 3
    assert len(store.pages) == 3


async def test_every_url_is_fetched_once(store, make_scheduler):
    site = connected_site(8)
    source = await store.create_source(ROOT, None)
    progress = await make_scheduler(site).crawl(
        CrawlJob(source.id, ROOT, fast_options(concurrency=4))
    )

    assert progress.crawled_pages == 8
    for path in site.pages:
        assert site.hits(path) == 1, path


async def test_child_link_cap(store, make_scheduler):
    links = [f"/p{i}" for i in range(1, 15)]
    pages = {"/": page_html("Home", links=links)}
    pages.update({path: page_html(path) for path in links})
    source = await store.create_source(ROOT, None)
    progress = await make_scheduler(MockSite(pages)).crawl(
        CrawlJob(source.id, ROOT, fast_options(child_link_cap=5))
    )
    assert progress.crawled_pages == 6


async def test_failed_page_is_skipped(store, make_scheduler):
    site = MockSite(
        {
            "/": page_html("Home", links=["/missing", "/a"]),
            "/a": page_html("A"),
        }
    )
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options(concurrency=1))
    progress = await make_scheduler(site).crawl(job)

    assert progress.status == "completed"
    assert progress.crawled_pages == 2
    assert job.failed_pages == 1
    assert site.hits("/missing/index.html") == 1


async def test_branching_site_with_depth_limit(store, make_scheduler):
    site = MockSite(
        {
            "/": page_html("Home", links=["/a", "/b"]),
            "/a": page_html("A", links=["/c"]),
            "/b": page_html("B"),
            "/c": page_html("C"),
        }
    )
    source = await store.create_source(ROOT, None)
    progress = await make_scheduler(site).crawl(
        CrawlJob(source.id, ROOT, fast_options(max_depth=2, concurrency=2))
    )

    assert progress.crawled_pages == 4
    assert len(store.pages) == 4
    for path in site.pages:
        assert site.hits(path) == 1, path


async def test_failed_url_still_reports_progress(store, make_scheduler):
    site = MockSite(
        {
            "/": page_html("Home", links=["/missing", "/a"]),
            "/a": page_html("A"),
        }
    )
    reports = []
    source = await store.create_source(ROOT, None)
    await make_scheduler(site, progress_sink=reports.append).crawl(
        CrawlJob(source.id, ROOT, fast_options(concurrency=1))
    )

    page_reports = [r for r in reports if r.current_url]
    assert [r.current_url for r in page_reports] == [ROOT, f"{BASE_URL}/missing", f"{BASE_URL}/a"]
    assert [r.crawled_pages for r in page_reports] == [1, 1, 2]


class RedirectingSite(MockSite):
    def handler(self, request):
        if request.url.path == "/guide":
            self.requests.append(str(request.url))
            return httpx.Response(301, headers={"Location": f"{self.base_url}/guide/"})
        return super().handler(request)


@pytest.mark.parametrize("links", [["/guide", "/guide/"], ["/guide/", "/guide"]])
async def test_redirect_to_visited_url_is_processed_once(store, make_scheduler, links):
    site = RedirectingSite(
        {
            "/": page_html("Home", links=links),
            "/guide/": page_html("Guide"),
        }
    )
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options(concurrency=1))
    progress = await make_scheduler(site).crawl(job)

    assert progress.crawled_pages == 2
    assert job.failed_pages == 0
    assert sorted(p.url for p in store.pages.values()) == [ROOT, f"{BASE_URL}/guide/"]


async def test_sitemap_urls_seed_the_frontier(store, make_scheduler):
    sitemap = (
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"<url><loc>{BASE_URL}/orphan</loc></url>"
        "</urlset>"
    )
    site = MockSite(
        {
            "/": page_html("Home"),
            "/orphan": page_html("Orphan"),
            "/sitemap.xml": sitemap,
        }
    )
    source = await store.create_source(ROOT, None)
    progress = await make_scheduler(site).crawl(CrawlJob(source.id, ROOT, fast_options()))
    assert progress.crawled_pages == 2
    assert f"{BASE_URL}/orphan" in {p.url for p in store.pages.values()}


async def test_robots_disallowed_links_are_not_crawled(store, make_scheduler):
    site = MockSite(
        {
            "/": page_html("Home", links=["/private/notes", "/a"]),
            "/a": page_html("A"),
            "/private/notes": page_html("Private"),
            "/robots.txt": "User-agent: *\nDisallow: /private/\n",
        }
    )
    source = await store.create_source(ROOT, None)
    progress = await make_scheduler(site).crawl(CrawlJob(source.id, ROOT, fast_options()))
    assert progress.crawled_pages == 2
    assert site.hits("/private/notes") == 0


async def test_progress_is_reported_per_page(store, make_scheduler):
    reports = []
    source = await store.create_source(ROOT, None)
    await make_scheduler(linear_site(), progress_sink=reports.append).crawl(
        CrawlJob(source.id, ROOT, fast_options(concurrency=1))
    )

    statuses = [r.status for r in reports]
    assert statuses[0] == "crawling"
    assert statuses[-1] == "completed"
    page_reports = [r for r in reports if r.current_url]
    assert [r.crawled_pages for r in page_reports] == [1, 2, 3, 4]
    for r in page_reports:
        assert r.crawled_pages <= r.total_pages


async def test_pause_blocks_until_resume(store, make_scheduler):
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options(concurrency=1))

    async def pause_after_first_page(progress):
        if progress.current_url == ROOT:
            await job.pause()

    task = asyncio.create_task(
        make_scheduler(linear_site(), progress_sink=pause_after_first_page).crawl(job)
    )
    await asyncio.sleep(0.2)

    assert not task.done()
    assert job.status == "paused"
    assert job.crawled_pages == 1

    await job.resume()
    progress = await asyncio.wait_for(task, timeout=5)
    assert progress.status == "completed"
    assert progress.crawled_pages == 4


async def test_stop_ends_crawl_with_stopped_status(store, make_scheduler):
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options(concurrency=1))

    async def stop_after_first_page(progress):
        if progress.current_url == ROOT:
            await job.stop()

    progress = await make_scheduler(linear_site(), progress_sink=stop_after_first_page).crawl(job)

    assert progress.status == "stopped"
    assert progress.crawled_pages == 1
    assert source.status == "stopped"
    assert len(store.pages) == 1


async def test_stop_while_paused(store, make_scheduler):
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options(concurrency=2))

    async def pause_after_first_page(progress):
        if progress.current_url == ROOT:
            await job.pause()

    task = asyncio.create_task(
        make_scheduler(linear_site(), progress_sink=pause_after_first_page).crawl(job)
    )
    await asyncio.sleep(0.2)
    await job.stop()
    progress = await asyncio.wait_for(task, timeout=5)
    assert progress.status == "stopped"


async def test_missing_source_fails_crawl(store, make_scheduler):
    reports = []
    scheduler = make_scheduler(linear_site(), progress_sink=reports.append)
    with pytest.raises(SourceNotFoundError):
        await scheduler.crawl(CrawlJob(999, ROOT, fast_options()))
    assert reports[-1].status == "failed"
    assert "999" in reports[-1].error_message


class BrokenSite(MockSite):
    """Fails with a non-HTTP error while seeding."""

    def handler(self, request):
        if request.url.path == "/robots.txt":
            raise RuntimeError("resolver crashed")
        return super().handler(request)


async def test_source_level_error_marks_source_failed(store, make_scheduler):
    reports = []
    source = await store.create_source(ROOT, None)
    scheduler = make_scheduler(BrokenSite(linear_site().pages), progress_sink=reports.append)

    with pytest.raises(RuntimeError):
        await scheduler.crawl(CrawlJob(source.id, ROOT, fast_options()))

    assert source.status == "failed"
    assert source.error_message == "resolver crashed"
    assert reports[-1].status == "failed"


async def test_alternate_origin_is_promoted(store, make_scheduler):
    alt = "https://www.example.com"
    site = MockSite(
        {"/": page_html("Home", links=[f"{alt}/docs/{i}" for i in range(3)])}
    )
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options(allow_cross_origin=True))
    await make_scheduler(site).crawl(job)

    assert alt in job.scope.allowed_origins
    assert any(url.startswith(alt) for url in site.requests)


async def test_alternate_origin_below_threshold_is_ignored(store, make_scheduler):
    alt = "https://www.example.com"
    site = MockSite(
        {"/": page_html("Home", links=[f"{alt}/docs/{i}" for i in range(2)])}
    )
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options(allow_cross_origin=True))
    await make_scheduler(site).crawl(job)

    assert job.scope.allowed_origins == {BASE_URL}
    assert not any(url.startswith(alt) for url in site.requests)


async def test_cross_origin_disabled_ignores_alternate_origin(store, make_scheduler):
    alt = "https://www.example.com"
    site = MockSite(
        {"/": page_html("Home", links=[f"{alt}/docs/{i}" for i in range(5)])}
    )
    source = await store.create_source(ROOT, None)
    job = CrawlJob(source.id, ROOT, fast_options())
    await make_scheduler(site).crawl(job)
    assert job.scope.allowed_origins == {BASE_URL}


async def test_code_files_become_single_code_chunk_pages(store, make_scheduler):
    site = MockSite(
        {
            "/": page_html("Home", links=["/examples/app.py"]),
            "/examples/app.py": "def main():\n    print('hello from the example app')\n",
        }
    )
    source = await store.create_source(ROOT, None)
    await make_scheduler(site).crawl(CrawlJob(source.id, ROOT, fast_options()))

    page = await store.find_page_by_url(source.id, f"{BASE_URL}/examples/app.py")
    assert page is not None
    chunks = [c for c in store.chunks.values() if c["page_id"] == page.id]
    assert len(chunks) == 1
    assert chunks[0]["chunk_type"] == "code"
    assert chunks[0]["language"] == "python"


def test_invalid_root_url_is_rejected():
    with pytest.raises(InvalidSourceUrlError):
        CrawlJob(1, "not a url")
    with pytest.raises(InvalidSourceUrlError):
        CrawlJob(1, "ftp://docs.example.com/")


def test_claim_is_idempotent_and_capped():
    job = CrawlJob(1, ROOT, fast_options(max_pages=2, max_depth=1))
    assert job.claim(ROOT, 0)
    assert not job.claim(ROOT, 0)
    assert not job.claim(f"{BASE_URL}/deep", 2)
    assert job.claim(f"{BASE_URL}/a", 1)
    assert not job.claim(f"{BASE_URL}/b", 1)


async def test_frontier_drains_when_idle():
    frontier = Frontier()
    await frontier.put("u", 0)
    assert await frontier.get() == ("u", 0)
    await frontier.task_done()
    assert await frontier.get() is None


async def test_frontier_pause_blocks_get():
    frontier = Frontier()
    await frontier.put("u", 0)
    await frontier.pause()
    getter = asyncio.create_task(frontier.get())
    await asyncio.sleep(0.05)
    assert not getter.done()
    await frontier.resume()
    assert await asyncio.wait_for(getter, timeout=1) == ("u", 0)


async def test_throttle_spaces_starts():
    gate = ThrottleGate(0.05)
    loop = asyncio.get_running_loop()
    started = loop.time()
    for _ in range(3):
        await gate.wait()
    assert loop.time() - started >= 0.09
