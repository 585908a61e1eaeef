"""Tests for the fallback fetch chain."""

from docindex.services.crawler.fetcher import FallbackFetcher, candidate_urls
from docindex.services.crawler.renderer import HeadlessRenderer

from conftest import MockSite, page_html

BIG_PAGE = page_html("Docs")


class StubRenderer(HeadlessRenderer):
    def __init__(self, pages: dict[str, str]):
        self.pages = pages
        self.rendered: list[str] = []

    async def render(self, url):
        self.rendered.append(url)
        return self.pages.get(url)


def test_candidate_order_for_directory_like_url():
    candidates = candidate_urls("https://docs.example.com/guide")
    assert candidates[:4] == [
        "https://docs.example.com/guide",
        "https://docs.example.com/guide/",
        "https://docs.example.com/guide/index.html",
        "https://docs.example.com/guide/index",
    ]
    assert candidates[-1] == "https://docs.example.com/guide/documentation"


def test_candidates_for_file_url_use_parent_directory():
    candidates = candidate_urls("https://docs.example.com/guide/page.html")
    assert candidates[0] == "https://docs.example.com/guide/page.html"
    assert "https://docs.example.com/guide/page.html/" not in candidates
    assert candidates[1] == "https://docs.example.com/guide/index.html"


async def test_direct_fetch_succeeds():
    site = MockSite({"/guide": BIG_PAGE})
    fetcher = FallbackFetcher(site.client())
    result = await fetcher.fetch("https://docs.example.com/guide")
    assert result is not None
    assert result.final_url == "https://docs.example.com/guide"
    assert not result.rendered
    assert len(site.requests) == 1


async def test_trailing_slash_fallback():
    site = MockSite({"/guide/": BIG_PAGE})
    result = await FallbackFetcher(site.client()).fetch("https://docs.example.com/guide")
    assert result.final_url == "https://docs.example.com/guide/"


async def test_entry_segment_fallback():
    site = MockSite({"/guide/getting-started": BIG_PAGE})
    result = await FallbackFetcher(site.client()).fetch("https://docs.example.com/guide")
    assert result.final_url == "https://docs.example.com/guide/getting-started"


async def test_short_html_counts_as_failure():
    site = MockSite({"/guide": "<html>loading...</html>", "/guide/": BIG_PAGE})
    result = await FallbackFetcher(site.client()).fetch("https://docs.example.com/guide")
    assert result.final_url == "https://docs.example.com/guide/"


async def test_all_attempts_fail_returns_none():
    site = MockSite({})
    result = await FallbackFetcher(site.client()).fetch("https://docs.example.com/missing")
    assert result is None
    assert len(site.requests) == len(candidate_urls("https://docs.example.com/missing"))


async def test_headless_render_tried_after_direct_failure():
    site = MockSite({})
    renderer = StubRenderer({"https://docs.example.com/app": BIG_PAGE})
    fetcher = FallbackFetcher(site.client(), renderer=renderer)
    result = await fetcher.fetch("https://docs.example.com/app")
    assert result.rendered
    assert renderer.rendered == ["https://docs.example.com/app"]


async def test_headless_render_skipped_when_disabled_for_job():
    site = MockSite({})
    renderer = StubRenderer({"https://docs.example.com/app": BIG_PAGE})
    fetcher = FallbackFetcher(site.client(), renderer=renderer)
    assert await fetcher.fetch("https://docs.example.com/app", use_headless_render=False) is None
    assert renderer.rendered == []


async def test_fetch_code_file_is_direct_only():
    site = MockSite({"/src/app.py": "print('hi')\n"})
    fetcher = FallbackFetcher(site.client())
    result = await fetcher.fetch_code_file("https://docs.example.com/src/app.py")
    assert result.html == "print('hi')\n"
    assert await fetcher.fetch_code_file("https://docs.example.com/src/missing.py") is None
    assert len(site.requests) == 2
