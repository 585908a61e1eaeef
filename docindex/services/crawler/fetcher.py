import logging
from urllib.parse import urlparse

import httpx

from docindex.config import settings
from docindex.services.crawler.base import FetchResult
from docindex.services.crawler.renderer import HeadlessRenderer
from docindex.utils.urls import path_extension

logger = logging.getLogger("docindex.crawler.fetcher")

# Common documentation landing pages tried under the URL's directory
ENTRYPOINT_SEGMENTS = (
    "index.html",
    "index",
    "getting-started",
    "guide",
    "guides",
    "overview",
    "features",
    "docs",
    "documentation",
)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def create_http_client(**kwargs) -> httpx.AsyncClient:
    """The shared client used for page, robots.txt and sitemap fetches."""
    return httpx.AsyncClient(
        timeout=settings.fetch_timeout_seconds,
        follow_redirects=True,
        max_redirects=settings.fetch_max_redirects,
        headers={"User-Agent": settings.user_agent, **BROWSER_HEADERS},
        **kwargs,
    )


def candidate_urls(url: str) -> list[str]:
    """Ordered fetch candidates: the URL, its trailing-slash form, entry pages."""
    candidates = [url]
    has_extension = bool(path_extension(url))
    if not url.endswith("/") and not has_extension:
        candidates.append(f"{url}/")

    # Entry pages live under the URL's directory: the URL itself for
    # directory-like paths, its parent for file-like ones.
    if url.endswith("/") or not has_extension:
        base = url if url.endswith("/") else f"{url}/"
    else:
        parsed = urlparse(url)
        directory = parsed.path.rsplit("/", 1)[0] + "/"
        base = f"{parsed.scheme}://{parsed.netloc}{directory}"

    for segment in ENTRYPOINT_SEGMENTS:
        candidate = base + segment
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


class FallbackFetcher:
    """Fetches a page through a chain of candidate URLs.

    Each candidate gets a direct HTTP GET; if that fails and a headless
    renderer is enabled, the same candidate is rendered. The first candidate
    producing non-trivial HTML wins. None means every attempt failed.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        renderer: HeadlessRenderer | None = None,
        min_html_length: int | None = None,
    ):
        self.client = client
        self.renderer = renderer
        self.min_html_length = (
            settings.min_html_length if min_html_length is None else min_html_length
        )

    async def fetch(self, url: str, use_headless_render: bool = True) -> FetchResult | None:
        for candidate in candidate_urls(url):
            html, final_url = await self._fetch_direct(candidate)
            if html is not None:
                if candidate != url:
                    logger.info("Fetched fallback URL for %s: %s", url, candidate)
                return FetchResult(html=html, final_url=final_url)

            if use_headless_render and self.renderer is not None:
                rendered = await self.renderer.render(candidate)
                if rendered and len(rendered) > self.min_html_length:
                    logger.info("Headless fallback succeeded for %s", candidate)
                    return FetchResult(html=rendered, final_url=candidate, rendered=True)

        logger.warning("All attempts failed for %s", url)
        return None

    async def fetch_code_file(self, url: str) -> FetchResult | None:
        """Direct fetch of a raw source file; no fallback candidates."""
        try:
            resp = await self.client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.info("Code file fetch failed for %s: %s", url, e)
            return None
        if not resp.text.strip():
            return None
        return FetchResult(html=resp.text, final_url=str(resp.url))

    async def _fetch_direct(self, candidate: str) -> tuple[str | None, str]:
        try:
            resp = await self.client.get(candidate)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.info(
                "Attempt failed (%d) for %s, trying next", e.response.status_code, candidate
            )
            return None, candidate
        except httpx.HTTPError as e:
            logger.info("Attempt failed (%s) for %s, trying next", type(e).__name__, candidate)
            return None, candidate

        html = resp.text
        if len(html) <= self.min_html_length:
            logger.info("Response too short (%d chars) for %s", len(html), candidate)
            return None, candidate
        return html, str(resp.url)
