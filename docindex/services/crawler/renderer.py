import asyncio
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger("docindex.crawler.renderer")


class HeadlessRenderer(ABC):
    """Renders a page in a browser to obtain JS-generated HTML."""

    @abstractmethod
    async def render(self, url: str) -> str | None:
        """Return the rendered document HTML, or None on failure or timeout."""
        ...

    async def close(self) -> None:
        return None


class PlaywrightRenderer(HeadlessRenderer):
    """Headless Chromium via Playwright, launched on first use.

    Requires the ``headless`` extra and ``playwright install chromium``.
    """

    def __init__(self, timeout_seconds: float = 20.0):
        self.timeout_seconds = timeout_seconds
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    async def _get_browser(self):
        async with self._lock:
            if self._browser is None:
                from playwright.async_api import async_playwright

                logger.info("Launching headless Chromium")
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
        return self._browser

    async def render(self, url: str) -> str | None:
        from playwright.async_api import Error as PlaywrightError

        page = None
        try:
            browser = await self._get_browser()
            page = await browser.new_page()
            await asyncio.wait_for(
                page.goto(url, wait_until="networkidle"),
                timeout=self.timeout_seconds,
            )
            html = await page.content()
            return html or None
        except (PlaywrightError, asyncio.TimeoutError) as e:
            logger.error("Headless render failed for %s: %s", url, e)
            return None
        finally:
            if page is not None:
                await page.close()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
