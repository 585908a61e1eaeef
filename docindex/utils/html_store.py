import asyncio
import logging
from pathlib import Path
from urllib.parse import quote, urlparse

logger = logging.getLogger("docindex.html_store")

# Quoting never yields "%2F" for a single segment, so this cannot clash
# with the file of a page whose last segment is "index"
DIRECTORY_INDEX = "%2F"


def path_segment(value: str) -> str:
    """Percent-encode one URL path segment into a file name."""
    if not value:
        return DIRECTORY_INDEX
    if value in (".", ".."):
        return DIRECTORY_INDEX + value.replace(".", "%2E")
    return quote(value, safe="-._~")


class HtmlStore:
    """Keeps the raw HTML of crawled pages on disk, one directory per host.

    URL path segments become directories, so distinct URLs never share a
    file: /a/b is stored at host/a/b.html, /a_b at host/a_b.html and /a/ at
    host/a/%2F.html.
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def path_for(self, url: str) -> Path:
        parsed = urlparse(url)
        segments = parsed.path.split("/")[1:] or [""]
        *dirs, name = segments
        directory = self.base_dir / path_segment(parsed.netloc)
        for segment in dirs:
            directory = directory / path_segment(segment)
        return directory / (path_segment(name) + ".html")

    async def save(self, url: str, html: str) -> str:
        path = self.path_for(url)
        await asyncio.to_thread(self._write, path, html)
        logger.debug("Stored raw HTML for %s at %s", url, path)
        return str(path)

    @staticmethod
    def _write(path: Path, html: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(html, encoding="utf-8")
