import logging
import re
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

from docindex.config import settings
from docindex.utils.urls import origin_of, path_extension

logger = logging.getLogger("docindex.crawler.scope")

# Paths that never hold documentation content
SKIP_PATTERNS = (
    "/api/",
    "/admin/",
    "/login",
    "/logout",
    "/register",
    "/search",
    "/.well-known/",
    "/robots.txt",
    "/sitemap.xml",
    "/favicon.ico",
)

ASSET_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".bmp",
    ".css", ".woff", ".woff2", ".ttf", ".eot", ".otf",
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".7z", ".rar",
    ".pdf", ".mp3", ".mp4", ".webm", ".mov", ".avi", ".exe", ".dmg", ".whl",
})

CODE_FILE_LANGUAGES = {
    ".py": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".jsx": "jsx",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".sh": "bash",
    ".sql": "sql",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
}


def code_file_language(url: str) -> str | None:
    """Language of a raw source-file URL, None for anything else."""
    return CODE_FILE_LANGUAGES.get(path_extension(url))


def _matches(pattern: str, path: str) -> bool:
    if pattern in path:
        return True
    try:
        return re.search(pattern, path) is not None
    except re.error:
        return False


class CrawlScope:
    """Decides whether a URL may enter the frontier.

    A URL is in scope when its origin is allowed, its path is not a known
    non-content path or a static asset, robots.txt permits it, and it passes
    the include/exclude filters. Exclude wins when both filters match.
    """

    def __init__(
        self,
        root_url: str,
        include_paths: list[str] | None = None,
        exclude_paths: list[str] | None = None,
        download_code_files: bool = True,
    ):
        self.origin = origin_of(root_url)
        self.allowed_origins: set[str] = {self.origin}
        self.include_paths = list(include_paths or [])
        self.exclude_paths = list(exclude_paths or [])
        self.download_code_files = download_code_files
        self.robots: RobotFileParser | None = None

    def allow_origin(self, origin: str) -> None:
        self.allowed_origins.add(origin)

    def should_crawl(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            logger.debug("Invalid URL: %s", url)
            return False

        if parsed.scheme not in ("http", "https"):
            return False

        if f"{parsed.scheme}://{parsed.netloc}" not in self.allowed_origins:
            logger.debug("Skipping different origin: %s", url)
            return False

        path = parsed.path or "/"

        if any(pattern in path for pattern in SKIP_PATTERNS):
            logger.debug("Skipping non-content path: %s", url)
            return False

        ext = path_extension(url)
        if ext in ASSET_EXTENSIONS:
            return False
        if ext in CODE_FILE_LANGUAGES and not self.download_code_files:
            return False

        if self.robots is not None and not self.robots.can_fetch(settings.user_agent, url):
            logger.debug("Blocked by robots.txt: %s", url)
            return False

        if self.include_paths and not any(_matches(p, path) for p in self.include_paths):
            logger.debug("URL doesn't match include patterns: %s", url)
            return False

        if self.exclude_paths and any(_matches(p, path) for p in self.exclude_paths):
            logger.debug("URL matches exclude pattern: %s", url)
            return False

        return True
