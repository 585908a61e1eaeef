from dataclasses import asdict, dataclass, field, fields
from typing import Any, Awaitable, Callable

from docindex.config import settings


@dataclass
class CrawlOptions:
    """Per-source crawl settings. Defaults come from the app settings."""

    max_pages: int = field(default_factory=lambda: settings.crawl_max_pages)
    max_depth: int = field(default_factory=lambda: settings.crawl_max_depth)
    concurrency: int = field(default_factory=lambda: settings.crawl_concurrency)
    throttle_ms: int = field(default_factory=lambda: settings.crawl_throttle_ms)
    include_paths: list[str] = field(default_factory=list)
    exclude_paths: list[str] = field(default_factory=list)
    download_code_files: bool = field(
        default_factory=lambda: settings.crawl_download_code_files
    )
    use_headless_render: bool = field(
        default_factory=lambda: settings.headless_render_enabled
    )
    allow_cross_origin: bool = False
    child_link_cap: int = field(default_factory=lambda: settings.crawl_child_link_cap)
    alternate_origin_threshold: int = field(
        default_factory=lambda: settings.crawl_alternate_origin_threshold
    )

    @classmethod
    def from_dict(cls, data: dict | None) -> "CrawlOptions":
        """Validate and normalize an options payload. Raise ValueError on bad input.

        Accepts both snake_case and the camelCase keys used by API clients
        (``maxPages``, ``includePaths``, ...).
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("options must be an object")

        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            name = _snake_case(key)
            if name not in known:
                raise ValueError(f"Unknown crawl option: {key}")
            values[name] = value

        for name in (
            "max_pages",
            "max_depth",
            "concurrency",
            "throttle_ms",
            "child_link_cap",
            "alternate_origin_threshold",
        ):
            if name in values:
                try:
                    values[name] = int(values[name])
                except (TypeError, ValueError):
                    raise ValueError(f"{name} must be an integer")

        for name in ("include_paths", "exclude_paths"):
            if name in values:
                patterns = values[name]
                if not isinstance(patterns, list) or not all(
                    isinstance(p, str) for p in patterns
                ):
                    raise ValueError(f"{name} must be a list of strings")

        for name in ("download_code_files", "use_headless_render", "allow_cross_origin"):
            if name in values:
                values[name] = bool(values[name])

        options = cls(**values)
        if options.max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if options.max_depth < 0:
            raise ValueError("max_depth must not be negative")
        if options.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if options.throttle_ms < 0:
            raise ValueError("throttle_ms must not be negative")
        return options

    def to_dict(self) -> dict:
        return asdict(self)


def _snake_case(key: str) -> str:
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


@dataclass
class CodeBlock:
    content: str
    language: str | None = None
    heading_path: str | None = None


@dataclass
class PageContent:
    """Everything extracted from one fetched page."""

    url: str
    title: str
    content: str
    code_blocks: list[CodeBlock] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    # True for raw source files fetched because download_code_files is set
    code_file: bool = False


@dataclass
class FetchResult:
    html: str
    final_url: str
    rendered: bool = False


@dataclass
class CrawlProgress:
    source_id: int
    status: str
    total_pages: int
    crawled_pages: int
    current_url: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


# Receives a progress snapshot after every processed URL and at terminal states.
ProgressSink = Callable[[CrawlProgress], Awaitable[None] | None]
