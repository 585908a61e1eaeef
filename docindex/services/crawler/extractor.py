import logging
import re
from collections import Counter
from typing import Callable, Container
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from docindex.services.crawler.base import CodeBlock, PageContent
from docindex.utils.urls import is_http_url, normalize_url, origin_of

logger = logging.getLogger("docindex.crawler.extractor")

# Tried in order; the first match with enough text wins.
MAIN_SELECTORS = (
    "main",
    "article",
    "[role='main']",
    ".content",
    ".main-content",
    "#content",
    "#main-content",
    ".docs-content",
    ".documentation",
    ".prose",
    ".markdown-body",
    ".post-content",
)

# Removed from inside the matched content element
CHROME_SELECTORS = "nav, .sidebar, .navigation, footer, .footer, .toc, .table-of-contents"

# Removed from the whole document when falling back to <body>
BODY_NOISE_SELECTORS = (
    "nav, header, footer, script, style, noscript, "
    ".sidebar, .navigation, .toc, .table-of-contents"
)

LANGUAGE_CLASS = re.compile(r"^(?:language|lang)-([\w+#-]+)$")
WHITESPACE = re.compile(r"\s+")


def _clean(text: str) -> str:
    return WHITESPACE.sub(" ", text).strip()


class ContentExtractor:
    """Turns fetched HTML into title, main text, code blocks and links."""

    MIN_CONTENT_LENGTH = 100
    MIN_CODE_LENGTH = 10

    def extract(
        self,
        html: str,
        url: str,
        should_crawl: Callable[[str], bool] | None = None,
        visited: Container[str] = (),
    ) -> PageContent:
        soup = BeautifulSoup(html, "lxml")

        # Links and code are read before any element is stripped, so that
        # navigation links still reach the frontier.
        title = self._extract_title(soup)
        links = self._extract_links(soup, url, should_crawl, visited)
        code_blocks = self._extract_code_blocks(soup)
        content = self._extract_main_content(soup)

        return PageContent(
            url=url,
            title=title,
            content=content,
            code_blocks=code_blocks,
            links=links,
        )

    def count_link_origins(self, html: str, url: str) -> Counter:
        """Count outbound links per origin, excluding the page's own origin."""
        soup = BeautifulSoup(html, "lxml")
        own_origin = origin_of(url)
        counts: Counter = Counter()
        for a_tag in soup.find_all("a", href=True):
            full_url = urljoin(url, a_tag["href"])
            if not is_http_url(full_url):
                continue
            origin = origin_of(full_url)
            if origin != own_origin:
                counts[origin] += 1
        return counts

    def _extract_title(self, soup: BeautifulSoup) -> str:
        for tag_name in ("title", "h1"):
            tag = soup.find(tag_name)
            if tag:
                text = _clean(tag.get_text(" "))
                if text:
                    return text
        return "Untitled"

    def _extract_main_content(self, soup: BeautifulSoup) -> str:
        for selector in MAIN_SELECTORS:
            element = soup.select_one(selector)
            if element is None:
                continue
            for chrome in element.select(CHROME_SELECTORS):
                chrome.decompose()
            content = _clean(element.get_text(" "))
            if len(content) > self.MIN_CONTENT_LENGTH:
                logger.debug("Found content using selector %s (%d chars)", selector, len(content))
                return content

        for noise in soup.select(BODY_NOISE_SELECTORS):
            noise.decompose()
        body = soup.body or soup
        content = _clean(body.get_text(" "))
        logger.debug("Using body fallback (%d chars)", len(content))
        return content

    def _extract_code_blocks(self, soup: BeautifulSoup) -> list[CodeBlock]:
        blocks = []
        for code in soup.find_all("code"):
            text = code.get_text().strip()
            if len(text) <= self.MIN_CODE_LENGTH:
                continue
            blocks.append(
                CodeBlock(
                    content=text,
                    language=self._detect_language(code),
                    heading_path=self._heading_path(code),
                )
            )
        return blocks

    @staticmethod
    def _detect_language(code: Tag) -> str | None:
        candidates = [code]
        if isinstance(code.parent, Tag) and code.parent.name == "pre":
            candidates.append(code.parent)
        for element in candidates:
            for css_class in element.get("class") or []:
                match = LANGUAGE_CLASS.match(css_class)
                if match:
                    return match.group(1).lower()
        return None

    @staticmethod
    def _heading_path(element: Tag) -> str | None:
        """'H1 > H2 > H3' of the nearest enclosing section headings."""
        path: list[str] = []
        level_limit = 4
        for heading in element.find_all_previous(["h1", "h2", "h3"]):
            level = int(heading.name[1])
            if level >= level_limit:
                continue
            text = _clean(heading.get_text(" "))
            if text:
                path.insert(0, text)
                level_limit = level
            if level == 1:
                break
        return " > ".join(path) or None

    def _extract_links(
        self,
        soup: BeautifulSoup,
        base_url: str,
        should_crawl: Callable[[str], bool] | None,
        visited: Container[str],
    ) -> list[str]:
        links: list[str] = []
        seen: set[str] = set()
        for a_tag in soup.find_all("a", href=True):
            full_url = urljoin(base_url, a_tag["href"].strip())
            if not is_http_url(full_url):
                continue
            normalized = normalize_url(full_url)
            if normalized in seen:
                continue
            seen.add(normalized)
            if normalized in visited:
                continue
            if should_crawl is not None and not should_crawl(normalized):
                continue
            links.append(normalized)
        return links
