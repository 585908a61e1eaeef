import logging
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger("docindex.robots")


async def fetch_robots(client: httpx.AsyncClient, origin: str) -> RobotFileParser:
    """Fetch and parse /robots.txt for an origin.

    Any failure (missing file, HTTP error, network error) yields a parser
    that allows everything.
    """
    robots_url = f"{origin}/robots.txt"
    parser = RobotFileParser(robots_url)
    try:
        resp = await client.get(robots_url, timeout=10)
        if resp.status_code == 200:
            parser.parse(resp.text.splitlines())
        else:
            parser.allow_all = True
    except httpx.HTTPError as e:
        logger.warning("Failed to fetch robots.txt from %s: %s", robots_url, e)
        parser.allow_all = True
    return parser


def parse_sitemap(xml: str) -> list[str]:
    """Extract <url><loc> entries from a sitemap document."""
    soup = BeautifulSoup(xml, "xml")
    urls = []
    for url_tag in soup.find_all("url"):
        loc = url_tag.find("loc")
        if loc is None:
            continue
        url = loc.get_text(strip=True)
        if url and url not in urls:
            urls.append(url)
    return urls


async def fetch_sitemap_urls(client: httpx.AsyncClient, origin: str) -> list[str]:
    """Best-effort fetch of /sitemap.xml; an empty list when unavailable."""
    sitemap_url = f"{origin}/sitemap.xml"
    try:
        resp = await client.get(sitemap_url, timeout=10)
    except httpx.HTTPError as e:
        logger.warning("Failed to fetch sitemap from %s: %s", sitemap_url, e)
        return []
    if resp.status_code != 200:
        return []
    urls = parse_sitemap(resp.text)
    logger.info("Found %d URLs in %s", len(urls), sitemap_url)
    return urls
