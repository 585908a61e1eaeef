import posixpath
from urllib.parse import urlparse


def normalize_url(url: str) -> str:
    """Strip fragments and query strings, normalize an empty path to '/'."""
    parsed = urlparse(url)
    path = parsed.path or "/"
    return f"{parsed.scheme}://{parsed.netloc}{path}"


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def path_extension(url: str) -> str:
    """Lowercased file extension of the URL path ('' when there is none)."""
    return posixpath.splitext(urlparse(url).path)[1].lower()
