# utils.py
import re
from typing import Iterable, List
from urllib.parse import urlparse, urlunparse

from .errors import ValidationError

ALLOWED_SCHEMES = ("http", "https")


def normalize_url(url: str) -> str:
    """Validate an absolute http(s) URL and return its normalized form.

    Normalization lower-cases scheme and host and turns an empty path into "/",
    so ``https://Example.com`` becomes ``https://example.com/``.
    """
    if not isinstance(url, str) or not url.strip():
        raise ValidationError(f"Invalid URL: {url}")
    try:
        p = urlparse(url.strip())
        # Accessing .port validates the port component
        p.port
    except ValueError:
        raise ValidationError(f"Invalid URL: {url}")
    if not p.scheme:
        raise ValidationError(f"Invalid URL: {url}")
    scheme = p.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise ValidationError(f"Unsupported protocol in {url}")
    if not p.netloc or not p.hostname:
        raise ValidationError(f"Invalid URL: {url}")
    # Keep userinfo as given, lower-case only host:port
    userinfo, _, hostport = p.netloc.rpartition("@")
    netloc = f"{userinfo}@{hostport.lower()}" if userinfo else hostport.lower()
    path = p.path or "/"
    return urlunparse((scheme, netloc, path, p.params, p.query, p.fragment))


def normalize_urls(urls: Iterable[str]) -> List[str]:
    return [normalize_url(u) for u in urls]


def clean_text(text: str) -> str:
    """Collapse runs of 3+ newlines down to a blank line and trim the ends."""
    if text is None:
        return ""
    return re.sub(r'\n{3,}', '\n\n', text).strip()


def safe_filename(url: str, max_length: int = 60) -> str:
    """Derive a filesystem-safe stem from a URL."""
    return re.sub(r'[^a-z0-9]+', '_', url, flags=re.IGNORECASE)[:max_length]
