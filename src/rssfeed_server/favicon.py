"""Best-effort favicon lookup for a feed's website."""

import logging
from urllib.parse import urlparse

import httpx

from rssfeed_server.feed_parser import USER_AGENT

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0  # seconds
GOOGLE_FAVICON_URL = "https://www.google.com/s2/favicons?domain={host}&sz=64"


def favicon_candidates(site_url: str) -> list[str]:
    """Candidate icon URLs for a site, most specific first."""
    try:
        parsed = urlparse(site_url)
        host = parsed.hostname
    except ValueError:
        return []
    if parsed.scheme not in ("http", "https") or not host:
        return []
    return [
        f"{parsed.scheme}://{parsed.netloc}/favicon.ico",
        GOOGLE_FAVICON_URL.format(host=host),
    ]


def discover_favicon(
    site_url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    client: httpx.Client | None = None,
) -> str | None:
    """Return the first candidate icon URL that answers 2xx, or None.

    Never raises; lookup failures only mean the feed has no icon.
    """
    candidates = favicon_candidates(site_url)
    if not candidates:
        return None

    owns_client = client is None
    if owns_client:
        client = httpx.Client(
            timeout=timeout, follow_redirects=True, headers={"User-Agent": USER_AGENT}
        )
    try:
        for candidate in candidates:
            try:
                response = client.head(candidate)
            except httpx.HTTPError as e:
                logger.debug("Favicon probe %s failed: %s", candidate, e)
                continue
            if response.is_success:
                return candidate
    finally:
        if owns_client:
            client.close()
    return None
