"""RSS/Atom/JSON feed fetching and parsing using httpx and feedparser."""

import calendar
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import struct_time
from urllib.parse import urlparse

import feedparser
import httpx

from rssfeed_server.models import Enclosure

MAX_INITIAL_ITEMS = 50
DEFAULT_TIMEOUT = 30.0  # seconds

USER_AGENT = "rssfeed-server/1.0 (RSS Aggregator)"
ACCEPT = (
    "application/rss+xml, application/atom+xml, application/feed+json, "
    "application/json, application/xml, text/xml;q=0.9, */*;q=0.8"
)


@dataclass
class ParsedItem:
    """One normalized item of a feed document."""

    link: str | None
    title: str | None
    published_at: datetime | None = None
    author: str | None = None
    content: str | None = None
    summary: str | None = None
    enclosure: Enclosure | None = None


@dataclass
class ParsedFeed:
    """Result of fetching and parsing an RSS/Atom/JSON feed."""

    title: str
    description: str | None
    link: str | None
    items: list[ParsedItem]
    etag: str | None = None
    last_modified: str | None = None
    not_modified: bool = False
    warnings: list[str] = field(default_factory=list)


class FetchError(Exception):
    """Raised when a feed cannot be fetched or parsed."""


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs."""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ("http", "https") and bool(result.netloc)


def fetch_feed(
    url: str,
    etag: str | None = None,
    last_modified: str | None = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    client: httpx.Client | None = None,
) -> ParsedFeed:
    """Fetch and parse a feed, sending conditional-request validators if known.

    Args:
        url: The feed URL to fetch.
        etag: Cached ETag, sent as If-None-Match.
        last_modified: Cached Last-Modified value, sent as If-Modified-Since.
        timeout: Seconds before the request is abandoned.
        client: Optional httpx client to reuse.

    Returns:
        ParsedFeed with feed metadata, items in source order and the
        response's validators. A 304 response returns no items and
        not_modified=True.

    Raises:
        FetchError: If the URL is invalid, unreachable, or not a valid feed.
    """
    if not is_valid_url(url):
        raise FetchError("Invalid URL format: only http and https are supported")

    headers = {"User-Agent": USER_AGENT, "Accept": ACCEPT}
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified

    try:
        if client is None:
            with httpx.Client(timeout=timeout, follow_redirects=True) as c:
                response = c.get(url, headers=headers)
        else:
            response = client.get(
                url, headers=headers, timeout=timeout, follow_redirects=True
            )
    except httpx.TimeoutException:
        raise FetchError(f"Timed out after {timeout:g}s fetching feed")
    except httpx.HTTPError as e:
        raise FetchError(f"Could not reach URL: {e}")

    new_etag = response.headers.get("ETag")
    new_last_modified = response.headers.get("Last-Modified")

    if response.status_code == 304:
        return ParsedFeed(
            title="",
            description=None,
            link=None,
            items=[],
            etag=new_etag or etag,
            last_modified=new_last_modified or last_modified,
            not_modified=True,
        )

    if response.status_code in (401, 403):
        raise FetchError(
            "Feed requires authentication. Ensure the URL is publicly accessible."
        )

    if not response.is_success:
        raise FetchError(f"Could not reach URL: HTTP {response.status_code}")

    parsed = parse_feed_document(
        response.content, response.headers.get("Content-Type", "")
    )
    parsed.etag = new_etag
    parsed.last_modified = new_last_modified
    return parsed


def parse_feed_document(body: bytes, content_type: str = "") -> ParsedFeed:
    """Parse a raw feed body. JSON Feed is detected by content type or a leading '{'."""
    if "json" in content_type.lower() or body.lstrip()[:1] == b"{":
        return _parse_json_feed(body)
    return _parse_xml_feed(body)


def _parse_xml_feed(body: bytes) -> ParsedFeed:
    parsed = feedparser.parse(body)

    if not parsed.feed.get("title") and not parsed.entries:
        raise FetchError("URL does not point to a valid RSS or Atom feed")

    warnings: list[str] = []
    if parsed.bozo:
        warnings.append(
            f"Feed has formatting issues: {parsed.bozo_exception}"
        )

    return ParsedFeed(
        title=parsed.feed.get("title") or "Untitled",
        description=parsed.feed.get("description") or parsed.feed.get("subtitle"),
        link=parsed.feed.get("link"),
        items=_extract_items(parsed.entries, warnings),
        warnings=warnings,
    )


def _extract_items(entries: list, warnings: list[str]) -> list[ParsedItem]:
    """Extract normalized items from feedparser entries, keeping source order."""
    items = []
    for entry in entries:
        try:
            content_blocks = entry.get("content") or []
            content = content_blocks[0].get("value") if content_blocks else None
            items.append(
                ParsedItem(
                    link=entry.get("link"),
                    title=entry.get("title"),
                    published_at=_parse_date(entry),
                    author=entry.get("author"),
                    content=content,
                    summary=entry.get("summary") or entry.get("description"),
                    enclosure=_extract_enclosure(entry),
                )
            )
        except Exception as e:
            warnings.append(f"Skipping malformed entry: {e}")
            continue
    return items


def _extract_enclosure(entry: dict) -> Enclosure | None:
    for enclosure in entry.get("enclosures") or []:
        href = enclosure.get("href") or enclosure.get("url")
        if href:
            return Enclosure(
                url=href,
                mime_type=enclosure.get("type") or None,
                size=_to_int(enclosure.get("length")),
            )
    for media in entry.get("media_content") or []:
        if media.get("url"):
            return Enclosure(
                url=media["url"],
                mime_type=media.get("type") or None,
                size=_to_int(media.get("fileSize")),
            )
    return None


def _parse_date(entry: dict) -> datetime | None:
    """Parse publication date from a feedparser entry as aware UTC."""
    for field_name in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field_name)
        if isinstance(time_struct, struct_time):
            try:
                return datetime.fromtimestamp(
                    calendar.timegm(time_struct), tz=timezone.utc
                )
            except (ValueError, OverflowError):
                continue
    return None


def _parse_json_feed(body: bytes) -> ParsedFeed:
    """Parse a JSON Feed 1.x document."""
    try:
        document = json.loads(body)
    except ValueError as e:
        raise FetchError(f"Feed body is not valid JSON: {e}")

    if not isinstance(document, dict) or not isinstance(document.get("items"), list):
        raise FetchError("URL does not point to a valid JSON feed")

    feed_author = _json_author(document)
    warnings: list[str] = []
    items = []
    for item in document["items"]:
        try:
            items.append(_json_item(item, feed_author))
        except Exception as e:
            warnings.append(f"Skipping malformed entry: {e}")
            continue

    return ParsedFeed(
        title=document.get("title") or "Untitled",
        description=document.get("description"),
        link=document.get("home_page_url"),
        items=items,
        warnings=warnings,
    )


def _json_item(item: dict, feed_author: str | None) -> ParsedItem:
    if not isinstance(item, dict):
        raise ValueError("item is not an object")
    attachments = item.get("attachments")
    enclosure = None
    if isinstance(attachments, list) and attachments:
        first = attachments[0]
        if isinstance(first, dict) and first.get("url"):
            enclosure = Enclosure(
                url=first["url"],
                mime_type=first.get("mime_type"),
                size=_to_int(first.get("size_in_bytes")),
            )
    return ParsedItem(
        link=item.get("url") or item.get("external_url"),
        title=item.get("title"),
        published_at=_parse_iso_date(
            item.get("date_published") or item.get("date_modified")
        ),
        author=_json_author(item) or feed_author,
        content=item.get("content_html") or item.get("content_text"),
        summary=item.get("summary"),
        enclosure=enclosure,
    )


def _json_author(obj: dict) -> str | None:
    authors = obj.get("authors")
    if isinstance(authors, list) and authors and isinstance(authors[0], dict):
        return authors[0].get("name")
    author = obj.get("author")
    if isinstance(author, dict):
        return author.get("name")
    return None


def _parse_iso_date(value) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _to_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
