"""Feed refresh pipeline: fetch, dedupe, persist, and reschedule."""

import logging
import math
from dataclasses import dataclass
from datetime import datetime

import bleach

from rssfeed_server.config import Settings
from rssfeed_server.database import Database
from rssfeed_server.dedupe import fingerprint, is_new
from rssfeed_server.errors import NotFoundError
from rssfeed_server.favicon import discover_favicon
from rssfeed_server.feed_parser import FetchError, ParsedItem, fetch_feed
from rssfeed_server.models import Entry, Feed, utcnow

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200
DEFAULT_ENTRY_TITLE = "Untitled"

# Formatting kept in stored summaries
ALLOWED_HTML_TAGS = ["p", "br", "b", "i", "em", "strong", "ul", "ol", "li", "a"]
ALLOWED_HTML_ATTRIBUTES = {"a": ["href", "title"]}


@dataclass
class RefreshResult:
    feed_id: int
    success: bool
    new_entries: int = 0
    error_message: str | None = None


@dataclass
class SweepResult:
    """Totals for one pass over the due feeds."""

    refreshed: int = 0
    errors: int = 0


def estimate_reading_time(html: str | None) -> int:
    """Whole minutes to read the text of an HTML fragment, at least 1."""
    if not html:
        return 1
    text = bleach.clean(html, tags=[], strip=True)
    return max(1, math.ceil(len(text.split()) / WORDS_PER_MINUTE))


def sanitize_summary(html: str | None) -> str | None:
    if not html:
        return html
    return bleach.clean(
        html, tags=ALLOWED_HTML_TAGS, attributes=ALLOWED_HTML_ATTRIBUTES, strip=True
    )


def ingest_items(
    db: Database,
    feed: Feed,
    items: list[ParsedItem],
    limit: int | None = None,
) -> int:
    """Persist the items not already stored for the feed.

    Items are processed in source order; when limit is given only the first
    `limit` items are considered. Returns the number of entries created.
    """
    if limit is not None:
        items = items[:limit]

    now = utcnow()
    created = 0
    for item in items:
        if not item.link:
            logger.info("Feed %d: skipping item without link (%r)", feed.id, item.title)
            continue
        try:
            title = item.title or DEFAULT_ENTRY_TITLE
            item_fingerprint = fingerprint(feed.id, item.link, title)
            if not is_new(db, feed.id, item_fingerprint):
                continue

            entry = db.create_entry_if_absent(
                Entry(
                    feed_id=feed.id,
                    user_id=feed.user_id,
                    fingerprint=item_fingerprint,
                    title=title,
                    url=item.link,
                    published_at=item.published_at or now,
                    author=item.author,
                    summary=sanitize_summary(item.summary),
                    content=item.content,
                    reading_time=estimate_reading_time(item.content or item.summary),
                )
            )
            if entry is None:
                continue
            created += 1

            if item.enclosure and item.enclosure.url:
                db.add_enclosure(entry.id, item.enclosure)
        except Exception as e:
            logger.warning("Feed %d: failed to store item %s: %s", feed.id, item.link, e)
            continue

    return created


def update_favicon(db: Database, feed: Feed, site_url: str | None, timeout: float) -> None:
    """Look up and store an icon for a feed that has none. Silent on failure."""
    if feed.favicon_url or not site_url:
        return
    try:
        icon = discover_favicon(site_url, timeout=timeout)
        if icon:
            db.update_feed(feed.id, favicon_url=icon)
            feed.favicon_url = icon
    except Exception as e:
        logger.debug("Feed %d: favicon lookup failed: %s", feed.id, e)


def refresh_feed(
    db: Database, feed_id: int, settings: Settings, now: datetime | None = None
) -> RefreshResult:
    """Fetch one feed, store its new entries and update its schedule.

    Fetch failures never raise: they are recorded on the feed with an
    exponential backoff and reported in the result.

    Raises:
        NotFoundError: If no feed has this id.
    """
    feed = db.get_feed_by_id(feed_id)
    if feed is None:
        raise NotFoundError("Feed")
    now = now or utcnow()

    try:
        parsed = fetch_feed(
            feed.feed_url,
            etag=feed.etag,
            last_modified=feed.last_modified,
            timeout=settings.fetch_timeout,
        )
    except Exception as e:
        message = str(e) if isinstance(e, FetchError) else f"Unexpected error: {e}"
        error_count = db.record_fetch_failure(
            feed.id, now, settings.refresh_interval_minutes, message
        )
        logger.warning(
            "Feed '%s' error (%d in a row): %s", feed.title, error_count, message
        )
        return RefreshResult(feed_id=feed.id, success=False, error_message=message)

    for warning in parsed.warnings:
        logger.debug("Feed '%s': %s", feed.title, warning)

    new_entries = 0
    if not parsed.not_modified:
        new_entries = ingest_items(db, feed, parsed.items)
        if new_entries:
            logger.info("Feed '%s': %d new entries", feed.title, new_entries)

    db.record_fetch_success(
        feed.id,
        now,
        settings.refresh_interval_minutes,
        etag=parsed.etag or feed.etag,
        last_modified=parsed.last_modified or feed.last_modified,
    )

    update_favicon(db, feed, parsed.link or feed.site_url, settings.fetch_timeout)
    return RefreshResult(feed_id=feed.id, success=True, new_entries=new_entries)


def refresh_due_feeds(
    db: Database, settings: Settings, now: datetime | None = None
) -> SweepResult:
    """Refresh up to one batch of due feeds, one at a time.

    A failure on one feed is counted and never stops the rest of the batch.
    Each feed is stamped with its own attempt time unless `now` is given.
    """
    result = SweepResult()
    for feed in db.find_due_feeds(settings.refresh_batch_size, now or utcnow()):
        try:
            outcome = refresh_feed(db, feed.id, settings, now)
        except Exception as e:
            logger.warning("Feed '%s' refresh failed: %s", feed.title, e)
            result.errors += 1
            continue
        if outcome.success:
            result.refreshed += 1
        else:
            result.errors += 1

    if result.refreshed or result.errors:
        logger.info(
            "Sweep complete: %d refreshed, %d errors", result.refreshed, result.errors
        )
    return result
