"""Subscribing a user to a new feed, with an initial backfill."""

import logging
from dataclasses import dataclass
from datetime import datetime

from rssfeed_server.config import Settings
from rssfeed_server.database import Database
from rssfeed_server.errors import ConflictError, NotFoundError, ValidationError
from rssfeed_server.favicon import discover_favicon
from rssfeed_server.feed_parser import (
    MAX_INITIAL_ITEMS,
    FetchError,
    fetch_feed,
    is_valid_url,
)
from rssfeed_server.models import Feed, utcnow
from rssfeed_server.refresh import ingest_items

logger = logging.getLogger(__name__)

DEFAULT_FEED_TITLE = "Untitled Feed"


@dataclass
class SubscribeResult:
    feed: Feed
    entries_created: int


def subscribe(
    db: Database,
    user_id: int,
    feed_url: str,
    settings: Settings,
    category_id: int | None = None,
    title: str | None = None,
    now: datetime | None = None,
) -> SubscribeResult:
    """Create a feed for the user and store its first entries.

    Raises:
        ValidationError: Bad URL, no usable category, or the feed cannot be fetched.
        ConflictError: The user already subscribes to this URL.
        NotFoundError: category_id is not one of the user's categories.
    """
    feed_url = (feed_url or "").strip()
    if not is_valid_url(feed_url):
        raise ValidationError("Invalid feed URL")
    if db.feed_url_exists(user_id, feed_url):
        raise ConflictError("Feed already exists")

    if category_id is not None:
        category = db.get_category_by_id(category_id)
        if category is None or category.user_id != user_id:
            raise NotFoundError("Category")
    else:
        category = db.get_default_category(user_id)
        if category is None:
            raise ValidationError("No category available for this feed")

    try:
        parsed = fetch_feed(feed_url, timeout=settings.fetch_timeout)
    except FetchError as e:
        raise ValidationError(f"Failed to fetch feed: {e}")

    site_url = parsed.link or ""
    favicon_url = discover_favicon(site_url or feed_url, timeout=settings.fetch_timeout)

    now = now or utcnow()
    feed = db.add_feed(
        Feed(
            user_id=user_id,
            category_id=category.id,
            feed_url=feed_url,
            title=(title or "").strip() or parsed.title or DEFAULT_FEED_TITLE,
            site_url=site_url,
            description=parsed.description,
            favicon_url=favicon_url,
            next_fetch_at=now,
        )
    )

    try:
        created = ingest_items(db, feed, parsed.items, limit=MAX_INITIAL_ITEMS)
        db.record_fetch_success(
            feed.id,
            now,
            settings.refresh_interval_minutes,
            etag=parsed.etag,
            last_modified=parsed.last_modified,
        )
    except Exception:
        logger.exception("Subscribing to %s failed; removing feed %d", feed_url, feed.id)
        db.delete_feed(feed.id)
        raise

    logger.info(
        "User %d subscribed to '%s' (%d entries)", user_id, feed.title, created
    )
    stored = db.get_feed_by_id(feed.id)
    return SubscribeResult(feed=stored or feed, entries_created=created)
