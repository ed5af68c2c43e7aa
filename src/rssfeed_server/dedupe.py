"""Entry fingerprints used as the per-feed deduplication key."""

import hashlib

from rssfeed_server.database import Database


def fingerprint(feed_id: int, url: str, title: str) -> str:
    """Return a stable SHA-256 hex digest over feed id, item URL and title.

    Fields are joined with ':' so a title containing ':' next to a field
    boundary can collide with a different split. Known limitation.
    """
    data = f"{feed_id}:{url}:{title}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def is_new(db: Database, feed_id: int, item_fingerprint: str) -> bool:
    """True if no stored entry of the feed has this fingerprint."""
    return not db.entry_exists(feed_id, item_fingerprint)
