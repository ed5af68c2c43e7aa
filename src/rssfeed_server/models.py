"""Data models for RSS Feed Server."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

ENTRY_STATUSES = ("unread", "read", "removed")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class User:
    """An account owning categories, feeds and entries."""

    username: str
    password_hash: str
    is_admin: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_login_at: datetime | None = None
    id: int | None = None


@dataclass
class Session:
    """An authenticated API session identified by an opaque token."""

    user_id: int
    token: str
    expires_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class Category:
    """A user-defined folder of feeds."""

    user_id: int
    title: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class Feed:
    """Represents a subscribed RSS/Atom/JSON source and its polling state."""

    user_id: int
    category_id: int
    feed_url: str
    title: str
    site_url: str = ""
    description: str | None = None
    favicon_url: str | None = None
    etag: str | None = None
    last_modified: str | None = None
    last_fetched_at: datetime | None = None
    next_fetch_at: datetime | None = None
    error_count: int = 0
    error_message: str | None = None
    disabled: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class Enclosure:
    """A media attachment carried by an entry."""

    url: str
    mime_type: str | None = None
    size: int | None = None
    entry_id: int | None = None
    id: int | None = None


@dataclass
class Entry:
    """Represents a single article discovered from a feed."""

    feed_id: int
    user_id: int
    fingerprint: str
    title: str
    url: str
    published_at: datetime
    author: str | None = None
    summary: str | None = None
    content: str | None = None  # never persisted
    reading_time: int = 1
    starred: bool = False
    status: str = "unread"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: int | None = None
