"""Shared test fixtures for RSS Feed Server tests."""

import os
import tempfile
from datetime import datetime, timezone

import pytest

from rssfeed_server.config import Settings
from rssfeed_server.database import Database
from rssfeed_server.feed_parser import ParsedFeed, ParsedItem
from rssfeed_server.models import Feed, User


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
      <enclosure url="https://example.com/episode-1.mp3" type="audio/mpeg" length="12345"/>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Fri, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <author><name>Jane Doe</name></author>
    <summary>Summary of entry 1</summary>
    <content type="html">&lt;p&gt;Full body of entry 1&lt;/p&gt;</content>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_JSON_FEED = """{
  "version": "https://jsonfeed.org/version/1.1",
  "title": "Test JSON Feed",
  "home_page_url": "https://example.org",
  "description": "A test JSON feed",
  "authors": [{"name": "Feed Author"}],
  "items": [
    {
      "id": "1",
      "url": "https://example.org/posts/1",
      "title": "JSON Post",
      "content_html": "<p>Hello from JSON</p>",
      "summary": "Short summary",
      "date_published": "2026-02-13T10:00:00Z",
      "attachments": [
        {"url": "https://example.org/a.mp3", "mime_type": "audio/mpeg", "size_in_bytes": 42}
      ]
    },
    {
      "id": "2",
      "external_url": "https://elsewhere.example/post",
      "content_text": "Plain text body",
      "authors": [{"name": "Guest"}]
    }
  ]
}"""

MALFORMED_JSON_FEED = """{
  "title": "Messy JSON Feed",
  "items": [
    {"url": "https://a.example/1", "title": "ok"},
    "not an item",
    {"url": "https://a.example/2", "title": "numeric date", "date_published": 12345},
    {"url": "https://a.example/3", "title": "object attachments", "attachments": {"url": "u"}}
  ]
}"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


def make_rss(count: int, title: str = "Big Feed") -> str:
    """RSS document with `count` distinct items, newest first."""
    items = "".join(
        f"""
    <item>
      <title>Item {i}</title>
      <link>https://example.com/items/{i}</link>
      <guid>item-{i}</guid>
      <description>Body of item {i}</description>
    </item>"""
        for i in range(count)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>{title}</title>
    <link>https://example.com</link>
    <description>Many items</description>{items}
  </channel>
</rss>"""


def make_parsed_feed(items: list[ParsedItem] | None = None, **kwargs) -> ParsedFeed:
    """A ParsedFeed as returned by fetch_feed, for patching the fetch client."""
    defaults = dict(
        title="Test Feed",
        description="A test feed",
        link="https://example.com",
        items=items if items is not None else [],
    )
    defaults.update(kwargs)
    return ParsedFeed(**defaults)


def make_item(n: int, **kwargs) -> ParsedItem:
    defaults = dict(
        link=f"https://example.com/articles/{n}",
        title=f"Article {n}",
        published_at=datetime(2026, 2, 13, 10, n % 60, tzinfo=timezone.utc),
        summary=f"Summary {n}",
    )
    defaults.update(kwargs)
    return ParsedItem(**defaults)


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected database, closed after the test."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def settings(tmp_db_path):
    return Settings(db_path=tmp_db_path, scheduler_enabled=False)


@pytest.fixture
def user(db):
    """A user with their Default category."""
    return db.add_user(User(username="alice", password_hash="x"))


@pytest.fixture
def category(db, user):
    return db.get_default_category(user.id)


@pytest.fixture
def feed(db, user, category):
    """A subscribed feed that is due now."""
    return db.add_feed(
        Feed(
            user_id=user.id,
            category_id=category.id,
            feed_url="https://example.com/feed.xml",
            title="Test Feed",
            site_url="https://example.com",
            favicon_url="https://example.com/favicon.ico",
        )
    )


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_json_feed():
    return SAMPLE_JSON_FEED


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML
