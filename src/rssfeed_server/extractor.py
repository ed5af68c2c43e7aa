"""Full-article extraction for the read-full-content path."""

import logging
from dataclasses import dataclass

import httpx
import lxml.html
from readability import Document

from rssfeed_server.feed_parser import USER_AGENT

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds
EXCERPT_LENGTH = 200


@dataclass
class ExtractedArticle:
    title: str
    content: str
    excerpt: str


def extract_article(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    client: httpx.Client | None = None,
) -> ExtractedArticle | None:
    """Download a page and pull out its main article.

    Returns None if the page cannot be fetched or has no readable content.
    """
    headers = {"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"}
    try:
        if client is None:
            with httpx.Client(timeout=timeout, follow_redirects=True) as c:
                response = c.get(url, headers=headers)
        else:
            response = client.get(
                url, headers=headers, timeout=timeout, follow_redirects=True
            )
        response.raise_for_status()
        return parse_article(response.text)
    except Exception as e:
        logger.warning("Content extraction failed for %s: %s", url, e)
        return None


def parse_article(html: str) -> ExtractedArticle | None:
    """Run readability over an HTML page."""
    if not html or not html.strip():
        return None
    doc = Document(html)
    content = doc.summary(html_partial=True)
    text = _text_of(content)
    if not text:
        return None
    excerpt = _meta_description(html) or text[:EXCERPT_LENGTH]
    return ExtractedArticle(title=doc.short_title(), content=content, excerpt=excerpt)


def _meta_description(html: str) -> str | None:
    tree = lxml.html.fromstring(html)
    for xpath in (
        '//meta[@property="og:description"]/@content',
        '//meta[@name="description"]/@content',
    ):
        values = tree.xpath(xpath)
        if values and values[0].strip():
            return values[0].strip()
    return None


def _text_of(fragment: str) -> str:
    if not fragment:
        return ""
    return " ".join(lxml.html.fromstring(fragment).text_content().split())
