"""Feed fetcher: resolves feed URLs into normalized Feed records.

Uses feedparser for RSS/Atom parsing and trafilatura for plain-text
item previews. Every URL is fetched independently; one failing feed
never aborts its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlparse

import feedparser
import httpx
from trafilatura import html2txt

from app.providers.content_types import Feed, FeedItem

logger = logging.getLogger(__name__)


class FeedErrorType(str, Enum):
    """Classification of feed fetch failures."""

    TIMEOUT = "timeout"
    HTTP_4XX = "http_4xx"
    HTTP_5XX = "http_5xx"
    CONNECTION_ERROR = "connection_error"
    PARSE_ERROR = "parse_error"  # Response was not a usable feed
    INVALID_URL = "invalid_url"  # Rejected before any request
    UNEXPECTED = "unexpected"


@dataclass
class FeedResult:
    """Outcome of fetching one feed URL."""

    url: str
    feed: Feed | None = None
    error_type: FeedErrorType | None = None
    error_message: str | None = None
    http_status: int | None = None

    @property
    def success(self) -> bool:
        return self.feed is not None


class FeedParseError(Exception):
    """Document could not be interpreted as a feed."""


# HTTP timeout
FETCH_TIMEOUT = 30.0

# Length of the plain-text item preview
EXCERPT_LENGTH = 100


def make_excerpt(html: str, length: int = EXCERPT_LENGTH) -> str:
    """Plain-text preview of (possibly HTML) item content."""
    if not html or not html.strip():
        return ""
    # Item content is a fragment; trafilatura rejects documents without an html tag
    document = f"<html><body>{html}</body></html>"
    text = " ".join((html2txt(document) or "").split())
    if len(text) <= length:
        return text
    return text[:length] + "..."


def _safe_link(link: str | None) -> str:
    """Keep only http(s) links; feed content is untrusted."""
    link = (link or "").strip()
    if urlparse(link).scheme.lower() not in ("http", "https"):
        return ""
    return link


def _entry_content(entry: Any) -> str:
    blocks = entry.get("content") or []
    if blocks and blocks[0].get("value"):
        return blocks[0]["value"]
    return entry.get("summary", "") or ""


def parse_feed_document(document: bytes | str, source_url: str) -> Feed:
    """Parse a fetched document into a Feed.

    Raises:
        FeedParseError: If the document has neither a feed title nor entries.
    """
    parsed = feedparser.parse(document)
    meta = parsed.get("feed", {})
    entries = parsed.get("entries", [])

    if not entries and not meta.get("title"):
        reason = parsed.get("bozo_exception") or "no feed title or entries"
        raise FeedParseError(f"Not a valid feed: {reason}")

    items = []
    for entry in entries:
        content = _entry_content(entry)
        items.append(
            FeedItem(
                title=entry.get("title", "") or "",
                link=_safe_link(entry.get("link")),
                pub_date=entry.get("published") or entry.get("updated") or "",
                content=content,
                excerpt=make_excerpt(content),
            )
        )

    return Feed(
        title=meta.get("title", "") or source_url,
        description=meta.get("description") or meta.get("subtitle") or "",
        source_url=source_url,
        items=tuple(items),
    )


class FeedFetcher:
    """Fetches and parses feeds over a shared async HTTP client."""

    def __init__(self, timeout: float = FETCH_TIMEOUT) -> None:
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                headers={
                    "User-Agent": "Mozilla/5.0 (compatible; RSSSummaryReader/1.0)",
                    "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,*/*;q=0.8",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "FeedFetcher":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def fetch(self, url: str) -> FeedResult:
        """Fetch and parse a single feed URL.

        Returns:
            FeedResult holding the Feed or the classified failure.
        """
        url = (url or "").strip()
        if not url.lower().startswith(("http://", "https://")):
            return FeedResult(
                url=url,
                error_type=FeedErrorType.INVALID_URL,
                error_message=f"Unsupported feed URL: {url!r}",
            )

        try:
            client = await self._get_client()
            response = await client.get(url)

            if response.status_code >= 500:
                return FeedResult(
                    url=url,
                    error_type=FeedErrorType.HTTP_5XX,
                    error_message=f"Server error: {response.status_code}",
                    http_status=response.status_code,
                )

            if response.status_code >= 400:
                return FeedResult(
                    url=url,
                    error_type=FeedErrorType.HTTP_4XX,
                    error_message=f"Client error: {response.status_code}",
                    http_status=response.status_code,
                )

            document = response.content

            # feedparser and trafilatura are CPU-bound
            feed = await asyncio.get_event_loop().run_in_executor(
                None, parse_feed_document, document, url
            )

            return FeedResult(url=url, feed=feed, http_status=response.status_code)

        except FeedParseError as e:
            return FeedResult(
                url=url,
                error_type=FeedErrorType.PARSE_ERROR,
                error_message=str(e),
            )

        except httpx.TimeoutException:
            return FeedResult(
                url=url,
                error_type=FeedErrorType.TIMEOUT,
                error_message=f"Request timed out after {self._timeout}s",
            )

        except httpx.InvalidURL as e:
            return FeedResult(
                url=url,
                error_type=FeedErrorType.INVALID_URL,
                error_message=f"Invalid feed URL: {e}",
            )

        except httpx.TransportError as e:
            return FeedResult(
                url=url,
                error_type=FeedErrorType.CONNECTION_ERROR,
                error_message=f"Connection error: {e}",
            )

        except Exception as e:
            logger.exception(f"Unexpected error fetching feed {url}")
            return FeedResult(
                url=url,
                error_type=FeedErrorType.UNEXPECTED,
                error_message=f"Unexpected error: {type(e).__name__}: {e}",
            )

    async def fetch_all(self, urls: list[str]) -> list[FeedResult]:
        """Fetch all URLs concurrently.

        Results come back in input order regardless of completion order.
        """
        results = await asyncio.gather(*(self.fetch(url) for url in urls))

        for result in results:
            if not result.success:
                logger.warning(
                    f"Feed {result.url} failed ({result.error_type.value}): {result.error_message}"
                )

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Fetched {succeeded}/{len(results)} feeds")
        return list(results)


async def fetch_feeds(urls: list[str], timeout: float = FETCH_TIMEOUT) -> list[FeedResult]:
    """Convenience function to fetch a list of feed URLs."""
    async with FeedFetcher(timeout=timeout) as fetcher:
        return await fetcher.fetch_all(urls)
