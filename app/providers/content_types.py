"""Feed records shared by the fetch gateway, settings store and HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FeedSource:
    """A configured feed URL."""

    url: str

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url}


@dataclass(frozen=True)
class FeedItem:
    """A single entry of a feed, normalized across RSS and Atom."""

    title: str
    link: str
    pub_date: str = ""
    content: str = ""  # May contain HTML
    excerpt: str = ""  # Plain-text preview

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "link": self.link,
            "pubDate": self.pub_date,
            "content": self.content,
            "excerpt": self.excerpt,
        }


@dataclass(frozen=True)
class Feed:
    """A parsed syndication source."""

    title: str
    description: str
    source_url: str
    items: tuple[FeedItem, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "sourceUrl": self.source_url,
            "items": [item.to_dict() for item in self.items],
        }
