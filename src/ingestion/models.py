"""
Canonical records produced by the ingestion pipeline.

Every supported format (JSON Feed, RSS/Atom XML, plain-text digests) is
normalized into Feed records. Records are frozen: they are built once per
ingestion call and handed to the caller.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .errors import IngestionFailure


def utc_now() -> datetime:
    """Default reference clock."""
    return datetime.now(timezone.utc)


class FormatTag(str, Enum):
    """Payload formats, in detection priority order."""
    JSON = "json"
    XML = "xml"
    TXT = "txt"


@dataclass(frozen=True)
class MediaItem:
    """Media attached to a feed item."""
    url: str
    type: str = "unknown"

    def to_dict(self) -> Dict[str, str]:
        return {'url': self.url, 'type': self.type}


@dataclass(frozen=True)
class FeedContext:
    """
    Caller context passed into every parser.

    Attributes:
        feed_list_id: Subscription list the records belong to
        display_name: Human label for the source; parsers fall back to the
            feed's own title and then to a format label when unset
        clock: Reference clock used when an item has no usable date
    """
    feed_list_id: str = "1"
    display_name: Optional[str] = None
    clock: Callable[[], datetime] = utc_now


@dataclass(frozen=True)
class Feed:
    """One normalized feed item."""
    id: str
    name: str
    url: str
    title: str
    link: str
    pub_date: str
    feed_list_id: str
    description: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    categories: Optional[List[str]] = None
    media: Optional[List[MediaItem]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the canonical wire representation."""
        data: Dict[str, Any] = {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'title': self.title,
            'link': self.link,
            'pubDate': self.pub_date,
            'feedListId': self.feed_list_id,
        }
        if self.description is not None:
            data['description'] = self.description
        if self.content is not None:
            data['content'] = self.content
        if self.author is not None:
            data['author'] = self.author
        if self.categories is not None:
            data['categories'] = list(self.categories)
        if self.media is not None:
            data['media'] = [item.to_dict() for item in self.media]
        return data


@dataclass(frozen=True)
class FetchResult:
    """Raw payload returned by the proxy fetcher."""
    source_url: str
    text: str
    content_type: Optional[str] = None
    proxy: str = ""
    attempts: int = 1


@dataclass
class IngestionResult:
    """Outcome of ingesting one source in a batch."""
    source_url: str
    success: bool
    feeds: List[Feed] = field(default_factory=list)
    failure: Optional[IngestionFailure] = None
    response_time: float = 0.0

    @property
    def feed_count(self) -> int:
        """Number of records produced."""
        return len(self.feeds)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'source_url': self.source_url,
            'success': self.success,
            'feeds': [feed.to_dict() for feed in self.feeds],
            'failure': self.failure.to_dict() if self.failure else None,
            'response_time': self.response_time,
        }
