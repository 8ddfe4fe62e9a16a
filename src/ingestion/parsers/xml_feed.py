"""
RSS/Atom XML feed parser.

Supports RSS 2.0, RSS 1.0 (RDF) and Atom 1.0. Items are enumerated
document-wide by local tag name, so namespaced variants (RDF items outside
the channel, prefixed Atom entries) are picked up without per-dialect
lookups. A malformed item is emitted with defaulted fields.
"""
import re
import xml.etree.ElementTree as ET
from enum import Enum
from typing import List, Optional

import structlog

from ..errors import ParseFailure
from ..extractors import (
    child, child_text, children, clean_text, clean_xml, descendants,
    element_text, local_name, normalize_date,
)
from ..models import Feed, FeedContext, MediaItem

logger = structlog.get_logger(__name__)

FORMAT_LABEL = "XML Feed"

CONTENT_NS = '{http://purl.org/rss/1.0/modules/content/}'
MEDIA_NS = '{http://search.yahoo.com/mrss/}'

FEED_ROOTS = ('rss', 'feed', 'RDF')
FEED_ROOT_TAG = re.compile(r'<(?:rss|feed|rdf:RDF|RDF)[\s>/]')


class FeedType(str, Enum):
    """Supported XML feed dialects."""
    RSS_2_0 = "rss_2.0"
    RSS_1_0 = "rss_1.0"
    ATOM_1_0 = "atom_1.0"
    UNKNOWN = "unknown"


def detect_feed_type(root: ET.Element) -> FeedType:
    """Detect the type of feed from the root element."""
    tag = local_name(root.tag)

    if tag.lower() == 'rss':
        version = root.get('version', '')
        if version.startswith('1.'):
            return FeedType.RSS_1_0
        return FeedType.RSS_2_0  # Default to RSS 2.0
    if tag == 'feed':
        return FeedType.ATOM_1_0
    if tag == 'RDF':
        return FeedType.RSS_1_0
    return FeedType.UNKNOWN


def is_xml(text: str) -> bool:
    """
    Decide whether text is feed XML.

    Well-formed documents with a feed root qualify. Markup that opens a
    feed root tag but fails to parse also qualifies, so that the XML
    parser reports it as a ParseFailure instead of it being read as text.
    """
    cleaned = clean_xml(text)
    if not cleaned.startswith('<'):
        return False
    try:
        root = ET.fromstring(cleaned)
    except ET.ParseError:
        return FEED_ROOT_TAG.search(cleaned) is not None
    return local_name(root.tag) in FEED_ROOTS


def _media(item: ET.Element) -> Optional[List[MediaItem]]:
    media: List[MediaItem] = []
    for name in (f'{MEDIA_NS}content', 'enclosure', 'thumbnail', 'image'):
        for elem in descendants(item, name):
            url = elem.get('url') or elem.get('href') or element_text(elem)
            if url:
                media.append(MediaItem(url=url, type=elem.get('type') or elem.get('medium') or 'unknown'))
    return media or None


def _text_categories(item: ET.Element) -> Optional[List[str]]:
    categories = [element_text(c) for c in children(item, 'category') if element_text(c)]
    return categories or None


def _term_categories(entry: ET.Element) -> Optional[List[str]]:
    categories = []
    for c in children(entry, 'category'):
        term = c.get('term') or element_text(c)
        if term:
            categories.append(term)
    return categories or None


def _atom_link(entry: ET.Element) -> str:
    for link in children(entry, 'link'):
        href = link.get('href')
        rel = link.get('rel')
        if href and (not rel or rel == 'alternate'):
            return href.strip()
    return ""


def _atom_author(entry: ET.Element) -> Optional[str]:
    author = child(entry, 'author')
    if author is not None:
        return child_text(author, 'name', 'email') or element_text(author) or None
    return None


class XMLFeedParser:
    """
    RSS/Atom feed parser producing canonical Feed records.

    Features:
    - Support for RSS 2.0, RSS 1.0 and Atom 1.0 formats
    - Namespace-agnostic field lookup with content/media/Dublin Core fallbacks
    - Robust date normalization against the caller's reference clock
    - Per-item defaulting for malformed entries
    """

    def __init__(self):
        self.logger = logger.bind(component="xml_feed_parser")

    def parse(self, payload: str, source_url: str, context: FeedContext) -> List[Feed]:
        """
        Parse RSS/Atom feed XML into Feed records.

        Args:
            payload: Raw XML content of the feed
            source_url: URL of the feed
            context: Caller context (feed list, display name, reference clock)

        Returns:
            One Feed per item/entry, in document order

        Raises:
            ParseFailure: If the payload is not well-formed feed XML
        """
        try:
            root = ET.fromstring(clean_xml(payload))
        except ET.ParseError as e:
            raise ParseFailure(f"Invalid XML: {str(e)}")

        feed_type = detect_feed_type(root)
        if feed_type == FeedType.UNKNOWN:
            raise ParseFailure(f"Unsupported feed root: {local_name(root.tag)}")

        self.logger.debug("Feed type detected", feed_type=feed_type.value, source_url=source_url)

        if feed_type == FeedType.ATOM_1_0:
            elements = descendants(root, 'entry')
            build = self._build_atom_entry
        else:
            elements = descendants(root, 'item')
            build = self._build_rss_item

        name = context.display_name or self._feed_title(root) or FORMAT_LABEL
        feeds: List[Feed] = []

        for index, elem in enumerate(elements):
            try:
                feeds.append(build(elem, index, source_url, name, context))
            except Exception as e:
                self.logger.warning("Failed to parse feed item, using defaults",
                                    source_url=source_url, index=index, error=str(e))
                feeds.append(Feed(
                    id=f"{source_url}-{index}",
                    name=name,
                    url=source_url,
                    title="No title",
                    link=source_url,
                    pub_date=normalize_date(None, context.clock),
                    feed_list_id=context.feed_list_id,
                ))

        self.logger.debug("XML feed parsed", source_url=source_url, item_count=len(feeds))
        return feeds

    def _feed_title(self, root: ET.Element) -> Optional[str]:
        channel = child(root, 'channel')
        title = child_text(channel if channel is not None else root, 'title')
        return clean_text(title) or None

    def _build_rss_item(self, item: ET.Element, index: int, source_url: str,
                        name: str, context: FeedContext) -> Feed:
        """Build a Feed from an RSS 1.0/2.0 item."""
        description = child_text(item, 'description')
        return Feed(
            id=f"{source_url}-{index}",
            name=name,
            url=source_url,
            title=clean_text(child_text(item, 'title')) or "No title",
            link=child_text(item, 'link') or source_url,
            pub_date=normalize_date(child_text(item, 'pubDate', 'date'), context.clock),
            feed_list_id=context.feed_list_id,
            description=description,
            content=child_text(item, f'{CONTENT_NS}encoded', 'content', default=description),
            author=clean_text(child_text(item, 'creator', 'author', 'managingEditor', 'webMaster')) or None,
            categories=_text_categories(item),
            media=_media(item),
        )

    def _build_atom_entry(self, entry: ET.Element, index: int, source_url: str,
                          name: str, context: FeedContext) -> Feed:
        """Build a Feed from an Atom entry."""
        summary = child_text(entry, 'summary')
        content = child_text(entry, 'content')
        return Feed(
            id=f"{source_url}-{index}",
            name=name,
            url=source_url,
            title=clean_text(child_text(entry, 'title')) or "No title",
            link=_atom_link(entry) or source_url,
            pub_date=normalize_date(child_text(entry, 'published', 'updated'), context.clock),
            feed_list_id=context.feed_list_id,
            description=summary or content,
            content=content or summary,
            author=_atom_author(entry) or clean_text(child_text(entry, 'creator')) or None,
            categories=_term_categories(entry),
            media=_media(entry),
        )


xml_feed_parser = XMLFeedParser()


def parse_xml_feed(payload: str, source_url: str, context: FeedContext) -> List[Feed]:
    """Parse feed XML with the shared parser instance."""
    return xml_feed_parser.parse(payload, source_url, context)
