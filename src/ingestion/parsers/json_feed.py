"""
JSON feed parser.

Handles JSON Feed 1.x documents as well as the rss2json-style payloads
returned by conversion services (items carrying pubDate, link, enclosure,
thumbnail). Non-object items are emitted with defaulted fields so positional
ids stay aligned with the source order.
"""
import json
from typing import Any, List, Optional

import structlog

from ..extractors import get_list, get_mapping, get_str, normalize_date, clean_text, string_list
from ..models import Feed, FeedContext, MediaItem

logger = structlog.get_logger(__name__)

FORMAT_LABEL = "JSON Feed"
CODE_TOKENS = ('export ', 'function ', 'import ', 'const ')
ITEM_CONTAINERS = ('items', 'entries', 'articles', 'feeds', 'data')
DATE_KEYS = ('date_published', 'pubDate', 'published', 'date_modified', 'updated', 'date')


def is_json(text: str, guard_code_tokens: bool = True) -> bool:
    """
    Decide whether text is a JSON payload.

    Fast rejects run first: the trimmed text must open an object or array,
    and (when guarded) must not contain script-like tokens that proxies emit
    when they return code or error pages. A decode error means "not JSON".
    """
    trimmed = text.strip()
    if not trimmed or trimmed[0] not in '{[':
        return False
    if guard_code_tokens and any(token in trimmed for token in CODE_TOKENS):
        return False
    try:
        decoded = json.loads(trimmed)
    except (ValueError, RecursionError):
        return False
    return isinstance(decoded, (dict, list))


def _items(document: Any) -> List[Any]:
    if isinstance(document, list):
        return document
    return get_list(document, *ITEM_CONTAINERS) or []


def _author(item: Any) -> Optional[str]:
    author = get_mapping(item, 'author')
    if author:
        return get_str(author, 'name', 'email', 'url')
    authors = get_list(item, 'authors')
    if authors:
        for entry in authors:
            name = get_str(entry, 'name', 'email') if isinstance(entry, dict) else None
            if name:
                return name
    return get_str(item, 'author', 'creator')


def _media(item: Any) -> Optional[List[MediaItem]]:
    media: List[MediaItem] = []

    for attachment in get_list(item, 'attachments') or []:
        url = get_str(attachment, 'url')
        if url:
            media.append(MediaItem(url=url, type=get_str(attachment, 'mime_type', 'type', default='unknown')))

    enclosure = get_mapping(item, 'enclosure')
    if enclosure:
        url = get_str(enclosure, 'link', 'url')
        if url:
            media.append(MediaItem(url=url, type=get_str(enclosure, 'type', default='unknown')))

    for key in ('image', 'banner_image', 'thumbnail'):
        url = get_str(item, key)
        if url:
            media.append(MediaItem(url=url, type='image'))

    return media or None


def _raw_date(item: Any) -> Any:
    if not isinstance(item, dict):
        return None
    for key in DATE_KEYS:
        if item.get(key) not in (None, ""):
            return item[key]
    return None


def _build_feed(item: Any, index: int, source_url: str, name: str, context: FeedContext) -> Feed:
    description = get_str(item, 'summary', 'description')
    return Feed(
        id=f"{source_url}-{index}",
        name=name,
        url=source_url,
        title=clean_text(get_str(item, 'title')) or "No title",
        link=get_str(item, 'url', 'external_url', 'link', default=source_url),
        pub_date=normalize_date(_raw_date(item), context.clock),
        feed_list_id=context.feed_list_id,
        description=description,
        content=get_str(item, 'content_html', 'content_text', 'content', default=description),
        author=_author(item),
        categories=string_list(get_list(item, 'tags', 'categories')),
        media=_media(item),
    )


def _fallback_feed(index: int, source_url: str, name: str, context: FeedContext) -> Feed:
    return Feed(
        id=f"{source_url}-{index}",
        name=name,
        url=source_url,
        title="No title",
        link=source_url,
        pub_date=normalize_date(None, context.clock),
        feed_list_id=context.feed_list_id,
    )


def parse_json_feed(payload: str, source_url: str, context: FeedContext) -> List[Feed]:
    """
    Parse a JSON payload into Feed records.

    Args:
        payload: Raw JSON text
        source_url: URL the payload was fetched from
        context: Caller context (feed list, display name, reference clock)

    Returns:
        One Feed per item, in source order
    """
    try:
        document = json.loads(payload)
    except (ValueError, RecursionError) as e:
        logger.warning("JSON payload could not be decoded", source_url=source_url, error=str(e))
        return []

    name = context.display_name or get_str(document, 'title') or FORMAT_LABEL
    feeds: List[Feed] = []

    for index, item in enumerate(_items(document)):
        try:
            feeds.append(_build_feed(item, index, source_url, name, context))
        except Exception as e:
            logger.warning("Failed to parse JSON item, using defaults", source_url=source_url, index=index, error=str(e))
            feeds.append(_fallback_feed(index, source_url, name, context))

    logger.debug("JSON feed parsed", source_url=source_url, item_count=len(feeds))
    return feeds
