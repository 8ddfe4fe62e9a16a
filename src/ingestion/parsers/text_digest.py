"""
Plain-text digest parser.

A digest is a sequence of records separated by blank lines, each made of
"Key: value" lines:

    Title: Port closures expected
    Link: https://example.com/ports
    Date: 2024-01-01T10:00:00Z
    Category: logistics, maritime

A repeated Title line also starts a new record. Blocks without any known key
are read positionally: first line as title, first URL as link, the rest as
description. This is the catch-all format, so parsing never raises.
"""
import re
from typing import Dict, List, Optional

import structlog

from ..extractors import clean_text, normalize_date
from ..models import Feed, FeedContext

logger = structlog.get_logger(__name__)

FORMAT_LABEL = "Text Feed"

# Recognized keys, mapped onto canonical fields
FIELD_ALIASES = {
    'title': 'title',
    'headline': 'title',
    'link': 'link',
    'url': 'link',
    'date': 'pub_date',
    'pubdate': 'pub_date',
    'published': 'pub_date',
    'description': 'description',
    'summary': 'description',
    'content': 'content',
    'body': 'content',
    'author': 'author',
    'by': 'author',
    'category': 'categories',
    'categories': 'categories',
    'tags': 'categories',
}

MULTI_VALUE_FIELDS = ('description', 'content', 'categories')

_KEY_LINE = re.compile(r'^\s*([A-Za-z][A-Za-z ]{0,20}?)\s*:\s*(.*)$')
_URL = re.compile(r'https?://\S+')


def is_text(text: str) -> bool:
    """Any non-empty text is a valid digest."""
    return bool(text and text.strip())


def _key_value(line: str):
    match = _KEY_LINE.match(line)
    if not match:
        return None, None
    field = FIELD_ALIASES.get(match.group(1).strip().lower().replace(' ', ''))
    if field is None:
        return None, None
    return field, match.group(2).strip()


def _split_records(text: str) -> List[List[str]]:
    records: List[List[str]] = []
    current: List[str] = []
    has_title = False

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            if current:
                records.append(current)
            current, has_title = [], False
            continue

        field, _ = _key_value(line)
        if field == 'title':
            if has_title:
                records.append(current)
                current = []
            has_title = True
        current.append(line)

    if current:
        records.append(current)
    return records


def _read_record(lines: List[str]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    loose: List[str] = []

    for line in lines:
        field, value = _key_value(line)
        if field is None:
            loose.append(line)
        elif field in fields:
            if field in MULTI_VALUE_FIELDS:
                fields[field] = f"{fields[field]}\n{value}".strip()
        else:
            fields[field] = value

    if not fields:
        # Positional record: title, first URL as link, remainder as description
        title = loose[0] if loose else ""
        rest = loose[1:]
        link = next((_URL.search(line).group(0) for line in rest if _URL.search(line)), None)
        description = [line for line in rest if not (link and line.strip() == link)]
        fields['title'] = title
        if link:
            fields['link'] = link
        if description:
            fields['description'] = "\n".join(description)
    elif loose:
        fields['description'] = "\n".join(filter(None, [fields.get('description'), *loose]))

    return fields


def _categories(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    categories = [part.strip() for part in re.split(r'[,\n]', value) if part.strip()]
    return categories or None


def parse_text_digest(payload: str, source_url: str, context: FeedContext) -> List[Feed]:
    """
    Parse a plain-text digest into Feed records.

    Args:
        payload: Raw text
        source_url: URL the payload was fetched from
        context: Caller context (feed list, display name, reference clock)

    Returns:
        One Feed per record, in source order
    """
    name = context.display_name or FORMAT_LABEL
    feeds: List[Feed] = []

    for index, lines in enumerate(_split_records(payload or "")):
        fields = _read_record(lines)
        feeds.append(Feed(
            id=f"{source_url}-{index}",
            name=name,
            url=source_url,
            title=clean_text(fields.get('title')) or "No title",
            link=fields.get('link') or source_url,
            pub_date=normalize_date(fields.get('pub_date'), context.clock),
            feed_list_id=context.feed_list_id,
            description=fields.get('description') or None,
            content=fields.get('content') or fields.get('description') or None,
            author=clean_text(fields.get('author')) or None,
            categories=_categories(fields.get('categories')),
        ))

    logger.debug("Text digest parsed", source_url=source_url, item_count=len(feeds))
    return feeds
