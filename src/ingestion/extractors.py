"""
Value extraction helpers.

Safe accessors over loosely-typed payloads: decoded JSON objects, parsed
text records and ElementTree nodes. Accessors never raise for missing or
oddly-typed values; they return the supplied default instead.
"""
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog
from dateutil import parser as date_parser

logger = structlog.get_logger(__name__)

# Common date formats found in feeds
DATE_FORMATS = [
    "%a, %d %b %Y %H:%M:%S %z",      # RFC 2822
    "%a, %d %b %Y %H:%M:%S %Z",      # RFC 2822 with timezone name
    "%a, %d %b %Y %H:%M:%S",         # RFC 2822 without timezone
    "%Y-%m-%dT%H:%M:%S%z",           # ISO 8601 with timezone
    "%Y-%m-%dT%H:%M:%SZ",            # ISO 8601 UTC
    "%Y-%m-%dT%H:%M:%S",             # ISO 8601 without timezone
    "%Y-%m-%d %H:%M:%S",             # Simple datetime
    "%Y-%m-%d",                      # Date only
    "%d %b %Y %H:%M:%S %z",          # Alternative RFC format
    "%d %b %Y",                      # Date only alternative
]

_WHITESPACE = re.compile(r'\s+')
_TAGS = re.compile(r'<[^>]+>')


# --- Loosely-typed mappings (decoded JSON, text records) ---

def get_str(obj: Any, *keys: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty string (or number, stringified) under keys."""
    if not isinstance(obj, Mapping):
        return default
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return default


def get_list(obj: Any, *keys: str) -> Optional[List[Any]]:
    """Return the first list value under keys, or None."""
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        value = obj.get(key)
        if isinstance(value, list):
            return value
    return None


def get_mapping(obj: Any, *keys: str) -> Optional[Dict[str, Any]]:
    """Return the first dict value under keys, or None."""
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        value = obj.get(key)
        if isinstance(value, dict):
            return value
    return None


def string_list(values: Any) -> Optional[List[str]]:
    """Keep the non-empty string members of a list; None when nothing survives."""
    if not isinstance(values, list):
        return None
    strings = [str(v).strip() for v in values if isinstance(v, (str, int, float)) and str(v).strip()]
    return strings or None


# --- Text ---

def clean_text(text: Optional[str]) -> str:
    """Clean and normalize text content (whitespace collapsed, tags removed)."""
    if not text:
        return ""

    text = _TAGS.sub('', text)
    return _WHITESPACE.sub(' ', text).strip()


def clean_xml(xml_content: str) -> str:
    """Clean and prepare XML content for parsing."""
    # Remove BOM if present
    if xml_content.startswith('\ufeff'):
        xml_content = xml_content[1:]

    xml_content = xml_content.strip()

    # Fix common XML issues
    xml_content = xml_content.replace('&nbsp;', ' ')
    xml_content = xml_content.replace('&amp;amp;', '&amp;')

    return xml_content


# --- Dates ---

def parse_date(value: Any) -> Optional[datetime]:
    """Parse a date value using known feed formats, then dateutil."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch seconds, or milliseconds for large values
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if not isinstance(value, str) or not value.strip():
        return None

    date_str = value.strip()

    for fmt in DATE_FORMATS:
        try:
            dt = datetime.strptime(date_str, fmt)
        except ValueError:
            continue
        # If no timezone info, assume UTC
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    try:
        dt = date_parser.parse(date_str)
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_date(value: Any, clock: Callable[[], datetime]) -> str:
    """
    Normalize a publish date to ISO-8601.

    Missing or unparseable values are replaced with the reference clock's
    current time, so the result is always a valid ISO-8601 string.
    """
    parsed = parse_date(value)
    if parsed is None:
        if value not in (None, ""):
            logger.debug("Failed to parse date, using reference clock", date_value=str(value))
        parsed = clock()
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


# --- ElementTree nodes (namespace-agnostic, like DOM getElementsByTagName) ---

def local_name(tag: Any) -> str:
    """Strip the namespace from an ElementTree tag; comments yield ''."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit('}', 1)[-1]


def _matches(tag: Any, name: str) -> bool:
    # "{ns}local" matches exactly, a bare name matches any namespace
    if name.startswith('{'):
        return tag == name
    return local_name(tag) == name


def children(elem: ET.Element, name: str) -> List[ET.Element]:
    """Direct children whose tag matches name."""
    return [c for c in elem if _matches(c.tag, name)]


def child(elem: ET.Element, *names: str) -> Optional[ET.Element]:
    """First direct child matching any of names, tried in order."""
    for name in names:
        for c in elem:
            if _matches(c.tag, name):
                return c
    return None


def descendants(elem: ET.Element, name: str) -> List[ET.Element]:
    """All descendants (document order) whose tag matches name."""
    return [e for e in elem.iter() if e is not elem and _matches(e.tag, name)]


def element_text(elem: Optional[ET.Element]) -> str:
    """Full text content of an element, including nested markup text."""
    if elem is None:
        return ""
    return "".join(elem.itertext()).strip()


def child_text(elem: ET.Element, *names: str, default: Optional[str] = None) -> Optional[str]:
    """Text of the first direct child matching names that has non-empty text."""
    for name in names:
        for c in children(elem, name):
            text = element_text(c)
            if text:
                return text
    return default
