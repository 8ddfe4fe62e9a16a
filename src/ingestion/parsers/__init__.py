"""
Format parsers.

Each parser exposes a detector predicate and a parse function with the
uniform signature ``parse(payload, source_url, context) -> List[Feed]``.
"""
from .json_feed import is_json, parse_json_feed
from .text_digest import is_text, parse_text_digest
from .xml_feed import FeedType, XMLFeedParser, is_xml, parse_xml_feed

__all__ = [
    "is_json",
    "parse_json_feed",
    "is_xml",
    "parse_xml_feed",
    "XMLFeedParser",
    "FeedType",
    "is_text",
    "parse_text_digest",
]
