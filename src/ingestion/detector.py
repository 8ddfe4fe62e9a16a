"""
Format detection.

Formats are tried in a fixed priority order (JSON, XML, plain text); the
first handler whose predicate accepts the payload wins. The response
content type is only a hint and never overrides that order.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog

from .errors import DetectionFailure
from .models import Feed, FeedContext, FormatTag
from .parsers import (
    is_json, is_text, is_xml, parse_json_feed, parse_text_digest, parse_xml_feed,
)

logger = structlog.get_logger(__name__)

ParseFunction = Callable[[str, str, FeedContext], List[Feed]]


@dataclass(frozen=True)
class FormatHandler:
    """A format predicate paired with its parser."""
    tag: FormatTag
    detect: Callable[[str], bool]
    parse: ParseFunction


FORMAT_HANDLERS: List[FormatHandler] = [
    FormatHandler(FormatTag.JSON, is_json, parse_json_feed),
    FormatHandler(FormatTag.XML, is_xml, parse_xml_feed),
    FormatHandler(FormatTag.TXT, is_text, parse_text_digest),
]

# Content-type fragments per format, used for hint comparison only
CONTENT_TYPE_HINTS = {
    FormatTag.JSON: ('json',),
    FormatTag.XML: ('xml', 'rss', 'atom'),
    FormatTag.TXT: ('text/plain',),
}


def handler_for(tag: FormatTag) -> FormatHandler:
    """Look up the registered handler for a format tag."""
    for handler in FORMAT_HANDLERS:
        if handler.tag == tag:
            return handler
    raise KeyError(tag)


def hinted_format(content_type: Optional[str]) -> Optional[FormatTag]:
    """Map a content-type header onto a format tag, if it names one."""
    if not content_type:
        return None
    lowered = content_type.lower()
    for tag, fragments in CONTENT_TYPE_HINTS.items():
        if any(fragment in lowered for fragment in fragments):
            return tag
    return None


class FormatDetector:
    """Chooses the parser for a raw payload."""

    def __init__(self, guard_code_tokens: bool = True):
        self.guard_code_tokens = guard_code_tokens
        self.logger = logger.bind(component="format_detector")

    def _accepts(self, handler: FormatHandler, text: str) -> bool:
        if handler.tag == FormatTag.JSON:
            return is_json(text, guard_code_tokens=self.guard_code_tokens)
        return handler.detect(text)

    def detect(self, text: str, content_type: Optional[str] = None) -> FormatTag:
        """
        Detect the format of a payload.

        Args:
            text: Raw payload
            content_type: Optional content-type hint from the response

        Returns:
            The first matching format tag

        Raises:
            DetectionFailure: If the payload is empty or no format matches
        """
        if not text or not text.strip():
            raise DetectionFailure("Empty payload")

        for handler in FORMAT_HANDLERS:
            if self._accepts(handler, text):
                hint = hinted_format(content_type)
                if hint is not None and hint != handler.tag:
                    self.logger.info("Content type disagrees with detected format",
                                     content_type=content_type, detected=handler.tag.value)
                return handler.tag

        raise DetectionFailure("No format matched payload")

    def select(self, text: str, content_type: Optional[str] = None) -> FormatHandler:
        """Detect the format and return its handler."""
        return handler_for(self.detect(text, content_type))
