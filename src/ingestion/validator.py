"""
Batch validation for normalized feed records.
"""
from typing import List
from urllib.parse import urlparse

import structlog
from dateutil import parser as date_parser

from .models import Feed

logger = structlog.get_logger(__name__)


class FeedBatchValidator:
    """Validates the records produced for one source URL."""

    def __init__(self):
        self.logger = logger.bind(component="feed_batch_validator")

    def validate_batch(self, feeds: List[Feed]) -> List[str]:
        """
        Validate a batch and return a list of violation messages.

        Args:
            feeds: Records produced by one ingestion

        Returns:
            Human-readable violations; empty when the batch is consistent
        """
        errors = []
        if not feeds:
            return errors

        source_url = feeds[0].url
        seen_ids = set()

        for i, feed in enumerate(feeds):
            prefix = f"Item {i + 1}: "

            if feed.url != source_url:
                errors.append(f"{prefix}Source URL {feed.url} differs from batch URL {source_url}")

            if feed.id in seen_ids:
                errors.append(f"{prefix}Duplicate id {feed.id}")
            seen_ids.add(feed.id)

            if not self._is_iso_date(feed.pub_date):
                errors.append(f"{prefix}Invalid publish date: {feed.pub_date}")

            if not self._is_valid_link(feed.link):
                errors.append(f"{prefix}Invalid item link URL: {feed.link}")

        return errors

    def _is_iso_date(self, value: str) -> bool:
        try:
            date_parser.isoparse(value)
        except (TypeError, ValueError, OverflowError):
            return False
        return True

    def _is_valid_link(self, link: str) -> bool:
        """Absolute links must be HTTP/HTTPS; relative links pass."""
        try:
            scheme = urlparse(link).scheme
        except ValueError:
            return False
        return not scheme or scheme in ('http', 'https')
