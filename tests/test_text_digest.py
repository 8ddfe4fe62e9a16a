"""
Unit tests for the plain-text digest parser.
"""
import pytest
from datetime import datetime, timezone

from src.ingestion.models import FeedContext
from src.ingestion.parsers.text_digest import is_text, parse_text_digest

SOURCE_URL = "https://example.com/digest.txt"
FIXED_NOW = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)


@pytest.fixture
def context():
    return FeedContext(clock=lambda: FIXED_NOW)


@pytest.fixture
def keyed_digest():
    return (
        "Title: Port closures expected\n"
        "Link: https://example.com/ports\n"
        "Date: 2024-01-01T10:00:00Z\n"
        "Author: Harbor Desk\n"
        "Category: logistics, maritime\n"
        "Summary: Ships are being diverted.\n"
        "\n"
        "Title: Second story\n"
        "URL: https://example.com/second\n"
        "Tags: weather\n"
    )


class TestIsText:

    def test_non_empty(self):
        assert is_text("anything at all")
        assert not is_text("   \n ")
        assert not is_text("")


class TestParseTextDigest:
    """Test text digest parsing."""

    def test_keyed_records(self, keyed_digest, context):
        feeds = parse_text_digest(keyed_digest, SOURCE_URL, context)

        assert len(feeds) == 2
        first, second = feeds
        assert first.id == f"{SOURCE_URL}-0"
        assert first.title == "Port closures expected"
        assert first.link == "https://example.com/ports"
        assert first.pub_date == "2024-01-01T10:00:00+00:00"
        assert first.author == "Harbor Desk"
        assert first.categories == ["logistics", "maritime"]
        assert first.description == "Ships are being diverted."
        assert second.link == "https://example.com/second"
        assert second.categories == ["weather"]
        assert second.pub_date == FIXED_NOW.isoformat()

    def test_keys_are_case_insensitive(self, context):
        feeds = parse_text_digest("TITLE: Loud\nlink: https://example.com/a", SOURCE_URL, context)

        assert feeds[0].title == "Loud"
        assert feeds[0].link == "https://example.com/a"

    def test_repeated_title_starts_new_record(self, context):
        text = "Title: One\nLink: https://example.com/1\nTitle: Two\nLink: https://example.com/2"

        feeds = parse_text_digest(text, SOURCE_URL, context)

        assert [f.title for f in feeds] == ["One", "Two"]
        assert [f.link for f in feeds] == ["https://example.com/1", "https://example.com/2"]

    def test_positional_block(self, context):
        text = "Port closures expected\nhttps://example.com/ports\nShips are being diverted."

        feed = parse_text_digest(text, SOURCE_URL, context)[0]

        assert feed.title == "Port closures expected"
        assert feed.link == "https://example.com/ports"
        assert feed.description == "Ships are being diverted."

    def test_unknown_keys_join_description(self, context):
        text = "Title: Notice\nNote: bring ID\nDescription: Office moves"

        feed = parse_text_digest(text, SOURCE_URL, context)[0]

        assert feed.description == "Office moves\nNote: bring ID"

    def test_arbitrary_text_never_raises(self, context):
        for text in ("just some words", "{ function x() {} }", "<html><body>hi</body></html>", "a\n\n\nb"):
            feeds = parse_text_digest(text, SOURCE_URL, context)
            assert feeds
            assert all(f.link == SOURCE_URL or f.link.startswith("http") for f in feeds)

    def test_defaults_and_names(self, context):
        feed = parse_text_digest("Link: https://example.com/x", SOURCE_URL, context)[0]

        assert feed.title == "No title"
        assert feed.name == "Text Feed"
        assert feed.feed_list_id == "1"

    def test_display_name(self):
        context = FeedContext(feed_list_id="3", display_name="Bulletin")

        feed = parse_text_digest("Title: A", SOURCE_URL, context)[0]

        assert feed.name == "Bulletin"
        assert feed.feed_list_id == "3"

    def test_empty_payload(self, context):
        assert parse_text_digest("", SOURCE_URL, context) == []
