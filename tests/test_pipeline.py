"""
Integration tests for the ingestion pipeline.
Tests stage transitions, failure reporting, proxy fallback end to end and
concurrent ingestion.
"""
import asyncio
import json
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import httpx

from src.ingestion.detector import FormatDetector, FormatHandler
from src.ingestion.errors import (
    DetectionFailure, IngestionFailure, IngestionStage, InvalidSourceUrl,
    NetworkFailure, ParseFailure
)
from src.ingestion.fetcher import ProxyFetcher
from src.ingestion.models import FeedContext, FetchResult, FormatTag
from src.ingestion.pipeline import FeedIngestionPipeline, ingest, validate_source_url
from src.ingestion.validator import FeedBatchValidator
from src.shared.config import IngestionSettings
from src.shared.logging_config import get_correlation_id

SOURCE_URL = "https://example.com/rss.xml"
FIXED_NOW = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)
ONE_ITEM_RSS = '<rss><channel><item><title>Only item</title></item></channel></rss>'


def rss_for(url, count):
    items = "".join(
        f"<item><title>{url} #{i}</title><link>{url}/{i}</link></item>" for i in range(count)
    )
    return f"<rss><channel><title>{url}</title>{items}</channel></rss>"


@pytest.fixture
def settings():
    return IngestionSettings(fetch_timeout=0.5, retry_backoff=0.0)


@pytest.fixture
def mock_fetcher():
    """Fetcher double returning a canned payload."""
    fetcher = Mock(spec=ProxyFetcher)
    fetcher.fetch = AsyncMock(return_value=FetchResult(source_url=SOURCE_URL, text=ONE_ITEM_RSS, proxy="mock"))
    fetcher.close = AsyncMock()
    return fetcher


@pytest.fixture
def pipeline(settings, mock_fetcher):
    return FeedIngestionPipeline(settings, fetcher=mock_fetcher)


class TestValidateSourceUrl:

    @pytest.mark.parametrize("url", ["", "   ", "example.com/feed", "/relative/path", "http://[broken", None])
    def test_rejects(self, url):
        with pytest.raises(InvalidSourceUrl):
            validate_source_url(url)

    @pytest.mark.parametrize("url", ["https://example.com/rss", "http://localhost:8080/feed", "ftp://host/feed"])
    def test_accepts(self, url):
        validate_source_url(url)


class TestIngest:
    """Test single-source ingestion."""

    @pytest.mark.asyncio
    async def test_successful_ingestion(self, pipeline, mock_fetcher):
        feeds = await pipeline.ingest(SOURCE_URL)

        assert len(feeds) == 1
        assert feeds[0].title == "Only item"
        assert feeds[0].link == SOURCE_URL
        assert feeds[0].feed_list_id == "1"
        mock_fetcher.fetch.assert_awaited_once_with(SOURCE_URL)

    @pytest.mark.asyncio
    async def test_context_is_passed_through(self, pipeline):
        context = FeedContext(feed_list_id="42", display_name="Ports", clock=lambda: FIXED_NOW)

        feeds = await pipeline.ingest(SOURCE_URL, context)

        assert feeds[0].feed_list_id == "42"
        assert feeds[0].name == "Ports"
        assert feeds[0].pub_date == FIXED_NOW.isoformat()

    @pytest.mark.asyncio
    async def test_default_feed_list_from_settings(self, mock_fetcher):
        pipeline = FeedIngestionPipeline(IngestionSettings(default_feed_list_id="7"), fetcher=mock_fetcher)

        feeds = await pipeline.ingest(SOURCE_URL)

        assert feeds[0].feed_list_id == "7"

    @pytest.mark.asyncio
    async def test_invalid_url_fails_at_fetching(self, pipeline, mock_fetcher):
        with pytest.raises(IngestionFailure) as exc_info:
            await pipeline.ingest("not-a-url")

        assert exc_info.value.stage == IngestionStage.FETCHING
        assert isinstance(exc_info.value.cause, InvalidSourceUrl)
        mock_fetcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_failure(self, pipeline, mock_fetcher):
        mock_fetcher.fetch.side_effect = NetworkFailure(SOURCE_URL, [("primary", "HTTP 500")])

        with pytest.raises(IngestionFailure) as exc_info:
            await pipeline.ingest(SOURCE_URL)

        failure = exc_info.value
        assert failure.stage == IngestionStage.FETCHING
        assert isinstance(failure.cause, NetworkFailure)
        assert failure.source_url == SOURCE_URL
        assert failure.to_dict()["cause_type"] == "NetworkFailure"

    @pytest.mark.asyncio
    async def test_empty_payload_fails_at_detecting(self, pipeline, mock_fetcher):
        mock_fetcher.fetch.return_value = FetchResult(source_url=SOURCE_URL, text="   \n")

        with pytest.raises(IngestionFailure) as exc_info:
            await pipeline.ingest(SOURCE_URL)

        assert exc_info.value.stage == IngestionStage.DETECTING
        assert isinstance(exc_info.value.cause, DetectionFailure)

    @pytest.mark.asyncio
    async def test_malformed_xml_fails_at_parsing(self, pipeline, mock_fetcher):
        mock_fetcher.fetch.return_value = FetchResult(source_url=SOURCE_URL, text="<rss><channel><item>")

        with pytest.raises(IngestionFailure) as exc_info:
            await pipeline.ingest(SOURCE_URL)

        assert exc_info.value.stage == IngestionStage.PARSING
        assert isinstance(exc_info.value.cause, ParseFailure)

    @pytest.mark.asyncio
    async def test_unexpected_parser_error_is_wrapped(self, settings, mock_fetcher):
        detector = Mock(spec=FormatDetector)
        detector.select.return_value = FormatHandler(
            FormatTag.TXT, lambda text: True, Mock(side_effect=RuntimeError("boom"))
        )
        pipeline = FeedIngestionPipeline(settings, fetcher=mock_fetcher, detector=detector)

        with pytest.raises(IngestionFailure) as exc_info:
            await pipeline.ingest(SOURCE_URL)

        assert exc_info.value.stage == IngestionStage.PARSING
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_script_payload_renders_as_text(self, pipeline, mock_fetcher):
        mock_fetcher.fetch.return_value = FetchResult(
            source_url=SOURCE_URL, text="{ function main() { return 1; } }"
        )

        feeds = await pipeline.ingest(SOURCE_URL)

        assert len(feeds) == 1
        assert feeds[0].name == "Text Feed"

    @pytest.mark.asyncio
    async def test_cancellation_is_not_wrapped(self, pipeline, mock_fetcher):
        mock_fetcher.fetch.side_effect = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await pipeline.ingest(SOURCE_URL)

    @pytest.mark.asyncio
    async def test_unparseable_item_link_keeps_records(self, pipeline, mock_fetcher):
        mock_fetcher.fetch.return_value = FetchResult(
            source_url=SOURCE_URL,
            text='<rss><channel><item><title>A</title><link>http://[broken</link></item></channel></rss>',
        )

        feeds = await pipeline.ingest(SOURCE_URL)

        assert len(feeds) == 1
        assert feeds[0].link == "http://[broken"

    @pytest.mark.asyncio
    async def test_validator_error_does_not_abort(self, settings, mock_fetcher):
        validator = Mock(spec=FeedBatchValidator)
        validator.validate_batch.side_effect = RuntimeError("validator bug")
        pipeline = FeedIngestionPipeline(settings, fetcher=mock_fetcher, validator=validator)

        feeds = await pipeline.ingest(SOURCE_URL)

        assert [f.title for f in feeds] == ["Only item"]
        validator.validate_batch.assert_called_once()


class TestEndToEnd:
    """Pipeline over a real fetcher with a mock transport."""

    @pytest.mark.asyncio
    async def test_primary_failure_secondary_envelope(self, settings):
        def handler(request):
            if request.url.host == "api.allorigins.win":
                return httpx.Response(500)
            return httpx.Response(200, text=json.dumps({"contents": ONE_ITEM_RSS}))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            pipeline = FeedIngestionPipeline(settings, fetcher=ProxyFetcher(settings, client=client))
            feeds = await pipeline.ingest(SOURCE_URL)

        assert len(feeds) == 1
        assert feeds[0].link == SOURCE_URL
        assert feeds[0].url == SOURCE_URL
        assert feeds[0].id == f"{SOURCE_URL}-0"

    @pytest.mark.asyncio
    async def test_concurrent_ingestions_are_independent(self, settings):
        first_url = "https://one.example.com/rss"
        second_url = "https://two.example.com/rss"

        async def handler(request):
            source = request.url.params["url"]
            await asyncio.sleep(0.01 if source == first_url else 0)
            payload = rss_for(source, 2 if source == first_url else 3)
            return httpx.Response(200, json={"contents": payload, "status": {"http_code": 200}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            pipeline = FeedIngestionPipeline(settings, fetcher=ProxyFetcher(settings, client=client))
            first, second = await asyncio.gather(
                pipeline.ingest(first_url),
                pipeline.ingest(second_url),
            )

        assert len(first) == 2
        assert len(second) == 3
        assert all(f.url == first_url for f in first)
        assert all(f.url == second_url for f in second)
        assert not {f.id for f in first} & {f.id for f in second}
        assert [f.title for f in first] == [f"{first_url} #0", f"{first_url} #1"]


class TestIngestMany:
    """Test batch ingestion."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, pipeline, mock_fetcher):
        async def fetch(url):
            if "down" in url:
                raise NetworkFailure(url, [("primary", "HTTP 500")])
            return FetchResult(source_url=url, text=ONE_ITEM_RSS)

        mock_fetcher.fetch.side_effect = fetch
        urls = ["https://a.example/rss", "https://down.example/rss", "bad url", "https://b.example/rss"]

        results = await pipeline.ingest_many(urls)

        assert [r.source_url for r in results] == urls
        assert [r.success for r in results] == [True, False, False, True]
        assert results[1].failure.stage == IngestionStage.FETCHING
        assert isinstance(results[2].failure.cause, InvalidSourceUrl)
        assert results[0].feed_count == 1
        assert results[3].feeds[0].url == "https://b.example/rss"
        assert results[1].to_dict()["failure"]["stage"] == "fetching"

    @pytest.mark.asyncio
    async def test_empty_batch(self, pipeline, mock_fetcher):
        assert await pipeline.ingest_many([]) == []
        mock_fetcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_each_source_logs_under_its_own_correlation_id(self, pipeline, mock_fetcher):
        seen = {}

        async def fetch(url):
            seen[url] = get_correlation_id()
            await asyncio.sleep(0)
            assert get_correlation_id() == seen[url]
            return FetchResult(source_url=url, text=ONE_ITEM_RSS)

        mock_fetcher.fetch.side_effect = fetch
        urls = ["https://a.example/rss", "https://b.example/rss", "https://c.example/rss"]

        results = await pipeline.ingest_many(urls)

        assert all(r.success for r in results)
        assert set(seen) == set(urls)
        assert all(seen[url] for url in urls)
        assert len(set(seen.values())) == len(urls)


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_injected_fetcher_not_closed(self, pipeline, mock_fetcher):
        await pipeline.close()
        mock_fetcher.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_module_level_ingest(self, mock_fetcher):
        with patch("src.ingestion.pipeline.ProxyFetcher", return_value=mock_fetcher):
            feeds = await ingest(SOURCE_URL, FeedContext(feed_list_id="5"))

        assert feeds[0].feed_list_id == "5"
        mock_fetcher.close.assert_awaited_once()
