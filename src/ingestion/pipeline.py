"""
Feed ingestion pipeline.

Drives one source URL through FETCHING -> DETECTING -> PARSING -> DONE.
Any failure is terminal for that URL and reported as IngestionFailure
carrying the stage it happened in. Retries live in the fetcher only.
"""
import asyncio
import time
from typing import List, Optional
from urllib.parse import urlparse

import structlog

from ..shared.config import IngestionSettings, get_settings
from ..shared.logging_config import CorrelationContext, initialize_logging
from .detector import FormatDetector
from .errors import IngestionFailure, IngestionStage, InvalidSourceUrl
from .fetcher import ProxyFetcher
from .models import Feed, FeedContext, IngestionResult
from .validator import FeedBatchValidator

logger = structlog.get_logger(__name__)


def validate_source_url(source_url: str) -> None:
    """Reject empty or non-absolute source URLs."""
    if not isinstance(source_url, str) or not source_url.strip():
        raise InvalidSourceUrl("Source URL is empty")
    try:
        parsed = urlparse(source_url.strip())
    except ValueError as e:
        raise InvalidSourceUrl(f"Source URL is malformed: {source_url}") from e
    if not parsed.scheme or not parsed.netloc:
        raise InvalidSourceUrl(f"Source URL is not absolute: {source_url}")


class FeedIngestionPipeline:
    """Main ingestion engine: fetch, detect, parse."""

    def __init__(
        self,
        settings: Optional[IngestionSettings] = None,
        fetcher: Optional[ProxyFetcher] = None,
        detector: Optional[FormatDetector] = None,
        validator: Optional[FeedBatchValidator] = None,
    ):
        self.settings = settings or get_settings()
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or ProxyFetcher(self.settings)
        self.detector = detector or FormatDetector(self.settings.guard_code_tokens)
        self.validator = validator or FeedBatchValidator()
        self.logger = logger.bind(component="ingestion_pipeline")

    def _context(self, context: Optional[FeedContext]) -> FeedContext:
        return context or FeedContext(feed_list_id=self.settings.default_feed_list_id)

    async def ingest(self, source_url: str, context: Optional[FeedContext] = None) -> List[Feed]:
        """
        Ingest one source URL.

        Args:
            source_url: Absolute feed URL
            context: Caller context; defaults to the configured feed list

        Returns:
            Normalized records in source order

        Raises:
            IngestionFailure: With the stage that failed and its cause
        """
        context = self._context(context)
        log = self.logger.bind(source_url=source_url)
        stage = IngestionStage.FETCHING
        log.info("Ingestion started", stage=stage.value)

        try:
            validate_source_url(source_url)
            fetched = await self.fetcher.fetch(source_url)

            stage = IngestionStage.DETECTING
            log.debug("Detecting format", stage=stage.value, proxy=fetched.proxy,
                      content_type=fetched.content_type)
            handler = self.detector.select(fetched.text, fetched.content_type)

            stage = IngestionStage.PARSING
            log.debug("Parsing payload", stage=stage.value, format=handler.tag.value)
            feeds = handler.parse(fetched.text, source_url, context)
        except Exception as e:
            log.error("Ingestion failed", stage=stage.value, error=str(e), error_type=type(e).__name__)
            raise IngestionFailure(stage, e, source_url) from e

        self._report_violations(feeds, log)

        log.info("Ingestion completed", stage=IngestionStage.DONE.value,
                 format=handler.tag.value, feed_count=len(feeds))
        return feeds

    def _report_violations(self, feeds: List[Feed], log) -> None:
        # Validation only warns; parsed records are returned regardless
        try:
            violations = self.validator.validate_batch(feeds)
        except Exception as e:
            log.warning("Feed batch validation failed", error=str(e), error_type=type(e).__name__)
            return
        for violation in violations:
            log.warning("Feed batch validation issue", issue=violation)

    async def _ingest_timed(self, source_url: str, context: Optional[FeedContext]) -> IngestionResult:
        start_time = time.time()
        try:
            with CorrelationContext():
                feeds = await self.ingest(source_url, context)
        except IngestionFailure as e:
            return IngestionResult(
                source_url=source_url,
                success=False,
                failure=e,
                response_time=time.time() - start_time,
            )
        return IngestionResult(
            source_url=source_url,
            success=True,
            feeds=feeds,
            response_time=time.time() - start_time,
        )

    async def ingest_many(
        self,
        source_urls: List[str],
        context: Optional[FeedContext] = None,
    ) -> List[IngestionResult]:
        """
        Ingest several source URLs concurrently.

        One source's failure never aborts the others. Results follow the
        order of source_urls. Each source logs under its own correlation id.
        """
        if not source_urls:
            return []

        self.logger.info("Ingesting batch", source_count=len(source_urls))
        outcomes = await asyncio.gather(
            *[self._ingest_timed(url, context) for url in source_urls],
            return_exceptions=True,
        )

        results: List[IngestionResult] = []
        for url, outcome in zip(source_urls, outcomes):
            if isinstance(outcome, IngestionResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                results.append(IngestionResult(
                    source_url=url,
                    success=False,
                    failure=IngestionFailure(IngestionStage.FETCHING, outcome, url),
                ))
            else:
                # Cancellation and interpreter exits are not per-source failures
                raise outcome

        successful = sum(1 for r in results if r.success)
        self.logger.info("Batch ingestion completed", successful=successful, total=len(results))
        return results

    async def close(self):
        """Release the fetcher if this pipeline created it."""
        if self._owns_fetcher:
            await self.fetcher.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


async def ingest(
    source_url: str,
    context: Optional[FeedContext] = None,
    settings: Optional[IngestionSettings] = None,
) -> List[Feed]:
    """Ingest one source URL with a short-lived pipeline."""
    async with FeedIngestionPipeline(settings) as pipeline:
        return await pipeline.ingest(source_url, context)


if __name__ == "__main__":
    import json
    import sys

    async def run_ingestion(source_urls: List[str]):
        """Ingest the given URLs and print the results as JSON."""
        async with FeedIngestionPipeline() as pipeline:
            results = await pipeline.ingest_many(source_urls)
        print(json.dumps([result.to_dict() for result in results], indent=2))

    if len(sys.argv) < 2:
        print("usage: python -m src.ingestion.pipeline URL [URL ...]")
        sys.exit(2)

    initialize_logging()
    asyncio.run(run_ingestion(sys.argv[1:]))
