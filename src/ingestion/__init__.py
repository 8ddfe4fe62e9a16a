"""
Ingestion - Feed Ingestion & Normalization Pipeline

This package retrieves syndication feeds through CORS proxies and
normalizes them into canonical Feed records.

The ingestion layer provides:
- Proxy-mediated retrieval with ordered fallback
- Format detection (JSON, RSS/Atom XML, plain text)
- Per-format parsing into a single record type
- Concurrent batch ingestion with per-source failure isolation
"""

from .detector import FORMAT_HANDLERS, FormatDetector, FormatHandler
from .errors import (
    DetectionFailure, IngestionError, IngestionFailure, IngestionStage,
    InvalidSourceUrl, NetworkFailure, ParseFailure,
)
from .fetcher import ProxyEndpoint, ProxyFetcher, build_proxy_chain
from .models import Feed, FeedContext, FetchResult, FormatTag, IngestionResult, MediaItem
from .pipeline import FeedIngestionPipeline, ingest
from .validator import FeedBatchValidator

__all__ = [
    'Feed',
    'FeedContext',
    'MediaItem',
    'FormatTag',
    'FetchResult',
    'IngestionResult',
    'IngestionError',
    'IngestionStage',
    'IngestionFailure',
    'InvalidSourceUrl',
    'NetworkFailure',
    'DetectionFailure',
    'ParseFailure',
    'FormatDetector',
    'FormatHandler',
    'FORMAT_HANDLERS',
    'ProxyEndpoint',
    'ProxyFetcher',
    'build_proxy_chain',
    'FeedIngestionPipeline',
    'FeedBatchValidator',
    'ingest',
]
