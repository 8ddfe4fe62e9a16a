"""
Proxy fetcher.

Feed URLs are retrieved through a fixed chain of CORS proxies. The primary
proxy wraps the upstream body in a JSON envelope ({"contents": ...,
"status": {...}}); fallbacks return the raw body. Each proxy gets a bounded
number of attempts, and the first successful response wins.
"""
import asyncio
import json
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import quote, urljoin, urlparse

import httpx
import structlog

from ..shared.config import IngestionSettings, get_settings
from .errors import IngestionError, NetworkFailure
from .models import FetchResult

logger = structlog.get_logger(__name__)

FEED_ACCEPT = 'application/rss+xml, application/atom+xml, application/feed+json, application/json, application/xml, text/xml, text/plain, */*'


class ProxyResponseError(IngestionError):
    """Raised when a proxy answers with an unusable body."""
    pass


@dataclass(frozen=True)
class ProxyEndpoint:
    """One proxy in the fetch chain."""
    name: str
    base: str
    envelope: bool = False

    def request_url(self, source_url: str) -> str:
        """Build the proxied request URL for a source URL."""
        return f"{self.base}{quote(source_url, safe='')}"


def build_proxy_chain(config: IngestionSettings) -> List[ProxyEndpoint]:
    """
    Build the ordered proxy chain from settings.

    Same-origin proxy paths (starting with "/") are resolved against the
    configured proxy origin and skipped when no origin is set.
    """
    chain = [ProxyEndpoint(
        name=urlparse(config.primary_proxy_url).netloc or config.primary_proxy_url,
        base=config.primary_proxy_url,
        envelope=config.primary_proxy_envelope,
    )]

    for base in config.fallback_proxy_urls:
        if base.startswith('/'):
            if not config.proxy_origin:
                logger.debug("Skipping same-origin proxy, no origin configured", proxy=base)
                continue
            base = urljoin(config.proxy_origin, base)
        chain.append(ProxyEndpoint(name=urlparse(base).netloc or base, base=base))

    return chain


def unwrap_envelope(body: str) -> Optional[Tuple[str, Optional[str]]]:
    """
    Unwrap a proxy JSON envelope.

    Returns:
        (contents, content_type) for an envelope, None when the body is not one

    Raises:
        ProxyResponseError: If the envelope is malformed or reports an
            upstream HTTP error
    """
    if not body.lstrip().startswith('{'):
        return None
    try:
        document = json.loads(body)
    except ValueError:
        return None
    if not isinstance(document, dict) or 'contents' not in document:
        return None

    contents = document['contents']
    if not isinstance(contents, str):
        raise ProxyResponseError("Envelope contents is not a string")

    status = document.get('status')
    if not isinstance(status, dict):
        status = {}
    http_code = status.get('http_code')
    if isinstance(http_code, int) and http_code >= 400:
        raise ProxyResponseError(f"Upstream returned HTTP {http_code}")

    content_type = status.get('content_type')
    return contents, content_type if isinstance(content_type, str) else None


class ProxyFetcher:
    """
    Fetches raw feed payloads through the proxy chain.

    The fetcher owns an httpx.AsyncClient unless one is injected, and can be
    used as an async context manager.
    """

    def __init__(
        self,
        settings: Optional[IngestionSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            settings: Ingestion settings, defaults to the global instance
            client: Shared HTTP client; one is created (and owned) when omitted
        """
        self.settings = settings or get_settings()
        self.chain = build_proxy_chain(self.settings)
        self.headers = {
            'User-Agent': self.settings.user_agent,
            'Accept': FEED_ACCEPT,
            'Cache-Control': 'no-cache',
        }
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.fetch_timeout),
            follow_redirects=True,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )
        self.logger = logger.bind(component="proxy_fetcher")

    async def fetch(self, source_url: str) -> FetchResult:
        """
        Fetch a source URL through the proxy chain.

        Args:
            source_url: Absolute feed URL

        Returns:
            Raw payload with the content-type hint and serving proxy

        Raises:
            NetworkFailure: If every proxy attempt fails
        """
        failures: List[Tuple[str, str]] = []
        attempts = 0
        max_attempts = self.settings.attempts_per_proxy

        for endpoint in self.chain:
            for attempt in range(1, max_attempts + 1):
                attempts += 1
                self.logger.debug("Fetching through proxy", source_url=source_url,
                                  proxy=endpoint.name, attempt=attempt)
                try:
                    text, content_type = await asyncio.wait_for(
                        self._request(endpoint, source_url),
                        timeout=self.settings.fetch_timeout,
                    )
                except asyncio.TimeoutError:
                    error = f"timed out after {self.settings.fetch_timeout}s"
                except (httpx.HTTPError, ProxyResponseError) as e:
                    error = str(e) or type(e).__name__
                else:
                    self.logger.info("Feed fetched", source_url=source_url, proxy=endpoint.name,
                                     attempts=attempts, content_length=len(text))
                    return FetchResult(
                        source_url=source_url,
                        text=text,
                        content_type=content_type,
                        proxy=endpoint.name,
                        attempts=attempts,
                    )

                failures.append((endpoint.name, error))
                self.logger.warning("Proxy attempt failed", source_url=source_url,
                                    proxy=endpoint.name, attempt=attempt, error=error)
                if attempt < max_attempts:
                    await asyncio.sleep(self.settings.retry_backoff * attempt)

        self.logger.error("All proxy attempts failed", source_url=source_url, attempts=attempts)
        raise NetworkFailure(source_url, failures)

    async def _request(self, endpoint: ProxyEndpoint, source_url: str) -> Tuple[str, Optional[str]]:
        response = await self.client.get(endpoint.request_url(source_url), headers=self.headers)
        response.raise_for_status()

        unwrapped = unwrap_envelope(response.text)
        if unwrapped is not None:
            return unwrapped
        if endpoint.envelope:
            raise ProxyResponseError("Proxy response is not a JSON envelope")
        return response.text, response.headers.get('content-type')

    async def close(self):
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
